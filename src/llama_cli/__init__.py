"""
Llama CLI - A terminal assistant for locally hosted language models.

This package provides tools for:
- Discovering the model served by a llama.cpp (OpenAI-compatible) server
- Chatting with it interactively, with streamed replies
- Carrying structured tool invocations through the conversation
"""

__version__ = "0.1.0"
