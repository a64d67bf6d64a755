"""LLM backend module: canonical messages, the llama.cpp client and the content generator."""

from llama_cli.llm.generator import (
    LlamaCppContentGenerator,
    create_content_generator,
    reset_client_cache,
)
from llama_cli.llm.llamacpp import ChatRequest, CompletionResult, LlamaCppClient
from llama_cli.llm.messages import (
    ContentGenerator,
    GenerateRequest,
    GenerateResponse,
    Message,
    Role,
    TokenUsage,
    ToolDeclaration,
    ToolInvocation,
    ToolResult,
)

__all__ = [
    "ChatRequest",
    "CompletionResult",
    "ContentGenerator",
    "GenerateRequest",
    "GenerateResponse",
    "LlamaCppClient",
    "LlamaCppContentGenerator",
    "Message",
    "Role",
    "TokenUsage",
    "ToolDeclaration",
    "ToolInvocation",
    "ToolResult",
    "create_content_generator",
    "reset_client_cache",
]
