"""
cli.py

PURPOSE: Command-line interface for chatting with a llama.cpp server.
DEPENDENCIES: typer, rich

ARCHITECTURE NOTES:
The CLI provides commands for:
- chat: Interactive conversation with streamed replies
- ask: One-shot question
- models: Show the model the server is serving
- config: Show the effective configuration

Startup failures are reported in two groups: configuration problems (exit 2)
and an unreachable or unusable server (exit 3). Failures during a turn are
printed and, in the REPL, leave the conversation as it was.
"""

import asyncio
import logging
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from llama_cli import __version__
from llama_cli.auth import validate_auth_method
from llama_cli.chat import ChatSession, TurnResult
from llama_cli.config import Settings, get_settings
from llama_cli.errors import (
    ConfigurationError,
    DiscoveryError,
    LlamaCliError,
    RequestTimeoutError,
)
from llama_cli.llm.generator import LlamaCppContentGenerator, create_content_generator
from llama_cli.observability import init_telemetry, shutdown_telemetry
from llama_cli.ui import plain

app = typer.Typer(
    name="llama-cli",
    help="Chat with a model served by a local llama.cpp server.",
    add_completion=False,
)

console = Console()

EXIT_TURN_FAILED = 1
EXIT_CONFIGURATION = 2
EXIT_SERVER_UNAVAILABLE = 3

COMMAND_EXIT = "/exit"
COMMAND_RESET = "/reset"
COMMAND_TOKENS = "/tokens"


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"llama-cli version {__version__}")
        raise typer.Exit()


def _load_settings() -> Settings:
    """Read settings from the environment, exiting on invalid values."""
    try:
        return get_settings()
    except ValidationError as e:
        plain.print_error("Invalid configuration:")
        for error in e.errors():
            loc = " -> ".join(str(x) for x in error["loc"])
            plain.print_error(f"  {loc}: {error['msg']}")
        raise typer.Exit(EXIT_CONFIGURATION) from None


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    _version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Log debug output to stderr.",
        ),
    ] = False,
) -> None:
    """Llama CLI - A terminal assistant for llama.cpp servers."""
    settings = _load_settings()
    configure_logging("DEBUG" if verbose or settings.debug else settings.log_level)


def _connect(settings: Settings) -> LlamaCppContentGenerator:
    """Discover the served model, exiting with a distinct code on failure."""
    init_telemetry(settings.otel)

    try:
        return asyncio.run(create_content_generator(settings))
    except ConfigurationError as e:
        plain.print_error(str(e))
        raise typer.Exit(EXIT_CONFIGURATION) from None
    except (DiscoveryError, RequestTimeoutError) as e:
        plain.print_error(f"Cannot connect to llama.cpp server at {settings.server.base_url}")
        plain.print_error(f"  {e}")
        raise typer.Exit(EXIT_SERVER_UNAVAILABLE) from None


def _show_turn(result: TurnResult, streamed: bool) -> None:
    # A streamed reply is already on screen
    if result.text and not streamed:
        plain.print_reply(result.text)
    if result.tool_invocations:
        plain.print_tool_invocations(result.tool_invocations)


@app.command()
def chat(
    system_prompt: Annotated[
        str | None,
        typer.Option(
            "--system",
            "-s",
            help="System prompt (overrides LLAMA_CLI_SYSTEM_PROMPT)",
        ),
    ] = None,
    temperature: Annotated[
        float | None,
        typer.Option(
            "--temperature",
            "-t",
            help="Sampling temperature",
            min=0.0,
            max=2.0,
        ),
    ] = None,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            "-d",
            help="Show debug information after each turn",
        ),
    ] = False,
) -> None:
    """Chat with the model interactively."""
    settings = _load_settings()
    generator = _connect(settings)
    session = ChatSession(
        generator,
        system_prompt=system_prompt if system_prompt is not None else settings.system_prompt,
        temperature=temperature,
    )

    plain.print_banner(generator.model_name, generator.client.base_url)
    console.print()

    try:
        while True:
            try:
                user_input = plain.print_prompt()
            except (EOFError, KeyboardInterrupt):
                console.print()
                break

            text = user_input.strip()
            if not text:
                continue

            if text == COMMAND_EXIT:
                break
            if text == COMMAND_RESET:
                session.reset()
                plain.print_success("Conversation cleared.")
                continue
            if text == COMMAND_TOKENS:
                estimate = asyncio.run(session.estimate_tokens())
                plain.print_message(
                    f"~{estimate} tokens in {len(session.history)} message(s)"
                )
                continue

            try:
                with plain.StreamingReply() as reply:
                    result = asyncio.run(session.send(text, on_text=reply.append))
            except KeyboardInterrupt:
                plain.print_error("Interrupted. The last message was not kept.")
                continue
            except LlamaCliError as e:
                plain.print_error(str(e))
                continue

            _show_turn(result, streamed=True)
            console.print()

            if debug or settings.debug:
                plain.print_debug(
                    {
                        "model": generator.model_name,
                        "history": len(session.history),
                        "usage_estimate": result.usage_estimate,
                        "tool_calls": [inv.name for inv in result.tool_invocations],
                    }
                )
                console.print()
    finally:
        shutdown_telemetry()


@app.command()
def ask(
    prompt: Annotated[
        str,
        typer.Argument(help="The question to ask"),
    ],
    no_stream: Annotated[
        bool,
        typer.Option(
            "--no-stream",
            help="Wait for the full reply instead of streaming it",
        ),
    ] = False,
    temperature: Annotated[
        float | None,
        typer.Option(
            "--temperature",
            "-t",
            help="Sampling temperature",
            min=0.0,
            max=2.0,
        ),
    ] = None,
) -> None:
    """Ask a single question and print the answer."""
    settings = _load_settings()
    generator = _connect(settings)
    session = ChatSession(
        generator,
        system_prompt=settings.system_prompt,
        temperature=temperature,
    )

    try:
        if no_stream:
            result = asyncio.run(session.send(prompt, stream=False))
        else:
            with plain.StreamingReply() as reply:
                result = asyncio.run(session.send(prompt, on_text=reply.append))
    except LlamaCliError as e:
        plain.print_error(str(e))
        raise typer.Exit(EXIT_TURN_FAILED) from None
    finally:
        shutdown_telemetry()

    _show_turn(result, streamed=not no_stream)


@app.command()
def models() -> None:
    """Show the model the server is serving."""
    settings = _load_settings()
    generator = _connect(settings)
    client = generator.client

    plain.print_settings(
        {
            "Server": client.base_url,
            "Model": client.model,
            "Display name": client.display_name,
        }
    )


@app.command("config")
def config_cmd() -> None:
    """Show the effective configuration."""
    settings = _load_settings()

    console.print("[bold]Current Configuration:[/bold]")
    plain.print_settings(
        {
            "  Auth type": settings.auth_type.value,
            "  Log level": settings.log_level,
            "  Debug": settings.debug,
            "  System prompt": settings.system_prompt,
        }
    )
    console.print()
    console.print("[bold]Server Settings:[/bold]")
    plain.print_settings(
        {
            "  Base URL": settings.server.base_url or "(not set)",
            "  Discovery timeout": f"{settings.server.discovery_timeout:g}s",
            "  Request timeout": f"{settings.server.request_timeout:g}s",
            "  Temperature": settings.server.temperature,
            "  Max tokens": settings.server.max_tokens or "(server default)",
        }
    )
    console.print()
    console.print("[bold]OpenTelemetry Settings:[/bold]")
    plain.print_settings(
        {
            "  Enabled": settings.otel.enabled,
            "  Service name": settings.otel.service_name,
            "  Endpoint": settings.otel.endpoint or "(console only)",
        }
    )
    console.print()

    error = validate_auth_method(settings.auth_type, settings)
    if error is None:
        plain.print_success("Configuration is valid.")
    else:
        plain.print_error(error)
        raise typer.Exit(EXIT_CONFIGURATION)


if __name__ == "__main__":
    app()
