"""
plain.py

PURPOSE: Plain text output formatting for the CLI.
DEPENDENCIES: rich

ARCHITECTURE NOTES:
This module provides formatted console output using Rich.
It handles:
- The session banner
- Assistant replies, streamed or whole
- Tool invocations
- Messages, errors and debug output

Assistant text is rendered as Markdown, never as Rich markup: model output may
contain square brackets that Rich would otherwise read as style tags. A streamed
reply is re-rendered in a Live view as pieces arrive and stays on screen once
the turn ends.
"""

import json

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from llama_cli.llm.messages import ToolInvocation

# Global console instance
console = Console()


def print_banner(model_name: str, base_url: str) -> None:
    """Print the session banner with the served model."""
    body = Text(justify="center")
    body.append(model_name, style="bold")
    body.append(f"\n{base_url}", style="dim")
    panel = Panel(
        body,
        title="llama-cli",
        border_style="blue",
        subtitle="/reset  /tokens  /exit",
    )
    console.print(panel)


def print_prompt() -> str:
    """Print the input prompt and get user input."""
    return console.input("[bold cyan]>[/bold cyan] ")


class StreamingReply:
    """
    Live Markdown view of a reply that is still arriving.

    Usage:
        with StreamingReply() as reply:
            await session.send(text, on_text=reply.append)
    """

    def __init__(self) -> None:
        self._pieces: list[str] = []
        self._live = Live(Markdown(""), console=console, refresh_per_second=8)

    @property
    def text(self) -> str:
        return "".join(self._pieces)

    def append(self, text: str) -> None:
        """Add a piece of streamed text and re-render the reply so far."""
        self._pieces.append(text)
        self._live.update(Markdown(self.text))

    def __enter__(self) -> "StreamingReply":
        self._live.start()
        return self

    def __exit__(self, *exc_info) -> None:
        # Leaves the final render on screen
        self._live.stop()


def print_reply(text: str) -> None:
    """Print a complete assistant reply."""
    console.print(Markdown(text))


def print_tool_invocations(invocations: tuple[ToolInvocation, ...]) -> None:
    """Show the tools the model asked to run."""
    for invocation in invocations:
        arguments = json.dumps(invocation.parsed_arguments(), indent=2)
        panel = Panel(
            Syntax(arguments, "json", theme="ansi_dark", background_color="default"),
            title=f"tool call: {invocation.name}",
            subtitle=invocation.id,
            border_style="magenta",
        )
        console.print(panel)


def print_message(text: str) -> None:
    """Print a normal message."""
    console.print(text)


def print_error(text: str) -> None:
    """Print an error message."""
    console.print(f"[red]{escape(text)}[/red]")


def print_success(text: str) -> None:
    """Print a success message."""
    console.print(f"[green]{text}[/green]")


def print_settings(rows: dict[str, object]) -> None:
    """Print key/value settings as a two-column table."""
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    for key, value in rows.items():
        table.add_row(key, "" if value is None else escape(str(value)))
    console.print(table)


def print_debug(data: dict[str, object] | str) -> None:
    """Print debug information."""
    console.print("[dim]--- DEBUG ---[/dim]")
    if isinstance(data, dict):
        console.print(f"[dim]{escape(json.dumps(data, indent=2, default=str))}[/dim]")
    else:
        console.print(f"[dim]{escape(data)}[/dim]")
    console.print("[dim]-------------[/dim]")
