"""Terminal presentation for the interactive assistant."""

import json
from collections.abc import Sequence
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.status import Status

from codepilot.models.llm import ToolDescriptor
from codepilot.models.messages import AssistantMessage, Message, ToolResultMessage

TOOL_CALL_DISPLAY_LIMIT = 150
TOOL_RESULT_DISPLAY_LIMIT = 500
ACCENT = "#CD6F47"


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def format_tool_call(tool_name: str, arguments: dict[str, Any]) -> str:
    """Render a tool call as ``name(key: value, ...)``."""
    if arguments:
        formatted = ", ".join(
            f'{key}: "{value}"' if isinstance(value, str) else f"{key}: {json.dumps(value, default=str)}"
            for key, value in arguments.items()
        )
        args = f"({formatted})"
    else:
        args = "()"
    return tool_name + truncate(args, TOOL_CALL_DISPLAY_LIMIT)


def format_tool_result(content: str, is_error: bool = False) -> str:
    """Render tool output for display, pretty-printing JSON payloads."""
    try:
        payload = json.loads(content)
    except (TypeError, ValueError):
        payload = content

    if is_error:
        error = payload.get("error", payload) if isinstance(payload, dict) else payload
        text = f"Error: {error if isinstance(error, str) else json.dumps(error, default=str)}"
    elif isinstance(payload, str):
        text = payload
    else:
        text = json.dumps(payload, indent=2, default=str)

    return truncate(text, TOOL_RESULT_DISPLAY_LIMIT)


class CLIInterface:
    """Interactive terminal interface built on rich."""

    def __init__(self, console: Console | None = None):
        """Initialize the interface.

        Args:
            console: Console to render to (stdout by default)
        """
        self.console = console or Console()

    def display_welcome(self) -> None:
        self.console.print(
            Panel.fit(
                f"[bold {ACCENT}]CodePilot[/bold {ACCENT}]\n"
                "AI-powered coding assistant with MCP tool support\n"
                "Type your questions, /help for commands or /exit to quit",
                border_style=ACCENT,
            )
        )

    def prompt_user(self) -> str:
        """Ask for the next message, re-prompting until it is non-empty."""
        while True:
            answer = Prompt.ask("[bold cyan]You[/bold cyan]", console=self.console).strip()
            if answer:
                return answer
            self.console.print("[red]Please enter a message[/red]")

    def thinking(self) -> Status:
        """Spinner shown while a turn runs; use as a context manager."""
        return self.console.status("[yellow]Thinking...[/yellow]")

    def display_turn(self, messages: Sequence[Message]) -> None:
        """Show what a turn produced: tool calls, tool results and answers."""
        shown = False
        for message in messages:
            if isinstance(message, AssistantMessage):
                for call in message.tool_calls:
                    self.display_tool_call(call.name, call.arguments)
                    shown = True
                if message.content.strip():
                    self.display_response(message.content)
                    shown = True
            elif isinstance(message, ToolResultMessage):
                self.display_tool_result(message.tool_name, message.content, message.is_error)
                shown = True

        if not shown:
            self.display_response("I processed your request but have no response to show.")

    def display_response(self, text: str) -> None:
        self.console.print(
            Panel(
                Markdown(text),
                title=f"[bold {ACCENT}]Assistant[/bold {ACCENT}]",
                title_align="left",
                border_style=ACCENT,
                padding=(0, 1),
            )
        )

    def display_tool_call(self, tool_name: str, arguments: dict[str, Any]) -> None:
        self.console.print(f"[{ACCENT}]Tool Call:[/{ACCENT}] {escape(format_tool_call(tool_name, arguments))}")

    def display_tool_result(self, tool_name: str, content: str, is_error: bool = False) -> None:
        style = "red" if is_error else ACCENT
        self.console.print(
            f"[{style}]Tool Result ({escape(tool_name)}):[/{style}] {escape(format_tool_result(content, is_error))}"
        )

    def display_help(self) -> None:
        help_text = """
[bold]Available commands:[/bold]
  [cyan]/help[/cyan]  - Show this help message
  [cyan]/tools[/cyan] - List available tools
  [cyan]/exit[/cyan]  - Exit the application
        """
        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))

    def display_tools(self, tools: Sequence[ToolDescriptor]) -> None:
        if not tools:
            self.console.print("[yellow]No tools available[/yellow]")
            return

        self.console.print("[bold]Available tools:[/bold]")
        for index, tool in enumerate(tools, start=1):
            description = tool.description or "No description"
            self.console.print(f"[cyan]{index}. {escape(tool.name)}[/cyan] [dim]- {escape(description)}[/dim]")

    def display_status(self, ok: bool, message: str) -> None:
        """Report a startup step as succeeded or skipped."""
        marker = f"[{ACCENT}]✓[/{ACCENT}]" if ok else "[yellow]✗[/yellow]"
        self.console.print(f"{marker} [dim]{escape(message)}[/dim]")

    def display_error(self, message: str) -> None:
        self.console.print(f"[red]Error: {escape(message)}[/red]")

    def display_info(self, message: str) -> None:
        self.console.print(f"[dim]{escape(message)}[/dim]")
