#!/usr/bin/env python3
"""Inspect conversations recorded in the durable SQLite tier."""

import argparse
import asyncio
import json
import sys

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from codepilot.cli.interface import format_tool_call, format_tool_result
from codepilot.config import Settings
from codepilot.models.messages import AssistantMessage, ToolResultMessage
from codepilot.storage.sqlite import SqliteConversationRepository


async def show(repository: SqliteConversationRepository, console: Console, conversation_id: str | None, limit: int):
    """List recent conversations, or print one conversation's messages and tool log."""
    if conversation_id is None:
        conversations = await repository.list_conversations(limit)
        table = Table(title="Recent conversations")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Owner")
        table.add_column("Messages", justify="right")
        table.add_column("Updated")
        for conversation in conversations:
            table.add_row(
                conversation["id"],
                conversation["title"],
                conversation["owner_id"],
                str(conversation["message_count"]),
                conversation["updated_at"],
            )
        console.print(table)
        return

    messages = await repository.load_messages(conversation_id, limit)
    if not messages:
        console.print(f"[yellow]No messages recorded for {conversation_id}[/yellow]")
        return

    for message in messages:
        if isinstance(message, AssistantMessage):
            for call in message.tool_calls:
                rendered = escape(format_tool_call(call.name, call.arguments))
                console.print(f"[magenta]tool call[/magenta] {rendered}")
            if message.content:
                console.print(
                    Panel(Text(message.content), title="assistant", title_align="left", border_style="green")
                )
        elif isinstance(message, ToolResultMessage):
            rendered = escape(format_tool_result(message.content, message.is_error))
            console.print(f"[magenta]tool result[/magenta] {rendered}")
        else:
            console.print(Panel(Text(message.content), title="user", title_align="left", border_style="cyan"))

    executions = await repository.load_tool_executions(conversation_id)
    if executions:
        table = Table(title="Tool executions")
        table.add_column("Tool", style="cyan")
        table.add_column("Status")
        table.add_column("Duration (ms)", justify="right")
        table.add_column("Input")
        for execution in executions:
            table.add_row(
                execution["tool_name"],
                execution["status"],
                str(execution["duration_ms"] or ""),
                json.dumps(execution["input"])[:80],
            )
        console.print(table)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("conversation_id", nargs="?", help="Conversation to print; lists conversations when omitted")
    parser.add_argument("--limit", type=int, default=20, help="Maximum conversations or messages to show")
    parser.add_argument("--database", help="SQLite file (defaults to CODEPILOT_DATABASE_PATH)")
    args = parser.parse_args(argv)

    console = Console()
    db_path = args.database or Settings().resolved_database_path()
    if not db_path:
        console.print("[red]No database configured. Pass --database or set CODEPILOT_DATABASE_PATH.[/red]")
        return 1

    repository = SqliteConversationRepository(db_path)
    try:
        await show(repository, console, args.conversation_id, args.limit)
    finally:
        await repository.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
