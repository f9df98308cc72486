from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from toolchat.errors import ToolChatError, TurnFailed
from toolchat.models import ChatResponse, Message, ToolCall
from toolchat.orchestrator import Orchestrator

console = Console()

_ROLE_STYLES = {
    "system": "magenta",
    "user": "cyan",
    "assistant": "green",
    "tool": "yellow",
}


def handle_command(command: str, chat: Orchestrator) -> bool:
    """
    Dispatch a ! command. Returns True if handled, False if unknown.
    All rendering is local, no requests are sent.
    """
    cmd = command.strip().split(None, 1)[0].lstrip("!").lower()

    if cmd == "history":
        render_history(chat.history)
    elif cmd == "tools":
        render_tools(chat)
    elif cmd == "stats":
        render_stats(chat)
    elif cmd == "help":
        render_help()
    else:
        console.print(f"[red]Unknown command: {escape(command)}[/red]")
        return False
    return True


def render_tool_call(call: ToolCall, result: str) -> None:
    args = ", ".join(f"{k}={v!r}" for k, v in call.arguments.items())
    preview = result if len(result) <= 80 else result[:77] + "..."
    console.print(f"[dim]  tool: {escape(call.function_name)}({escape(args)}) -> {escape(preview)}[/dim]")


def render_history(messages: Sequence[Message]) -> None:
    """Show the conversation as a Rich table."""
    if not messages:
        console.print("[yellow]Conversation is empty.[/yellow]")
        return

    table = Table(title="Conversation", show_lines=True)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Role", min_width=9)
    table.add_column("Content")

    for i, msg in enumerate(messages):
        style = _ROLE_STYLES.get(msg.role.value, "white")
        if msg.tool_calls:
            body = "\n".join(
                f"[{tc.index}] {tc.function_name}({_fmt_arguments(tc.arguments)})"
                for tc in msg.tool_calls
            )
        else:
            body = msg.content or ""
        role = msg.role.value if not msg.tool_name else f"{msg.role.value}\n({msg.tool_name})"
        table.add_row(str(i), f"[{style}]{escape(role)}[/{style}]", escape(body))

    console.print(table)


def render_tools(chat: Orchestrator) -> None:
    table = Table(title="Registered tools")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Required", style="dim")
    for d in chat.registry.definitions():
        table.add_row(d.name, d.description, ", ".join(d.required) or "-")
    console.print(table)
    if not chat.supports_tools:
        console.print(f"[yellow]{escape(chat.model)} does not support tool calling; tools are not sent.[/yellow]")


def render_stats(chat: Orchestrator) -> None:
    stats = chat.registry.stats
    lines = [
        f"[bold]Messages:[/bold]       {len(chat.history)}",
        f"[bold]Tool calls:[/bold]     {stats['calls']}",
        f"[bold]Tool errors:[/bold]    {stats['errors']}",
        f"[bold]Unknown tools:[/bold]  {stats['unknown']}",
    ]
    if chat.last_response is not None:
        lines.append(f"[bold]Last reply:[/bold]     {format_duration(chat.last_response)}")
    console.print(Panel("\n".join(lines), title="Session", border_style="cyan"))


def render_models(models: list[dict[str, Any]], current: str | None = None) -> None:
    if not models:
        console.print("[yellow]No local models found. Pull one with 'ollama pull <model>'.[/yellow]")
        return
    table = Table(title="Local models")
    table.add_column("", width=1)
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified", style="dim")
    for m in models:
        marker = "●" if m["name"] == current else ""
        modified = m["modified_at"].strftime("%Y-%m-%d") if m["modified_at"] else "—"
        table.add_row(marker, m["name"], _fmt_size(m["size"]), modified)
    console.print(table)


def render_failure(error: ToolChatError) -> None:
    if isinstance(error, TurnFailed):
        console.print(
            f"[red]{escape(error.category.capitalize())}:[/red] {escape(error.failure.detail)}\n"
            "[dim]The conversation is unchanged; send a new message to try again.[/dim]"
        )
    else:
        console.print(f"[red]Error: {escape(str(error))}[/red]")


def render_help() -> None:
    console.print(Panel(
        "[bold]!history[/bold]   show the conversation so far\n"
        "[bold]!tools[/bold]     list registered tools\n"
        "[bold]!stats[/bold]     tool-call counters and last reply timing\n"
        "[bold]!help[/bold]      this message\n"
        "[bold]/exit[/bold]      quit",
        title="Commands",
        border_style="cyan",
    ))


def format_duration(response: ChatResponse) -> str:
    if response.total_duration is None:
        return "—"
    return f"{response.total_duration / 1e9:.2f}s ({response.model or 'unknown model'})"


def _fmt_arguments(args: dict[str, Any]) -> str:
    return ", ".join(f"{k}={v!r}" for k, v in args.items())


def _fmt_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"
