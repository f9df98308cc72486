from __future__ import annotations

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.key_binding import KeyBindings
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from toolchat.errors import ToolChatError
from toolchat.orchestrator import Orchestrator
from toolchat.renderer import handle_command, render_failure, render_stats

console = Console()


def _make_toolbar(model: str, n_tools: int) -> HTML:
    return HTML(
        f"<b>[{model}]</b>  <i>[{n_tools} tool(s)]</i>  "
        "<dim>Enter to send | Shift+Enter for newline | /exit to quit | !help for commands</dim>"
    )


async def run_repl(chat: Orchestrator) -> None:
    """
    Run the interactive prompt_toolkit REPL.
    Enter = submit, Shift+Enter = newline (ESC+CR).
    """
    kb = KeyBindings()

    # Enter submits (eager so it overrides the multiline default)
    @kb.add("enter", eager=True)
    def _submit(event):
        event.current_buffer.validate_and_handle()

    @kb.add("escape", "enter")
    def _newline(event):
        event.current_buffer.insert_text("\n")

    prompt_session: PromptSession = PromptSession(
        multiline=True,
        key_bindings=kb,
        bottom_toolbar=lambda: _make_toolbar(chat.model, len(chat.registry)),
        prompt_continuation="  ",
    )

    console.print(
        f"[bold cyan]toolchat[/bold cyan] — model: [bold]{escape(chat.model)}[/bold]\n"
        "[dim]Enter to send, Shift+Enter for newline, /exit or Ctrl+D to quit[/dim]\n"
    )

    while True:
        try:
            text = await prompt_session.prompt_async("> ")
        except KeyboardInterrupt:
            continue
        except EOFError:
            break

        text = text.strip()
        if not text:
            continue

        if text.lower() in ("/exit", "/quit"):
            break

        if text.startswith("!"):
            handle_command(text, chat)
            continue

        try:
            reply = await ask_with_status(chat, text)
        except ToolChatError as e:
            render_failure(e)
            continue
        console.print("\n[bold]Assistant:[/bold]")
        console.print(Markdown(reply or "_(empty reply)_"))
        console.print()

    render_stats(chat)
    console.print("[bold cyan]Goodbye![/bold cyan]")


async def ask_with_status(chat: Orchestrator, text: str) -> str:
    with console.status("[dim]thinking...[/dim]", spinner="dots"):
        return await chat.ask(text)
