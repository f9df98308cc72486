from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import click
import questionary
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown

import toolchat.config as config_mod
from toolchat.capabilities import list_models, supports_tools
from toolchat.demo_tools import demo_registry
from toolchat.errors import ToolChatError
from toolchat.orchestrator import Orchestrator
from toolchat.renderer import render_failure, render_models, render_tool_call
from toolchat.repl import ask_with_status, run_repl
from toolchat.transports import HttpxTransport

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group(invoke_without_command=True)
@click.option("--model", "-m", default=None, help="Model name (overrides config).")
@click.option("--host", default=None, help="Chat endpoint base URL (overrides config).")
@click.option("--pick", is_flag=True, help="Choose the model from the locally installed ones.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
@click.pass_context
def main(ctx: click.Context, model: str | None, host: str | None, pick: bool, verbose: bool) -> None:
    """toolchat: chat with a local model that can call tools."""
    _setup_logging(verbose)
    cfg = config_mod.load()
    if host:
        cfg["llm"]["host"] = host
    if model:
        cfg["llm"]["model"] = model
    ctx.obj = cfg

    if ctx.invoked_subcommand is None:
        ctx.invoke(cmd_chat, pick=pick)


@main.command("chat")
@click.option("--model", "-m", default=None, help="Model name (overrides config).")
@click.option("--host", default=None, help="Chat endpoint base URL (overrides config).")
@click.option("--pick", is_flag=True, help="Choose the model from the locally installed ones.")
@click.pass_obj
def cmd_chat(cfg: dict[str, Any], model: str | None, host: str | None, pick: bool) -> None:
    """Interactive chat with the demo tools (the default command)."""
    if host:
        cfg["llm"]["host"] = host
    if model:
        cfg["llm"]["model"] = model
    if pick:
        chosen = _model_picker(cfg)
        if not chosen:
            return
        cfg["llm"]["model"] = chosen

    asyncio.run(_chat(cfg))


@main.command("ask")
@click.argument("question")
@click.pass_obj
def cmd_ask(cfg: dict[str, Any], question: str) -> None:
    """Ask one question, let the model use tools, print the answer."""
    ok = asyncio.run(_ask_once(cfg, question))
    if not ok:
        sys.exit(1)


@main.command("models")
@click.pass_obj
def cmd_models(cfg: dict[str, Any]) -> None:
    """List models installed on the endpoint."""
    try:
        models = list_models(cfg["llm"]["host"])
    except ConnectionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    render_models(models, current=cfg["llm"]["model"])


@main.command("config")
def cmd_config() -> None:
    """Interactive configuration wizard."""
    cfg = config_mod.load()

    console.print("[bold cyan]toolchat configuration[/bold cyan]\n")

    host = questionary.text("Endpoint URL:", default=str(cfg["llm"]["host"])).ask()
    model = questionary.text("Model name:", default=str(cfg["llm"]["model"])).ask()
    timeout = questionary.text(
        "Request timeout (seconds):",
        default=str(cfg["llm"]["timeout"]),
        validate=lambda s: s.replace(".", "", 1).isdigit() or "Enter a number",
    ).ask()
    system_prompt = questionary.text(
        "System prompt (blank for none):",
        default=str(cfg["chat"]["system_prompt"]),
    ).ask()

    if host is None or model is None or timeout is None or system_prompt is None:
        console.print("[yellow]Configuration cancelled.[/yellow]")
        return

    cfg["llm"]["host"] = host
    cfg["llm"]["model"] = model
    cfg["llm"]["timeout"] = float(timeout) if "." in timeout else int(timeout)
    cfg["chat"]["system_prompt"] = system_prompt

    path = config_mod.save(cfg)
    console.print(f"\n[green]Config saved to {path}[/green]")
    console.print(
        "\n[dim]Make sure Ollama is running:[/dim]\n"
        "  ollama serve\n"
        f"  ollama pull {model}\n"
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def build_orchestrator(cfg: dict[str, Any], transport: HttpxTransport) -> Orchestrator:
    llm = cfg["llm"]
    return Orchestrator(
        transport,
        demo_registry(),
        llm["model"],
        host=llm["host"],
        system_prompt=cfg["chat"]["system_prompt"] or None,
        supports_tools=supports_tools(llm["model"], llm["host"]),
        timeout=float(llm["timeout"]),
        max_tool_rounds=int(llm["max_tool_rounds"]),
        on_tool_call=render_tool_call,
    )


async def _chat(cfg: dict[str, Any]) -> None:
    async with HttpxTransport(timeout=float(cfg["llm"]["timeout"])) as transport:
        await run_repl(build_orchestrator(cfg, transport))


async def _ask_once(cfg: dict[str, Any], question: str) -> bool:
    async with HttpxTransport(timeout=float(cfg["llm"]["timeout"])) as transport:
        chat = build_orchestrator(cfg, transport)
        try:
            reply = await ask_with_status(chat, question)
        except ToolChatError as e:
            render_failure(e)
            return False
    console.print(Markdown(reply or "_(empty reply)_"))
    return True


def _model_picker(cfg: dict[str, Any]) -> str | None:
    try:
        models = list_models(cfg["llm"]["host"])
    except ConnectionError as e:
        console.print(f"[red]{e}[/red]")
        return None
    if not models:
        console.print("[yellow]No local models found. Pull one with 'ollama pull <model>'.[/yellow]")
        return None
    return questionary.select(
        "Select model (↑↓ Enter to confirm):",
        choices=[m["name"] for m in models],
        default=cfg["llm"]["model"] if cfg["llm"]["model"] in {m["name"] for m in models} else None,
    ).ask()
