"""Interactive chat — the default mode when `aria` runs without a subcommand.

Slash commands inside the session:
  /health        health status and recommendations
  /capabilities  enabled capability ids
  /state         runtime summary
  /save          write a checkpoint now
  /quit          leave (a checkpoint is written on exit)
"""

from __future__ import annotations

import asyncio
import json as json_mod
from typing import Any

import click

from aria.cli.formatters import get_console, status_indicator

_EXIT_COMMANDS = {"/quit", "/exit", "quit", "exit"}


async def _chat(ctx_obj: dict[str, Any]) -> None:
    from aria.cli.commands import build_runtime, save_checkpoint

    console = get_console(no_color=ctx_obj.get("no_color", False))
    runtime, manager = await build_runtime(ctx_obj.get("resume", False))
    console.print(f"[bold]{runtime.name}[/bold] ready. Type /quit to leave.")

    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue
            if text in _EXIT_COMMANDS:
                break
            if text.startswith("/"):
                await _slash_command(text, runtime, manager, console)
                continue

            response = await runtime.process_message(text)
            indicator = status_indicator("ok" if response.success else "degraded")
            indicator.append(response.text)
            console.print(indicator)
    finally:
        saved = await save_checkpoint(runtime, manager)
        if saved:
            console.print(f"[dim]State saved to {saved}[/dim]")


async def _slash_command(text: str, runtime: Any, manager: Any, console: Any) -> None:
    from aria.cli.commands import save_checkpoint

    command = text.split()[0].lower()
    if command == "/health":
        health = runtime.monitoring.health()
        line = status_indicator(health.status)
        line.append(f"{health.status} (trend: {runtime.monitoring.trend()})")
        console.print(line)
        for recommendation in health.recommendations:
            console.print(f"  - {recommendation}")
    elif command == "/capabilities":
        console.print(", ".join(runtime.registry.ids()) or "(none)")
    elif command == "/state":
        console.print(json_mod.dumps(runtime.get_state(), indent=2, default=str))
    elif command == "/save":
        saved = await save_checkpoint(runtime, manager)
        console.print(f"Saved to {saved}" if saved else "Nothing to save yet.")
    else:
        console.print(f"Unknown command: {command}")


def run_repl(ctx_obj: dict[str, Any] | None = None) -> None:
    """Launch the interactive chat loop."""
    try:
        asyncio.run(_chat(ctx_obj or {}))
    except KeyboardInterrupt:
        pass


@click.command("chat")
@click.pass_context
def chat_cmd(ctx: click.Context) -> None:
    """Start an interactive chat session."""
    run_repl(ctx.obj)
