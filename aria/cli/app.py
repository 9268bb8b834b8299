"""CLI application — Click-based command hierarchy for Aria.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any

import click


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group(invoke_without_command=True)
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress output")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.option("--resume/--fresh", default=False, help="Start from the newest checkpoint")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    no_color: bool,
    resume: bool,
) -> None:
    """Aria - Adaptive Runtime for Interactive Agents."""
    from aria.main import configure_logging

    configure_logging(verbose=verbose, colors=not no_color)

    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["quiet"] = quiet
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color
    ctx.obj["resume"] = resume

    if ctx.invoked_subcommand is None:
        # Default: launch interactive REPL
        from aria.cli.repl import run_repl

        run_repl(ctx.obj)


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommands."""
    from aria.cli.commands import ask_cmd, capabilities_cmd, checkpoints_cmd, health_cmd
    from aria.cli.repl import chat_cmd

    cli.add_command(chat_cmd)
    cli.add_command(ask_cmd)
    cli.add_command(capabilities_cmd)
    cli.add_command(health_cmd)
    cli.add_command(checkpoints_cmd)


_register_subcommands()
