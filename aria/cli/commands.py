"""One-shot commands — ask, capabilities, health, checkpoints."""

from __future__ import annotations

import json as json_mod
from typing import Any, Optional

import click
import structlog

from aria.cli.app import async_cmd
from aria.cli.formatters import build_table, format_duration, get_console, status_indicator

logger = structlog.get_logger(__name__)


async def build_runtime(resume: bool = False) -> tuple[Any, Any]:
    """Create the runtime and its checkpoint manager, optionally resuming."""
    from aria.checkpoint import CheckpointManager
    from aria.config import AriaConfig
    from aria.errors import StateImportError
    from aria.runtime import AgentRuntime

    config = AriaConfig()
    runtime = AgentRuntime(config)
    manager = CheckpointManager(config.checkpoint.directory, config.checkpoint.max_checkpoints)
    if resume:
        checkpoint = await manager.load_latest_checkpoint()
        if checkpoint is not None:
            try:
                await runtime.import_state(checkpoint.state)
            except StateImportError:
                logger.warning("cli.resume_failed", checkpoint_id=checkpoint.checkpoint_id, exc_info=True)
    return runtime, manager


async def save_checkpoint(runtime: Any, manager: Any) -> Optional[str]:
    if not runtime.messages:
        return None
    path = await manager.save_checkpoint(manager.build(await runtime.export_state()))
    return str(path)


def _echo_json(payload: Any) -> None:
    click.echo(json_mod.dumps(payload, indent=2, default=str))


@click.command("ask")
@click.argument("text")
@click.option("--save", is_flag=True, help="Write a checkpoint afterwards")
@click.pass_context
@async_cmd
async def ask_cmd(ctx: click.Context, text: str, save: bool) -> None:
    """Send one message and print the reply."""
    runtime, manager = await build_runtime(ctx.obj.get("resume", False))
    response = await runtime.process_message(text)
    saved = await save_checkpoint(runtime, manager) if save else None

    if ctx.obj.get("json"):
        decision = runtime.decisions[-1]
        _echo_json({
            "text": response.text,
            "success": response.success,
            "decision": decision.model_dump(mode="json"),
            "checkpoint": saved,
        })
        return
    if ctx.obj.get("quiet"):
        return
    click.echo(response.text)


@click.command("capabilities")
@click.pass_context
@async_cmd
async def capabilities_cmd(ctx: click.Context) -> None:
    """List the capabilities the agent can invoke."""
    runtime, _ = await build_runtime(ctx.obj.get("resume", False))
    described = runtime.registry.list_capabilities()

    if ctx.obj.get("json"):
        _echo_json(described)
        return

    console = get_console(no_color=ctx.obj.get("no_color", False))
    rows = [
        [
            cap["id"],
            cap["category"],
            "yes" if cap["has_safety_check"] else "no",
            ", ".join(cap["parameters"].get("required", [])) or "-",
            cap["description"],
        ]
        for cap in described
    ]
    console.print(build_table(
        "Capabilities",
        ["Id", "Category", "Guarded", "Required", "Description"],
        rows,
    ))


@click.command("health")
@click.pass_context
@async_cmd
async def health_cmd(ctx: click.Context) -> None:
    """Show health status, trend and performance counters."""
    runtime, _ = await build_runtime(ctx.obj.get("resume", False))
    health = runtime.monitoring.health()
    state = runtime.get_state()

    if ctx.obj.get("json"):
        _echo_json({
            "health": health.model_dump(mode="json"),
            "trend": state["trend"],
            "performance": state["performance"],
            "directives": state["directives"],
            "dispatch": state["dispatch"],
        })
        return

    console = get_console(no_color=ctx.obj.get("no_color", False))
    line = status_indicator(health.status)
    line.append(f"{state['name']} is {health.status} (trend: {state['trend']})")
    console.print(line)

    checks = health.checks.model_dump()
    console.print(build_table(
        "Checks",
        ["Check", "Passing"],
        [[name, "yes" if passed else "no"] for name, passed in checks.items()],
    ))

    perf = state["performance"]
    console.print(
        f"Interactions: {perf['total_interactions']}  "
        f"successful: {perf['successful_actions']}  "
        f"avg response: {format_duration(perf['average_response_time_ms'] / 1000.0)}"
    )
    for recommendation in health.recommendations:
        console.print(f"- {recommendation}")


@click.command("checkpoints")
@click.pass_context
def checkpoints_cmd(ctx: click.Context) -> None:
    """List saved state checkpoints, newest first."""
    from aria.checkpoint import CheckpointManager
    from aria.config import AriaConfig

    config = AriaConfig()
    manager = CheckpointManager(config.checkpoint.directory, config.checkpoint.max_checkpoints)
    listed = manager.list_checkpoints()

    if ctx.obj.get("json"):
        _echo_json(listed)
        return

    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not listed:
        console.print(f"No checkpoints in {manager.directory}")
        return
    console.print(build_table(
        "Checkpoints",
        ["Id", "Agent", "Interactions", "Size", "Path"],
        [
            [c["checkpoint_id"], c["agent_name"], c["interactions"], c["size_bytes"], c["path"]]
            for c in listed
        ],
    ))
