from __future__ import annotations

import asyncio
import json
import uuid
from pathlib import Path

import typer

from krill.services.errors import ConfigUpdateBusyError, ConfigUpdateUnrecoverableError
from krill.services.gateway_context import get_ctx

app = typer.Typer(help="Gateway config updates")


@app.command("apply")
def cmd_apply(
    patch: str = typer.Argument(..., help="JSON object, or @path/to/patch.json"),
    restart: bool = typer.Option(True, "--restart/--no-restart"),
    sender: str = typer.Option(..., "--sender", help="Sender mxid checked against the config allow-list"),
):
    """Apply a config patch through the same path as ai.krill.config.update."""
    text = Path(patch[1:]).read_text(encoding="utf-8") if patch.startswith("@") else patch
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"patch is not valid JSON: {exc}") from exc

    orchestrator = get_ctx().config_update
    try:
        result = asyncio.run(
            orchestrator.apply_config_patch(data, restart=restart, request_id=f"cli-{uuid.uuid4().hex[:8]}", sender_id=sender)
        )
    except ConfigUpdateBusyError as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW)
        raise typer.Exit(2)
    except ConfigUpdateUnrecoverableError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(3)
    color = typer.colors.GREEN if result.success else typer.colors.RED
    typer.secho(f"[{result.state.value}] {result.message}", fg=color)
    if not result.success:
        raise typer.Exit(1)
