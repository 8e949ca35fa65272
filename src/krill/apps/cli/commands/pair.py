"""Pairing management CLI commands."""

from __future__ import annotations

import asyncio
import json

import typer

from krill.services.gateway_context import get_ctx

app = typer.Typer(help="Device pairings")


@app.command("list")
def cmd_list(
    agent: str | None = typer.Option(None, "--agent", help="Only pairings for this agent mxid"),
    as_json: bool = typer.Option(False, "--json"),
):
    pairings = asyncio.run(get_ctx().pairing.list_pairings(agent))
    if as_json:
        typer.echo(json.dumps(pairings, ensure_ascii=False, indent=2))
        return
    if not pairings:
        typer.echo("No pairings.")
        return
    for p in pairings:
        enabled = ", ".join(k for k, v in sorted(p["senses"].items()) if v) or "-"
        typer.echo(f"{p['pairing_id']}  {p['user_mxid']}  {p['device_name']} ({p['device_id']})  senses: {enabled}")


@app.command("create")
def cmd_create(
    user: str = typer.Argument(..., help="User mxid"),
    device_id: str = typer.Argument(...),
    device_name: str | None = typer.Option(None, "--name"),
    device_type: str | None = typer.Option(None, "--type"),
):
    """Issue a pairing token locally. The token is printed once."""
    result = asyncio.run(get_ctx().pairing.request_pairing(user, device_id, device_name or device_id, device_type))
    if not result.success:
        typer.secho(f"Pairing failed: {result.error}", fg=typer.colors.RED)
        raise typer.Exit(1)
    typer.echo(f"pairing_id: {result.pairing_id}")
    typer.echo(f"token:      {result.token}")
    if result.replaced_pairing_id:
        typer.echo(f"replaced:   {result.replaced_pairing_id}")


@app.command("revoke")
def cmd_revoke(pairing_id: str):
    if asyncio.run(get_ctx().pairing.revoke_pairing(pairing_id)):
        typer.echo(f"Revoked {pairing_id}")
    else:
        typer.secho(f"Pairing {pairing_id} not found", fg=typer.colors.YELLOW)
        raise typer.Exit(1)
