from __future__ import annotations

import json
import secrets

import typer

from krill.build_info import BUILD_INFO
from krill.services.gateway_context import get_ctx


def status():
    """Show gateway identity and settings."""
    ctx = get_ctx()
    s = ctx.settings
    typer.echo("Krill gateway")
    typer.echo(f"  version:        {BUILD_INFO.version} ({BUILD_INFO.build_date})")
    typer.echo(f"  gateway id:     {s.gateway_id}")
    typer.echo(f"  secret:         {'configured' if s.gateway_secret else 'MISSING'}")
    typer.echo(f"  agent:          {s.agent.mxid if s.agent else 'not configured'}")
    typer.echo(f"  pairings:       {s.storage_path}")
    typer.echo(f"  config:         {s.config_update.config_path}")
    typer.echo(f"  config senders: {', '.join(s.config_update.allowed_senders) or '(none, updates refused)'}")
    typer.echo(f"  update api:     {s.update.api_url} (auto-update: {s.update.auto_update})")


def enroll(
    agent: str | None = typer.Option(None, "--agent", help="Agent mxid; defaults to the configured agent"),
):
    """Print the ai.krill.agent state event for the agent."""
    ctx = get_ctx()
    identity = ctx.settings.agent
    mxid = agent or (identity.mxid if identity else None)
    if not mxid:
        typer.secho("No agent configured; pass --agent", fg=typer.colors.RED)
        raise typer.Exit(1)
    if not ctx.settings.gateway_secret:
        typer.secho("gateway_secret is not configured", fg=typer.colors.RED)
        raise typer.Exit(1)
    same = identity is not None and identity.mxid == mxid
    event = ctx.verification.build_enrollment(
        mxid,
        identity.display_name if same else None,
        identity.description if same else None,
        identity.capabilities if same else None,
    )
    typer.echo(json.dumps(event, ensure_ascii=False, indent=2))


def test_verify(challenge: str | None = typer.Argument(None)):
    """Answer a local verification challenge and check the enrollment hash."""
    ctx = get_ctx()
    nonce = challenge or secrets.token_hex(8)
    response = ctx.verification.respond_to_challenge(nonce)
    typer.echo(json.dumps(response, ensure_ascii=False, indent=2))
    if not response.get("verified"):
        raise typer.Exit(1)
    event = ctx.verification.build_enrollment(ctx.settings.agent.mxid)
    content = event["content"]
    ok = ctx.verification.verify_enrollment(
        event["state_key"], content["gateway_id"], content["enrolled_at"], content["verification_hash"]
    )
    typer.echo(f"enrollment hash round-trip: {'ok' if ok else 'FAILED'}")
    if not ok:
        raise typer.Exit(1)
