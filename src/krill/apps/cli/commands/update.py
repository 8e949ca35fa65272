from __future__ import annotations

import asyncio
import json

import typer

from krill.services.gateway_context import get_ctx

app = typer.Typer(help="Plugin update checks")


@app.command("check")
def cmd_check(as_json: bool = typer.Option(False, "--json")):
    """Check for plugin updates now."""
    report = asyncio.run(get_ctx().updates.check())
    if as_json:
        typer.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    elif not report.ok:
        typer.secho(f"Check failed: {report.error}", fg=typer.colors.RED)
    elif not report.available:
        typer.echo("All plugins up to date")
    else:
        for u in report.available:
            flag = " (required)" if u.required else ""
            typer.echo(f"{u.plugin}: {u.current or '-'} -> {u.latest}{flag}")
        for name in report.installed:
            typer.echo(f"installed {name}; restart the gateway to load it")
    if not report.ok or report.failed:
        raise typer.Exit(1)


@app.command("list")
def cmd_list():
    """List installed plugins as reported to the update API."""
    installed = get_ctx().updates.installed
    if not installed:
        typer.echo("No plugins recorded.")
    for name, version in sorted(installed.items()):
        typer.echo(f"{name}: v{version}")


@app.command("status")
def cmd_status():
    s = get_ctx().settings.update
    typer.echo(f"API:            {s.api_url}")
    typer.echo(f"Auto-update:    {s.auto_update}")
    interval = f"{s.check_interval_minutes} min" if s.check_interval_minutes > 0 else "disabled"
    typer.echo(f"Check interval: {interval}")
    typer.echo(f"Installed:      {len(s.installed)}")
