# src/krill/apps/cli/commands/api.py
import os

import typer
import uvicorn

from krill.services.gateway_context import init_ctx
from krill.services.logging import setup_logging

app = typer.Typer(help="HTTP API for the Krill gateway")


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8790, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload for development"),
    token: str = typer.Option(None, "--token", help="X-Krill-Token; falls back to KRILL_API_TOKEN"),
):
    """Run the HTTP API (FastAPI)."""
    ctx = init_ctx()
    if token:
        # the reload worker is a fresh process and reads the env
        os.environ["KRILL_API_TOKEN"] = token
        ctx.settings.api_token = token
    setup_logging(ctx.settings.log_level, log_file=ctx.settings.log_file)
    uvicorn.run("krill.apps.api.server:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
