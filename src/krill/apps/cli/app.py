from __future__ import annotations

import typer

from krill.apps.cli.commands import api, config, gateway, pair, update
from krill.services.gateway_context import init_ctx
from krill.services.logging import setup_logging
from krill.services.settings import Settings

app = typer.Typer(help="Krill gateway protocol core")
app.add_typer(api.app, name="api")
app.add_typer(pair.app, name="pair")
app.add_typer(update.app, name="update")
app.add_typer(config.app, name="config")
app.command("serve")(api.serve)
app.command("status")(gateway.status)
app.command("enroll")(gateway.enroll)
app.command("test-verify")(gateway.test_verify)


@app.callback()
def _root(
    config_file: str | None = typer.Option(None, "--config", "-c", envvar="KRILL_CONFIG", help="Gateway YAML settings"),
    log_level: str | None = typer.Option(None, "--log-level"),
):
    settings = Settings.from_sources(config_file)
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level, log_file=settings.log_file)
    init_ctx(settings)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
