from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from krill.services.gateway_context import GatewayContext, set_ctx
from krill.services.settings import AgentIdentity, ConfigUpdateSettings, SensesSettings, Settings

ADMIN = "@admin:krillbot.network"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeRestart:
    def __init__(self, results: List[bool] | None = None) -> None:
        self.results = list(results or [])
        self.calls = 0

    async def restart(self) -> bool:
        self.calls += 1
        return self.results.pop(0) if self.results else True


class FakeHealth:
    """Answers from a script; ``None`` means hang until the caller times out."""

    def __init__(self, results: List[bool | None] | None = None) -> None:
        self.results = list(results or [])
        self.calls = 0

    async def wait_healthy(self, timeout: float) -> bool:
        self.calls += 1
        result = self.results.pop(0) if self.results else True
        if result is None:
            await asyncio.sleep(timeout * 10)
            return True
        return result


class FakeProbe:
    def __init__(self, *, fail: Exception | None = None, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def probe(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail


class Replies:
    def __init__(self) -> None:
        self.items: List[Dict[str, Any]] = []

    async def __call__(self, envelope: Dict[str, Any]) -> None:
        self.items.append(envelope)

    @property
    def types(self) -> List[str]:
        return [item["type"] for item in self.items]

    def last(self) -> Dict[str, Any]:
        return self.items[-1]


@pytest.fixture
def replies() -> Replies:
    return Replies()


@pytest.fixture
def gateway_config(tmp_path: Path) -> Path:
    path = tmp_path / "openclaw" / "openclaw.json"
    path.parent.mkdir(parents=True)
    path.write_text(
        json.dumps({"gateway": {"port": 18789}, "channels": {"matrix": {"allowFrom": ["@owner:krillbot.network"]}}}, indent=2),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def settings(tmp_path: Path, gateway_config: Path) -> Settings:
    return Settings(
        gateway_id="gw-test",
        gateway_secret="s3cret",
        gateway_url="https://gw.example",
        storage_path=tmp_path / "krill" / "pairings.json",
        agent=AgentIdentity(mxid="@bot:krillbot.network", display_name="Bot", capabilities=["chat", "senses"]),
        config_update=ConfigUpdateSettings(
            config_path=gateway_config,
            allowed_senders=[ADMIN],
            health_check_timeout_seconds=0.2,
        ),
        allowlist_senders=[ADMIN],
        api_token="test-token",
        senses=SensesSettings(storage_path=tmp_path / "senses"),
    )


@pytest.fixture
def restart() -> FakeRestart:
    return FakeRestart()


@pytest.fixture
def health_check() -> FakeHealth:
    return FakeHealth()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def ctx(settings, restart, health_check, probe):
    context = GatewayContext.build(settings, restart=restart, health_check=health_check, probe=probe)
    set_ctx(context)
    yield context
    set_ctx(None)
