"""Outside-world collaborators used by the protocol handlers.

Each collaborator is a small protocol plus one production implementation.
Tests substitute their own objects with the same shape.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import requests

from krill.config import const

_log = logging.getLogger("krill.collaborators")

Reply = Callable[[Dict[str, Any]], Awaitable[None]]
"""Deliver one response envelope back over the transport the request came from."""


class RestartTrigger(Protocol):
    async def restart(self) -> bool: ...


class HealthCheck(Protocol):
    async def wait_healthy(self, timeout: float) -> bool: ...


class LlmProbe(Protocol):
    async def probe(self) -> None:
        """Raise on failure; return normally when the model answered."""


class ProfileLookup(Protocol):
    async def display_name(self, user_id: str) -> Optional[str]: ...


class CommandRestartTrigger:
    """Restart the agent runtime by running a shell command."""

    def __init__(self, command: str = const.RESTART_COMMAND, *, timeout: float = const.RESTART_TIMEOUT_SECONDS) -> None:
        self.command = command
        self.timeout = timeout

    def _run(self) -> bool:
        try:
            completed = subprocess.run(
                shlex.split(self.command),
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            _log.error("restart command failed to run cmd=%r err=%s", self.command, exc)
            return False
        if completed.returncode != 0:
            _log.error(
                "restart command exited rc=%s cmd=%r stderr=%s",
                completed.returncode,
                self.command,
                (completed.stderr or "").strip()[:500],
            )
            return False
        return True

    async def restart(self) -> bool:
        _log.info("restarting gateway cmd=%r", self.command)
        return await asyncio.to_thread(self._run)


class HttpStatusHealthCheck:
    """Poll a status URL until it answers 2xx or the timeout elapses."""

    def __init__(
        self,
        url: str = const.GATEWAY_STATUS_URL,
        *,
        interval: float = const.HEALTH_CHECK_INTERVAL_SECONDS,
        request_timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.interval = interval
        self.request_timeout = request_timeout

    def _probe_once(self) -> bool:
        try:
            resp = requests.get(self.url, timeout=self.request_timeout)
        except requests.RequestException:
            return False
        return resp.ok

    async def wait_healthy(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if await asyncio.to_thread(self._probe_once):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _log.warning("health check timed out url=%s after %.1fs", self.url, timeout)
                return False
            await asyncio.sleep(min(self.interval, remaining))


class HttpLlmProbe:
    """Send a tiny request to the local agent runtime and expect a 2xx."""

    def __init__(self, url: str, *, request_timeout: float = const.LLM_PROBE_TIMEOUT_SECONDS) -> None:
        self.url = url
        self.request_timeout = request_timeout

    def _call(self) -> None:
        resp = requests.post(
            self.url,
            json={"message": "ping", "purpose": "krill.health"},
            timeout=self.request_timeout,
        )
        resp.raise_for_status()

    async def probe(self) -> None:
        await asyncio.to_thread(self._call)


class NullLlmProbe:
    """Always healthy; used when no probe endpoint is configured."""

    async def probe(self) -> None:
        return None


class StaticProfileLookup:
    def __init__(self, names: Optional[Dict[str, str]] = None) -> None:
        self._names = dict(names or {})

    async def display_name(self, user_id: str) -> Optional[str]:
        return self._names.get(user_id)
