from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Dict, Mapping, Optional

from krill.build_info import BUILD_INFO
from krill.config import const
from krill.services.collaborators import LlmProbe, Reply
from krill.services.errors import MalformedInputError
from krill.services.health.activity import ActivityClock
from krill.services.protocol.envelopes import make_envelope, now_millis

_log = logging.getLogger("krill.health")


def _load_average() -> Optional[str]:
    try:
        return f"{os.getloadavg()[0]:.2f}"
    except (AttributeError, OSError):
        return None


class HealthMonitor:
    """Answers ``ai.krill.health.ping`` with an ack and a pong.

    The ack goes out before anything else.  The pong reports the language
    model as ``ok``, ``error`` or ``timeout``; a latency of 0 means the live
    probe was skipped, either on request or because the agent has been
    chatting inside the grace window.  This side never reports ``offline``:
    the central monitor infers that from a missing pong.
    """

    def __init__(
        self,
        *,
        clock: ActivityClock,
        probe: LlmProbe,
        agent_id: Optional[str],
        gateway_id: str,
        probe_timeout: float = const.LLM_PROBE_TIMEOUT_SECONDS,
        version: str = BUILD_INFO.version,
    ) -> None:
        self.clock = clock
        self.probe = probe
        self.agent_id = agent_id
        self.gateway_id = gateway_id
        self.probe_timeout = probe_timeout
        self.version = version
        self._started = time.monotonic()

    async def _run_probe(self) -> tuple[str, int]:
        started = time.monotonic()
        try:
            await asyncio.wait_for(self.probe.probe(), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            _log.warning("llm probe timed out after %.1fs", self.probe_timeout)
            return "timeout", int((time.monotonic() - started) * 1000)
        except Exception as exc:
            _log.warning("llm probe failed: %s", exc)
            return "error", int((time.monotonic() - started) * 1000)
        # a real probe always reports at least 1 ms so it is distinguishable from a skip
        return "ok", max(1, int((time.monotonic() - started) * 1000))

    async def handle_ping(self, content: Mapping[str, Any], reply: Reply) -> Dict[str, Any]:
        request_id = content.get("request_id")
        if not isinstance(request_id, str) or not request_id:
            raise MalformedInputError("health.ping requires request_id")

        await reply(
            make_envelope(
                "health.ack",
                {
                    "request_id": request_id,
                    "agent_id": self.agent_id,
                    "gateway_id": self.gateway_id,
                    "timestamp": now_millis(),
                },
            )
        )

        if content.get("skip_llm_test") is True:
            llm_status, latency = "ok", 0
            _log.debug("health ping %s: probe skipped on request", request_id)
        elif self.clock.is_active():
            llm_status, latency = "ok", 0
            _log.debug("health ping %s: probe skipped, agent active", request_id)
        else:
            llm_status, latency = await self._run_probe()

        pong = make_envelope(
            "health.pong",
            {
                "request_id": request_id,
                "agent_id": self.agent_id,
                "gateway_id": self.gateway_id,
                "status": "online" if llm_status == "ok" else "unresponsive",
                "llm_status": llm_status,
                "llm_latency_ms": latency,
                "load": _load_average(),
                "uptime_seconds": int(time.monotonic() - self._started),
                "version": self.version,
                "timestamp": now_millis(),
            },
        )
        await reply(pong)
        _log.info("health pong request=%s status=%s llm=%s", request_id, pong["content"]["status"], llm_status)
        return pong
