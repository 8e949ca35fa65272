from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.services.allowlist import AllowlistHandler
from krill.services.collaborators import (
    CommandRestartTrigger,
    HealthCheck,
    HttpLlmProbe,
    HttpStatusHealthCheck,
    LlmProbe,
    NullLlmProbe,
    ProfileLookup,
    RestartTrigger,
)
from krill.services.config_update.orchestrator import ConfigUpdateOrchestrator
from krill.services.health.activity import ActivityClock
from krill.services.health.monitor import HealthMonitor
from krill.services.pairing.handlers import PairingHandlers
from krill.services.pairing.manager import PairingManager
from krill.services.protocol.classifier import MessageClassifier
from krill.services.protocol.dispatcher import ProtocolDispatcher
from krill.services.senses.location import LocationTracker
from krill.services.scheduler import Scheduler
from krill.services.settings import Settings
from krill.services.update.checker import UpdateChecker
from krill.services.verification import VerificationService

_log = logging.getLogger("krill.context")


@dataclass
class GatewayContext:
    settings: Settings
    pairing_store: JsonDocumentStore
    config_store: JsonDocumentStore
    clock: ActivityClock
    pairing: PairingManager
    verification: VerificationService
    health: HealthMonitor
    config_update: ConfigUpdateOrchestrator
    allowlist: AllowlistHandler
    location: LocationTracker
    dispatcher: ProtocolDispatcher
    updates: UpdateChecker
    scheduler: Scheduler

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        restart: Optional[RestartTrigger] = None,
        health_check: Optional[HealthCheck] = None,
        probe: Optional[LlmProbe] = None,
        profiles: Optional[ProfileLookup] = None,
    ) -> "GatewayContext":
        cu = settings.config_update
        pairing_store = JsonDocumentStore(settings.storage_path)
        config_store = JsonDocumentStore(cu.config_path)
        backup_store = JsonDocumentStore(cu.effective_backup_path)

        clock = ActivityClock(settings.health.grace_window_seconds)
        if probe is None:
            url = settings.health.llm_probe_url
            probe = HttpLlmProbe(url, request_timeout=settings.health.llm_probe_timeout_seconds) if url else NullLlmProbe()

        pairing = PairingManager(pairing_store, settings.agent)
        verification = VerificationService(
            gateway_id=settings.gateway_id,
            secret=settings.gateway_secret,
            agent=settings.agent,
            gateway_url=settings.gateway_url,
            challenge_max_age_seconds=settings.challenge_max_age_seconds,
        )
        health = HealthMonitor(
            clock=clock,
            probe=probe,
            agent_id=settings.agent.mxid if settings.agent else None,
            gateway_id=settings.gateway_id,
            probe_timeout=settings.health.llm_probe_timeout_seconds,
        )
        config_update = ConfigUpdateOrchestrator(
            config_store=config_store,
            backup_store=backup_store,
            restart=restart or CommandRestartTrigger(cu.restart_command, timeout=cu.restart_timeout_seconds),
            health=health_check or HttpStatusHealthCheck(cu.health_url, interval=cu.health_check_interval_seconds),
            allowed_senders=cu.allowed_senders,
            health_check_timeout_seconds=cu.health_check_timeout_seconds,
        )
        allowlist = AllowlistHandler(config_store, settings.allowlist_senders)
        location = LocationTracker(
            settings.senses.location_dir,
            threshold_meters=settings.senses.movement_threshold_meters,
        )
        dispatcher = ProtocolDispatcher(
            classifier=MessageClassifier(clock),
            pairing=pairing,
            pairing_handlers=PairingHandlers(pairing, profiles),
            verification=verification,
            health=health,
            config_update=config_update,
            allowlist=allowlist,
            location=location,
        )
        updates = UpdateChecker(settings.update, gateway_id=settings.gateway_id, secret=settings.gateway_secret)
        return cls(
            settings=settings,
            pairing_store=pairing_store,
            config_store=config_store,
            clock=clock,
            pairing=pairing,
            verification=verification,
            health=health,
            config_update=config_update,
            allowlist=allowlist,
            location=location,
            dispatcher=dispatcher,
            updates=updates,
            scheduler=Scheduler(),
        )

    async def start_background(self) -> None:
        """Start deferred work once the transport is up."""
        await self.scheduler.start()
        minutes = self.settings.update.check_interval_minutes
        if minutes > 0:
            await self.scheduler.ensure_every(
                "update-check",
                minutes * 60,
                self._scheduled_update_check,
                initial_delay=self.settings.update.initial_delay_seconds,
            )
        else:
            _log.info("update checks disabled")

    async def stop_background(self) -> None:
        await self.scheduler.stop()

    async def _scheduled_update_check(self) -> None:
        await self.updates.check()


_CTX: GatewayContext | None = None


def set_ctx(ctx: GatewayContext | None) -> None:
    global _CTX
    _CTX = ctx


def init_ctx(settings: Optional[Settings] = None) -> GatewayContext:
    global _CTX
    if _CTX is None:
        _CTX = GatewayContext.build(settings or Settings.from_sources())
    return _CTX


def get_ctx() -> GatewayContext:
    if _CTX is None:
        return init_ctx()
    return _CTX
