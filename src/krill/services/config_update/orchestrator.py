from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.config import const
from krill.services.collaborators import HealthCheck, RestartTrigger
from krill.services.config_update.merge import deep_merge
from krill.services.errors import ConfigUpdateBusyError, ConfigUpdateUnrecoverableError, StoreError
from krill.services.protocol.envelopes import now_seconds

_log = logging.getLogger("krill.config_update")

INERT_MESSAGE = "Config saved without restart; the new values take effect only after the next manual restart"


class ConfigUpdateState(str, Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    REJECTED = "rejected"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    DONE = "done"
    RESTARTING = "restarting"
    HEALTH_CHECKING = "health_checking"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    REPORTED = "reported"
    UNRECOVERABLE = "unrecoverable"


@dataclass(slots=True)
class ConfigUpdateResult:
    request_id: str
    success: bool
    state: ConfigUpdateState
    message: str
    unrecoverable: bool = False

    def to_content(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "success": self.success,
            "state": self.state.value,
            "message": self.message,
            "unrecoverable": self.unrecoverable,
            "timestamp": now_seconds(),
        }


class ConfigUpdateOrchestrator:
    """Backup, apply, restart, health-check and roll back the gateway config.

    One update at a time: the config document lock is held for the whole
    sequence and a second request is refused while it is taken.  The backup
    is a single byte-for-byte copy that each update overwrites.  Rollback
    happens at most once and is shielded from cancellation; if it cannot
    bring the gateway back, ``ConfigUpdateUnrecoverableError`` is raised and
    nothing retries.
    """

    def __init__(
        self,
        *,
        config_store: JsonDocumentStore,
        backup_store: JsonDocumentStore,
        restart: RestartTrigger,
        health: HealthCheck,
        allowed_senders: list[str],
        health_check_timeout_seconds: float = const.HEALTH_CHECK_TIMEOUT_SECONDS,
    ) -> None:
        self.config_store = config_store
        self.backup_store = backup_store
        self.restart = restart
        self.health = health
        self.allowed_senders = list(allowed_senders)
        self.health_check_timeout_seconds = health_check_timeout_seconds
        self.state = ConfigUpdateState.IDLE

    @property
    def busy(self) -> bool:
        return self.config_store.lock.locked()

    def is_allowed(self, sender_id: Optional[str]) -> bool:
        return bool(sender_id) and sender_id in self.allowed_senders

    def _finish(self, request_id: str, state: ConfigUpdateState, success: bool, message: str) -> ConfigUpdateResult:
        self.state = state
        log = _log.info if success else _log.warning
        log("config update request=%s state=%s success=%s: %s", request_id, state.value, success, message)
        return ConfigUpdateResult(request_id=request_id, success=success, state=state, message=message)

    async def apply_config_patch(
        self,
        patch: Any,
        *,
        restart: bool = True,
        request_id: str,
        sender_id: Optional[str],
    ) -> ConfigUpdateResult:
        if self.busy:
            _log.warning("config update request=%s refused: another update is in flight", request_id)
            raise ConfigUpdateBusyError("Another config update is in progress")

        async with self.config_store.lock:
            try:
                return await self._run(patch, restart=restart, request_id=request_id, sender_id=sender_id)
            finally:
                if self.state is not ConfigUpdateState.UNRECOVERABLE:
                    self.state = ConfigUpdateState.IDLE

    async def _run(self, patch: Any, *, restart: bool, request_id: str, sender_id: Optional[str]) -> ConfigUpdateResult:
        self.state = ConfigUpdateState.AUTHORIZING
        if not self.is_allowed(sender_id):
            _log.warning("config update request=%s from unauthorized sender=%s", request_id, sender_id)
            return self._finish(request_id, ConfigUpdateState.REJECTED, False, "Sender not authorized")
        if not isinstance(patch, Mapping):
            return self._finish(request_id, ConfigUpdateState.REJECTED, False, "Invalid config_patch")

        try:
            original = await self.config_store.read_bytes()
        except StoreError as exc:
            return self._finish(request_id, ConfigUpdateState.REJECTED, False, f"Cannot read config: {exc}")
        if original is None:
            return self._finish(request_id, ConfigUpdateState.REJECTED, False, "Config document not found")
        try:
            current = json.loads(original.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            current = None
        if not isinstance(current, dict):
            return self._finish(request_id, ConfigUpdateState.REJECTED, False, "Config document is not a JSON object")

        self.state = ConfigUpdateState.BACKING_UP
        try:
            await self.backup_store.write_bytes(original)
        except StoreError as exc:
            return self._finish(request_id, ConfigUpdateState.REPORTED, False, f"Backup failed: {exc}")

        self.state = ConfigUpdateState.APPLYING
        try:
            await self.config_store.replace(deep_merge(current, patch))
        except StoreError as exc:
            return self._finish(request_id, ConfigUpdateState.REPORTED, False, f"Failed to apply config patch: {exc}")

        if not restart:
            return self._finish(request_id, ConfigUpdateState.DONE, True, INERT_MESSAGE)

        self.state = ConfigUpdateState.RESTARTING
        if not await self._restart():
            reason = "Restart command failed"
        else:
            self.state = ConfigUpdateState.HEALTH_CHECKING
            if await self._wait_healthy():
                return self._finish(request_id, ConfigUpdateState.COMMITTED, True, "Config updated successfully")
            reason = "Gateway failed health check with new config"

        self.state = ConfigUpdateState.ROLLING_BACK
        _log.warning("config update request=%s: %s, rolling back", request_id, reason)
        rollback = asyncio.ensure_future(self._rollback(original, request_id))
        try:
            await asyncio.shield(rollback)
        except asyncio.CancelledError:
            # keep the lock until the restore has finished
            await rollback
            raise
        return self._finish(request_id, ConfigUpdateState.REPORTED, False, f"{reason}. Rolled back successfully.")

    async def _restart(self) -> bool:
        try:
            return bool(await self.restart.restart())
        except Exception:
            _log.error("restart trigger raised", exc_info=True)
            return False

    async def _wait_healthy(self) -> bool:
        timeout = self.health_check_timeout_seconds
        try:
            return bool(await asyncio.wait_for(self.health.wait_healthy(timeout), timeout=timeout))
        except asyncio.TimeoutError:
            _log.warning("health check did not pass within %.1fs", timeout)
            return False

    async def _rollback(self, original: bytes, request_id: str) -> None:
        try:
            snapshot = await self.backup_store.read_bytes()
        except StoreError:
            snapshot = None
        try:
            await self.config_store.write_bytes(snapshot if snapshot is not None else original)
        except StoreError as exc:
            self._unrecoverable(request_id, f"could not restore config backup: {exc}")

        if not await self._restart():
            self._unrecoverable(request_id, "restart after rollback failed")
        if not await self._wait_healthy():
            self._unrecoverable(request_id, "gateway unhealthy after rollback")

    def _unrecoverable(self, request_id: str, detail: str) -> None:
        self.state = ConfigUpdateState.UNRECOVERABLE
        _log.critical("config update request=%s UNRECOVERABLE: %s; manual intervention required", request_id, detail)
        raise ConfigUpdateUnrecoverableError(
            f"Gateway failed and rollback failed ({detail}). Manual intervention required!",
            request_id=request_id,
        )
