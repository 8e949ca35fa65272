from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from krill.services.settings import UpdateSettings
from krill.services.update.auth import sign_auth_header, verify_checksum

_log = logging.getLogger("krill.update")


@dataclass(slots=True)
class PluginUpdate:
    plugin: str
    current: Optional[str]
    latest: str
    download_url: str
    checksum: str
    required: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PluginUpdate":
        return cls(
            plugin=str(data["plugin"]),
            current=data.get("current"),
            latest=str(data.get("latest") or data.get("version")),
            download_url=str(data["download_url"]),
            checksum=str(data.get("checksum") or ""),
            required=bool(data.get("required", False)),
        )


@dataclass(slots=True)
class UpdateReport:
    checked_at: int
    ok: bool = True
    error: Optional[str] = None
    available: List[PluginUpdate] = field(default_factory=list)
    installed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": self.checked_at,
            "ok": self.ok,
            "error": self.error,
            "available": [
                {"plugin": u.plugin, "current": u.current, "latest": u.latest, "required": u.required}
                for u in self.available
            ],
            "installed": list(self.installed),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


class UpdateChecker:
    """Polls the Krill API for plugin updates.

    Failures are logged and recorded in the report; the next scheduled poll is
    the retry.
    """

    def __init__(self, settings: UpdateSettings, *, gateway_id: str, secret: str, session: Any = None) -> None:
        self.settings = settings
        self.gateway_id = gateway_id
        self.secret = secret
        self.installed: Dict[str, str] = dict(settings.installed)
        self.last_report: Optional[UpdateReport] = None
        self._http = session or requests

    def _check_sync(self) -> Dict[str, Any]:
        url = self.settings.api_url.rstrip("/") + "/v1/plugins/check-updates"
        resp = self._http.post(
            url,
            json={"gateway_id": self.gateway_id, "installed": dict(self.installed)},
            headers={"X-Krill-Auth": sign_auth_header(self.gateway_id, self.secret, "check")},
            timeout=15,
        )
        resp.raise_for_status()
        return resp.json()

    async def check(self) -> UpdateReport:
        report = UpdateReport(checked_at=int(time.time()))
        self.last_report = report
        if not self.gateway_id or not self.secret:
            _log.warning("update check skipped: gateway id/secret not configured")
            report.ok, report.error = False, "gateway credentials not configured"
            return report

        _log.info("checking for plugin updates api=%s", self.settings.api_url)
        try:
            data = await asyncio.to_thread(self._check_sync)
        except (requests.RequestException, ValueError) as exc:
            _log.warning("update check failed: %s", exc)
            report.ok, report.error = False, str(exc)
            return report

        if not data.get("has_updates"):
            _log.info("all plugins up to date")
            return report

        for raw in data.get("updates") or []:
            try:
                update = PluginUpdate.from_dict(raw)
            except (KeyError, TypeError):
                _log.warning("ignoring malformed update entry: %r", raw)
                continue
            report.available.append(update)
            _log.info("update available %s %s -> %s", update.plugin, update.current, update.latest)
            if not (self.settings.auto_update or update.required):
                report.skipped.append(update.plugin)
                continue
            if await self.install(update):
                report.installed.append(update.plugin)
            else:
                report.failed.append(update.plugin)
        return report

    def _download_sync(self, update: PluginUpdate, target: Path) -> None:
        header = sign_auth_header(self.gateway_id, self.secret, update.plugin, update.latest)
        resp = self._http.get(update.download_url, headers={"X-Krill-Auth": header}, timeout=60)
        resp.raise_for_status()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(resp.content)

    def _install_sync(self, path: Path) -> None:
        command = self.settings.install_command or ""
        subprocess.run(shlex.split(command.format(file=str(path))), check=True, capture_output=True, timeout=300)

    async def install(self, update: PluginUpdate) -> bool:
        target = Path(self.settings.download_dir) / f"{update.plugin}-{update.latest}.tgz"
        _log.info("installing %s %s", update.plugin, update.latest)
        try:
            await asyncio.to_thread(self._download_sync, update, target)
            if not await asyncio.to_thread(verify_checksum, target, update.checksum):
                _log.error("checksum mismatch for %s %s", update.plugin, update.latest)
                target.unlink(missing_ok=True)
                return False
            if self.settings.install_command:
                await asyncio.to_thread(self._install_sync, target)
        except (requests.RequestException, OSError, subprocess.SubprocessError) as exc:
            _log.warning("install of %s %s failed: %s", update.plugin, update.latest, exc)
            return False
        if self.settings.install_command:
            target.unlink(missing_ok=True)
        else:
            _log.info("no install command configured; %s staged at %s", update.plugin, target)
        self.installed[update.plugin] = update.latest
        _log.warning("%s %s installed; gateway restart required to load it", update.plugin, update.latest)
        return True
