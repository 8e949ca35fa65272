"""``ai.krill.allowlist``: who may DM the agent.

Edits ``channels.matrix.allowFrom`` in the gateway config document and pins
``dmPolicy`` to ``"allowlist"``.  The agent runtime hot-reloads that file, so
no restart is involved.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.services.errors import StoreError
from krill.services.protocol.envelopes import now_seconds

_log = logging.getLogger("krill.allowlist")

_MXID_RE = re.compile(r"^@[^:\s]+:[^\s]+$")

ACTIONS = ("add", "remove")


def is_valid_mxid(value: Any) -> bool:
    return isinstance(value, str) and bool(_MXID_RE.match(value))


class AllowlistHandler:
    def __init__(self, config_store: JsonDocumentStore, allowed_senders: List[str]) -> None:
        self.config_store = config_store
        self.allowed_senders = list(allowed_senders)

    def is_allowed(self, sender_id: Optional[str]) -> bool:
        return bool(sender_id) and sender_id in self.allowed_senders

    @staticmethod
    def _response(action: Any, mxid: Any, *, allowlist: Optional[List[str]] = None, error: Optional[str] = None) -> Dict[str, Any]:
        content: Dict[str, Any] = {
            "success": error is None,
            "action": action,
            "mxid": mxid,
            "timestamp": now_seconds(),
        }
        if allowlist is not None:
            content["allowlist"] = allowlist
        if error is not None:
            content["error"] = error
        return content

    async def current(self) -> List[str]:
        doc = await self.config_store.load(dict)
        matrix = ((doc or {}).get("channels") or {}).get("matrix") or {}
        return list(matrix.get("allowFrom") or [])

    async def handle(self, content: Mapping[str, Any], sender_id: Optional[str]) -> Dict[str, Any]:
        action = content.get("action")
        mxid = content.get("mxid")
        _log.info("allowlist %s %s from %s (reason: %s)", action, mxid, sender_id, content.get("reason") or "none")

        if not is_valid_mxid(mxid):
            return self._response(action, mxid, error="INVALID_MXID")
        if action not in ACTIONS:
            return self._response(action, mxid, error="INVALID_ACTION")
        if self.config_store.lock.locked():
            _log.warning("allowlist change refused: config update in flight")
            return self._response(action, mxid, error="CONFIG_BUSY")

        async with self.config_store.lock:
            try:
                doc = await self.config_store.load()
            except StoreError:
                _log.error("allowlist: cannot read config %s", self.config_store.path, exc_info=True)
                return self._response(action, mxid, error="CONFIG_READ_ERROR")
            if not isinstance(doc, dict):
                _log.error("allowlist: config %s missing or not an object", self.config_store.path)
                return self._response(action, mxid, error="CONFIG_READ_ERROR")

            channels = doc.setdefault("channels", {})
            matrix = channels.setdefault("matrix", {})
            allowlist = [str(item) for item in (matrix.get("allowFrom") or [])]
            if action == "add":
                if mxid not in allowlist:
                    allowlist.append(mxid)
            else:
                allowlist = [item for item in allowlist if item != mxid]
            matrix["allowFrom"] = allowlist
            matrix["dmPolicy"] = "allowlist"

            try:
                await self.config_store.replace(doc)
            except StoreError:
                _log.error("allowlist: cannot write config %s", self.config_store.path, exc_info=True)
                return self._response(action, mxid, error="CONFIG_WRITE_ERROR")

        if content.get("contractId"):
            _log.info("allowlist contract=%s %s %s", content.get("contractId"), action, mxid)
        return self._response(action, mxid, allowlist=allowlist)
