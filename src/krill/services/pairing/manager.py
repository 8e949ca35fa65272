from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from krill.adapters.fs.json_store import JsonDocumentStore
from krill.config import const
from krill.services.errors import MalformedInputError, PairingNotFoundError
from krill.services.settings import AgentIdentity

_log = logging.getLogger("krill.pairing")


def generate_token() -> str:
    raw = secrets.token_bytes(const.TOKEN_BYTES)
    return const.TOKEN_PREFIX + base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_pairing_id() -> str:
    return const.PAIRING_ID_PREFIX + secrets.token_hex(8)


def _empty_doc() -> Dict[str, Any]:
    return {"pairings": {}}


@dataclass(slots=True)
class Pairing:
    pairing_id: str
    pairing_token_hash: str
    agent_mxid: str
    user_mxid: str
    device_id: str
    device_name: str
    device_type: Optional[str] = None
    created_at: int = 0
    last_seen_at: int = 0
    senses: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Pairing":
        return cls(
            pairing_id=str(data["pairing_id"]),
            pairing_token_hash=str(data["pairing_token_hash"]),
            agent_mxid=str(data.get("agent_mxid") or ""),
            user_mxid=str(data.get("user_mxid") or ""),
            device_id=str(data.get("device_id") or ""),
            device_name=str(data.get("device_name") or ""),
            device_type=data.get("device_type"),
            created_at=int(data.get("created_at") or 0),
            last_seen_at=int(data.get("last_seen_at") or 0),
            senses={str(k): bool(v) for k, v in (data.get("senses") or {}).items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def public(self) -> Dict[str, Any]:
        """Everything except the token digest."""
        data = self.to_dict()
        data.pop("pairing_token_hash", None)
        return data

    def same_key(self, user_mxid: str, device_id: str, agent_mxid: str) -> bool:
        return self.user_mxid == user_mxid and self.device_id == device_id and self.agent_mxid == agent_mxid


@dataclass(slots=True)
class PairingResult:
    success: bool
    pairing_id: Optional[str] = None
    token: Optional[str] = None
    agent: Optional[Dict[str, Any]] = None
    created_at: Optional[int] = None
    error: Optional[str] = None
    replaced_pairing_id: Optional[str] = None


class PairingManager:
    """Issues, validates and revokes pairing tokens.

    Re-pairing policy: a repeated request for the same (user, device, agent)
    deletes the previous pairing and always mints a new pairing id and token.
    The old token stops validating as soon as the new pairing is written.
    """

    def __init__(self, store: JsonDocumentStore, agent: AgentIdentity | None) -> None:
        self.store = store
        self.agent = agent

    @staticmethod
    def _agent_view(agent: AgentIdentity) -> Dict[str, Any]:
        return {
            "mxid": agent.mxid,
            "display_name": agent.display_name,
            "capabilities": list(agent.capabilities),
        }

    @staticmethod
    def _pairings(doc: Dict[str, Any]) -> Dict[str, Any]:
        pairings = doc.get("pairings")
        if not isinstance(pairings, dict):
            pairings = {}
            doc["pairings"] = pairings
        return pairings

    async def request_pairing(
        self,
        user_id: str,
        device_id: str,
        device_name: str,
        device_type: str | None = None,
    ) -> PairingResult:
        if self.agent is None:
            _log.warning("pair request rejected: no agent configured user=%s", user_id)
            return PairingResult(success=False, error="Agent not configured")
        if not user_id or not device_id:
            raise MalformedInputError("user_id and device_id are required")

        agent = self.agent
        agent_mxid = agent.mxid
        token = generate_token()
        now = int(time.time())
        pairing = Pairing(
            pairing_id=generate_pairing_id(),
            pairing_token_hash=hash_token(token),
            agent_mxid=agent_mxid,
            user_mxid=user_id,
            device_id=device_id,
            device_name=device_name or device_id,
            device_type=device_type,
            created_at=now,
            last_seen_at=now,
        )

        replaced: Optional[str] = None
        async with self.store.transaction(_empty_doc) as doc:
            pairings = self._pairings(doc)
            for pid, raw in list(pairings.items()):
                if Pairing.from_dict(raw).same_key(user_id, device_id, agent_mxid):
                    del pairings[pid]
                    replaced = pid
            pairings[pairing.pairing_id] = pairing.to_dict()

        if replaced:
            _log.info("re-paired user=%s device=%s old=%s new=%s", user_id, device_id, replaced, pairing.pairing_id)
        else:
            _log.info("new pairing id=%s user=%s device=%s", pairing.pairing_id, user_id, device_id)

        return PairingResult(
            success=True,
            pairing_id=pairing.pairing_id,
            token=token,
            agent=self._agent_view(agent),
            created_at=now,
            replaced_pairing_id=replaced,
        )

    async def validate_token(self, token: str) -> Optional[Pairing]:
        if not isinstance(token, str) or not token.startswith(const.TOKEN_PREFIX):
            return None
        digest = hash_token(token)
        async with self.store.lock:
            doc = await self.store.load(_empty_doc)
            pairings = self._pairings(doc)
            for raw in pairings.values():
                stored = str(raw.get("pairing_token_hash") or "")
                if hmac.compare_digest(stored, digest):
                    raw["last_seen_at"] = int(time.time())
                    await self.store.replace(doc)
                    return Pairing.from_dict(raw)
        return None

    async def revoke_pairing(self, pairing_id: str) -> bool:
        async with self.store.lock:
            doc = await self.store.load(_empty_doc)
            pairings = self._pairings(doc)
            if pairing_id not in pairings:
                return False
            del pairings[pairing_id]
            await self.store.replace(doc)
        _log.info("revoked pairing id=%s", pairing_id)
        return True

    async def update_senses(self, pairing_id: str, partial: Mapping[str, Any]) -> Dict[str, bool]:
        if not isinstance(partial, Mapping):
            raise MalformedInputError("senses must be an object")
        bad = [key for key, value in partial.items() if not isinstance(value, bool)]
        if bad:
            raise MalformedInputError(f"senses values must be booleans: {', '.join(sorted(map(str, bad)))}")

        async with self.store.lock:
            doc = await self.store.load(_empty_doc)
            raw = self._pairings(doc).get(pairing_id)
            if raw is None:
                raise PairingNotFoundError(pairing_id)
            senses = dict(raw.get("senses") or {})
            senses.update({str(k): v for k, v in partial.items()})
            raw["senses"] = senses
            await self.store.replace(doc)
        _log.info("senses updated pairing=%s keys=%s", pairing_id, sorted(partial))
        return senses

    async def list_pairings(self, agent_id: str | None = None) -> List[Dict[str, Any]]:
        doc = await self.store.load(_empty_doc)
        items = [Pairing.from_dict(raw) for raw in self._pairings(doc).values()]
        if agent_id:
            items = [p for p in items if p.agent_mxid == agent_id]
        items.sort(key=lambda p: (p.created_at, p.pairing_id))
        return [p.public() for p in items]

    async def get_pairing(self, pairing_id: str) -> Optional[Pairing]:
        doc = await self.store.load(_empty_doc)
        raw = self._pairings(doc).get(pairing_id)
        return Pairing.from_dict(raw) if raw is not None else None
