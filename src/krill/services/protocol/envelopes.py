from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from krill.config import const


@dataclass(slots=True)
class ProtocolMessage:
    type: str
    content: Dict[str, Any] = field(default_factory=dict)
    auth: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> str:
        """Type without the ``ai.krill.`` prefix, e.g. ``health.ping``."""
        return self.type[len(const.PROTOCOL_PREFIX):]

    @property
    def pairing_token(self) -> Optional[str]:
        if not self.auth:
            return None
        token = self.auth.get("pairing_token")
        return token if isinstance(token, str) and token else None


@dataclass(slots=True)
class ProtocolRequest:
    """One inbound protocol message on its way through a handler."""

    message: ProtocolMessage
    sender: Optional[str]
    reply: Callable[[Dict[str, Any]], Awaitable[None]]
    # set by the dispatcher for routes that require a pairing token
    pairing: Any = None

    @property
    def content(self) -> Dict[str, Any]:
        return self.message.content


def full_type(name: str) -> str:
    return name if name.startswith(const.PROTOCOL_PREFIX) else const.PROTOCOL_PREFIX + name


def make_envelope(name: str, content: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": full_type(name), "content": content}


def dumps(envelope: Dict[str, Any]) -> str:
    return json.dumps(envelope, ensure_ascii=False, separators=(",", ":"))


def now_seconds() -> int:
    return int(time.time())


def now_millis() -> int:
    return int(time.time() * 1000)
