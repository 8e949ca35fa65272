"""Agent verification: enrollment hashes and challenge responses.

An enrollment hash binds an agent mxid to this gateway at a point in time::

    HMAC-SHA256(gateway_secret, "{agent}|{gateway}|{enrolled_at}")

Challenges are opaque nonces echoed back verbatim; the gateway keeps no state
about them.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Optional

from krill.config import const
from krill.services.settings import AgentIdentity

_log = logging.getLogger("krill.verification")

_HEX = frozenset("0123456789abcdefABCDEF")


def is_hex_digest(value: Any, length: int) -> bool:
    """True for a string of exactly ``length`` hex characters."""
    return isinstance(value, str) and len(value) == length and all(ch in _HEX for ch in value)


def generate_enrollment_hash(secret: str, agent_id: str, gateway_id: str, enrolled_at: int) -> str:
    message = f"{agent_id}|{gateway_id}|{int(enrolled_at)}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_enrollment_hash(
    secret: str,
    agent_id: str,
    gateway_id: str,
    enrolled_at: int,
    claimed_hash: str,
    *,
    expected_gateway_id: Optional[str] = None,
) -> bool:
    """Check a claimed enrollment hash.

    When ``expected_gateway_id`` is given, a foreign gateway id is rejected
    before any HMAC is computed.
    """
    if expected_gateway_id is not None and gateway_id != expected_gateway_id:
        return False
    if not is_hex_digest(claimed_hash, 64):
        return False
    expected = generate_enrollment_hash(secret, agent_id, gateway_id, enrolled_at)
    return hmac.compare_digest(expected.encode("ascii"), claimed_hash.lower().encode("ascii"))


class VerificationService:
    def __init__(
        self,
        *,
        gateway_id: str,
        secret: str,
        agent: AgentIdentity | None,
        gateway_url: str | None = None,
        challenge_max_age_seconds: int = const.CHALLENGE_MAX_AGE_SECONDS,
    ) -> None:
        self.gateway_id = gateway_id
        self._secret = secret
        self.agent = agent
        self.gateway_url = gateway_url
        self.challenge_max_age_seconds = challenge_max_age_seconds

    def _agent_view(self, agent: AgentIdentity) -> Dict[str, Any]:
        return {
            "mxid": agent.mxid,
            "display_name": agent.display_name,
            "gateway_id": self.gateway_id,
            "capabilities": list(agent.capabilities),
            "status": "online",
        }

    def respond_to_challenge(self, challenge: Any, timestamp: Any = None, *, now: float | None = None) -> Dict[str, Any]:
        """Build ``ai.krill.verify.response`` content for a challenge."""
        current = int(now if now is not None else time.time())
        response: Dict[str, Any] = {"challenge": challenge, "responded_at": current}

        if self.agent is None:
            _log.warning("verify request without configured agent")
            response.update(verified=False, error="AGENT_NOT_FOUND")
            return response

        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            age = current - int(timestamp)
            if age > self.challenge_max_age_seconds:
                _log.warning("verify challenge expired age=%ss max=%ss", age, self.challenge_max_age_seconds)
                response.update(verified=False, error="CHALLENGE_EXPIRED")
                return response

        response.update(verified=True, agent=self._agent_view(self.agent))
        _log.info("verified agent=%s", self.agent.mxid)
        return response

    def verify_enrollment(self, agent_id: str, gateway_id: str, enrolled_at: int, claimed_hash: str) -> bool:
        return verify_enrollment_hash(
            self._secret,
            agent_id,
            gateway_id,
            enrolled_at,
            claimed_hash,
            expected_gateway_id=self.gateway_id,
        )

    def build_enrollment(
        self,
        agent_mxid: str,
        display_name: str | None = None,
        description: str | None = None,
        capabilities: Optional[List[str]] = None,
        *,
        enrolled_at: int | None = None,
    ) -> Dict[str, Any]:
        """Return an ``ai.krill.agent`` state event for ``agent_mxid``."""
        ts = int(enrolled_at if enrolled_at is not None else time.time())
        return {
            "type": "ai.krill.agent",
            "state_key": agent_mxid,
            "content": {
                "gateway_id": self.gateway_id,
                "gateway_url": self.gateway_url,
                "display_name": display_name or agent_mxid,
                "description": description,
                "capabilities": list(capabilities or const.DEFAULT_CAPABILITIES),
                "enrolled_at": ts,
                "verification_hash": generate_enrollment_hash(self._secret, agent_mxid, self.gateway_id, ts),
            },
        }

    def list_agents(self, *, now: int | None = None) -> List[Dict[str, Any]]:
        if self.agent is None:
            return []
        event = self.build_enrollment(
            self.agent.mxid,
            self.agent.display_name,
            self.agent.description,
            self.agent.capabilities,
            enrolled_at=now,
        )
        return [{"mxid": self.agent.mxid, **event["content"]}]
