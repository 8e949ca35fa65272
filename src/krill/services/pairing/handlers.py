"""Chat-side handlers for the ``ai.krill.pair.*`` and ``senses.update`` messages."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from krill.services.collaborators import ProfileLookup
from krill.services.errors import MalformedInputError, UnauthorizedError
from krill.services.pairing.manager import PairingManager
from krill.services.protocol.envelopes import ProtocolRequest, make_envelope

_log = logging.getLogger("krill.pairing.handlers")


def _required_str(content: Dict[str, Any], key: str, msg_type: str) -> str:
    value = content.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedInputError(f"{msg_type} requires {key}")
    return value.strip()


def _target_pairing_id(req: ProtocolRequest) -> str:
    """The pairing a token-authenticated request may act on: its own."""
    own = req.pairing.pairing_id
    requested = req.content.get("pairing_id")
    if requested is not None and requested != own:
        raise UnauthorizedError("pairing token does not belong to pairing_id")
    return own


class PairingHandlers:
    def __init__(self, manager: PairingManager, profiles: Optional[ProfileLookup] = None) -> None:
        self.manager = manager
        self.profiles = profiles

    async def on_request(self, req: ProtocolRequest) -> None:
        content = req.content
        device_id = _required_str(content, "device_id", "pair.request")
        user_id = req.sender or content.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            raise MalformedInputError("pair.request requires a sender or user_id")
        device_name = content.get("device_name") if isinstance(content.get("device_name"), str) else device_id
        device_type = content.get("device_type") if isinstance(content.get("device_type"), str) else None

        result = await self.manager.request_pairing(user_id, device_id, device_name, device_type)
        if not result.success:
            await req.reply(make_envelope("pair.response", {"success": False, "error": result.error}))
            return

        body: Dict[str, Any] = {
            "success": True,
            "pairing_id": result.pairing_id,
            "pairing_token": result.token,
            "agent": result.agent,
            "created_at": result.created_at,
            "message": f"Paired with {result.agent['display_name']}.",
        }
        if result.replaced_pairing_id:
            body["replaced_pairing_id"] = result.replaced_pairing_id
        await req.reply(make_envelope("pair.response", body))

    async def on_revoke(self, req: ProtocolRequest) -> None:
        pairing_id = _target_pairing_id(req)
        revoked = await self.manager.revoke_pairing(pairing_id)
        await req.reply(make_envelope("pair.revoked", {"pairing_id": pairing_id, "success": revoked}))

    async def on_senses_update(self, req: ProtocolRequest) -> None:
        pairing_id = _target_pairing_id(req)
        senses = req.content.get("senses")
        if not isinstance(senses, dict):
            raise MalformedInputError("senses.update requires a senses object")
        merged = await self.manager.update_senses(pairing_id, senses)
        await req.reply(make_envelope("senses.updated", {"success": True, "pairing_id": pairing_id, "senses": merged}))

    async def _display_name(self, user_id: str) -> Optional[str]:
        if self.profiles is None:
            return None
        try:
            return await self.profiles.display_name(user_id)
        except Exception:
            # decoration only; the welcome still goes out
            _log.warning("profile lookup failed user=%s", user_id, exc_info=True)
            return None

    async def on_complete(self, req: ProtocolRequest) -> None:
        user_id = req.content.get("user_id") or req.sender
        if not isinstance(user_id, str) or not user_id:
            raise MalformedInputError("pair.complete requires a sender or user_id")
        display_name = await self._display_name(user_id) or user_id
        agent = self.manager.agent
        if agent is not None:
            text = f"Hi {display_name}! {agent.display_name} is now connected to your device."
        else:
            text = f"Hi {display_name}! Your device is now connected."
        platform = req.content.get("platform")
        _log.info("pairing complete user=%s platform=%s", user_id, platform or "-")
        await req.reply(
            make_envelope(
                "pair.welcome",
                {"user_id": user_id, "display_name": display_name, "platform": platform, "message": text},
            )
        )
