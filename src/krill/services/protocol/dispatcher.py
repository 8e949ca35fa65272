from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from krill.services.allowlist import AllowlistHandler
from krill.services.collaborators import Reply
from krill.services.config_update.orchestrator import ConfigUpdateOrchestrator, ConfigUpdateState
from krill.services.errors import (
    ConfigUpdateBusyError,
    ConfigUpdateUnrecoverableError,
    KrillError,
    MalformedInputError,
    UnauthorizedError,
)
from krill.services.health.monitor import HealthMonitor
from krill.services.pairing.handlers import PairingHandlers
from krill.services.pairing.manager import PairingManager
from krill.services.protocol.classifier import MessageClassifier
from krill.services.protocol.envelopes import ProtocolMessage, ProtocolRequest, full_type, make_envelope, now_seconds
from krill.services.senses.location import LocationTracker
from krill.services.verification import VerificationService

_log = logging.getLogger("krill.protocol.dispatcher")

Handler = Callable[[ProtocolRequest], Awaitable[None]]


class AuthMode(str, Enum):
    PUBLIC = "public"
    PAIRING = "pairing"
    SENDER = "sender"


@dataclass(slots=True)
class Route:
    handler: Handler
    auth: AuthMode = AuthMode.PUBLIC
    response_type: Optional[str] = None
    sender_check: Optional[Callable[[Optional[str]], bool]] = None
    unauthorized_error: str = "Unauthorized"
    echo: Tuple[str, ...] = ()


class ProtocolDispatcher:
    """Routes ``ai.krill.*`` messages to their handlers.

    The routing table maps exact type strings to a handler and the
    authorization it needs.  The dispatcher owns the authorization check and
    (through the classifier) the activity clock.  ``MalformedInputError`` and
    the other ``KrillError`` kinds raised by handlers become failure envelopes
    of the route's response type; ``ConfigUpdateUnrecoverableError`` is the
    one exception that propagates.
    """

    def __init__(
        self,
        *,
        classifier: MessageClassifier,
        pairing: PairingManager,
        pairing_handlers: PairingHandlers,
        verification: VerificationService,
        health: HealthMonitor,
        config_update: ConfigUpdateOrchestrator,
        allowlist: AllowlistHandler,
        location: Optional[LocationTracker] = None,
    ) -> None:
        self.classifier = classifier
        self.pairing = pairing
        self.verification = verification
        self.health = health
        self.config_update = config_update
        self.allowlist = allowlist
        self.location = location
        self._routes: Dict[str, Route] = {}

        self.register("pair.request", pairing_handlers.on_request, response_type="pair.response")
        self.register("pair.complete", pairing_handlers.on_complete, response_type="pair.welcome")
        self.register(
            "pair.revoke",
            pairing_handlers.on_revoke,
            auth=AuthMode.PAIRING,
            response_type="pair.revoked",
            unauthorized_error="Invalid or expired token",
            echo=("pairing_id",),
        )
        self.register(
            "senses.update",
            pairing_handlers.on_senses_update,
            auth=AuthMode.PAIRING,
            response_type="senses.updated",
            unauthorized_error="Invalid or expired token",
            echo=("pairing_id",),
        )
        self.register("verify.request", self._on_verify, response_type="verify.response", echo=("challenge",))
        self.register("health.ping", self._on_health_ping)
        self.register(
            "config.update",
            self._on_config_update,
            auth=AuthMode.SENDER,
            response_type="config.update.result",
            sender_check=config_update.is_allowed,
            unauthorized_error="Sender not authorized",
            echo=("request_id",),
        )
        self.register(
            "allowlist",
            self._on_allowlist,
            auth=AuthMode.SENDER,
            response_type="allowlist.response",
            sender_check=allowlist.is_allowed,
            unauthorized_error="UNAUTHORIZED_SENDER",
            echo=("action", "mxid"),
        )
        if location is not None:
            self.register(
                "sense.location",
                self._on_location,
                auth=AuthMode.PAIRING,
                unauthorized_error="Invalid or expired token",
            )

    def register(self, name: str, handler: Handler, **route: Any) -> None:
        self._routes[full_type(name)] = Route(handler=handler, **route)

    @property
    def routes(self) -> Dict[str, Route]:
        return dict(self._routes)

    async def handle_text(self, raw: Any, sender: Optional[str], reply: Reply) -> bool:
        """Entry point for every inbound message.

        Returns ``False`` for conversation (the caller passes it on to the
        agent) and for unknown protocol types.
        """
        message = self.classifier.classify(raw)
        if message is None:
            return False
        return await self.dispatch(message, sender, reply)

    async def dispatch(self, message: ProtocolMessage, sender: Optional[str], reply: Reply) -> bool:
        route = self._routes.get(message.type)
        if route is None:
            _log.warning("unhandled protocol message type=%s sender=%s", message.type, sender)
            return False

        req = ProtocolRequest(message=message, sender=sender, reply=reply)
        try:
            await self._authorize(route, req)
            await route.handler(req)
        except ConfigUpdateUnrecoverableError:
            raise
        except UnauthorizedError as exc:
            _log.warning("unauthorized %s from sender=%s: %s", message.type, sender, exc)
            await self._fail(route, req, exc)
        except KrillError as exc:
            _log.warning("%s from sender=%s failed: %s", message.type, sender, exc)
            await self._fail(route, req, exc)
        return True

    async def _authorize(self, route: Route, req: ProtocolRequest) -> None:
        if route.auth is AuthMode.PAIRING:
            token = req.message.pairing_token
            pairing = await self.pairing.validate_token(token) if token else None
            if pairing is None:
                raise UnauthorizedError(route.unauthorized_error)
            req.pairing = pairing
        elif route.auth is AuthMode.SENDER:
            if route.sender_check is None or not route.sender_check(req.sender):
                raise UnauthorizedError(route.unauthorized_error)

    async def _fail(self, route: Route, req: ProtocolRequest, exc: KrillError) -> None:
        content: Dict[str, Any] = {key: req.content.get(key) for key in route.echo if key in req.content}
        content.update(
            success=False,
            error=str(exc),
            message=str(exc),
            error_code=exc.error_code,
            timestamp=now_seconds(),
        )
        if route.response_type is None:
            content["type"] = req.message.type
            await req.reply(make_envelope("error", content))
        else:
            await req.reply(make_envelope(route.response_type, content))

    async def _on_verify(self, req: ProtocolRequest) -> None:
        challenge = req.content.get("challenge")
        if not isinstance(challenge, str) or not challenge:
            raise MalformedInputError("verify.request requires challenge")
        body = self.verification.respond_to_challenge(challenge, req.content.get("timestamp"))
        await req.reply(make_envelope("verify.response", body))

    async def _on_health_ping(self, req: ProtocolRequest) -> None:
        await self.health.handle_ping(req.content, req.reply)

    async def _on_config_update(self, req: ProtocolRequest) -> None:
        content = req.content
        request_id = content.get("request_id") or uuid.uuid4().hex
        restart = content.get("restart", True)
        if not isinstance(restart, bool):
            raise MalformedInputError("restart must be a boolean")
        try:
            result = await self.config_update.apply_config_patch(
                content.get("config_patch"),
                restart=restart,
                request_id=request_id,
                sender_id=req.sender,
            )
        except ConfigUpdateBusyError as exc:
            await req.reply(make_envelope("config.update.result", _result_content(request_id, ConfigUpdateState.REJECTED, str(exc))))
            return
        except ConfigUpdateUnrecoverableError as exc:
            _log.critical("config update request=%s left the gateway unrecoverable", request_id)
            await req.reply(
                make_envelope(
                    "config.update.result",
                    _result_content(request_id, ConfigUpdateState.UNRECOVERABLE, str(exc), unrecoverable=True),
                )
            )
            raise
        await req.reply(make_envelope("config.update.result", result.to_content()))

    async def _on_allowlist(self, req: ProtocolRequest) -> None:
        body = await self.allowlist.handle(req.content, req.sender)
        await req.reply(make_envelope("allowlist.response", body))

    async def _on_location(self, req: ProtocolRequest) -> None:
        if req.pairing.senses.get("location") is False:
            raise UnauthorizedError("Location sense disabled for this pairing")
        update = await self.location.record(req.content)
        for event in update.events:
            await req.reply(make_envelope("sense.geofence", event.to_content()))


def _result_content(request_id: str, state: ConfigUpdateState, message: str, *, unrecoverable: bool = False) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "success": False,
        "state": state.value,
        "message": message,
        "unrecoverable": unrecoverable,
        "timestamp": now_seconds(),
    }
