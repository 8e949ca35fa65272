from __future__ import annotations

import json
import logging
from typing import Any, Optional

from krill.config import const
from krill.services.health.activity import ActivityClock
from krill.services.protocol.envelopes import ProtocolMessage

_log = logging.getLogger("krill.protocol.classifier")


def parse_envelope(raw: Any) -> Optional[ProtocolMessage]:
    """Return the protocol message in ``raw``, or ``None`` for anything else.

    ``raw`` may be message text or an already decoded mapping.  Only JSON
    objects whose ``type`` is a string in the ``ai.krill.`` namespace count;
    this never raises.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text.startswith("{"):
            return None
        try:
            data = json.loads(text)
        except (ValueError, RecursionError):
            return None
    else:
        data = raw
    if not isinstance(data, dict):
        return None

    msg_type = data.get("type")
    if not isinstance(msg_type, str) or not msg_type.startswith(const.PROTOCOL_PREFIX):
        return None

    content = data.get("content")
    auth = data.get(const.AUTH_FIELD)
    return ProtocolMessage(
        type=msg_type,
        content=content if isinstance(content, dict) else {},
        auth=auth if isinstance(auth, dict) else None,
    )


class MessageClassifier:
    """Splits inbound traffic into protocol envelopes and conversation.

    Conversation marks the activity clock; protocol traffic does not, since
    it says nothing about whether the model is engaged.
    """

    def __init__(self, clock: ActivityClock) -> None:
        self.clock = clock

    def classify(self, raw: Any) -> Optional[ProtocolMessage]:
        message = parse_envelope(raw)
        if message is None:
            self.clock.mark()
        else:
            _log.debug("protocol message type=%s", message.type)
        return message
