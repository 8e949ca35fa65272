"""``X-Krill-Auth`` request signing.

Header format is ``<gateway_id>:<timestamp>:<signature>`` where the signature
is the first 32 hex characters of
``HMAC-SHA256(secret, "<gateway_id>:<timestamp>:<part>:<part>...")``.
Plugin downloads sign ``(plugin, version)``; update checks sign ``("check",)``.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from pathlib import Path
from typing import Optional

from krill.config import const
from krill.services.verification import is_hex_digest


def _signature(gateway_id: str, secret: str, timestamp: int, parts: tuple[str, ...]) -> str:
    message = ":".join([gateway_id, str(timestamp), *parts])
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[: const.AUTH_SIGNATURE_LENGTH]


def sign_auth_header(gateway_id: str, secret: str, *parts: str, timestamp: Optional[int] = None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    return f"{gateway_id}:{ts}:{_signature(gateway_id, secret, ts, parts)}"


def verify_auth_header(
    header: str,
    secret: str,
    *parts: str,
    max_skew_seconds: int = 300,
    now: Optional[int] = None,
) -> bool:
    # gateway ids never contain ':'; split from the right to be safe anyway
    try:
        gateway_id, ts_text, signature = header.rsplit(":", 2)
        ts = int(ts_text)
    except (AttributeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    if abs(current - ts) > max_skew_seconds:
        return False
    if not is_hex_digest(signature, const.AUTH_SIGNATURE_LENGTH):
        return False
    expected = _signature(gateway_id, secret, ts, parts)
    return hmac.compare_digest(expected.encode("ascii"), signature.lower().encode("ascii"))


def verify_checksum(path: Path, expected: str) -> bool:
    """Check ``sha256:<hex>`` (or bare hex) against the file contents."""
    algo, _, value = expected.partition(":")
    if not value:
        algo, value = "sha256", algo
    if algo.lower() != "sha256" or not is_hex_digest(value, 64):
        return False
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 16), b""):
            h.update(chunk)
    return hmac.compare_digest(h.hexdigest().encode("ascii"), value.lower().encode("ascii"))
