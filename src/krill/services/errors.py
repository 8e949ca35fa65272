"""Error classes shared by the protocol handlers."""

from __future__ import annotations

__all__ = [
    "KrillError",
    "MalformedInputError",
    "UnauthorizedError",
    "PairingNotFoundError",
    "StoreError",
    "ConfigUpdateBusyError",
    "ConfigUpdateUnrecoverableError",
]


class KrillError(RuntimeError):
    """Base error for the gateway protocol core."""

    default_code = "krill_error"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code or self.default_code


class MalformedInputError(KrillError):
    """Raised when an inbound payload is missing fields or has the wrong shape."""

    default_code = "malformed_input"


class UnauthorizedError(KrillError):
    """Raised when the caller is not allowed to perform an operation."""

    default_code = "unauthorized"


class PairingNotFoundError(KrillError):
    """Raised when a pairing id does not exist."""

    default_code = "pairing_not_found"

    def __init__(self, pairing_id: str) -> None:
        super().__init__(f"Pairing '{pairing_id}' not found")
        self.pairing_id = pairing_id


class StoreError(KrillError):
    """Raised when a persistent document cannot be read or written."""

    default_code = "store_error"


class ConfigUpdateBusyError(KrillError):
    """Raised when a config update arrives while another one is in flight."""

    default_code = "config_busy"


class ConfigUpdateUnrecoverableError(KrillError):
    """Raised when rollback after a failed config update also failed.

    The gateway is left in a state that needs an operator; nothing retries.
    """

    default_code = "config_unrecoverable"

    def __init__(self, message: str, *, request_id: str | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id
