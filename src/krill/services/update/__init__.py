from .auth import sign_auth_header, verify_auth_header, verify_checksum
from .checker import PluginUpdate, UpdateChecker, UpdateReport

__all__ = [
    "sign_auth_header",
    "verify_auth_header",
    "verify_checksum",
    "PluginUpdate",
    "UpdateChecker",
    "UpdateReport",
]
