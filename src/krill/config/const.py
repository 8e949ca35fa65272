# src/krill/config/const.py
from __future__ import annotations

# Protocol constants shared by every gateway build.
PROTOCOL_PREFIX: str = "ai.krill."
AUTH_FIELD: str = "ai.krill.auth"

TOKEN_PREFIX: str = "krill_tk_v1_"
TOKEN_BYTES: int = 32  # 256-bit bearer tokens
PAIRING_ID_PREFIX: str = "pair_"

DEFAULT_CAPABILITIES: tuple[str, ...] = ("chat",)

# Health
ACTIVITY_GRACE_SECONDS: float = 5 * 60
LLM_PROBE_TIMEOUT_SECONDS: float = 10.0

# Config updates
HEALTH_CHECK_TIMEOUT_SECONDS: float = 30.0
HEALTH_CHECK_INTERVAL_SECONDS: float = 2.0
RESTART_COMMAND: str = "systemctl restart openclaw-gateway"
RESTART_TIMEOUT_SECONDS: float = 30.0
GATEWAY_STATUS_URL: str = "http://localhost:18789/api/status"

# Senses
LOCATION_MOVEMENT_THRESHOLD_METERS: float = 50.0

# Verification
CHALLENGE_MAX_AGE_SECONDS: int = 60

# Updates
KRILL_API_URL: str = "https://api.krillbot.network"
UPDATE_CHECK_INTERVAL_MINUTES: int = 60
UPDATE_INITIAL_DELAY_SECONDS: float = 60.0
AUTH_SIGNATURE_LENGTH: int = 32
