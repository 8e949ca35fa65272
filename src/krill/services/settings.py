from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from krill.config import const


def _default_home() -> Path:
    return Path(os.environ.get("KRILL_HOME", "~/.krill")).expanduser()


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(slots=True)
class AgentIdentity:
    mxid: str
    display_name: str
    description: str | None = None
    capabilities: list[str] = field(default_factory=lambda: list(const.DEFAULT_CAPABILITIES))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "AgentIdentity | None":
        if not data or not data.get("mxid"):
            return None
        mxid = str(data["mxid"])
        return cls(
            mxid=mxid,
            display_name=str(data.get("display_name") or mxid),
            description=data.get("description"),
            capabilities=_as_list(data.get("capabilities")) or list(const.DEFAULT_CAPABILITIES),
        )


@dataclass(slots=True)
class ConfigUpdateSettings:
    config_path: Path = field(default_factory=lambda: Path("~/.openclaw/openclaw.json").expanduser())
    backup_path: Path | None = None
    allowed_senders: list[str] = field(default_factory=list)
    restart_command: str = const.RESTART_COMMAND
    restart_timeout_seconds: float = const.RESTART_TIMEOUT_SECONDS
    health_url: str = const.GATEWAY_STATUS_URL
    health_check_timeout_seconds: float = const.HEALTH_CHECK_TIMEOUT_SECONDS
    health_check_interval_seconds: float = const.HEALTH_CHECK_INTERVAL_SECONDS

    @property
    def effective_backup_path(self) -> Path:
        if self.backup_path is not None:
            return self.backup_path
        return self.config_path.with_name(self.config_path.name + ".bak")


@dataclass(slots=True)
class HealthSettings:
    grace_window_seconds: float = const.ACTIVITY_GRACE_SECONDS
    llm_probe_url: str | None = None
    llm_probe_timeout_seconds: float = const.LLM_PROBE_TIMEOUT_SECONDS


@dataclass(slots=True)
class SensesSettings:
    storage_path: Path = field(default_factory=lambda: _default_home() / "senses")
    movement_threshold_meters: float = const.LOCATION_MOVEMENT_THRESHOLD_METERS

    @property
    def location_dir(self) -> Path:
        return self.storage_path / "location"


@dataclass(slots=True)
class UpdateSettings:
    api_url: str = const.KRILL_API_URL
    auto_update: bool = False
    check_interval_minutes: int = const.UPDATE_CHECK_INTERVAL_MINUTES
    initial_delay_seconds: float = const.UPDATE_INITIAL_DELAY_SECONDS
    installed: dict[str, str] = field(default_factory=dict)
    install_command: str | None = None
    download_dir: Path = field(default_factory=lambda: _default_home() / "downloads")


@dataclass(slots=True)
class Settings:
    """Gateway settings.

    Loaded from YAML (``KRILL_CONFIG`` or ``~/.krill/gateway.yaml``) and then
    overridden by ``KRILL_*`` environment variables.  Every field has a
    default so a bare install can start; without ``agent`` and
    ``gateway_secret`` the gateway answers but refuses to pair or verify.
    """

    gateway_id: str = "krill-gateway"
    gateway_secret: str = ""
    gateway_url: str | None = None
    storage_path: Path = field(default_factory=lambda: _default_home() / "pairings.json")
    agent: AgentIdentity | None = None
    config_update: ConfigUpdateSettings = field(default_factory=ConfigUpdateSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    update: UpdateSettings = field(default_factory=UpdateSettings)
    senses: SensesSettings = field(default_factory=SensesSettings)
    allowlist_senders: list[str] = field(default_factory=list)
    api_token: str | None = None
    log_level: str = "INFO"
    log_file: Path | None = None
    challenge_max_age_seconds: int = const.CHALLENGE_MAX_AGE_SECONDS

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        cu = data.get("config_update") or {}
        hl = data.get("health") or {}
        up = data.get("update") or {}
        se = data.get("senses") or {}

        config_update = ConfigUpdateSettings()
        if cu.get("config_path"):
            config_update.config_path = Path(str(cu["config_path"])).expanduser()
        if cu.get("backup_path"):
            config_update.backup_path = Path(str(cu["backup_path"])).expanduser()
        config_update.allowed_senders = _as_list(cu.get("allowed_senders"))
        config_update.restart_command = str(cu.get("restart_command") or config_update.restart_command)
        for key in (
            "restart_timeout_seconds",
            "health_check_timeout_seconds",
            "health_check_interval_seconds",
        ):
            if cu.get(key) is not None:
                setattr(config_update, key, float(cu[key]))
        if cu.get("health_url"):
            config_update.health_url = str(cu["health_url"])

        health = HealthSettings(
            grace_window_seconds=float(hl.get("grace_window_seconds", const.ACTIVITY_GRACE_SECONDS)),
            llm_probe_url=hl.get("llm_probe_url"),
            llm_probe_timeout_seconds=float(hl.get("llm_probe_timeout_seconds", const.LLM_PROBE_TIMEOUT_SECONDS)),
        )

        update = UpdateSettings(
            api_url=str(up.get("api_url") or const.KRILL_API_URL),
            auto_update=_as_bool(up.get("auto_update", False)),
            check_interval_minutes=int(up.get("check_interval_minutes", const.UPDATE_CHECK_INTERVAL_MINUTES)),
            initial_delay_seconds=float(up.get("initial_delay_seconds", const.UPDATE_INITIAL_DELAY_SECONDS)),
            installed={str(k): str(v) for k, v in (up.get("installed") or {}).items()},
            install_command=up.get("install_command"),
        )
        if up.get("download_dir"):
            update.download_dir = Path(str(up["download_dir"])).expanduser()

        senses = SensesSettings(
            movement_threshold_meters=float(
                se.get("movement_threshold_meters", const.LOCATION_MOVEMENT_THRESHOLD_METERS)
            ),
        )
        if se.get("storage_path"):
            senses.storage_path = Path(str(se["storage_path"])).expanduser()

        settings = cls(
            gateway_id=str(data.get("gateway_id") or "krill-gateway"),
            gateway_secret=str(data.get("gateway_secret") or ""),
            gateway_url=data.get("gateway_url"),
            agent=AgentIdentity.from_mapping(data.get("agent")),
            config_update=config_update,
            health=health,
            update=update,
            senses=senses,
            allowlist_senders=_as_list(data.get("allowlist_senders")),
            api_token=data.get("api_token"),
            log_level=str(data.get("log_level") or "INFO"),
            challenge_max_age_seconds=int(data.get("challenge_max_age_seconds", const.CHALLENGE_MAX_AGE_SECONDS)),
        )
        if data.get("storage_path"):
            settings.storage_path = Path(str(data["storage_path"])).expanduser()
        if data.get("log_file"):
            settings.log_file = Path(str(data["log_file"])).expanduser()
        return settings

    @classmethod
    def from_sources(cls, path: str | os.PathLike[str] | None = None) -> "Settings":
        cfg_path = Path(path or os.environ.get("KRILL_CONFIG") or _default_home() / "gateway.yaml").expanduser()
        data: dict[str, Any] = {}
        if cfg_path.exists():
            loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
            if isinstance(loaded, dict):
                data = loaded
        settings = cls.from_mapping(data)
        settings.apply_env(os.environ)
        return settings

    def apply_env(self, env: Mapping[str, str]) -> None:
        if env.get("KRILL_GATEWAY_ID"):
            self.gateway_id = env["KRILL_GATEWAY_ID"]
        if env.get("KRILL_GATEWAY_SECRET"):
            self.gateway_secret = env["KRILL_GATEWAY_SECRET"]
        if env.get("KRILL_GATEWAY_URL"):
            self.gateway_url = env["KRILL_GATEWAY_URL"]
        if env.get("KRILL_STORAGE_PATH"):
            self.storage_path = Path(env["KRILL_STORAGE_PATH"]).expanduser()
        if env.get("KRILL_API_TOKEN"):
            self.api_token = env["KRILL_API_TOKEN"]
        if env.get("KRILL_LOG_LEVEL"):
            self.log_level = env["KRILL_LOG_LEVEL"]
        if env.get("KRILL_LOG_FILE"):
            self.log_file = Path(env["KRILL_LOG_FILE"]).expanduser()
        if env.get("KRILL_AGENT_MXID"):
            self.agent = AgentIdentity.from_mapping(
                {
                    "mxid": env["KRILL_AGENT_MXID"],
                    "display_name": env.get("KRILL_AGENT_NAME") or (self.agent.display_name if self.agent else None),
                    "description": self.agent.description if self.agent else None,
                    "capabilities": self.agent.capabilities if self.agent else None,
                }
            )
        if env.get("KRILL_GATEWAY_CONFIG"):
            self.config_update.config_path = Path(env["KRILL_GATEWAY_CONFIG"]).expanduser()
        if env.get("KRILL_CONFIG_SENDERS"):
            self.config_update.allowed_senders = _as_list(env["KRILL_CONFIG_SENDERS"])
        if env.get("KRILL_API_URL"):
            self.update.api_url = env["KRILL_API_URL"]
        if env.get("KRILL_SENSES_PATH"):
            self.senses.storage_path = Path(env["KRILL_SENSES_PATH"]).expanduser()
        if env.get("KRILL_AUTO_UPDATE"):
            self.update.auto_update = _as_bool(env["KRILL_AUTO_UPDATE"])

    def with_overrides(self, **changes: Any) -> "Settings":
        return replace(self, **changes)
