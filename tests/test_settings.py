from __future__ import annotations

from pathlib import Path

import yaml

from krill.services.settings import Settings


def test_defaults_without_file(tmp_path, monkeypatch):
    for key in ("KRILL_GATEWAY_ID", "KRILL_AGENT_MXID", "KRILL_GATEWAY_SECRET"):
        monkeypatch.delenv(key, raising=False)
    settings = Settings.from_sources(tmp_path / "missing.yaml")

    assert settings.gateway_id == "krill-gateway"
    assert settings.agent is None
    assert settings.config_update.allowed_senders == []
    assert settings.health.grace_window_seconds == 300
    assert settings.config_update.health_check_timeout_seconds == 30
    assert settings.config_update.restart_command == "systemctl restart openclaw-gateway"
    assert settings.update.check_interval_minutes == 60


def test_yaml_and_env_overrides(tmp_path, monkeypatch):
    cfg = tmp_path / "gateway.yaml"
    cfg.write_text(
        yaml.safe_dump(
            {
                "gateway_id": "gw-yaml",
                "gateway_secret": "from-yaml",
                "agent": {"mxid": "@bot:x", "display_name": "Bot", "capabilities": ["chat", "senses"]},
                "config_update": {
                    "config_path": str(tmp_path / "oc.json"),
                    "allowed_senders": ["@admin:x"],
                    "health_check_timeout_seconds": 12,
                },
                "update": {"auto_update": "yes", "installed": {"krill-update": "1.0.0"}},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("KRILL_GATEWAY_SECRET", "from-env")
    monkeypatch.setenv("KRILL_CONFIG_SENDERS", "@a:x, @b:x")

    settings = Settings.from_sources(cfg)

    assert settings.gateway_id == "gw-yaml"
    assert settings.gateway_secret == "from-env"
    assert settings.agent.capabilities == ["chat", "senses"]
    assert settings.config_update.allowed_senders == ["@a:x", "@b:x"]
    assert settings.config_update.health_check_timeout_seconds == 12.0
    assert settings.config_update.effective_backup_path == Path(tmp_path / "oc.json.bak")
    assert settings.update.auto_update is True
    assert settings.update.installed == {"krill-update": "1.0.0"}


def test_with_overrides_returns_copy():
    base = Settings()
    other = base.with_overrides(gateway_id="gw2")
    assert other.gateway_id == "gw2"
    assert base.gateway_id == "krill-gateway"


def test_senses_section(tmp_path, monkeypatch):
    monkeypatch.delenv("KRILL_SENSES_PATH", raising=False)
    cfg = tmp_path / "gateway.yaml"
    cfg.write_text(
        yaml.safe_dump({"senses": {"storage_path": str(tmp_path / "s"), "movement_threshold_meters": 25}}),
        encoding="utf-8",
    )
    settings = Settings.from_sources(cfg)
    assert settings.senses.location_dir == tmp_path / "s" / "location"
    assert settings.senses.movement_threshold_meters == 25.0

    monkeypatch.setenv("KRILL_SENSES_PATH", str(tmp_path / "env"))
    assert Settings.from_sources(cfg).senses.storage_path == tmp_path / "env"
