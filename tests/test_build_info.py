from __future__ import annotations

from importlib import metadata

from krill import build_info


def test_env_pins_version_and_date():
    info = build_info.load_build_info({"KRILL_BUILD_VERSION": "9.9.9", "KRILL_BUILD_DATE": "2026-01-01"})
    assert info.version == "9.9.9"
    assert info.build_date == "2026-01-01"


def test_version_comes_from_installed_distribution(monkeypatch):
    monkeypatch.setattr(build_info.metadata, "version", lambda name: "1.4.2" if name == "krill-gateway" else "x")
    info = build_info.load_build_info({})
    assert info.version == "1.4.2"
    assert info.build_date == "unknown"


def test_missing_distribution_falls_back(monkeypatch):
    def _missing(name):
        raise metadata.PackageNotFoundError(name)

    monkeypatch.setattr(build_info.metadata, "version", _missing)
    assert build_info.load_build_info({}).version == build_info.UNKNOWN_VERSION
