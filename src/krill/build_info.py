"""Version reported in health pongs, ``/api/status`` and ``krill status``.

The version is the one pip recorded for the ``krill-gateway`` distribution.
Packagers can pin another value with ``KRILL_BUILD_VERSION`` and stamp the
build with ``KRILL_BUILD_DATE``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import metadata
from typing import Final, Mapping, Optional

DIST_NAME: Final[str] = "krill-gateway"
UNKNOWN_VERSION: Final[str] = "0.0.0+unknown"


@dataclass(frozen=True, slots=True)
class BuildInfo:
    version: str
    build_date: str


def _installed_version() -> str:
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        # running from a source tree that was never pip-installed
        return UNKNOWN_VERSION


def load_build_info(env: Optional[Mapping[str, str]] = None) -> BuildInfo:
    env = os.environ if env is None else env
    return BuildInfo(
        version=env.get("KRILL_BUILD_VERSION") or _installed_version(),
        build_date=env.get("KRILL_BUILD_DATE") or "unknown",
    )


BUILD_INFO: Final[BuildInfo] = load_build_info()
