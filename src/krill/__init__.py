"""Krill gateway protocol core."""

from krill.build_info import BUILD_INFO

__version__ = BUILD_INFO.version

__all__ = ["BUILD_INFO", "__version__"]
