"""HTTP surface of the directory search service.

Submodules load lazily so importing the package does not build FastAPI routes.
"""

# [nav:section public-api]

from __future__ import annotations

import sys
from importlib import import_module
from typing import TYPE_CHECKING

from directory_common.navmap import load_nav_metadata

__all__ = [
    "app",
    "cli",
    "dependencies",
    "schemas",
]

_ALIASES: dict[str, str] = {name: f"directory_api.{name}" for name in __all__}

__navmap__ = load_nav_metadata(__name__, tuple(__all__))


if TYPE_CHECKING:  # pragma: no cover - typing only
    from types import ModuleType

    from directory_api import app, cli, dependencies, schemas


def _load(name: str) -> ModuleType:
    module = import_module(_ALIASES[name])
    sys.modules[f"{__name__}.{name}"] = module
    return module


def __getattr__(name: str) -> ModuleType:
    if name not in _ALIASES:
        message = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(message)
    return _load(name)


def __dir__() -> list[str]:
    return sorted(__all__)
