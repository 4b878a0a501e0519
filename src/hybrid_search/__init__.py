"""Hybrid multi-strategy search engine for the resource directory.

Submodules load lazily so importing the package does not pull in NLTK or
:mod:`httpx` until the corresponding module is first used.

See Also
--------
- `schema/weights_config.json` - Weight document schema
"""

# [nav:section public-api]

from __future__ import annotations

import sys
from importlib import import_module
from typing import TYPE_CHECKING

from directory_common.navmap import load_nav_metadata

__all__ = [
    "adapters",
    "combiner",
    "cursor",
    "enhancement",
    "executor",
    "nlp",
    "orchestrator",
    "postprocess",
    "query_builder",
    "suggestion",
    "tenancy",
    "types",
    "weights",
]

_ALIASES: dict[str, str] = {name: f"hybrid_search.{name}" for name in __all__}

__navmap__ = load_nav_metadata(__name__, tuple(__all__))


if TYPE_CHECKING:  # pragma: no cover - typing only
    from types import ModuleType

    from hybrid_search import (
        adapters,
        combiner,
        cursor,
        enhancement,
        executor,
        nlp,
        orchestrator,
        postprocess,
        query_builder,
        suggestion,
        tenancy,
        types,
        weights,
    )


def _load(name: str) -> ModuleType:
    module = import_module(_ALIASES[name])
    sys.modules[f"{__name__}.{name}"] = module
    return module


def __getattr__(name: str) -> ModuleType:
    """Load the submodule ``name`` on first attribute access.

    Raises
    ------
    AttributeError
        If ``name`` is not a public submodule.
    """
    if name not in _ALIASES:
        message = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(message)
    return _load(name)


def __dir__() -> list[str]:
    """Return the public submodule names."""
    return sorted(__all__)
