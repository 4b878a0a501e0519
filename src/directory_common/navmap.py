"""Navigation metadata attached to public modules.

Every public module exposes ``__navmap__`` describing its exports so documentation
and API-surface tests can enumerate the supported symbols without importing private
helpers.

Examples
--------
>>> from directory_common.navmap import load_nav_metadata
>>> meta = load_nav_metadata("hybrid_search.combiner", ("combine",))
>>> meta["exports"]
['combine']
"""

# [nav:section public-api]

from __future__ import annotations

from functools import lru_cache
from typing import Literal, TypedDict

__all__ = [
    "ModuleMeta",
    "NavMap",
    "NavSection",
    "Stability",
    "load_nav_metadata",
]

# [nav:anchor Stability]
type Stability = Literal["stable", "experimental", "internal", "deprecated"]


# [nav:anchor NavSection]
class NavSection(TypedDict):
    """Navigation section grouping related symbols."""

    id: str
    title: str
    symbols: list[str]


# [nav:anchor ModuleMeta]
class ModuleMeta(TypedDict, total=False):
    """Ownership and stability metadata for a module."""

    owner: str
    stability: Stability
    since: str


# [nav:anchor NavMap]
class NavMap(TypedDict, total=False):
    """Navigation metadata for a single module."""

    title: str
    synopsis: str
    exports: list[str]
    sections: list[NavSection]
    module_meta: ModuleMeta


_OWNERS: dict[str, str] = {
    "directory_common": "@directory-platform",
    "hybrid_search": "@search-relevance",
    "directory_api": "@search-api",
}


# [nav:anchor load_nav_metadata]
@lru_cache(maxsize=None)
def load_nav_metadata(package: str, exports: tuple[str, ...]) -> NavMap:
    """Return navigation metadata for ``package``.

    Parameters
    ----------
    package : str
        Fully qualified module name, usually ``__name__``.
    exports : tuple[str, ...]
        Public names exported via ``__all__``.

    Returns
    -------
    NavMap
        Metadata with a single ``public-api`` section listing ``exports``.
    """
    top_level = package.split(".", 1)[0]
    stability: Stability = "internal" if package.rsplit(".", 1)[-1].startswith("_") else "stable"
    return {
        "title": package,
        "synopsis": f"Public API of {package}",
        "exports": list(exports),
        "sections": [
            {"id": "public-api", "title": "Public API", "symbols": list(exports)},
        ],
        "module_meta": {
            "owner": _OWNERS.get(top_level, "@directory-platform"),
            "stability": stability,
            "since": "0.1.0",
        },
    }
