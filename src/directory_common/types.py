"""Shared JSON type aliases.

Kept free of intra-package imports beyond nav metadata so any module can depend on it.
"""

# [nav:section public-api]

from __future__ import annotations

from directory_common.navmap import load_nav_metadata

__all__ = [
    "JsonObject",
    "JsonPrimitive",
    "JsonValue",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))


# [nav:anchor JsonPrimitive]
type JsonPrimitive = str | int | float | bool | None

# [nav:anchor JsonValue]
type JsonValue = JsonPrimitive | dict[str, JsonValue] | list[JsonValue]

# [nav:anchor JsonObject]
type JsonObject = dict[str, JsonValue]
