"""Tenant and language resolution for index naming.

Each tenant owns one resources index and one taxonomy index per language:
``{tenant}-resources_{lang}`` and ``{tenant}-taxonomies_v2_{lang}``.

Examples
--------
>>> from hybrid_search.tenancy import (
...     parse_accept_language,
...     resolve_tenant_short,
...     resources_index,
... )
>>> resources_index(resolve_tenant_short("Illinois 211"), "en")
'il211-resources_en'
>>> parse_accept_language("fr-CA;q=0.4, es;q=0.9")
'es'
"""

# [nav:section public-api]

from __future__ import annotations

import re
from collections.abc import Mapping

from directory_common.errors import ErrorCode, InvalidSearchRequestError
from directory_common.navmap import load_nav_metadata

__all__ = [
    "DEFAULT_LANGUAGE",
    "TENANT_SHORT_CODES",
    "parse_accept_language",
    "resolve_tenant_short",
    "resources_index",
    "taxonomies_index",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

# [nav:anchor DEFAULT_LANGUAGE]
DEFAULT_LANGUAGE = "en"

# Tenant display name -> short code used in index names.
# [nav:anchor TENANT_SHORT_CODES]
TENANT_SHORT_CODES: Mapping[str, str] = {
    "Illinois 211": "il211",
}

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")
_LANGUAGE_TAG = re.compile(r"^[A-Za-z]{1,8}(?:-[A-Za-z0-9]{1,8})*$|^\*$")


# [nav:anchor resolve_tenant_short]
def resolve_tenant_short(name: str, *, strict: bool = False) -> str:
    """Return the index short code for tenant ``name``.

    Parameters
    ----------
    name : str
        Tenant display name or short code from the ``x-tenant-id`` header.
    strict : bool, optional
        Reject names without a configured mapping instead of slugging them.

    Returns
    -------
    str
        Mapped short code, or ``name`` lowercased with runs of other characters
        collapsed to ``-``.

    Raises
    ------
    InvalidSearchRequestError
        If ``name`` is blank, or unmapped while ``strict`` is set.
    """
    stripped = name.strip() if name else ""
    mapped = TENANT_SHORT_CODES.get(stripped)
    if mapped is not None:
        return mapped
    slug = _SLUG_INVALID.sub("-", stripped.lower()).strip("-")
    if not slug:
        msg = "x-tenant-id header is required"
        raise InvalidSearchRequestError(msg, code=ErrorCode.MISSING_TENANT)
    if strict:
        known = ", ".join(sorted(TENANT_SHORT_CODES))
        msg = f'No tenant mapping for "{stripped}". Available tenants: {known}'
        raise InvalidSearchRequestError(msg, code=ErrorCode.MISSING_TENANT)
    return slug


# [nav:anchor parse_accept_language]
def parse_accept_language(header: str | None, default: str = DEFAULT_LANGUAGE) -> str:
    """Return the lowercase base tag with the highest quality in ``header``.

    Ties keep header order; ``*``, malformed entries and ``q=0`` are ignored.
    """
    best: tuple[float, str] | None = None
    for entry in (header or "").split(","):
        tag, _, params = entry.strip().partition(";")
        tag = tag.strip()
        if not tag or tag == "*" or not _LANGUAGE_TAG.match(tag):
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, value = param.strip().partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if quality <= 0:
            continue
        if best is None or quality > best[0]:
            best = (quality, tag.split("-", 1)[0].lower())
    return best[1] if best else default


# [nav:anchor resources_index]
def resources_index(tenant: str, lang: str) -> str:
    """Return the resources index for ``tenant`` in ``lang``."""
    return f"{tenant}-resources_{lang}"


# [nav:anchor taxonomies_index]
def taxonomies_index(tenant: str, lang: str) -> str:
    """Return the taxonomy index for ``tenant`` in ``lang``."""
    return f"{tenant}-taxonomies_v2_{lang}"
