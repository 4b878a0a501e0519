"""Response-side shaping of matched documents.

These helpers never mutate their input: each returns a new document so the combined
hits (and anything cached from them) stay untouched.

Examples
--------
>>> from hybrid_search.postprocess import haversine_miles, strip_embeddings
>>> strip_embeddings({"name": "Pantry", "service": {"embedding": [0.1], "name": "Food"}})
{'name': 'Pantry', 'service': {'name': 'Food'}}
>>> round(haversine_miles(41.88, -87.63, 41.88, -87.63), 2)
0.0
"""

# [nav:section public-api]

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from hybrid_search.nlp import NlpPreprocessor
    from hybrid_search.types import GeoPoint

__all__ = [
    "EARTH_RADIUS_MILES",
    "SNIPPET_FIELDS",
    "add_distance",
    "haversine_miles",
    "relevant_snippets",
    "strip_embeddings",
    "strip_service_area",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor EARTH_RADIUS_MILES]
EARTH_RADIUS_MILES = 3959.0

# Document fields searched for snippets, with the weight of one noun match.
# [nav:anchor SNIPPET_FIELDS]
SNIPPET_FIELDS: tuple[tuple[str, int], ...] = (
    ("description", 3),
    ("service.description", 3),
    ("summary", 2),
    ("service.summary", 2),
    ("schedule", 1),
)

_SENTENCE_BOUNDARY = re.compile(r"[.!?]\s+")
_MIN_SENTENCE_CHARS = 20
_MAX_SNIPPETS = 3


# [nav:anchor strip_embeddings]
def strip_embeddings(value: object) -> object:
    """Return a copy of ``value`` with every ``embedding`` key removed at any depth."""
    if isinstance(value, Mapping):
        return {
            key: strip_embeddings(item) for key, item in value.items() if key != "embedding"
        }
    if isinstance(value, list):
        return [strip_embeddings(item) for item in value]
    return value


# [nav:anchor strip_service_area]
def strip_service_area(document: Mapping[str, object]) -> dict[str, object]:
    """Return ``document`` without its ``serviceArea`` polygons."""
    return {key: value for key, value in document.items() if key != "serviceArea"}


# [nav:anchor haversine_miles]
def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in miles between two WGS84 points."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _location_point(document: Mapping[str, object]) -> tuple[float, float] | None:
    location = document.get("location")
    point = location.get("point") if isinstance(location, Mapping) else None
    if isinstance(point, Mapping):
        lat, lon = point.get("lat"), point.get("lon")
    elif isinstance(point, list) and len(point) == 2:
        # GeoJSON order
        lon, lat = point
    else:
        return None
    if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
        return float(lat), float(lon)
    return None


# [nav:anchor add_distance]
def add_distance(document: Mapping[str, object], origin: GeoPoint) -> dict[str, object]:
    """Return ``document`` with ``distance_from_user`` in miles, rounded to 2 places.

    Documents without ``location.point`` are returned unchanged.
    """
    enriched = dict(document)
    point = _location_point(document)
    if point is not None:
        enriched["distance_from_user"] = round(
            haversine_miles(origin.lat, origin.lon, point[0], point[1]), 2
        )
    return enriched


def _lookup(document: Mapping[str, object], path: str) -> object:
    value: object = document
    for key in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


# [nav:anchor relevant_snippets]
def relevant_snippets(
    document: Mapping[str, object],
    nouns: Sequence[str],
    nlp: NlpPreprocessor,
) -> list[str]:
    """Return up to three sentences of ``document`` that mention the query nouns.

    Parameters
    ----------
    document : Mapping[str, object]
        Matched document.
    nouns : Sequence[str]
        Nouns extracted from the user query.
    nlp : NlpPreprocessor
        Supplies the stemmer; a sentence containing a noun's stem also matches.

    Returns
    -------
    list[str]
        Distinct sentences ordered by ``matches * field weight``, highest first.
    """
    if not nouns:
        return []
    needles = [(noun.lower(), nlp.stem_word(noun.lower())) for noun in nouns]
    scored: list[tuple[int, str]] = []
    for path, weight in SNIPPET_FIELDS:
        text = _lookup(document, path)
        if not isinstance(text, str):
            continue
        for raw_sentence in _SENTENCE_BOUNDARY.split(text):
            sentence = raw_sentence.strip()
            if len(sentence) <= _MIN_SENTENCE_CHARS:
                continue
            lowered = sentence.lower()
            matches = sum(1 for noun, stem in needles if noun in lowered or stem in lowered)
            if matches:
                scored.append((matches * weight, sentence))

    # stable sort keeps field priority among equal scores
    scored.sort(key=lambda item: item[0], reverse=True)
    snippets: list[str] = []
    for _, sentence in scored:
        if sentence not in snippets:
            snippets.append(sentence)
        if len(snippets) == _MAX_SNIPPETS:
            break
    return snippets
