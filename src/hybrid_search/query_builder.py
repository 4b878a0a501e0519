"""Multi-strategy OpenSearch clause construction.

One user request becomes up to seven independent retrieval clauses (three nested
KNN, three keyword variants and one intent clause), or a single filtered match-all
for taxonomy browsing. Clause bodies carry no strategy weight: the backend reports
raw per-clause scores and :mod:`hybrid_search.combiner` applies the weights, so every
combined score decomposes exactly into its contributions.

Proximity scoring is a ``gauss`` function with ``decay = e^-0.5``, for which the
backend's decay curve is exactly ``exp(-((d - offset)^2) / (2 * scale^2))``.

Examples
--------
>>> from hybrid_search.query_builder import gaussian_decay
>>> gaussian_decay(5.0, scale=50.0, offset=10.0)
1.0
>>> round(gaussian_decay(60.0, scale=50.0, offset=10.0), 4)
0.6065
"""

# [nav:section public-api]

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from directory_common.types import JsonObject
    from hybrid_search.nlp import KeywordVariations
    from hybrid_search.types import GeoPoint, IntentClassification
    from hybrid_search.weights import GeospatialWeights, WeightConfig

__all__ = [
    "DEFAULT_CANDIDATES",
    "GAUSS_DECAY",
    "KEYWORD_FIELDS",
    "MAX_WINDOW",
    "SORT",
    "SearchPlan",
    "StrategyClause",
    "build_clauses",
    "build_filters",
    "gaussian_decay",
    "geo_decay_function",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor DEFAULT_CANDIDATES]
DEFAULT_CANDIDATES = 50

# Deepest hit a clause may page to; the backend default for index.max_result_window.
# [nav:anchor MAX_WINDOW]
MAX_WINDOW = 10_000

# [nav:anchor GAUSS_DECAY]
GAUSS_DECAY = math.exp(-0.5)

# [nav:anchor KEYWORD_FIELDS]
KEYWORD_FIELDS = (
    "name^3",
    "description^2",
    "summary",
    "service.name^3",
    "service.description^2",
    "organization.name^2",
    "taxonomies.name",
    "taxonomies.description",
)

# [nav:anchor SORT]
SORT: tuple[JsonObject, ...] = ({"_score": "desc"}, {"_id": "asc"})

_SOURCE_EXCLUDES = ["embedding", "*.embedding"]

# clause name -> nested path whose ``embedding`` field is searched
_SEMANTIC_PATHS = (
    ("semantic_service", "service"),
    ("semantic_taxonomy", "taxonomies"),
    ("semantic_organization", "organization"),
)


@dataclass(frozen=True, slots=True)
# [nav:anchor SearchPlan]
class SearchPlan:
    """Everything the builder needs from one search request.

    Attributes
    ----------
    query : str | None
        Free-text query; ``None`` for taxonomy or facet browsing.
    embedding : Sequence[float] | None
        Query vector; ``None`` when embedding was unavailable.
    classification : IntentClassification | None
        Classifier verdict, if any.
    keywords : KeywordVariations | None
        Noun and stemmed-noun variants of ``query``.
    point : GeoPoint | None
        User location.
    distance : float | None
        Hard search radius in miles.
    taxonomy_and : tuple[str, ...]
        Codes that must all be present.
    taxonomy_or : tuple[str, ...]
        Codes of which one must be present.
    facets : Mapping[str, tuple[str, ...]]
        Facet values, OR within a field and AND across fields.
    keyword_search_only : bool
        Skip the vector clauses.
    search_operator : {"and", "or"}
        Operator for the original-query keyword clause.
    location_point_only : bool
        Require documents to have ``location.point``.
    disable_intent : bool
        Skip the intent clause.
    candidates : int
        Hits requested per clause.
    search_after : tuple[float, str] | None
        Cursor forwarded to the backend. Only the single browse clause uses it, because
        its raw score order is the combined order.
    """

    query: str | None = None
    embedding: Sequence[float] | None = None
    classification: IntentClassification | None = None
    keywords: KeywordVariations | None = None
    point: GeoPoint | None = None
    distance: float | None = None
    taxonomy_and: tuple[str, ...] = ()
    taxonomy_or: tuple[str, ...] = ()
    facets: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    keyword_search_only: bool = False
    search_operator: Literal["and", "or"] = "and"
    location_point_only: bool = False
    disable_intent: bool = False
    candidates: int = DEFAULT_CANDIDATES
    search_after: tuple[float, str] | None = None

    @property
    def has_text(self) -> bool:
        """Return ``True`` when a non-blank query was given."""
        return bool(self.query and self.query.strip())


@dataclass(frozen=True, slots=True)
# [nav:anchor StrategyClause]
class StrategyClause:
    """A named retrieval clause and the weight the combiner applies to it."""

    name: str
    weight: float
    body: JsonObject


# [nav:anchor gaussian_decay]
def gaussian_decay(distance: float, scale: float, offset: float = 0.0) -> float:
    """Return the proximity multiplier for ``distance`` miles.

    ``1.0`` up to ``offset``; beyond it ``exp(-((d - offset)^2) / (2 * scale^2))``,
    which never increases with distance.

    Raises
    ------
    ValueError
        If ``scale`` is not positive.
    """
    if scale <= 0:
        msg = f"decay scale must be positive, got {scale}"
        raise ValueError(msg)
    if distance <= offset:
        return 1.0
    excess = distance - offset
    return math.exp(-(excess * excess) / (2.0 * scale * scale))


# [nav:anchor geo_decay_function]
def geo_decay_function(point: GeoPoint, geospatial: GeospatialWeights) -> JsonObject:
    """Return the ``function_score`` function for proximity decay around ``point``."""
    return {
        "gauss": {
            "location.point": {
                "origin": {"lat": point.lat, "lon": point.lon},
                "scale": f"{geospatial.decay_scale}mi",
                "offset": f"{geospatial.decay_offset}mi",
                "decay": GAUSS_DECAY,
            }
        },
        "weight": geospatial.weight,
    }


def _nested_terms(codes: Sequence[str]) -> JsonObject:
    return {
        "nested": {
            "path": "taxonomies",
            "query": {"terms": {"taxonomies.code": list(codes)}},
            "score_mode": "max",
        }
    }


# [nav:anchor build_filters]
def build_filters(plan: SearchPlan) -> list[JsonObject]:
    """Return the hard filters shared by every clause of ``plan``."""
    filters: list[JsonObject] = []
    if plan.point is not None and plan.distance is not None:
        filters.append(
            {
                "geo_distance": {
                    "distance": f"{plan.distance}mi",
                    "location.point": {"lat": plan.point.lat, "lon": plan.point.lon},
                }
            }
        )
    if plan.point is not None:
        filters.append(
            {
                "bool": {
                    "should": [
                        {
                            "geo_shape": {
                                "serviceArea.extent": {
                                    "shape": {
                                        "type": "point",
                                        "coordinates": [plan.point.lon, plan.point.lat],
                                    },
                                    "relation": "contains",
                                }
                            }
                        },
                        {"bool": {"must_not": {"exists": {"field": "serviceArea.extent"}}}},
                    ],
                    "minimum_should_match": 1,
                }
            }
        )
    if plan.location_point_only:
        filters.append({"exists": {"field": "location.point"}})
    filters.extend(
        {
            "nested": {
                "path": "taxonomies",
                "query": {"term": {"taxonomies.code": code}},
            }
        }
        for code in plan.taxonomy_and
    )
    if plan.taxonomy_or:
        filters.append(
            {
                "nested": {
                    "path": "taxonomies",
                    "query": {"terms": {"taxonomies.code": list(plan.taxonomy_or)}},
                }
            }
        )
    for facet, values in sorted(plan.facets.items()):
        if values:
            filters.append({"terms": {f"facets.{facet}": list(values)}})
    return filters


def _multi_match(text: str, operator: str) -> JsonObject:
    return {
        "multi_match": {
            "query": text,
            "fields": list(KEYWORD_FIELDS),
            "type": "best_fields",
            "operator": operator,
        }
    }


def _body(
    core: JsonObject,
    filters: list[JsonObject],
    decay: JsonObject | None,
    candidates: int,
    search_after: Sequence[object] | None = None,
) -> JsonObject:
    query: JsonObject = {"bool": {"must": [core], "filter": filters}} if filters else core
    if decay is not None:
        query = {
            "function_score": {
                "query": query,
                "functions": [decay],
                "score_mode": "multiply",
                "boost_mode": "multiply",
            }
        }
    body: JsonObject = {
        "size": candidates,
        "track_total_hits": True,
        "sort": [dict(item) for item in SORT],
        "_source": {"excludes": list(_SOURCE_EXCLUDES)},
        "query": query,
    }
    if search_after is not None:
        body["search_after"] = list(search_after)
    return body


# [nav:anchor build_clauses]
def build_clauses(plan: SearchPlan, weights: WeightConfig) -> list[StrategyClause]:
    """Build the retrieval clauses for ``plan`` under resolved ``weights``.

    Parameters
    ----------
    plan : SearchPlan
        Request inputs.
    weights : WeightConfig
        Weights resolved for this request.

    Returns
    -------
    list[StrategyClause]
        Clauses in a fixed order: semantic, keyword, intent; or a single
        ``match_all_filtered`` clause when there is no query text.
    """
    filters = build_filters(plan)
    decay = geo_decay_function(plan.point, weights.geospatial) if plan.point else None
    clauses: list[StrategyClause] = []

    def add(name: str, weight: float, core: JsonObject) -> None:
        clauses.append(StrategyClause(name, weight, _body(core, filters, decay, plan.candidates)))

    if not plan.has_text:
        body = _body({"match_all": {}}, filters, decay, plan.candidates, plan.search_after)
        clauses.append(StrategyClause("match_all_filtered", 1.0, body))
        return clauses

    if plan.embedding and not plan.keyword_search_only:
        semantic_weights = {
            "semantic_service": weights.semantic.service,
            "semantic_taxonomy": weights.semantic.taxonomy,
            "semantic_organization": weights.semantic.organization,
        }
        vector = list(plan.embedding)
        for name, path in _SEMANTIC_PATHS:
            add(
                name,
                semantic_weights[name] * weights.strategies.semantic_search,
                {
                    "nested": {
                        "path": path,
                        "query": {
                            "knn": {f"{path}.embedding": {"vector": vector, "k": plan.candidates}}
                        },
                        "score_mode": "max",
                    }
                },
            )

    keyword = weights.strategies.keyword_search
    add("keyword_original", keyword, _multi_match(str(plan.query), plan.search_operator))
    if plan.keywords is not None and plan.keywords.nouns:
        add(
            "keyword_nouns",
            keyword * weights.keyword_variations.nouns_multiplier,
            _multi_match(" ".join(plan.keywords.nouns), "or"),
        )
    if plan.keywords is not None and plan.keywords.stemmed_nouns:
        add(
            "keyword_nouns_stemmed",
            keyword * weights.keyword_variations.stemmed_nouns_multiplier,
            _multi_match(" ".join(plan.keywords.stemmed_nouns), "or"),
        )

    classification = plan.classification
    if (
        not plan.disable_intent
        and classification is not None
        and classification.combined_taxonomy_codes
        and not classification.is_low_information_query
    ):
        add(
            "intent_taxonomy",
            weights.strategies.intent_driven,
            _nested_terms(classification.combined_taxonomy_codes),
        )

    logger.debug(
        "Built %d clauses",
        len(clauses),
        extra={"operation": "build_clauses", "clauses": [clause.name for clause in clauses]},
    )
    return clauses
