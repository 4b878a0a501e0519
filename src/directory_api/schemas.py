"""Request models for the directory search API.

The ``/search`` body is validated here; cursor decoding, tenant resolution and
weight bounds are checked later so they report their own error codes.
"""

# [nav:section public-api]

from __future__ import annotations

from typing import ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from directory_common.navmap import load_nav_metadata
from hybrid_search.cursor import Cursor
from hybrid_search.orchestrator import SearchRequest
from hybrid_search.types import GeoPoint

__all__ = [
    "SearchRequestBody",
    "TaxonomyFilter",
    "TaxonomyQuery",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))


# [nav:anchor TaxonomyQuery]
class TaxonomyQuery(BaseModel):
    """Taxonomy codes combined with ``AND`` and ``OR`` semantics."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    and_codes: list[str] = Field(default_factory=list, alias="AND")
    """Codes that must all match."""

    or_codes: list[str] = Field(default_factory=list, alias="OR")
    """Codes of which at least one must match."""

    @property
    def is_empty(self) -> bool:
        return not self.and_codes and not self.or_codes


# [nav:anchor TaxonomyFilter]
class TaxonomyFilter(BaseModel):
    """Wrapper matching the ``taxonomies: {query: {...}}`` request shape."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    query: TaxonomyQuery = Field(default_factory=TaxonomyQuery)


# [nav:anchor SearchRequestBody]
class SearchRequestBody(BaseModel):
    """JSON body of ``POST /search``.

    Attributes
    ----------
    q : str | None
        Free-text query.
    lang : str | None
        Index language; the ``Accept-Language`` header is used when absent.
    limit : int
        Page size, 1 to 100.
    search_after : list[object] | None
        Cursor returned by the previous page.
    lat, lon : float | None
        Search origin; both or neither.
    distance : float | None
        Radius in miles around the origin.
    taxonomies : TaxonomyFilter | None
        Taxonomy codes.
    query : TaxonomyQuery | None
        Top-level form of ``taxonomies.query``.
    facets : dict[str, list[str]]
        Exact-match filters by field.
    custom_weights : dict[str, dict[str, object]] | None
        Per-request weight overrides, section by section.
    semantic_weight, keyword_weight, intent_weight, geospatial_weight : float | None
        Deprecated flat overrides; ``custom_weights`` wins when both are set.

    Examples
    --------
    >>> body = SearchRequestBody.model_validate({"q": "food pantry", "limit": 5})
    >>> body.to_request(tenant="il211", lang="en").limit
    5
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    q: str | None = None
    lang: str | None = Field(default=None, min_length=2, max_length=8)
    limit: int = Field(default=10, ge=1, le=100)
    search_after: list[object] | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    distance: float | None = Field(default=None, gt=0)
    taxonomies: TaxonomyFilter | None = None
    query: TaxonomyQuery | None = None
    facets: dict[str, list[str]] = Field(default_factory=dict)
    keyword_search_only: bool = False
    search_operator: Literal["and", "or"] = "and"
    disable_intent_classification: bool = False
    exclude_service_area: bool = False
    location_point_only: bool = False
    intent_override: str | None = None
    custom_weights: dict[str, dict[str, object]] | None = None
    semantic_weight: float | None = None
    keyword_weight: float | None = None
    intent_weight: float | None = None
    geospatial_weight: float | None = None

    @field_validator("search_operator", mode="before")
    @classmethod
    def _lower_operator(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @field_validator("lang", mode="before")
    @classmethod
    def _lower_lang(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_inputs(self) -> SearchRequestBody:
        if (self.lat is None) != (self.lon is None):
            msg = "lat and lon must be provided together"
            raise ValueError(msg)
        has_text = bool(self.q and self.q.strip())
        if not has_text and self.taxonomy_query.is_empty:
            msg = "Either q or a taxonomy query is required"
            raise ValueError(msg)
        return self

    @property
    def taxonomy_query(self) -> TaxonomyQuery:
        """Return the taxonomy codes from whichever form was sent."""
        if self.taxonomies is not None and not self.taxonomies.query.is_empty:
            return self.taxonomies.query
        return self.query or TaxonomyQuery()

    def legacy_weights(self) -> dict[str, float | None]:
        return {
            "semantic_weight": self.semantic_weight,
            "keyword_weight": self.keyword_weight,
            "intent_weight": self.intent_weight,
            "geospatial_weight": self.geospatial_weight,
        }

    def to_request(
        self, *, tenant: str, lang: str, request_id: str | None = None
    ) -> SearchRequest:
        """Return the engine request for ``tenant`` in ``lang``.

        Raises
        ------
        InvalidCursorError
            If ``search_after`` is not a ``[score, doc_id]`` pair.
        """
        codes = self.taxonomy_query
        point = (
            GeoPoint(lat=self.lat, lon=self.lon)
            if self.lat is not None and self.lon is not None
            else None
        )
        return SearchRequest(
            tenant=tenant,
            lang=lang,
            query=self.q,
            limit=self.limit,
            search_after=Cursor.parse(self.search_after) if self.search_after is not None else None,
            point=point,
            distance=self.distance,
            taxonomy_and=tuple(codes.and_codes),
            taxonomy_or=tuple(codes.or_codes),
            facets={name: tuple(values) for name, values in self.facets.items()},
            keyword_search_only=self.keyword_search_only,
            search_operator=self.search_operator,
            disable_intent_classification=self.disable_intent_classification,
            exclude_service_area=self.exclude_service_area,
            location_point_only=self.location_point_only,
            intent_override=self.intent_override,
            custom_weights=self.custom_weights,
            legacy_weights=self.legacy_weights(),
            request_id=request_id,
        )
