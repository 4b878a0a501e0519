"""Tests for multi-strategy clause construction."""

from __future__ import annotations

import math

import pytest

from hybrid_search.nlp import KeywordVariations
from hybrid_search.query_builder import (
    GAUSS_DECAY,
    SearchPlan,
    build_clauses,
    build_filters,
    gaussian_decay,
    geo_decay_function,
)
from hybrid_search.types import GeoPoint, IntentClassification
from hybrid_search.weights import DEFAULT_WEIGHTS, WeightConfig

CHICAGO = GeoPoint(41.88, -87.63)
KEYWORDS = KeywordVariations(
    original="diapers and laundry",
    nouns=("diapers", "laundry"),
    stemmed_nouns=("diaper", "laundr"),
)
CLASSIFIED = IntentClassification(
    primary_intent="Baby Supplies",
    combined_taxonomy_codes=("BM-6500.1500", "BM-6500.6500"),
    confidence="high",
)


def _names(plan: SearchPlan, weights: WeightConfig = DEFAULT_WEIGHTS) -> list[str]:
    return [clause.name for clause in build_clauses(plan, weights)]


class TestGaussianDecay:
    """Tests for the proximity curve."""

    def test_flat_inside_offset(self) -> None:
        """Distances within the offset score 1.0."""
        assert gaussian_decay(0.0, scale=50.0) == 1.0
        assert gaussian_decay(9.9, scale=50.0, offset=10.0) == 1.0

    def test_one_scale_beyond_offset(self) -> None:
        """One scale past the offset yields e^-0.5."""
        assert gaussian_decay(60.0, scale=50.0, offset=10.0) == pytest.approx(GAUSS_DECAY)

    def test_monotonic(self) -> None:
        """The curve never rises with distance."""
        values = [gaussian_decay(d, scale=25.0, offset=2.0) for d in range(0, 200, 5)]
        assert values == sorted(values, reverse=True)

    def test_invalid_scale(self) -> None:
        """A non-positive scale is rejected."""
        with pytest.raises(ValueError, match="positive"):
            gaussian_decay(1.0, scale=0.0)

    def test_function_score_shape(self) -> None:
        """The backend function carries miles and the configured weight."""
        function = geo_decay_function(CHICAGO, DEFAULT_WEIGHTS.geospatial)
        gauss = function["gauss"]["location.point"]  # type: ignore[index]
        assert gauss["scale"] == "50.0mi"  # type: ignore[index]
        assert gauss["decay"] == pytest.approx(math.exp(-0.5))  # type: ignore[index]
        assert function["weight"] == 2.0


class TestBuildFilters:
    """Tests for build_filters."""

    def test_no_filters(self) -> None:
        """A bare text plan has no filters."""
        assert build_filters(SearchPlan(query="food")) == []

    def test_distance_and_service_area(self) -> None:
        """A point with a radius adds the radius and service-area filters."""
        filters = build_filters(SearchPlan(query="food", point=CHICAGO, distance=10))
        assert filters[0]["geo_distance"]["distance"] == "10mi"  # type: ignore[index]
        area = filters[1]["bool"]["should"][0]["geo_shape"]["serviceArea.extent"]  # type: ignore[index]
        assert area["shape"]["coordinates"] == [-87.63, 41.88]  # type: ignore[index]

    def test_taxonomy_and_facets(self) -> None:
        """AND codes filter one by one, OR codes together, facets by field."""
        plan = SearchPlan(
            taxonomy_and=("BD-1800", "BD-5000"),
            taxonomy_or=("LH",),
            facets={"languages": ("es", "en"), "empty": ()},
            location_point_only=True,
        )
        filters = build_filters(plan)
        assert {"exists": {"field": "location.point"}} in filters
        term_codes = [
            f["nested"]["query"]["term"]["taxonomies.code"]  # type: ignore[index]
            for f in filters
            if "nested" in f and "term" in f["nested"]["query"]  # type: ignore[operator]
        ]
        assert term_codes == ["BD-1800", "BD-5000"]
        assert {"terms": {"facets.languages": ["es", "en"]}} in filters
        assert not any("facets.empty" in str(f) for f in filters)


class TestBuildClauses:
    """Tests for build_clauses."""

    def test_all_strategies(self) -> None:
        """A classified query with an embedding yields all seven clauses."""
        plan = SearchPlan(
            query="diapers and laundry",
            embedding=[0.1, 0.2],
            classification=CLASSIFIED,
            keywords=KEYWORDS,
        )
        assert _names(plan) == [
            "semantic_service",
            "semantic_taxonomy",
            "semantic_organization",
            "keyword_original",
            "keyword_nouns",
            "keyword_nouns_stemmed",
            "intent_taxonomy",
        ]

    def test_weights_applied(self, weight_document: dict[str, object]) -> None:
        """Clause weights combine field, strategy and variation weights."""
        weights = WeightConfig.from_mapping(weight_document)
        plan = SearchPlan(
            query="diapers", embedding=[0.1], classification=CLASSIFIED, keywords=KEYWORDS
        )
        by_name = {clause.name: clause.weight for clause in build_clauses(plan, weights)}
        assert by_name["semantic_service"] == pytest.approx(1.5 * 2.0)
        assert by_name["semantic_organization"] == pytest.approx(0.5 * 2.0)
        assert by_name["keyword_original"] == pytest.approx(1.0)
        assert by_name["keyword_nouns"] == pytest.approx(0.8)
        assert by_name["keyword_nouns_stemmed"] == pytest.approx(0.6)
        assert by_name["intent_taxonomy"] == pytest.approx(1.2)

    def test_no_embedding_skips_semantic(self) -> None:
        """Without a vector only keyword clauses are built."""
        assert _names(SearchPlan(query="food")) == ["keyword_original"]

    def test_keyword_only(self) -> None:
        """keyword_search_only drops semantic clauses even with a vector."""
        plan = SearchPlan(query="food", embedding=[0.3], keyword_search_only=True)
        assert _names(plan) == ["keyword_original"]

    def test_low_information_skips_intent(self) -> None:
        """Vague queries do not get an intent clause."""
        vague = IntentClassification(
            primary_intent="General",
            combined_taxonomy_codes=("X",),
            is_low_information_query=True,
        )
        assert "intent_taxonomy" not in _names(SearchPlan(query="help", classification=vague))

    def test_disable_intent(self) -> None:
        """Disabled intent skips the clause."""
        plan = SearchPlan(query="diapers", classification=CLASSIFIED, disable_intent=True)
        assert "intent_taxonomy" not in _names(plan)

    def test_browse_without_text(self) -> None:
        """Taxonomy browsing uses one filtered match-all clause."""
        (clause,) = build_clauses(SearchPlan(taxonomy_or=("BD",)), DEFAULT_WEIGHTS)
        assert clause.name == "match_all_filtered"
        assert clause.body["query"]["bool"]["must"] == [{"match_all": {}}]  # type: ignore[index]

    def test_browse_forwards_cursor(self) -> None:
        """The browse clause carries the cursor; text clauses never do."""
        cursor = (1.0, "doc-009")
        (browse,) = build_clauses(
            SearchPlan(taxonomy_or=("BD",), candidates=11, search_after=cursor), DEFAULT_WEIGHTS
        )
        assert browse.body["search_after"] == [1.0, "doc-009"]
        assert browse.body["size"] == 11
        (keyword,) = build_clauses(SearchPlan(query="food", search_after=cursor), DEFAULT_WEIGHTS)
        assert "search_after" not in keyword.body

    def test_body_shape(self) -> None:
        """Every body sorts by score then id and excludes embeddings."""
        (clause,) = build_clauses(SearchPlan(query="food", candidates=25), DEFAULT_WEIGHTS)
        assert clause.body["size"] == 25
        assert clause.body["sort"] == [{"_score": "desc"}, {"_id": "asc"}]
        assert clause.body["_source"] == {"excludes": ["embedding", "*.embedding"]}
        multi_match = clause.body["query"]["multi_match"]  # type: ignore[index]
        assert multi_match["operator"] == "and"  # type: ignore[index]

    def test_point_wraps_in_function_score(self) -> None:
        """A point wraps every clause in a multiplicative proximity decay."""
        (clause,) = build_clauses(SearchPlan(query="food", point=CHICAGO), DEFAULT_WEIGHTS)
        function_score = clause.body["query"]["function_score"]  # type: ignore[index]
        assert function_score["boost_mode"] == "multiply"  # type: ignore[index]
        assert "gauss" in function_score["functions"][0]  # type: ignore[index]
