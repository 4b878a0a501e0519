"""Tests for response-side document shaping."""

from __future__ import annotations

import pytest

from hybrid_search.nlp import NlpPreprocessor
from hybrid_search.postprocess import (
    add_distance,
    haversine_miles,
    relevant_snippets,
    strip_embeddings,
    strip_service_area,
)
from hybrid_search.types import GeoPoint

DOCUMENT = {
    "name": "Westside Family Center",
    "summary": "Diapers and laundry help for young families",
    "description": (
        "We provide free diapers to families every week. Call ahead. "
        "Laundry vouchers are available to residents of the county."
    ),
    "serviceArea": {"extent": {"type": "polygon", "coordinates": []}},
    "location": {"point": {"lat": 1.0, "lon": 0.0}},
    "service": {"name": "Diaper bank", "embedding": [0.1, 0.2]},
    "taxonomies": [{"code": "BM-6500", "embedding": [0.3]}],
}


class TestStripping:
    """Tests for embedding and service area removal."""

    def test_embeddings_removed_at_any_depth(self) -> None:
        """Nested and listed embeddings are dropped."""
        stripped = strip_embeddings(DOCUMENT)
        assert stripped["service"] == {"name": "Diaper bank"}  # type: ignore[index]
        assert stripped["taxonomies"] == [{"code": "BM-6500"}]  # type: ignore[index]
        assert "embedding" in DOCUMENT["service"]  # type: ignore[operator]

    def test_service_area_removed(self) -> None:
        """serviceArea is dropped and the input is untouched."""
        assert "serviceArea" not in strip_service_area(DOCUMENT)
        assert "serviceArea" in DOCUMENT


class TestDistance:
    """Tests for great-circle distance."""

    def test_one_degree_latitude(self) -> None:
        """One degree of latitude is about 69.1 miles."""
        assert haversine_miles(0.0, 0.0, 1.0, 0.0) == pytest.approx(69.1, abs=0.01)

    def test_add_distance(self) -> None:
        """distance_from_user is added in miles, rounded to two places."""
        enriched = add_distance(DOCUMENT, GeoPoint(0.0, 0.0))
        assert enriched["distance_from_user"] == 69.1
        assert "distance_from_user" not in DOCUMENT

    def test_geojson_point(self) -> None:
        """[lon, lat] arrays are accepted."""
        document = {"location": {"point": [0.0, 1.0]}}
        assert add_distance(document, GeoPoint(0.0, 0.0))["distance_from_user"] == 69.1

    def test_no_location(self) -> None:
        """Documents without a point are returned as they are."""
        assert add_distance({"name": "x"}, GeoPoint(0.0, 0.0)) == {"name": "x"}


class TestSnippets:
    """Tests for relevant_snippets."""

    def test_ranked_sentences(self, nlp: NlpPreprocessor) -> None:
        """Sentences are ranked by matches times field weight."""
        snippets = relevant_snippets(DOCUMENT, ["diapers", "laundry"], nlp)
        assert snippets == [
            "Diapers and laundry help for young families",
            "We provide free diapers to families every week",
            "Laundry vouchers are available to residents of the county.",
        ]

    def test_short_sentences_skipped(self, nlp: NlpPreprocessor) -> None:
        """Sentences of twenty characters or fewer never match."""
        document = {"description": "Diapers here. Nothing else to see"}
        assert relevant_snippets(document, ["diapers"], nlp) == []

    def test_no_nouns(self, nlp: NlpPreprocessor) -> None:
        """Without nouns there are no snippets."""
        assert relevant_snippets(DOCUMENT, [], nlp) == []
