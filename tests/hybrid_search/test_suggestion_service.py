"""Tests for taxonomy autocomplete."""

from __future__ import annotations

import pytest

from directory_common.errors import InvalidSearchRequestError
from hybrid_search.enhancement import CODE_FIELDS, NAME_FIELDS, QueryEnhancer
from hybrid_search.nlp import NlpPreprocessor
from hybrid_search.suggestion import (
    SuggestionRequest,
    SuggestionService,
    build_suggestion_query,
    merge_keep_higher,
)
from hybrid_search.types import IntentClassification
from search_fakes import FakeBackend, FakeClassifier, search_response

LAUNDROMATS = IntentClassification(
    primary_intent="Laundromats", combined_taxonomy_codes=("BM-3000",), confidence="high"
)


def _service(
    backend: FakeBackend, nlp: NlpPreprocessor, classifier: FakeClassifier | None = None
) -> SuggestionService:
    return SuggestionService(backend, QueryEnhancer(nlp, classifier or FakeClassifier()))


def _fields(backend: FakeBackend) -> list[str]:
    body = backend.search_calls[-1][1]
    return body["query"]["bool"]["must"]["multi_match"]["fields"]  # type: ignore[index,return-value]


class TestSuggestionQuery:
    """Tests for build_suggestion_query and merge_keep_higher."""

    def test_prefix_query(self) -> None:
        """Bodies use bool_prefix matching and page offsets."""
        body = build_suggestion_query("food", NAME_FIELDS, page=3)
        assert body["from"] == 20
        assert body["size"] == 10
        multi_match = body["query"]["bool"]["must"]["multi_match"]  # type: ignore[index]
        assert multi_match["type"] == "bool_prefix"  # type: ignore[index]

    def test_merge_keeps_higher(self) -> None:
        """Duplicates keep their best score and the result is re-sorted."""
        merged = merge_keep_higher(
            [
                search_response([("t1", 2.0), ("t2", 1.0)], took=2),
                search_response([("t2", 3.0), ("t3", 0.5)], took=4),
            ]
        )
        hits = merged["hits"]["hits"]  # type: ignore[index]
        assert [(hit["_id"], hit["_score"]) for hit in hits] == [  # type: ignore[union-attr]
            ("t2", 3.0),
            ("t1", 2.0),
            ("t3", 0.5),
        ]
        assert merged["took"] == 6
        assert merged["hits"]["max_score"] == 3.0  # type: ignore[index]


class TestSuggestionService:
    """Tests for SuggestionService.suggest across versions."""

    async def test_v1_searches_original(self, nlp: NlpPreprocessor) -> None:
        """Version 1 searches the text as typed against name fields."""
        backend = FakeBackend(search_responses={"food pantry": search_response([("t1", 1.0)])})
        response = await _service(backend, nlp).suggest(
            SuggestionRequest(query="food pantry"), tenant="il211", lang="en", version=1
        )
        assert backend.searched_texts() == ["food pantry"]
        assert backend.search_calls[0][0] == "il211-taxonomies_v2_en"
        assert _fields(backend) == list(NAME_FIELDS)
        assert response["hits"]["hits"][0]["_id"] == "t1"  # type: ignore[index]

    async def test_v2_searches_stemmed(self, nlp: NlpPreprocessor) -> None:
        """Version 2 searches the enhanced query."""
        backend = FakeBackend()
        await _service(backend, nlp).suggest(
            SuggestionRequest(query="food pantry"), tenant="il211", lang="es", version=2
        )
        assert backend.searched_texts() == ["food pantr"]
        assert backend.search_calls[0][0] == "il211-taxonomies_v2_es"

    async def test_v2_generic_query_falls_back_to_original(self, nlp: NlpPreprocessor) -> None:
        """When filtering removes the user query the original text is searched."""
        backend = FakeBackend()
        await _service(backend, nlp).suggest(
            SuggestionRequest(query="help services"), tenant="il211", lang="en", version=2
        )
        assert backend.searched_texts() == ["help services"]

    async def test_v3_merges_intent_queries(self, nlp: NlpPreprocessor) -> None:
        """Version 3 searches user and intent queries and merges them."""
        backend = FakeBackend(
            search_responses={
                "laundr": search_response([("t1", 2.0), ("t2", 1.0)]),
                "laundromat": search_response([("t2", 3.0), ("t3", 0.5)]),
            }
        )
        classifier = FakeClassifier(LAUNDROMATS)
        response = await _service(backend, nlp, classifier).suggest(
            SuggestionRequest(query="need help with laundry"), tenant="il211", lang="en", version=3
        )
        assert sorted(backend.searched_texts()) == ["laundr", "laundromat"]
        hits = response["hits"]["hits"]  # type: ignore[index]
        assert [hit["_id"] for hit in hits] == ["t2", "t1", "t3"]  # type: ignore[union-attr]
        assert response["search_queries_used"] == {
            "user_query_stemmed": "laundr",
            "intent_queries_stemmed": ["laundromat"],
        }
        assert response["intent_classification"]["primary_intent"] == "Laundromats"  # type: ignore[index]

    async def test_v3_without_intent_behaves_like_v2(self, nlp: NlpPreprocessor) -> None:
        """Without intent queries version 3 runs a single search."""
        backend = FakeBackend()
        response = await _service(backend, nlp).suggest(
            SuggestionRequest(query="food pantry"), tenant="il211", lang="en", version=3
        )
        assert backend.searched_texts() == ["food pantr"]
        assert "search_queries_used" not in response

    async def test_code_query(self, nlp: NlpPreprocessor) -> None:
        """Code-shaped queries search the code fields unchanged."""
        backend = FakeBackend()
        await _service(backend, nlp).suggest(
            SuggestionRequest(query="BD-1800"), tenant="il211", lang="en", version=2
        )
        assert backend.searched_texts() == ["BD-1800"]
        assert _fields(backend) == list(CODE_FIELDS)

    async def test_code_parameter_only(self, nlp: NlpPreprocessor) -> None:
        """A bare code parameter is searched against the code fields."""
        backend = FakeBackend()
        classifier = FakeClassifier(LAUNDROMATS)
        await _service(backend, nlp, classifier).suggest(
            SuggestionRequest(code="BD", page=2), tenant="il211", lang="en", version=3
        )
        assert backend.searched_texts() == ["BD"]
        assert _fields(backend) == list(CODE_FIELDS)
        assert backend.search_calls[0][1]["from"] == 10
        assert classifier.calls == []

    async def test_missing_query(self, nlp: NlpPreprocessor) -> None:
        """Neither query nor code is a client error."""
        with pytest.raises(InvalidSearchRequestError, match="Query or code is required"):
            await _service(FakeBackend(), nlp).suggest(
                SuggestionRequest(query="  "), tenant="il211", lang="en"
            )

    async def test_invalid_page(self, nlp: NlpPreprocessor) -> None:
        """Pages start at 1."""
        with pytest.raises(InvalidSearchRequestError):
            await _service(FakeBackend(), nlp).suggest(
                SuggestionRequest(query="food", page=0), tenant="il211", lang="en"
            )
