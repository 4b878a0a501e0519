"""Tests for the _msearch executor and the OpenSearch REST backend."""

from __future__ import annotations

import json

import httpx
import pytest

from directory_common.errors import ErrorCode, RetrievalBackendError
from directory_common.http.retry import RetryPolicy
from hybrid_search.executor import (
    NDJSON_CONTENT_TYPE,
    OpenSearchBackend,
    SearchExecutor,
    encode_msearch,
    parse_hits,
)
from hybrid_search.query_builder import StrategyClause
from search_fakes import FakeBackend, search_response

INDEX = "il211-resources_en"
CLAUSES = [
    StrategyClause("keyword_original", 1.0, {"query": {"match": {"name": "food"}}}),
    StrategyClause("semantic_service", 1.0, {"query": {"match_all": {}}}),
]


def _backend(handler: httpx.MockTransport, retry: RetryPolicy) -> OpenSearchBackend:
    return OpenSearchBackend(
        httpx.AsyncClient(transport=handler), "http://search:9200/", retry=retry
    )


class TestEncoding:
    """Tests for NDJSON encoding and hit parsing."""

    def test_header_per_body(self) -> None:
        """Each body is preceded by an index header and the payload ends with a newline."""
        payload = encode_msearch(INDEX, [{"size": 1}, {"size": 2}])
        lines = payload.split("\n")
        assert lines[0] == '{"index":"il211-resources_en"}'
        assert json.loads(lines[3]) == {"size": 2}
        assert payload.endswith("\n")

    def test_parse_hits(self) -> None:
        """Hits and totals are read from a response item."""
        hits, total = parse_hits(search_response([("a", 2.0), ("b", 1.0)], total=40))
        assert [hit.doc_id for hit in hits] == ["a", "b"]
        assert total == 40

    def test_score_falls_back_to_sort(self) -> None:
        """Hits without _score use their first sort value."""
        item = {"hits": {"total": {"value": 1}, "hits": [{"_id": "a", "sort": [3.5, "a"]}]}}
        (hit,), _ = parse_hits(item)
        assert hit.score == 3.5

    def test_missing_hits_section(self) -> None:
        """Items without hits parse as empty."""
        assert parse_hits({}) == ((), 0)


class TestSearchExecutor:
    """Tests for SearchExecutor against an in-process backend."""

    async def test_pairs_items_with_clauses(self) -> None:
        """Item responses map to clauses by position."""
        backend = FakeBackend(
            [search_response([("a", 2.0)], took=3), search_response([("b", 0.5)], took=7)]
        )
        batch = await SearchExecutor(backend).execute(INDEX, CLAUSES)
        assert [result.strategy for result in batch.results] == [
            "keyword_original",
            "semantic_service",
        ]
        assert batch.results[1].hits[0].doc_id == "b"
        assert batch.subqueries == {"keyword_original": 3, "semantic_service": 7}
        assert batch.took_ms == 5
        assert backend.msearch_calls[0][0] == INDEX

    async def test_no_clauses(self) -> None:
        """An empty clause list skips the backend."""
        backend = FakeBackend()
        batch = await SearchExecutor(backend).execute(INDEX, [])
        assert batch.results == ()
        assert backend.msearch_calls == []

    async def test_item_error_fails_batch(self) -> None:
        """Any failed item fails the whole request."""
        backend = FakeBackend(
            [search_response([("a", 1.0)]), {"error": {"type": "query_shard_exception"}}]
        )
        with pytest.raises(RetrievalBackendError) as excinfo:
            await SearchExecutor(backend).execute(INDEX, CLAUSES)
        assert excinfo.value.code is ErrorCode.RETRIEVAL_QUERY_FAILED
        assert excinfo.value.context["strategy"] == "semantic_service"

    async def test_item_count_mismatch(self) -> None:
        """A response list of the wrong length is rejected."""

        class ShortBackend(FakeBackend):
            async def msearch(self, index, bodies):  # type: ignore[no-untyped-def]
                return {"took": 1, "responses": [search_response([])]}

        with pytest.raises(RetrievalBackendError, match="malformed"):
            await SearchExecutor(ShortBackend()).execute(INDEX, CLAUSES)


class TestOpenSearchBackend:
    """Tests for the REST backend over a mock transport."""

    async def test_msearch_request(self, fast_retry: RetryPolicy) -> None:
        """_msearch posts NDJSON to the index endpoint."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"took": 2, "responses": [search_response([])]})

        backend = _backend(httpx.MockTransport(handler), fast_retry)
        payload = await backend.msearch(INDEX, [{"size": 1}])
        assert payload["took"] == 2
        (request,) = seen
        assert str(request.url) == f"http://search:9200/{INDEX}/_msearch"
        assert request.headers["content-type"] == NDJSON_CONTENT_TYPE
        assert request.content.decode("utf-8").count("\n") == 2

    async def test_transient_failure_retried(self, fast_retry: RetryPolicy) -> None:
        """A 503 is retried before succeeding."""
        statuses = iter([503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            return httpx.Response(status, json=search_response([("a", 1.0)]))

        backend = _backend(httpx.MockTransport(handler), fast_retry)
        payload = await backend.search(INDEX, {"query": {"match_all": {}}})
        assert payload["hits"]["total"]["value"] == 1  # type: ignore[index]

    async def test_unavailable(self, fast_retry: RetryPolicy) -> None:
        """Exhausted retries surface as retrieval-unavailable."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        backend = _backend(httpx.MockTransport(handler), fast_retry)
        with pytest.raises(RetrievalBackendError) as excinfo:
            await backend.msearch(INDEX, [{"size": 1}])
        assert excinfo.value.code is ErrorCode.RETRIEVAL_UNAVAILABLE
        assert excinfo.value.http_status == 502

    async def test_bad_request(self, fast_retry: RetryPolicy) -> None:
        """A 400 from the cluster is a failed query, not an outage."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "parsing_exception"})

        backend = _backend(httpx.MockTransport(handler), fast_retry)
        with pytest.raises(RetrievalBackendError) as excinfo:
            await backend.search(INDEX, {"query": {}})
        assert excinfo.value.code is ErrorCode.RETRIEVAL_QUERY_FAILED

    async def test_ping(self, fast_retry: RetryPolicy) -> None:
        """ping reports reachability without raising."""

        def down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        up = _backend(httpx.MockTransport(lambda request: httpx.Response(200)), fast_retry)
        assert await up.ping()
        assert not await _backend(httpx.MockTransport(down), fast_retry).ping()
