"""Tests for the embedding, classification and rerank adapters."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from directory_common.errors import ErrorCode, UpstreamAdapterError
from directory_common.http.retry import RetryPolicy
from directory_common.observability import MetricsProvider
from directory_common.settings import AdapterConfig
from hybrid_search.adapters import (
    Classifier,
    Embedder,
    Reranker,
    UpstreamAdapters,
    rerank_text,
)
from search_fakes import combined_hit, make_adapters

NO_RETRY = RetryPolicy(max_attempts=1, wait_initial_s=0.0, wait_max_s=0.0, jitter_s=0.0)


def _client(handler) -> httpx.AsyncClient:  # type: ignore[no-untyped-def]
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _fallbacks(metrics: MetricsProvider, adapter: str, reason: str) -> float | None:
    return metrics.registry.get_sample_value(
        "dirsearch_adapter_fallbacks_total", {"adapter": adapter, "reason": reason}
    )


class TestEmbedder:
    """Tests for Embedder."""

    async def test_openai_shape(self) -> None:
        """Vectors are read from data[0].embedding."""
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            assert request.url.path == "/v1/embeddings"
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 2, 0.3]}]})

        embedder = Embedder(_client(handler), "http://embed:11434/", model="bge", retry=NO_RETRY)
        assert await embedder.embed("food pantry") == [0.1, 2.0, 0.3]
        assert seen == [{"model": "bge", "input": "food pantry"}]

    async def test_flat_shape(self) -> None:
        """A top-level embedding member is accepted too."""
        embedder = Embedder(
            _client(lambda request: httpx.Response(200, json={"embedding": [1.0]})),
            "http://embed",
            retry=NO_RETRY,
        )
        assert await embedder.embed("x") == [1.0]

    async def test_disabled(self) -> None:
        """Without a URL no request is made."""
        adapters = make_adapters()
        assert not adapters.embedder.enabled
        assert await adapters.embedder.embed("food") is None

    async def test_failure_degrades(self, metrics: MetricsProvider) -> None:
        """Server errors degrade to None and are counted."""
        embedder = Embedder(
            _client(lambda request: httpx.Response(500)),
            "http://embed",
            retry=NO_RETRY,
            metrics=metrics,
        )
        assert await embedder.embed("food") is None
        assert _fallbacks(metrics, "embedder", "http_error") == 1.0

    async def test_strict_raises(self) -> None:
        """The strict variant raises on a malformed body."""
        embedder = Embedder(
            _client(lambda request: httpx.Response(200, json={"data": []})),
            "http://embed",
            retry=NO_RETRY,
        )
        with pytest.raises(UpstreamAdapterError) as excinfo:
            await embedder.embed_strict("food")
        assert excinfo.value.code is ErrorCode.EMBEDDING_ERROR
        assert excinfo.value.context["reason"] == "invalid_response"


class TestClassifier:
    """Tests for Classifier."""

    async def test_parses_verdict(self) -> None:
        """The response body becomes an IntentClassification."""
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "primary_intent": "Food Pantries",
                    "top_intents": [{"intent": "Food Pantries", "score": 0.91}],
                    "combined_taxonomy_codes": ["BD-1800.2000"],
                    "confidence": "high",
                },
            )

        classifier = Classifier(_client(handler), "http://classify", retry=NO_RETRY)
        verdict = await classifier.classify("where can i get food", "req-1")
        assert verdict.primary_intent == "Food Pantries"
        assert verdict.combined_taxonomy_codes == ("BD-1800.2000",)
        assert verdict.top_intents[0].score == 0.91
        assert seen == [{"query": "where can i get food", "request_id": "req-1"}]

    async def test_timeout_falls_back(self, metrics: MetricsProvider) -> None:
        """A slow classifier yields the fallback verdict within the deadline."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return httpx.Response(200, json={"primary_intent": "late"})

        classifier = Classifier(
            _client(handler), "http://classify", timeout=0.05, retry=NO_RETRY, metrics=metrics
        )
        verdict = await classifier.classify("need help paying rent")
        assert verdict.primary_intent is None
        assert verdict.confidence == "low"
        assert _fallbacks(metrics, "classifier", "timeout") == 1.0

    async def test_non_object_body(self) -> None:
        """A list body is a malformed response."""
        classifier = Classifier(
            _client(lambda request: httpx.Response(200, json=["x"])),
            "http://classify",
            retry=NO_RETRY,
        )
        with pytest.raises(UpstreamAdapterError):
            await classifier.classify_strict("food")


class TestReranker:
    """Tests for Reranker."""

    HITS = (
        combined_hit("a", ("keyword_original", 3.0, 1.0)),
        combined_hit("b", ("keyword_original", 2.0, 1.0)),
        combined_hit("c", ("keyword_original", 1.0, 1.0)),
    )

    async def test_reorders(self) -> None:
        """Ranked hits come first with their scores; unranked ones follow."""
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200, json={"ranked_results": [{"id": "c", "score": 0.9}, {"id": "a", "score": 0.4}]}
            )

        reranker = Reranker(_client(handler), "http://rerank", timeout=1.0, retry=NO_RETRY)
        ranked = await reranker.rerank("food", self.HITS)
        assert [hit.doc_id for hit in ranked] == ["c", "a", "b"]
        assert ranked[0].rerank_score == 0.9
        assert ranked[2].rerank_score is None
        assert seen[0]["top_k"] == 3
        assert seen[0]["documents"][0] == {"id": "a", "text": "Resource a"}  # type: ignore[index]

    async def test_failure_keeps_order(self, metrics: MetricsProvider) -> None:
        """Rerank failures pass hits through unchanged."""
        reranker = Reranker(
            _client(lambda request: httpx.Response(503)),
            "http://rerank",
            timeout=1.0,
            retry=NO_RETRY,
            metrics=metrics,
        )
        assert await reranker.rerank("food", self.HITS) == list(self.HITS)
        assert _fallbacks(metrics, "reranker", "http_error") == 1.0

    async def test_disabled(self) -> None:
        """An unconfigured reranker is a pass-through."""
        assert await make_adapters().reranker.rerank("food", self.HITS) == list(self.HITS)

    def test_rerank_text(self) -> None:
        """Name and descriptions are joined for scoring."""
        document = {"name": "Pantry", "service": {"description": " Weekly groceries "}}
        assert rerank_text(document) == "Pantry Weekly groceries"


class TestUpstreamAdapters:
    """Tests for building adapters from settings."""

    def test_from_settings(self) -> None:
        """Adapters are enabled exactly when their URL is set."""
        config = AdapterConfig(embedding_url="http://embed", reranker_url=None)
        adapters = UpstreamAdapters.from_settings(config, httpx.AsyncClient())
        assert adapters.embedder.enabled
        assert adapters.embedder.model == "bge-m3:567m"
        assert not adapters.classifier.enabled
        assert not adapters.reranker.enabled
