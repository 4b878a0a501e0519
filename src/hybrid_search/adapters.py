"""HTTP adapters for the embedding, intent classification and rerank services.

Every adapter call is bounded by a timeout and retried under a tenacity
:class:`~directory_common.http.retry.RetryPolicy`. Each adapter exposes a strict
coroutine that raises :class:`UpstreamAdapterError` and a lenient one that returns the
documented degraded value instead:

========== ============================== ===================================
Adapter    Contract                       Degraded value
========== ============================== ===================================
Embedder   ``POST /v1/embeddings``        ``None`` (semantic clauses skipped)
Classifier ``POST /api/v1/intent-...``    :meth:`IntentClassification.fallback`
Reranker   ``POST /api/rerank``           input order, unchanged
========== ============================== ===================================
"""

# [nav:section public-api]

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import httpx

from directory_common.errors import ErrorCode, UpstreamAdapterError
from directory_common.http.errors import HttpError, HttpTimeoutError
from directory_common.http.retry import RetryPolicy, send_with_retry
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata
from hybrid_search.types import IntentClassification

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from directory_common.observability import MetricsProvider
    from directory_common.settings import AdapterConfig
    from hybrid_search.types import CombinedHit

__all__ = [
    "CLASSIFY_TIMEOUT_SECONDS",
    "Classifier",
    "Embedder",
    "Reranker",
    "UpstreamAdapters",
    "rerank_text",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor CLASSIFY_TIMEOUT_SECONDS]
CLASSIFY_TIMEOUT_SECONDS = 5.0

_RERANK_TEXT_FIELDS = (
    ("name",),
    ("description",),
    ("service", "name"),
    ("service", "description"),
)


def _join(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _fallback_reason(exc: BaseException) -> str:
    if isinstance(exc, (TimeoutError, HttpTimeoutError)):
        return "timeout"
    if isinstance(exc, HttpError):
        return "http_error"
    return "invalid_response"


class _HttpAdapter:
    """Shared plumbing: POST JSON under a deadline and retry policy."""

    name = "adapter"
    error_code = ErrorCode.RUNTIME_ERROR

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str | None,
        *,
        timeout: float,
        retry: RetryPolicy | None = None,
        metrics: MetricsProvider | None = None,
    ) -> None:
        self._client = client
        self._base_url = base_url
        self._timeout = timeout
        self._retry = retry or RetryPolicy()
        self._metrics = metrics

    @property
    def enabled(self) -> bool:
        """Return ``True`` when a base URL is configured."""
        return bool(self._base_url)

    async def _post_json(self, path: str, payload: Mapping[str, object]) -> object:
        if not self._base_url:
            msg = f"{self.name} service is not configured"
            raise UpstreamAdapterError(msg, code=self.error_code)
        url = _join(self._base_url, path)
        try:
            async with asyncio.timeout(self._timeout):
                response = await send_with_retry(
                    lambda: self._client.post(url, json=payload, timeout=self._timeout),
                    self._retry,
                    operation=f"{self.name}.request",
                )
            return response.json()
        except (TimeoutError, HttpError, ValueError) as exc:
            msg = f"{self.name} call failed: {exc}"
            raise UpstreamAdapterError(
                msg,
                code=self.error_code,
                cause=exc,
                context={"reason": _fallback_reason(exc)},
            ) from exc

    def _degraded(self, exc: UpstreamAdapterError) -> None:
        reason = str(exc.context.get("reason", "invalid_response"))
        logger.warning(
            "%s degraded: %s",
            self.name,
            exc.message,
            extra={"operation": self.name, "status": "degraded", "reason": reason},
        )
        if self._metrics is not None:
            self._metrics.record_fallback(self.name, reason)


# [nav:anchor Embedder]
class Embedder(_HttpAdapter):
    """Client for an OpenAI-compatible embedding endpoint.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client.
    base_url : str | None
        Service root; requests go to ``{base_url}/v1/embeddings``.
    model : str, optional
        Model name sent with each request.
    timeout : float, optional
        Deadline for one embedding, retries included.
    retry : RetryPolicy | None, optional
        Retry policy.
    metrics : MetricsProvider | None, optional
        Receives fallback counts.
    """

    name = "embedder"
    error_code = ErrorCode.EMBEDDING_ERROR

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str | None,
        *,
        model: str = "bge-m3:567m",
        timeout: float = 10.0,
        retry: RetryPolicy | None = None,
        metrics: MetricsProvider | None = None,
    ) -> None:
        super().__init__(client, base_url, timeout=timeout, retry=retry, metrics=metrics)
        self.model = model

    async def embed_strict(self, text: str) -> list[float]:
        """Return the embedding of ``text``.

        Raises
        ------
        UpstreamAdapterError
            On timeout, transport or status failure, or a malformed body.
        """
        body = await self._post_json("v1/embeddings", {"model": self.model, "input": text})
        vector = _extract_embedding(body)
        if vector is None:
            msg = "embedding response carried no vector"
            raise UpstreamAdapterError(
                msg, code=self.error_code, context={"reason": "invalid_response"}
            )
        return vector

    async def embed(self, text: str) -> list[float] | None:
        """Return the embedding of ``text``, or ``None`` when unavailable."""
        if not self.enabled:
            return None
        try:
            return await self.embed_strict(text)
        except UpstreamAdapterError as exc:
            self._degraded(exc)
            return None


def _extract_embedding(body: object) -> list[float] | None:
    if not isinstance(body, dict):
        return None
    candidate: object = body.get("embedding")
    data = body.get("data")
    if candidate is None and isinstance(data, list) and data and isinstance(data[0], dict):
        candidate = data[0].get("embedding")
    if not isinstance(candidate, list) or not candidate:
        return None
    if not all(isinstance(value, (int, float)) for value in candidate):
        return None
    return [float(value) for value in candidate]


# [nav:anchor Classifier]
class Classifier(_HttpAdapter):
    """Client for the intent classification service.

    The default deadline is :data:`CLASSIFY_TIMEOUT_SECONDS`.
    """

    name = "classifier"
    error_code = ErrorCode.CLASSIFICATION_ERROR

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str | None,
        *,
        timeout: float = CLASSIFY_TIMEOUT_SECONDS,
        retry: RetryPolicy | None = None,
        metrics: MetricsProvider | None = None,
    ) -> None:
        super().__init__(client, base_url, timeout=timeout, retry=retry, metrics=metrics)

    async def classify_strict(
        self, query: str, request_id: str | None = None
    ) -> IntentClassification:
        """Classify ``query``.

        Raises
        ------
        UpstreamAdapterError
            On timeout, transport or status failure, or a non-object body.
        """
        body = await self._post_json(
            "api/v1/intent-classification",
            {"query": query, "request_id": request_id or uuid.uuid4().hex},
        )
        if not isinstance(body, dict):
            msg = "classification response is not an object"
            raise UpstreamAdapterError(
                msg, code=self.error_code, context={"reason": "invalid_response"}
            )
        return IntentClassification.from_payload(body)

    async def classify(self, query: str, request_id: str | None = None) -> IntentClassification:
        """Classify ``query``, falling back to the low-confidence default."""
        if not self.enabled:
            return IntentClassification.fallback()
        try:
            return await self.classify_strict(query, request_id)
        except UpstreamAdapterError as exc:
            self._degraded(exc)
            return IntentClassification.fallback()


# [nav:anchor rerank_text]
def rerank_text(document: Mapping[str, object]) -> str:
    """Return the text a reranker scores for ``document``."""
    parts: list[str] = []
    for path in _RERANK_TEXT_FIELDS:
        value: object = document
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        if isinstance(value, str) and value.strip():
            parts.append(value.strip())
    return " ".join(parts)


# [nav:anchor Reranker]
class Reranker(_HttpAdapter):
    """Client for the cross-encoder rerank service; off when unconfigured."""

    name = "reranker"
    error_code = ErrorCode.RERANK_ERROR

    async def rerank_strict(
        self, query: str, hits: Sequence[CombinedHit], top_k: int | None = None
    ) -> list[CombinedHit]:
        """Return ``hits`` reordered by the reranker.

        Hits the reranker did not rank keep their relative order after the ranked
        ones. Each ranked hit carries its ``rerank_score``.

        Raises
        ------
        UpstreamAdapterError
            On timeout, transport or status failure, or a malformed body.
        """
        body = await self._post_json(
            "api/rerank",
            {
                "query": query,
                "documents": [
                    {"id": hit.doc_id, "text": rerank_text(hit.document)} for hit in hits
                ],
                "top_k": top_k or len(hits),
            },
        )
        ranked = body.get("ranked_results") if isinstance(body, dict) else None
        if not isinstance(ranked, list):
            msg = "rerank response carried no ranked_results"
            raise UpstreamAdapterError(
                msg, code=self.error_code, context={"reason": "invalid_response"}
            )
        by_id = {hit.doc_id: hit for hit in hits}
        ordered: list[CombinedHit] = []
        for item in ranked:
            if not isinstance(item, dict):
                continue
            doc_id = str(item.get("id"))
            hit = by_id.pop(doc_id, None)
            if hit is None:
                continue
            score = item.get("score")
            ordered.append(
                replace(hit, rerank_score=float(score) if isinstance(score, (int, float)) else None)
            )
        ordered.extend(hit for hit in hits if hit.doc_id in by_id)
        return ordered

    async def rerank(
        self, query: str, hits: Sequence[CombinedHit], top_k: int | None = None
    ) -> list[CombinedHit]:
        """Rerank ``hits``, passing them through unchanged on any failure."""
        if not self.enabled or not hits:
            return list(hits)
        try:
            return await self.rerank_strict(query, hits, top_k)
        except UpstreamAdapterError as exc:
            self._degraded(exc)
            return list(hits)


@dataclass(frozen=True, slots=True)
# [nav:anchor UpstreamAdapters]
class UpstreamAdapters:
    """The three adapters the orchestrator depends on."""

    embedder: Embedder
    classifier: Classifier
    reranker: Reranker

    @classmethod
    def from_settings(
        cls,
        config: AdapterConfig,
        client: httpx.AsyncClient,
        *,
        metrics: MetricsProvider | None = None,
    ) -> UpstreamAdapters:
        """Build adapters sharing ``client`` from :class:`AdapterConfig`."""
        retry = RetryPolicy(max_attempts=config.max_attempts)
        return cls(
            embedder=Embedder(
                client,
                config.embedding_url,
                model=config.embedding_model,
                timeout=config.embedding_timeout_s,
                retry=retry,
                metrics=metrics,
            ),
            classifier=Classifier(
                client,
                config.classifier_url,
                timeout=config.classifier_timeout_s,
                retry=retry,
                metrics=metrics,
            ),
            reranker=Reranker(
                client,
                config.reranker_url,
                timeout=config.reranker_timeout_s,
                retry=retry,
                metrics=metrics,
            ),
        )
