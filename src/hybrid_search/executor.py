"""Single-round-trip execution of strategy clauses through OpenSearch ``_msearch``.

All clauses of one request travel in one NDJSON body: a header line naming the index
followed by the clause body, repeated per clause. Item responses come back in the same
order, so each is paired with its clause by position. Any failed item fails the
whole batch: a partial result set would silently drop a strategy's contribution.

Examples
--------
>>> from hybrid_search.executor import encode_msearch
>>> encode_msearch("il211-resources_en", [{"query": {"match_all": {}}}])
'{"index":"il211-resources_en"}\\n{"query":{"match_all":{}}}\\n'
"""

# [nav:section public-api]

from __future__ import annotations

import json
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import httpx

from directory_common.errors import ErrorCode, RetrievalBackendError
from directory_common.http.errors import HttpError, HttpStatusError
from directory_common.http.retry import RetryPolicy, send_with_retry
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata
from hybrid_search.types import RawHit, StrategyResult

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from directory_common.types import JsonObject
    from hybrid_search.query_builder import StrategyClause

__all__ = [
    "NDJSON_CONTENT_TYPE",
    "BatchResult",
    "OpenSearchBackend",
    "SearchBackend",
    "SearchExecutor",
    "encode_msearch",
    "parse_hits",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor NDJSON_CONTENT_TYPE]
NDJSON_CONTENT_TYPE = "application/x-ndjson"


# [nav:anchor SearchBackend]
class SearchBackend(Protocol):
    """Minimal search backend surface used by the executor and suggestions."""

    async def msearch(self, index: str, bodies: Sequence[JsonObject]) -> JsonObject:
        """Run ``bodies`` against ``index`` in one round trip."""
        ...

    async def search(self, index: str, body: JsonObject) -> JsonObject:
        """Run a single query against ``index``."""
        ...

    async def ping(self) -> bool:
        """Return ``True`` when the backend answers."""
        ...


# [nav:anchor encode_msearch]
def encode_msearch(index: str, bodies: Sequence[JsonObject]) -> str:
    """Serialise ``bodies`` as an ``_msearch`` NDJSON payload for ``index``."""
    header = json.dumps({"index": index}, separators=(",", ":"))
    lines: list[str] = []
    for body in bodies:
        lines.append(header)
        lines.append(json.dumps(body, separators=(",", ":")))
    return "\n".join(lines) + "\n"


def _backend_error(exc: HttpError, *, index: str, operation: str) -> RetrievalBackendError:
    code = ErrorCode.RETRIEVAL_UNAVAILABLE
    if isinstance(exc, HttpStatusError) and not exc.retryable:
        code = ErrorCode.RETRIEVAL_QUERY_FAILED
    return RetrievalBackendError(
        f"{operation} against {index} failed: {exc}",
        code=code,
        cause=exc,
        context={"index": index},
    )


# [nav:anchor OpenSearchBackend]
class OpenSearchBackend:
    """OpenSearch REST client over a shared :class:`httpx.AsyncClient`.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client.
    base_url : str
        Cluster root, e.g. ``http://localhost:9200``.
    timeout : float, optional
        Per-request timeout in seconds.
    retry : RetryPolicy | None, optional
        Retry policy for transient failures.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        timeout: float = 10.0,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._retry = retry or RetryPolicy()

    async def _post(
        self,
        url: str,
        *,
        index: str,
        operation: str,
        content: bytes | None = None,
        body: JsonObject | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> JsonObject:
        def send() -> Awaitable[httpx.Response]:
            return self._client.post(
                url, content=content, json=body, headers=headers, timeout=self._timeout
            )

        try:
            response = await send_with_retry(send, self._retry, operation=operation)
        except HttpError as exc:
            raise _backend_error(exc, index=index, operation=operation) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"{operation} against {index} returned a non-JSON body"
            raise RetrievalBackendError(
                msg, code=ErrorCode.RETRIEVAL_QUERY_FAILED, cause=exc, context={"index": index}
            ) from exc
        if not isinstance(payload, dict):
            msg = f"{operation} against {index} returned a non-object body"
            raise RetrievalBackendError(
                msg, code=ErrorCode.RETRIEVAL_QUERY_FAILED, context={"index": index}
            )
        return payload

    async def msearch(self, index: str, bodies: Sequence[JsonObject]) -> JsonObject:
        return await self._post(
            f"{self._base_url}/{index}/_msearch",
            index=index,
            operation="opensearch.msearch",
            content=encode_msearch(index, bodies).encode("utf-8"),
            headers={"Content-Type": NDJSON_CONTENT_TYPE},
        )

    async def search(self, index: str, body: JsonObject) -> JsonObject:
        return await self._post(
            f"{self._base_url}/{index}/_search",
            index=index,
            operation="opensearch.search",
            body=body,
        )

    async def ping(self) -> bool:
        try:
            response = await self._client.get(f"{self._base_url}/", timeout=self._timeout)
        except httpx.TransportError:
            return False
        return response.status_code < 400


# [nav:anchor parse_hits]
def parse_hits(item: Mapping[str, object]) -> tuple[tuple[RawHit, ...], int]:
    """Return the hits and total of one search response item."""
    hits_section = item.get("hits")
    if not isinstance(hits_section, Mapping):
        return (), 0
    total_value = hits_section.get("total")
    if isinstance(total_value, Mapping):
        total_value = total_value.get("value")
    total = int(total_value) if isinstance(total_value, (int, float)) else 0
    raw_hits = hits_section.get("hits")
    parsed: list[RawHit] = []
    for hit in raw_hits if isinstance(raw_hits, list) else ():
        if not isinstance(hit, Mapping) or hit.get("_id") is None:
            continue
        score = hit.get("_score")
        if not isinstance(score, (int, float)):
            # sorted queries may omit _score; fall back to the primary sort value
            sort_values = hit.get("sort")
            score = sort_values[0] if isinstance(sort_values, list) and sort_values else 0.0
        source = hit.get("_source")
        parsed.append(
            RawHit(
                doc_id=str(hit["_id"]),
                score=float(score) if isinstance(score, (int, float)) else 0.0,
                source=dict(source) if isinstance(source, Mapping) else {},
            )
        )
    return tuple(parsed), max(total, len(parsed))


@dataclass(frozen=True, slots=True)
# [nav:anchor BatchResult]
class BatchResult:
    """Per-clause results and timing of one ``_msearch`` round trip.

    Attributes
    ----------
    results : tuple[StrategyResult, ...]
        One result per clause, in clause order.
    took_ms : int
        Backend-reported ``took``, or the slowest clause when absent.
    total_ms : float
        Client wall-clock time for the round trip.
    network_overhead_ms : float
        ``total_ms`` minus ``took_ms``, never negative.
    subqueries : Mapping[str, int]
        Backend-reported ``took`` per clause name.
    """

    results: tuple[StrategyResult, ...]
    took_ms: int
    total_ms: float
    network_overhead_ms: float
    subqueries: Mapping[str, int] = field(default_factory=dict)


# [nav:anchor SearchExecutor]
class SearchExecutor:
    """Run a request's clauses in one ``_msearch`` and parse the item responses."""

    def __init__(self, backend: SearchBackend) -> None:
        self.backend = backend

    async def execute(self, index: str, clauses: Sequence[StrategyClause]) -> BatchResult:
        """Execute ``clauses`` against ``index``.

        Parameters
        ----------
        index : str
            Tenant and language specific resources index.
        clauses : Sequence[StrategyClause]
            Clauses from :func:`hybrid_search.query_builder.build_clauses`.

        Returns
        -------
        BatchResult
            Per-clause hits and timing.

        Raises
        ------
        RetrievalBackendError
            If the round trip fails, the item count is wrong, or any item reports
            an error.
        """
        if not clauses:
            return BatchResult(results=(), took_ms=0, total_ms=0.0, network_overhead_ms=0.0)
        started = time.perf_counter()
        payload = await self.backend.msearch(index, [clause.body for clause in clauses])
        total_ms = (time.perf_counter() - started) * 1000

        responses = payload.get("responses")
        if not isinstance(responses, list) or len(responses) != len(clauses):
            msg = f"_msearch against {index} returned a malformed response list"
            raise RetrievalBackendError(
                msg, code=ErrorCode.RETRIEVAL_QUERY_FAILED, context={"index": index}
            )

        results: list[StrategyResult] = []
        subqueries: dict[str, int] = {}
        for clause, item in zip(clauses, responses, strict=True):
            if not isinstance(item, Mapping) or "error" in item:
                error = item.get("error") if isinstance(item, Mapping) else item
                logger.error(
                    "Strategy %s failed",
                    clause.name,
                    extra={"operation": "msearch", "status": "error", "index": index},
                )
                msg = f"strategy {clause.name} failed against {index}: {error}"
                raise RetrievalBackendError(
                    msg,
                    code=ErrorCode.RETRIEVAL_QUERY_FAILED,
                    context={"index": index, "strategy": clause.name},
                )
            hits, total = parse_hits(item)
            took = item.get("took")
            took_ms = int(took) if isinstance(took, (int, float)) else 0
            subqueries[clause.name] = took_ms
            results.append(StrategyResult(clause.name, hits, took_ms, total))

        reported = payload.get("took")
        took_ms = (
            int(reported)
            if isinstance(reported, (int, float))
            else max(subqueries.values(), default=0)
        )
        logger.debug(
            "msearch returned %d strategy responses",
            len(results),
            extra={"operation": "msearch", "index": index, "duration_ms": total_ms},
        )
        return BatchResult(
            results=tuple(results),
            took_ms=took_ms,
            total_ms=total_ms,
            network_overhead_ms=max(total_ms - took_ms, 0.0),
            subqueries=subqueries,
        )
