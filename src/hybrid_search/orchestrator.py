"""Request-level state machine for hybrid search.

One request walks ``EMBED_AND_CLASSIFY -> SEARCH -> RERANK -> ASSEMBLE -> DONE``.
Adapter failures never leave that path: the adapters answer with their degraded
values and the request carries on with fewer strategies. Only a retrieval backend
failure moves the request to ``FAILED``, and the error propagates to the caller.

Weights are resolved from one store snapshot before any upstream call, so an
out-of-range override is rejected without spending an embedding call, and a reload
during the request cannot mix two weight versions.
"""

# [nav:section public-api]

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from directory_common.errors import RetrievalBackendError
from directory_common.logging import get_correlation_id, get_logger, with_fields
from directory_common.navmap import load_nav_metadata
from directory_common.observability import observe_duration
from hybrid_search.combiner import TOP_HITS_TRACE, combine
from hybrid_search.cursor import Cursor, paginate
from hybrid_search.nlp import KeywordVariations
from hybrid_search.postprocess import (
    add_distance,
    relevant_snippets,
    strip_embeddings,
    strip_service_area,
)
from hybrid_search.query_builder import (
    DEFAULT_CANDIDATES,
    MAX_WINDOW,
    SearchPlan,
    build_clauses,
)
from hybrid_search.tenancy import resources_index
from hybrid_search.weights import resolve_weights

if TYPE_CHECKING:
    from directory_common.observability import MetricsProvider
    from directory_common.types import JsonObject
    from hybrid_search.adapters import UpstreamAdapters
    from hybrid_search.combiner import Combination
    from hybrid_search.executor import BatchResult, SearchExecutor
    from hybrid_search.nlp import NlpPreprocessor
    from hybrid_search.query_builder import StrategyClause
    from hybrid_search.types import CombinedHit, GeoPoint, IntentClassification
    from hybrid_search.weights import WeightConfig, WeightConfigStore

__all__ = [
    "Orchestrator",
    "SearchOutcome",
    "SearchRequest",
    "SearchState",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

SEARCH_PIPELINE = "hybrid_semantic"


# [nav:anchor SearchState]
class SearchState(StrEnum):
    """Phases of one search request."""

    EMBED_AND_CLASSIFY = "embed_and_classify"
    SEARCH = "search"
    RERANK = "rerank"
    ASSEMBLE = "assemble"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
# [nav:anchor SearchRequest]
class SearchRequest:
    """Validated inputs of one search.

    Attributes
    ----------
    tenant : str
        Tenant short code.
    lang : str
        Language code.
    query : str | None
        Free text; ``None`` for taxonomy or facet browsing.
    limit : int
        Page size.
    search_after : Cursor | None
        Position after which the page starts.
    point : GeoPoint | None
        User location.
    distance : float | None
        Search radius in miles.
    taxonomy_and, taxonomy_or : tuple[str, ...]
        Taxonomy code filters.
    facets : Mapping[str, tuple[str, ...]]
        Facet filters.
    keyword_search_only : bool
        Skip embedding and the vector clauses.
    search_operator : {"and", "or"}
        Operator of the original-query keyword clause.
    disable_intent_classification : bool
        Skip the classifier and the intent clause.
    exclude_service_area : bool
        Drop ``serviceArea`` polygons from returned documents.
    location_point_only : bool
        Only match documents with a ``location.point``.
    intent_override : str | None
        Label classified instead of the query text.
    custom_weights : Mapping[str, object] | None
        Per-request weight overrides in document shape.
    legacy_weights : Mapping[str, float | None] | None
        Deprecated flat weight fields.
    request_id : str | None
        Identifier forwarded to the classifier.
    """

    tenant: str
    lang: str
    query: str | None = None
    limit: int = 10
    search_after: Cursor | None = None
    point: GeoPoint | None = None
    distance: float | None = None
    taxonomy_and: tuple[str, ...] = ()
    taxonomy_or: tuple[str, ...] = ()
    facets: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    keyword_search_only: bool = False
    search_operator: Literal["and", "or"] = "and"
    disable_intent_classification: bool = False
    exclude_service_area: bool = False
    location_point_only: bool = False
    intent_override: str | None = None
    custom_weights: Mapping[str, object] | None = None
    legacy_weights: Mapping[str, float | None] | None = None
    request_id: str | None = None

    @property
    def text(self) -> str | None:
        """Return the stripped query, or ``None`` when blank."""
        stripped = self.query.strip() if self.query else ""
        return stripped or None


@dataclass(frozen=True, slots=True)
# [nav:anchor SearchOutcome]
class SearchOutcome:
    """Assembled result of one search.

    Attributes
    ----------
    hits : tuple[JsonObject, ...]
        Response hits with ``_id``, ``_score``, ``_source``, ``_sources`` and,
        when snippets were found, ``relevant_text``.
    total : int
        Backend total across strategies.
    search_after : list[float | str] | None
        Cursor for the next page.
    took_ms : int
        End-to-end time.
    state_trace : tuple[SearchState, ...]
        States visited, in order.
    timings : Mapping[str, object]
        Phase timings in milliseconds.
    sources_of_top_hits : tuple[dict[str, object], ...]
        Score breakdown of the leading combined hits.
    intent_classification : IntentClassification | None
        Classifier verdict, if classification ran.
    weights_version : str
        Version of the weight snapshot used.
    debug : Mapping[str, object] | None
        Resolved weights and clause list, in development mode only.
    """

    hits: tuple[JsonObject, ...]
    total: int
    search_after: list[float | str] | None
    took_ms: int
    state_trace: tuple[SearchState, ...]
    timings: Mapping[str, object]
    sources_of_top_hits: tuple[dict[str, object], ...] = ()
    intent_classification: IntentClassification | None = None
    weights_version: str = "default"
    debug: Mapping[str, object] | None = None

    @property
    def max_score(self) -> float | None:
        """Return the highest ``_score`` on the page, or ``None`` when it is empty."""
        scores = [
            float(score)
            for score in (hit.get("_score") for hit in self.hits)
            if isinstance(score, (int, float))
        ]
        return max(scores, default=None)

    def to_response(self) -> JsonObject:
        """Render the outcome as the ``/search`` response body."""
        classification = self.intent_classification
        metadata: dict[str, object] = {
            "search_pipeline": SEARCH_PIPELINE,
            "weights_version": self.weights_version,
            "is_low_information_query": bool(
                classification and classification.is_low_information_query
            ),
            "granular_phase_timings": dict(self.timings),
            "sources_of_top_hits": list(self.sources_of_top_hits),
            "state_trace": [state.value for state in self.state_trace],
        }
        if classification is not None:
            metadata["intent_classification"] = classification.to_dict()
        if self.debug is not None:
            metadata["debug"] = dict(self.debug)
        response: dict[str, object] = {
            "took": self.took_ms,
            "timed_out": False,
            "hits": {
                "total": {"value": self.total, "relation": "eq"},
                "max_score": self.max_score,
                "hits": list(self.hits),
            },
            "total_results": self.total,
            "metadata": metadata,
        }
        if self.search_after is not None:
            response["search_after"] = self.search_after
        return response  # type: ignore[return-value]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


async def _timed[T](awaitable: Awaitable[T]) -> tuple[T, float]:
    started = time.perf_counter()
    result = await awaitable
    return result, _elapsed_ms(started)


async def _nothing() -> None:
    return None


# [nav:anchor Orchestrator]
class Orchestrator:
    """Drive a search request through embedding, retrieval, rerank and assembly.

    Parameters
    ----------
    store : WeightConfigStore
        Source of the current weight snapshot.
    nlp : NlpPreprocessor
        Noun extraction and stemming for keyword variants and snippets.
    adapters : UpstreamAdapters
        Embedding, classification and rerank clients.
    executor : SearchExecutor
        Batched retrieval.
    metrics : MetricsProvider | None, optional
        Receives phase durations.
    candidates : int, optional
        Hits requested per strategy clause.
    top_hits_trace : int, optional
        Hits described in ``sources_of_top_hits``.
    dev_mode : bool, optional
        Add resolved weights and clause names to the response metadata.
    """

    def __init__(
        self,
        store: WeightConfigStore,
        nlp: NlpPreprocessor,
        adapters: UpstreamAdapters,
        executor: SearchExecutor,
        *,
        metrics: MetricsProvider | None = None,
        candidates: int = DEFAULT_CANDIDATES,
        top_hits_trace: int = TOP_HITS_TRACE,
        dev_mode: bool = False,
    ) -> None:
        self.store = store
        self.nlp = nlp
        self.adapters = adapters
        self.executor = executor
        self.metrics = metrics
        self.candidates = candidates
        self.top_hits_trace = top_hits_trace
        self.dev_mode = dev_mode

    async def search(self, request: SearchRequest) -> SearchOutcome:
        """Run ``request`` to completion.

        Parameters
        ----------
        request : SearchRequest
            Validated request.

        Returns
        -------
        SearchOutcome
            Page of hits with cursor, timings and score breakdowns.

        Raises
        ------
        InvalidSearchRequestError
            If weight overrides are out of bounds.
        RetrievalBackendError
            If the retrieval backend fails; the request ends in ``FAILED``.
        """
        started = time.perf_counter()
        weights = resolve_weights(
            self.store.get_snapshot(),
            request.custom_weights,
            request.distance,
            legacy=request.legacy_weights,
        )
        trace: list[SearchState] = []
        timings: dict[str, object] = {}
        text = request.text

        with with_fields(
            logger,
            correlation_id=get_correlation_id(),
            operation="search",
        ) as log:
            trace.append(SearchState.EMBED_AND_CLASSIFY)
            embedding, classification = await self._embed_and_classify(request, timings)
            keywords = (
                await asyncio.to_thread(self.nlp.process_text_for_search, text)
                if text
                else KeywordVariations(original="")
            )

            trace.append(SearchState.SEARCH)
            plan = SearchPlan(
                query=text,
                embedding=embedding,
                classification=classification,
                keywords=keywords,
                point=request.point,
                distance=request.distance,
                taxonomy_and=request.taxonomy_and,
                taxonomy_or=request.taxonomy_or,
                facets=request.facets,
                keyword_search_only=request.keyword_search_only,
                search_operator=request.search_operator,
                location_point_only=request.location_point_only,
                disable_intent=request.disable_intent_classification,
            )
            index = resources_index(request.tenant, request.lang)
            try:
                clauses, batch, combination, following = await self._retrieve(
                    index, plan, weights, request
                )
            except RetrievalBackendError:
                trace.append(SearchState.FAILED)
                log.log_failure(
                    "Search failed in retrieval",
                    index=index,
                    state_trace=[state.value for state in trace],
                )
                raise
            timings["opensearch"] = {
                "took": batch.took_ms,
                "total_ms": round(batch.total_ms, 3),
                "network_overhead_ms": round(batch.network_overhead_ms, 3),
                "subqueries": dict(batch.subqueries),
            }
            page = following[: request.limit]
            more = len(following) > request.limit
            cursor = Cursor.from_hit(page[-1]).to_json() if page and more else None

            trace.append(SearchState.RERANK)
            if text and page and self.adapters.reranker.enabled:
                page, timings["rerank_ms"] = await _timed(
                    self.adapters.reranker.rerank(text, page)
                )

            trace.append(SearchState.ASSEMBLE)
            assembled_at = time.perf_counter()
            hits = tuple(self._assemble(hit, request, keywords) for hit in page)
            timings["post_processing_ms"] = _elapsed_ms(assembled_at)
            total_ms = _elapsed_ms(started)
            timings["total_ms"] = total_ms
            trace.append(SearchState.DONE)

            log.log_success(
                "Search completed",
                duration_ms=total_ms,
                index=index,
                clauses=len(clauses),
                hits=len(hits),
                weights_version=weights.version,
            )

        return SearchOutcome(
            hits=hits,
            total=combination.total,
            search_after=cursor,
            took_ms=round(total_ms),
            state_trace=tuple(trace),
            timings=timings,
            sources_of_top_hits=combination.sources_of_top_hits,
            intent_classification=classification,
            weights_version=weights.version,
            debug=self._debug(weights, clauses) if self.dev_mode else None,
        )

    async def _embed_and_classify(
        self, request: SearchRequest, timings: dict[str, object]
    ) -> tuple[list[float] | None, IntentClassification | None]:
        text = request.text
        if text is None:
            return None, None
        want_embedding = not request.keyword_search_only and self.adapters.embedder.enabled
        want_classification = not request.disable_intent_classification
        label = request.intent_override or text
        started = time.perf_counter()
        (embedding, embed_ms), (classification, classify_ms) = await asyncio.gather(
            _timed(self.adapters.embedder.embed(text) if want_embedding else _nothing()),
            _timed(
                self.adapters.classifier.classify(label, request.request_id)
                if want_classification
                else _nothing()
            ),
        )
        timings["embedding_ms"] = embed_ms
        timings["classification_ms"] = classify_ms
        timings["total_parallel_time_ms"] = _elapsed_ms(started)
        return embedding, classification

    async def _retrieve(
        self,
        index: str,
        plan: SearchPlan,
        weights: WeightConfig,
        request: SearchRequest,
    ) -> tuple[list[StrategyClause], BatchResult, Combination, list[CombinedHit]]:
        """Fetch enough candidates to fill the page that follows ``request.search_after``.

        Browsing has one clause whose raw order is the combined order, so the cursor is
        forwarded and the backend pages. Text searches combine several clauses; each
        clause window starts at ``max(candidates, limit + 1)`` and doubles, up to
        :data:`MAX_WINDOW`, while the page is short and some clause filled its window.

        Returns
        -------
        tuple
            Clauses, the last batch, its combination, and up to ``limit + 1`` hits
            after the cursor. A ``limit + 1``-th hit means another page follows.
        """
        wanted = request.limit + 1
        cursor = request.search_after
        if not plan.has_text:
            window = wanted
            forwarded = (cursor.score, cursor.doc_id) if cursor is not None else None
        else:
            window = min(max(self.candidates, wanted), MAX_WINDOW)
            forwarded = None
        while True:
            clauses = build_clauses(
                replace(plan, candidates=window, search_after=forwarded), weights
            )
            batch = await self._execute(index, clauses)
            combination = combine(
                batch.results,
                {clause.name: clause.weight for clause in clauses},
                self.top_hits_trace,
            )
            following = paginate(combination.hits, cursor, wanted)
            truncated = any(len(result.hits) >= window for result in batch.results)
            if len(following) >= wanted or not truncated:
                break
            if not plan.has_text or window >= MAX_WINDOW:
                break
            window = min(window * 2, MAX_WINDOW)
            logger.debug(
                "Widening candidate window",
                extra={"operation": "search", "window": window, "index": index},
            )
        return clauses, batch, combination, following

    async def _execute(self, index: str, clauses: Sequence[StrategyClause]) -> BatchResult:
        if self.metrics is None:
            return await self.executor.execute(index, clauses)
        with observe_duration(
            self.metrics,
            "msearch",
            component="executor",
            correlation_id=get_correlation_id(),
        ):
            return await self.executor.execute(index, clauses)

    def _assemble(
        self, hit: CombinedHit, request: SearchRequest, keywords: KeywordVariations
    ) -> JsonObject:
        document = strip_embeddings(hit.document)
        source: dict[str, object] = dict(document) if isinstance(document, Mapping) else {}
        if request.exclude_service_area:
            source = strip_service_area(source)
        if request.point is not None:
            source = add_distance(source, request.point)
        rendered: dict[str, object] = {
            "_id": hit.doc_id,
            "_score": hit.total_score,
            "_source": source,
            "_sources": [contribution.to_dict() for contribution in hit.sources],
        }
        if hit.rerank_score is not None:
            rendered["_rerank_score"] = hit.rerank_score
        snippets = relevant_snippets(source, keywords.nouns, self.nlp)
        if snippets:
            rendered["relevant_text"] = snippets
        return rendered  # type: ignore[return-value]

    @staticmethod
    def _debug(weights: WeightConfig, clauses: Sequence[StrategyClause]) -> dict[str, object]:
        return {
            "weights": weights.to_dict(),
            "clauses": [{"name": clause.name, "weight": clause.weight} for clause in clauses],
        }
