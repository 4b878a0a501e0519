"""Merge per-strategy hits into one ranked, explainable result list.

A document matched by several clauses appears once. Each match appends one
:class:`~hybrid_search.types.SourceContribution`, and the document's total is the plain
sum of ``pre_weight_score * weight_applied`` over those contributions; there is no hidden
normalisation, so ``_sources`` always explains ``_score`` exactly.

Examples
--------
>>> from hybrid_search.types import RawHit, StrategyResult
>>> from hybrid_search.combiner import combine
>>> result = combine(
...     [
...         StrategyResult("keyword_original", (RawHit("a", 2.0),), total=1),
...         StrategyResult("semantic_service", (RawHit("a", 0.5), RawHit("b", 0.9)), total=2),
...     ],
...     {"keyword_original": 1.5, "semantic_service": 2.0},
... )
>>> [(hit.doc_id, hit.total_score) for hit in result.hits]
[('a', 4.0), ('b', 1.8)]
"""

# [nav:section public-api]

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from directory_common.navmap import load_nav_metadata
from hybrid_search.types import CombinedHit, SourceContribution, StrategyResult

__all__ = [
    "TOP_HITS_TRACE",
    "Combination",
    "combine",
    "sort_key",
    "sources_trace",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

# [nav:anchor TOP_HITS_TRACE]
TOP_HITS_TRACE = 10


# [nav:anchor sort_key]
def sort_key(hit: CombinedHit) -> tuple[float, str]:
    """Return the combined ordering key: score descending, then ``doc_id`` ascending."""
    return (-hit.total_score, hit.doc_id)


@dataclass(frozen=True, slots=True)
# [nav:anchor Combination]
class Combination:
    """Output of :func:`combine`.

    Attributes
    ----------
    hits : tuple[CombinedHit, ...]
        Every distinct document in combined order.
    total : int
        Largest backend total reported by any strategy.
    sources_of_top_hits : tuple[dict[str, object], ...]
        ``{rank, doc_id, total_score, sources}`` for the leading hits.
    """

    hits: tuple[CombinedHit, ...]
    total: int
    sources_of_top_hits: tuple[dict[str, object], ...] = ()


# [nav:anchor sources_trace]
def sources_trace(
    hits: Sequence[CombinedHit], top_n: int = TOP_HITS_TRACE
) -> list[dict[str, object]]:
    """Describe the first ``top_n`` hits with their per-strategy breakdown."""
    return [
        {
            "rank": rank,
            "doc_id": hit.doc_id,
            "total_score": hit.total_score,
            "sources": [source.to_dict() for source in hit.sources],
        }
        for rank, hit in enumerate(hits[:top_n], start=1)
    ]


# [nav:anchor combine]
def combine(
    results: Sequence[StrategyResult],
    weights: Mapping[str, float],
    top_n: int = TOP_HITS_TRACE,
) -> Combination:
    """Deduplicate hits across strategies and apply strategy weights.

    Parameters
    ----------
    results : Sequence[StrategyResult]
        One result per executed clause.
    weights : Mapping[str, float]
        Weight per strategy name; strategies without an entry weigh 1.0.
    top_n : int, optional
        Number of hits described in ``sources_of_top_hits``.

    Returns
    -------
    Combination
        Distinct hits ordered by :func:`sort_key`.
    """
    sources: dict[str, list[SourceContribution]] = {}
    documents: dict[str, Mapping[str, object]] = {}
    for result in results:
        weight = float(weights.get(result.strategy, 1.0))
        for raw in result.hits:
            sources.setdefault(raw.doc_id, []).append(
                SourceContribution(result.strategy, raw.score, weight)
            )
            if raw.doc_id not in documents or not documents[raw.doc_id]:
                documents[raw.doc_id] = raw.source

    combined = [
        CombinedHit(
            doc_id=doc_id,
            total_score=sum(source.weighted_score for source in contributions),
            sources=tuple(contributions),
            document=documents.get(doc_id, {}),
        )
        for doc_id, contributions in sources.items()
    ]
    combined.sort(key=sort_key)
    return Combination(
        hits=tuple(combined),
        total=max((result.total for result in results), default=0),
        sources_of_top_hits=tuple(sources_trace(combined, top_n)),
    )
