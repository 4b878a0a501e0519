"""Value types shared by the retrieval, combination and orchestration layers.

Everything here is an immutable dataclass. Hits are keyed by document identity and carry
their per-strategy provenance so responses can explain every score.

Examples
--------
>>> from hybrid_search.types import SourceContribution
>>> SourceContribution("keyword_original", 2.0, 1.5).weighted_score
3.0
"""

# [nav:section public-api]

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, cast

from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from directory_common.types import JsonObject

__all__ = [
    "CombinedHit",
    "Confidence",
    "GeoPoint",
    "IntentClassification",
    "IntentScore",
    "RawHit",
    "SourceContribution",
    "StrategyResult",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

type Confidence = Literal["high", "medium", "low"]

_CONFIDENCE_LEVELS = frozenset({"high", "medium", "low"})


@dataclass(frozen=True, slots=True)
# [nav:anchor GeoPoint]
class GeoPoint:
    """WGS84 coordinate in decimal degrees."""

    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
# [nav:anchor IntentScore]
class IntentScore:
    """One candidate intent and its classifier score."""

    intent: str
    score: float


@dataclass(frozen=True, slots=True)
# [nav:anchor IntentClassification]
class IntentClassification:
    """Classifier verdict for a free-text query.

    Attributes
    ----------
    primary_intent : str | None
        Highest-ranked intent, or ``None`` when the classifier had no answer.
    top_intents : tuple[IntentScore, ...]
        Ranked candidate intents.
    combined_taxonomy_codes : tuple[str, ...]
        Taxonomy codes associated with the top intents.
    confidence : Confidence
        ``"high"``, ``"medium"`` or ``"low"``.
    is_low_information_query : bool
        ``True`` when the query is too vague for intent-driven retrieval.
    priority_rule_applied : bool
        ``True`` when a classifier rule overrode the model ranking.
    query_characteristics : Mapping[str, object] | None
        Free-form diagnostics reported by the classifier.
    """

    primary_intent: str | None = None
    top_intents: tuple[IntentScore, ...] = ()
    combined_taxonomy_codes: tuple[str, ...] = ()
    confidence: Confidence = "low"
    is_low_information_query: bool = False
    priority_rule_applied: bool = False
    query_characteristics: Mapping[str, object] | None = None

    @classmethod
    def fallback(cls) -> IntentClassification:
        """Return the degraded verdict used when classification fails."""
        return cls()

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> IntentClassification:
        """Build a verdict from a classifier response body.

        Unknown keys are ignored and malformed members fall back to their defaults.
        """
        raw_intents = payload.get("top_intents")
        top_intents: list[IntentScore] = []
        if isinstance(raw_intents, list):
            for item in raw_intents:
                if not isinstance(item, Mapping):
                    continue
                intent = item.get("intent")
                score = item.get("score", 0.0)
                if isinstance(intent, str) and isinstance(score, (int, float)):
                    top_intents.append(IntentScore(intent, float(score)))
        raw_codes = payload.get("combined_taxonomy_codes")
        codes = (
            tuple(code for code in raw_codes if isinstance(code, str))
            if isinstance(raw_codes, list)
            else ()
        )
        primary = payload.get("primary_intent")
        confidence = payload.get("confidence")
        characteristics = payload.get("query_characteristics")
        return cls(
            primary_intent=primary if isinstance(primary, str) and primary else None,
            top_intents=tuple(top_intents),
            combined_taxonomy_codes=codes,
            confidence=cast(
                "Confidence", confidence if confidence in _CONFIDENCE_LEVELS else "low"
            ),
            is_low_information_query=payload.get("is_low_information_query") is True,
            priority_rule_applied=payload.get("priority_rule_applied") is True,
            query_characteristics=(
                dict(characteristics) if isinstance(characteristics, Mapping) else None
            ),
        )

    def to_dict(self) -> JsonObject:
        """Render the verdict for response metadata."""
        payload: JsonObject = {
            "primary_intent": self.primary_intent,
            "top_intents": [
                {"intent": item.intent, "score": item.score} for item in self.top_intents
            ],
            "combined_taxonomy_codes": list(self.combined_taxonomy_codes),
            "confidence": self.confidence,
            "is_low_information_query": self.is_low_information_query,
            "priority_rule_applied": self.priority_rule_applied,
        }
        if self.query_characteristics is not None:
            payload["query_characteristics"] = cast("JsonObject", dict(self.query_characteristics))
        return payload


@dataclass(frozen=True, slots=True)
# [nav:anchor RawHit]
class RawHit:
    """Backend hit as scored by a single strategy clause."""

    doc_id: str
    score: float
    source: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
# [nav:anchor StrategyResult]
class StrategyResult:
    """Hits returned for one strategy clause, with that clause's own timing.

    Attributes
    ----------
    strategy : str
        Clause name such as ``"semantic_service"``.
    hits : tuple[RawHit, ...]
        Hits in backend order.
    took_ms : int
        Execution time the backend reported for this clause.
    total : int
        Backend ``hits.total.value`` for this clause.
    """

    strategy: str
    hits: tuple[RawHit, ...] = ()
    took_ms: int = 0
    total: int = 0


@dataclass(frozen=True, slots=True)
# [nav:anchor SourceContribution]
class SourceContribution:
    """A strategy's share of a combined hit's score."""

    strategy: str
    pre_weight_score: float
    weight_applied: float

    @property
    def weighted_score(self) -> float:
        """Return ``pre_weight_score * weight_applied``."""
        return self.pre_weight_score * self.weight_applied

    def to_dict(self) -> JsonObject:
        """Render the contribution for ``_sources`` and trace metadata."""
        return {
            "strategy": self.strategy,
            "pre_weight_score": self.pre_weight_score,
            "weight_applied": self.weight_applied,
            "weighted_score": self.weighted_score,
        }


@dataclass(frozen=True, slots=True)
# [nav:anchor CombinedHit]
class CombinedHit:
    """A document after combination across strategies.

    ``total_score`` is always the sum of ``weighted_score`` over ``sources``; a
    document matched by k strategies carries exactly k sources.
    """

    doc_id: str
    total_score: float
    sources: tuple[SourceContribution, ...]
    document: Mapping[str, object] = field(default_factory=dict)
    rerank_score: float | None = None
