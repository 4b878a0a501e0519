"""Versioned query enhancement pipeline.

A pipeline is an ordered tuple of stateless stages over an immutable
:class:`SearchContext`. Each stage reports whether it applies and, when it does,
returns a new context; no stage stops the ones after it. :func:`select_stages` picks
the stage tuple for an API version from a lookup table.

Examples
--------
>>> import asyncio
>>> from hybrid_search.enhancement import PipelineVersion, new_context, run_pipeline
>>> from hybrid_search.enhancement import CodeDetection
>>> context = asyncio.run(run_pipeline((CodeDetection(),), new_context("BD-1800", 1)))
>>> context.is_code_search
True
"""

# [nav:section public-api]

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Literal, Protocol

from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from hybrid_search.nlp import NlpPreprocessor
    from hybrid_search.types import IntentClassification

__all__ = [
    "CODE_FIELDS",
    "FEATURES_BY_VERSION",
    "NAME_FIELDS",
    "TAXONOMY_CODE_PATTERN",
    "CodeDetection",
    "EnhancementStage",
    "GenericNounFilter",
    "IntentClassificationStage",
    "IntentClassifier",
    "PipelineVersion",
    "ProcessedQuery",
    "QueryEnhancer",
    "QueryType",
    "SearchContext",
    "SearchFeature",
    "Stemming",
    "SynonymExpansion",
    "new_context",
    "run_pipeline",
    "select_stages",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor TAXONOMY_CODE_PATTERN]
TAXONOMY_CODE_PATTERN = re.compile(r"^[A-Za-z]{1,2}(-\d{1,4}(\.\d{1,4}){0,3})?$")

# [nav:anchor CODE_FIELDS]
CODE_FIELDS = ("code", "code._2gram", "code._3gram")
# [nav:anchor NAME_FIELDS]
NAME_FIELDS = ("name", "name._2gram", "name._3gram")

type QueryType = Literal["user", "intent", "synonym"]


# [nav:anchor PipelineVersion]
class PipelineVersion(IntEnum):
    """API versions with distinct enhancement behaviour."""

    V1 = 1
    V2 = 2
    V3 = 3


# [nav:anchor SearchFeature]
class SearchFeature(StrEnum):
    """Capabilities a pipeline version enables."""

    STEMMING = "stemming"
    SYNONYMS = "synonyms"
    INTENT_CLASSIFICATION = "intent_classification"
    GENERIC_NOUN_FILTERING = "generic_noun_filtering"
    FUZZY_MATCHING = "fuzzy_matching"


_FULL_FEATURES = frozenset(SearchFeature)

# [nav:anchor FEATURES_BY_VERSION]
FEATURES_BY_VERSION: Mapping[PipelineVersion, frozenset[SearchFeature]] = {
    PipelineVersion.V1: frozenset(),
    PipelineVersion.V2: _FULL_FEATURES,
    PipelineVersion.V3: _FULL_FEATURES,
}


@dataclass(frozen=True, slots=True)
# [nav:anchor ProcessedQuery]
class ProcessedQuery:
    """One query string the suggestion search will run, with its provenance."""

    query: str
    type: QueryType
    source: str


@dataclass(frozen=True, slots=True)
# [nav:anchor SearchContext]
class SearchContext:
    """Per-request enhancement state; stages return modified copies.

    Attributes
    ----------
    original_query : str
        Query as typed.
    version : PipelineVersion
        API version driving stage selection.
    is_code_search : bool
        ``True`` when the query looks like a taxonomy code.
    fields : tuple[str, ...]
        Index fields the query is matched against.
    processed_queries : tuple[ProcessedQuery, ...]
        Candidate query strings.
    features : frozenset[SearchFeature]
        Enabled capabilities.
    disable_intent_classification : bool
        Caller opted out of classification.
    intent_classification : IntentClassification | None
        Classifier verdict, when one with a primary intent was obtained.
    """

    original_query: str
    version: PipelineVersion = PipelineVersion.V1
    is_code_search: bool = False
    fields: tuple[str, ...] = ()
    processed_queries: tuple[ProcessedQuery, ...] = ()
    features: frozenset[SearchFeature] = frozenset()
    disable_intent_classification: bool = False
    intent_classification: IntentClassification | None = None

    @property
    def user_queries(self) -> tuple[ProcessedQuery, ...]:
        """Return entries derived from the user's own text."""
        return tuple(pq for pq in self.processed_queries if pq.type == "user")

    @property
    def intent_queries(self) -> tuple[ProcessedQuery, ...]:
        """Return entries derived from the classified intent."""
        return tuple(pq for pq in self.processed_queries if pq.type == "intent")


# [nav:anchor new_context]
def new_context(
    query: str,
    version: int | PipelineVersion,
    *,
    disable_intent_classification: bool = False,
) -> SearchContext:
    """Create the initial context for ``query`` under ``version``."""
    resolved = PipelineVersion(version)
    return SearchContext(
        original_query=query,
        version=resolved,
        features=FEATURES_BY_VERSION[resolved],
        disable_intent_classification=disable_intent_classification,
    )


# [nav:anchor IntentClassifier]
class IntentClassifier(Protocol):
    """Anything that classifies a query without raising."""

    async def classify(
        self, query: str, request_id: str | None = None
    ) -> IntentClassification:
        """Return a verdict, degraded on failure."""
        ...


# [nav:anchor EnhancementStage]
class EnhancementStage(Protocol):
    """A single pipeline stage."""

    def should_process(self, context: SearchContext) -> bool:
        """Return ``True`` when the stage applies to ``context``."""
        ...

    async def process(self, context: SearchContext) -> SearchContext:
        """Return the transformed context."""
        ...


def _replace_user_query(context: SearchContext, entry: ProcessedQuery) -> SearchContext:
    queries = list(context.processed_queries)
    for index, existing in enumerate(queries):
        if existing.type == "user":
            queries[index] = entry
            return replace(context, processed_queries=tuple(queries))
    return context


# [nav:anchor CodeDetection]
class CodeDetection:
    """Route taxonomy-code queries to code fields and seed the user query."""

    def should_process(self, context: SearchContext) -> bool:
        return not context.fields

    async def process(self, context: SearchContext) -> SearchContext:
        is_code = bool(TAXONOMY_CODE_PATTERN.match(context.original_query.strip()))
        return replace(
            context,
            is_code_search=is_code,
            fields=CODE_FIELDS if is_code else NAME_FIELDS,
            processed_queries=(
                *context.processed_queries,
                ProcessedQuery(context.original_query, "user", "original"),
            ),
        )


# [nav:anchor Stemming]
class Stemming:
    """Replace the user query with its stemmed form when that helps matching."""

    def __init__(self, nlp: NlpPreprocessor) -> None:
        self._nlp = nlp

    def should_process(self, context: SearchContext) -> bool:
        return (
            SearchFeature.STEMMING in context.features
            and not context.is_code_search
            and len(context.original_query.strip()) >= 3
        )

    async def process(self, context: SearchContext) -> SearchContext:
        result = self._nlp.stem_query_for_suggestion(context.original_query)
        if not (result.should_use_stemmed and result.stemmed):
            logger.debug(
                "Keeping original query",
                extra={"operation": "enhance.stemming", "version": int(context.version)},
            )
            return context
        return _replace_user_query(context, ProcessedQuery(result.stemmed, "user", "stemmed"))


# [nav:anchor SynonymExpansion]
class SynonymExpansion:
    """Append synonyms of the query's nouns to the user query."""

    def __init__(self, nlp: NlpPreprocessor) -> None:
        self._nlp = nlp

    def should_process(self, context: SearchContext) -> bool:
        return SearchFeature.SYNONYMS in context.features and not context.is_code_search

    async def process(self, context: SearchContext) -> SearchContext:
        users = context.user_queries
        if not users:
            return context
        user = users[0]
        present = set(user.query.lower().split())
        additions: list[str] = []
        for noun in self._nlp.extract_nouns(context.original_query):
            for synonym in self._nlp.synonyms.synonyms(noun):
                lowered = synonym.lower()
                if lowered in present or lowered in additions:
                    continue
                additions.append(lowered)
        if not additions:
            return context
        expanded = f"{user.query} {' '.join(additions)}".strip()
        return _replace_user_query(context, replace(user, query=expanded))


# [nav:anchor IntentClassificationStage]
class IntentClassificationStage:
    """Classify longer free-text queries and add intent-derived queries.

    Parameters
    ----------
    classifier : IntentClassifier
        Lenient classifier; its fallback verdict has no primary intent.
    nlp : NlpPreprocessor
        Used to stem and filter the intent name.
    min_words : int, optional
        Queries with fewer words are not classified. Defaults to 3.
    """

    def __init__(
        self, classifier: IntentClassifier, nlp: NlpPreprocessor, *, min_words: int = 3
    ) -> None:
        self._classifier = classifier
        self._nlp = nlp
        self._min_words = min_words

    def should_process(self, context: SearchContext) -> bool:
        if SearchFeature.INTENT_CLASSIFICATION not in context.features:
            return False
        if context.is_code_search or context.disable_intent_classification:
            return False
        return self._nlp.word_count(context.original_query) >= self._min_words

    def intent_terms(self, intent: str) -> list[str]:
        """Return the search terms derived from an intent name."""
        result = self._nlp.stem_query_for_suggestion(intent)
        if result.should_use_stemmed and result.stemmed:
            return self._nlp.filter_generic_nouns(result.stemmed.split())
        lowered = intent.lower()
        return [] if self._nlp.is_generic_noun(lowered) else [lowered]

    async def process(self, context: SearchContext) -> SearchContext:
        classification = await self._classifier.classify(context.original_query)
        intent = classification.primary_intent
        if not intent:
            logger.debug(
                "No primary intent",
                extra={"operation": "enhance.intent", "version": int(context.version)},
            )
            return context
        terms = self.intent_terms(intent)
        logger.debug(
            "Intent %s produced %d queries",
            intent,
            len(terms),
            extra={"operation": "enhance.intent", "terms": terms},
        )
        return replace(
            context,
            intent_classification=classification,
            processed_queries=(
                *context.processed_queries,
                *(ProcessedQuery(term, "intent", intent) for term in terms),
            ),
        )


# [nav:anchor GenericNounFilter]
class GenericNounFilter:
    """Drop entries made up only of generic nouns."""

    def __init__(self, nlp: NlpPreprocessor) -> None:
        self._nlp = nlp

    def should_process(self, context: SearchContext) -> bool:
        return SearchFeature.GENERIC_NOUN_FILTERING in context.features

    async def process(self, context: SearchContext) -> SearchContext:
        kept = tuple(
            pq
            for pq in context.processed_queries
            if self._nlp.filter_generic_nouns(pq.query.split())
        )
        dropped = len(context.processed_queries) - len(kept)
        if dropped:
            logger.debug(
                "Filtered %d generic-only queries",
                dropped,
                extra={"operation": "enhance.generic_filter", "version": int(context.version)},
            )
        return replace(context, processed_queries=kept)


# [nav:anchor select_stages]
def select_stages(
    version: int | PipelineVersion,
    *,
    nlp: NlpPreprocessor,
    classifier: IntentClassifier,
) -> tuple[EnhancementStage, ...]:
    """Return the ordered stages for ``version``.

    V1 detects codes only. V2 and V3 run the full chain; V3 differs in how the
    suggestion service consumes the result, not in the stages.
    """
    full: tuple[EnhancementStage, ...] = (
        CodeDetection(),
        Stemming(nlp),
        SynonymExpansion(nlp),
        IntentClassificationStage(classifier, nlp),
        GenericNounFilter(nlp),
    )
    table: Mapping[PipelineVersion, tuple[EnhancementStage, ...]] = {
        PipelineVersion.V1: (CodeDetection(),),
        PipelineVersion.V2: full,
        PipelineVersion.V3: full,
    }
    return table[PipelineVersion(version)]


# [nav:anchor run_pipeline]
async def run_pipeline(
    stages: Sequence[EnhancementStage], context: SearchContext
) -> SearchContext:
    """Apply each applicable stage to ``context`` in order."""
    for stage in stages:
        if stage.should_process(context):
            context = await stage.process(context)
    return context


# [nav:anchor QueryEnhancer]
class QueryEnhancer:
    """Build and run the pipeline for a version in one call."""

    def __init__(self, nlp: NlpPreprocessor, classifier: IntentClassifier) -> None:
        self._nlp = nlp
        self._classifier = classifier

    async def enhance(
        self,
        query: str,
        version: int | PipelineVersion,
        *,
        disable_intent_classification: bool = False,
    ) -> SearchContext:
        """Return the enhanced context for ``query``."""
        stages = select_stages(version, nlp=self._nlp, classifier=self._classifier)
        context = new_context(
            query, version, disable_intent_classification=disable_intent_classification
        )
        return await run_pipeline(stages, context)
