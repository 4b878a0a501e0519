"""Taxonomy autocomplete over the per-tenant taxonomy index.

Versions share one enhancement pipeline (see :mod:`hybrid_search.enhancement`) and
differ in what they search:

* V1 searches the original text.
* V2 searches the enhanced user entry, or the original text when the generic-noun
  filter removed it.
* V3 additionally searches every intent-derived entry, concurrently with the user
  entry, and merges the result sets keeping the higher score per taxonomy.
"""

# [nav:section public-api]

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from directory_common.errors import ErrorCode, InvalidSearchRequestError
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata
from hybrid_search.enhancement import CODE_FIELDS, PipelineVersion
from hybrid_search.tenancy import taxonomies_index

if TYPE_CHECKING:
    from directory_common.types import JsonObject
    from hybrid_search.enhancement import QueryEnhancer, SearchContext
    from hybrid_search.executor import SearchBackend

__all__ = [
    "PAGE_SIZE",
    "SuggestionRequest",
    "SuggestionService",
    "build_suggestion_query",
    "merge_keep_higher",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor PAGE_SIZE]
PAGE_SIZE = 10


@dataclass(frozen=True, slots=True)
# [nav:anchor SuggestionRequest]
class SuggestionRequest:
    """Inputs of one autocomplete call.

    Attributes
    ----------
    query : str | None
        Free text typed by the user.
    code : str | None
        Taxonomy code prefix, used when ``query`` is empty.
    page : int
        One-based page of :data:`PAGE_SIZE` suggestions.
    disable_intent_classification : bool
        Skip the classifier.
    """

    query: str | None = None
    code: str | None = None
    page: int = 1
    disable_intent_classification: bool = False


# [nav:anchor build_suggestion_query]
def build_suggestion_query(text: str, fields: Sequence[str], page: int) -> JsonObject:
    """Return the prefix-matching search body for one suggestion query."""
    return {
        "from": (page - 1) * PAGE_SIZE,
        "size": PAGE_SIZE,
        "query": {
            "bool": {
                "must": {
                    "multi_match": {
                        "query": text,
                        "type": "bool_prefix",
                        "fields": list(fields),
                        "fuzziness": "AUTO",
                    }
                },
                "filter": [],
            }
        },
    }


def _hits(response: Mapping[str, object]) -> list[Mapping[str, object]]:
    section = response.get("hits")
    hits = section.get("hits") if isinstance(section, Mapping) else None
    return [hit for hit in hits if isinstance(hit, Mapping)] if isinstance(hits, list) else []


def _score(hit: Mapping[str, object]) -> float:
    score = hit.get("_score")
    return float(score) if isinstance(score, (int, float)) else 0.0


# [nav:anchor merge_keep_higher]
def merge_keep_higher(responses: Sequence[Mapping[str, object]]) -> JsonObject:
    """Merge search responses, keeping the higher-scored copy of each document.

    Parameters
    ----------
    responses : Sequence[Mapping[str, object]]
        Backend ``_search`` responses.

    Returns
    -------
    JsonObject
        A response of the same shape: hits sorted by score, ``took`` summed and
        ``timed_out`` set if any input timed out.
    """
    best: dict[str, Mapping[str, object]] = {}
    took = 0
    timed_out = False
    for response in responses:
        value = response.get("took")
        took += int(value) if isinstance(value, (int, float)) else 0
        timed_out = timed_out or response.get("timed_out") is True
        for hit in _hits(response):
            doc_id = str(hit.get("_id"))
            existing = best.get(doc_id)
            if existing is None or _score(hit) > _score(existing):
                best[doc_id] = hit
    merged = sorted(best.values(), key=lambda hit: (-_score(hit), str(hit.get("_id"))))
    return {
        "took": took,
        "timed_out": timed_out,
        "hits": {
            "total": {"value": len(merged), "relation": "eq"},
            "max_score": _score(merged[0]) if merged else None,
            "hits": [dict(hit) for hit in merged],
        },
    }


# [nav:anchor SuggestionService]
class SuggestionService:
    """Autocomplete taxonomy names and codes.

    Parameters
    ----------
    backend : SearchBackend
        Search backend.
    enhancer : QueryEnhancer
        Runs the versioned enhancement pipeline.
    """

    def __init__(self, backend: SearchBackend, enhancer: QueryEnhancer) -> None:
        self._backend = backend
        self._enhancer = enhancer

    async def suggest(
        self,
        request: SuggestionRequest,
        *,
        tenant: str,
        lang: str,
        version: int | PipelineVersion = PipelineVersion.V1,
    ) -> JsonObject:
        """Return one page of taxonomy suggestions.

        Parameters
        ----------
        request : SuggestionRequest
            Query inputs.
        tenant : str
            Tenant short code.
        lang : str
            Language code.
        version : int | PipelineVersion, optional
            Pipeline version.

        Returns
        -------
        JsonObject
            Backend-shaped response. V3 merged responses also carry
            ``search_queries_used`` and ``intent_classification``.

        Raises
        ------
        InvalidSearchRequestError
            If neither ``query`` nor ``code`` is given, or ``page`` is below 1.
        RetrievalBackendError
            If the backend fails.
        """
        query = (request.query or "").strip()
        code = (request.code or "").strip()
        if not query and not code:
            msg = "Query or code is required"
            raise InvalidSearchRequestError(
                msg,
                code=ErrorCode.INVALID_INPUT,
                errors=[{"loc": ["query", "query"], "msg": msg}],
            )
        if request.page < 1:
            msg = "page must be at least 1"
            raise InvalidSearchRequestError(
                msg, code=ErrorCode.INVALID_INPUT, errors=[{"loc": ["query", "page"], "msg": msg}]
            )
        resolved = PipelineVersion(version)
        index = taxonomies_index(tenant, lang)

        if not query:
            # a bare code parameter is always a code search
            return await self._backend.search(
                index, build_suggestion_query(code, CODE_FIELDS, request.page)
            )

        context = await self._enhancer.enhance(
            query,
            resolved,
            disable_intent_classification=request.disable_intent_classification,
        )
        if self._uses_intent_queries(context):
            return await self._search_with_intents(index, context, request.page)

        user = context.user_queries
        text = query if resolved is PipelineVersion.V1 or not user else user[0].query
        logger.debug(
            "Suggestion query resolved",
            extra={"operation": "suggest", "version": int(resolved), "query_used": text},
        )
        return await self._backend.search(
            index, build_suggestion_query(text, context.fields, request.page)
        )

    @staticmethod
    def _uses_intent_queries(context: SearchContext) -> bool:
        return (
            context.version is PipelineVersion.V3
            and not context.is_code_search
            and not context.disable_intent_classification
            and len(context.original_query.split()) > 1
            and bool(context.intent_queries)
        )

    async def _search_with_intents(
        self, index: str, context: SearchContext, page: int
    ) -> JsonObject:
        user = context.user_queries[0] if context.user_queries else None
        intents = context.intent_queries
        texts = ([user.query] if user else []) + [entry.query for entry in intents]
        responses = await asyncio.gather(
            *(
                self._backend.search(index, build_suggestion_query(text, context.fields, page))
                for text in texts
            )
        )
        merged = merge_keep_higher(responses)
        merged["search_queries_used"] = {
            "user_query_stemmed": user.query if user else None,
            "intent_queries_stemmed": [entry.query for entry in intents],
        }
        if context.intent_classification is not None:
            merged["intent_classification"] = context.intent_classification.to_dict()
        logger.debug(
            "Merged %d suggestion queries",
            len(texts),
            extra={"operation": "suggest", "version": 3},
        )
        return merged
