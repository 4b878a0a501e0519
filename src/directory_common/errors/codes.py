"""Error code registry and type URIs for Problem Details.

Codes are kebab-case and stable across releases; clients may branch on them.

Examples
--------
>>> from directory_common.errors.codes import ErrorCode, get_type_uri
>>> get_type_uri(ErrorCode.RETRIEVAL_UNAVAILABLE)
'https://directory-search.dev/problems/retrieval-unavailable'
"""

# [nav:section public-api]

from __future__ import annotations

from enum import StrEnum
from typing import Final

from directory_common.navmap import load_nav_metadata

__all__ = [
    "BASE_TYPE_URI",
    "ErrorCode",
    "get_type_uri",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))


# [nav:anchor BASE_TYPE_URI]
BASE_TYPE_URI: Final[str] = "https://directory-search.dev/problems"


# [nav:anchor ErrorCode]
class ErrorCode(StrEnum):
    """Stable error codes for directory search exceptions.

    Codes are grouped by category:
    - Request validation
    - Upstream adapters (embedding, classification, reranking)
    - Retrieval backend
    - Configuration & runtime

    Examples
    --------
    >>> ErrorCode.INVALID_CURSOR == "invalid-cursor"
    True
    """

    # Request validation
    INVALID_INPUT = "invalid-input"
    SEARCH_QUERY_INVALID = "search-query-invalid"
    INVALID_CURSOR = "invalid-cursor"
    INVALID_WEIGHTS = "invalid-weights"
    MISSING_TENANT = "missing-tenant"

    # Upstream adapters
    EMBEDDING_ERROR = "embedding-error"
    CLASSIFICATION_ERROR = "classification-error"
    RERANK_ERROR = "rerank-error"

    # Retrieval backend
    RETRIEVAL_UNAVAILABLE = "retrieval-unavailable"
    RETRIEVAL_QUERY_FAILED = "retrieval-query-failed"

    # Configuration & runtime
    CONFIGURATION_ERROR = "configuration-error"
    WEIGHT_CONFIG_INVALID = "weight-config-invalid"
    RUNTIME_ERROR = "runtime-error"
    SERIALIZATION_ERROR = "serialization-error"

    def __str__(self) -> str:
        return self.value


# [nav:anchor get_type_uri]
def get_type_uri(code: ErrorCode) -> str:
    """Return the RFC 9457 type URI for ``code``.

    Parameters
    ----------
    code : ErrorCode
        Error code.

    Returns
    -------
    str
        ``BASE_TYPE_URI`` joined with the code value.
    """
    return f"{BASE_TYPE_URI}/{code.value}"
