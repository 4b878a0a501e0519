"""Structured error hierarchy with RFC 9457 Problem Details support.

Examples
--------
>>> from directory_common.errors import InvalidCursorError, ErrorCode
>>> err = InvalidCursorError("search_after must be [score, doc_id]", cursor=[1])
>>> err.code is ErrorCode.INVALID_CURSOR
True
"""

# [nav:section public-api]

from __future__ import annotations

from directory_common.errors.codes import BASE_TYPE_URI, ErrorCode, get_type_uri
from directory_common.errors.exceptions import (
    ConfigurationError,
    DirectorySearchError,
    InvalidCursorError,
    InvalidSearchRequestError,
    RetrievalBackendError,
    SettingsError,
    UpstreamAdapterError,
    WeightConfigError,
)
from directory_common.navmap import load_nav_metadata

__all__ = [
    "BASE_TYPE_URI",
    "ConfigurationError",
    "DirectorySearchError",
    "ErrorCode",
    "InvalidCursorError",
    "InvalidSearchRequestError",
    "RetrievalBackendError",
    "SettingsError",
    "UpstreamAdapterError",
    "WeightConfigError",
    "get_type_uri",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))
