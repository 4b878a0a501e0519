"""HTTP error types and retry policy for upstream service calls."""

from __future__ import annotations

from directory_common.http.errors import (
    HttpConnectionError,
    HttpError,
    HttpRateLimitedError,
    HttpStatusError,
    HttpTimeoutError,
)
from directory_common.http.retry import RetryPolicy, send_with_retry

__all__ = [
    "HttpConnectionError",
    "HttpError",
    "HttpRateLimitedError",
    "HttpStatusError",
    "HttpTimeoutError",
    "RetryPolicy",
    "send_with_retry",
]
