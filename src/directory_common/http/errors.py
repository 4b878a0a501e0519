"""HTTP client exception classes for upstream calls.

Transport and status failures raised by :mod:`httpx` are translated into this small
hierarchy so retry policies and adapters branch on one set of types.
"""

# [nav:section public-api]

from __future__ import annotations

import httpx

from directory_common.navmap import load_nav_metadata

__all__ = [
    "HttpConnectionError",
    "HttpError",
    "HttpRateLimitedError",
    "HttpStatusError",
    "HttpTimeoutError",
    "raise_for_status",
    "translate_transport_error",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

_BODY_EXCERPT_CHARS = 200


# [nav:anchor HttpError]
class HttpError(Exception):
    """Base exception for all HTTP client errors."""


# [nav:anchor HttpStatusError]
class HttpStatusError(HttpError):
    """Upstream answered with an error status.

    Parameters
    ----------
    status : int
        HTTP status code.
    body_excerpt : str | None, optional
        First characters of the response body.
    headers : dict[str, str] | None, optional
        Response headers.
    """

    def __init__(
        self,
        status: int,
        body_excerpt: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(f"HTTP {status}: {body_excerpt or ''}")
        self.status = status
        self.headers = headers or {}

    @property
    def retryable(self) -> bool:
        """Return ``True`` for 429 and 5xx statuses."""
        return self.status == 429 or self.status >= 500


# [nav:anchor HttpRateLimitedError]
class HttpRateLimitedError(HttpStatusError):
    """Exception raised when rate limited (HTTP 429)."""


# [nav:anchor HttpTimeoutError]
class HttpTimeoutError(HttpError):
    """Exception raised when a request times out."""


# [nav:anchor HttpConnectionError]
class HttpConnectionError(HttpError):
    """Exception raised when the connection fails."""


# [nav:anchor raise_for_status]
def raise_for_status(response: httpx.Response) -> httpx.Response:
    """Return ``response`` unchanged or raise :class:`HttpStatusError`.

    Parameters
    ----------
    response : httpx.Response
        Response to check.

    Returns
    -------
    httpx.Response
        The same response when its status is below 400.

    Raises
    ------
    HttpRateLimitedError
        On HTTP 429.
    HttpStatusError
        On any other status of 400 or above.
    """
    if response.status_code < 400:
        return response
    excerpt = response.text[:_BODY_EXCERPT_CHARS]
    headers = dict(response.headers)
    if response.status_code == 429:
        raise HttpRateLimitedError(response.status_code, excerpt, headers)
    raise HttpStatusError(response.status_code, excerpt, headers)


# [nav:anchor translate_transport_error]
def translate_transport_error(exc: httpx.TransportError) -> HttpError:
    """Map an :mod:`httpx` transport failure onto the local hierarchy."""
    if isinstance(exc, httpx.TimeoutException):
        return HttpTimeoutError(str(exc) or type(exc).__name__)
    return HttpConnectionError(str(exc) or type(exc).__name__)
