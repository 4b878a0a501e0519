"""Tenacity retry policy shared by upstream HTTP calls.

Only transient failures are retried: timeouts, refused connections, HTTP 429 and
5xx answers. Everything else surfaces on the first attempt.

Examples
--------
>>> from directory_common.http.retry import RetryPolicy
>>> policy = RetryPolicy(max_attempts=2, wait_initial_s=0.0)
>>> policy.max_attempts
2
"""

# [nav:section public-api]

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from directory_common.http.errors import (
    HttpConnectionError,
    HttpStatusError,
    HttpTimeoutError,
    raise_for_status,
    translate_transport_error,
)
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tenacity import RetryCallState

__all__ = [
    "RetryPolicy",
    "is_transient",
    "send_with_retry",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)


# [nav:anchor is_transient]
def is_transient(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` is worth another attempt."""
    if isinstance(exc, (HttpTimeoutError, HttpConnectionError)):
        return True
    return isinstance(exc, HttpStatusError) and exc.retryable


@dataclass(frozen=True, slots=True)
# [nav:anchor RetryPolicy]
class RetryPolicy:
    """Attempts and backoff for one upstream service.

    Attributes
    ----------
    max_attempts : int
        Total attempts, first try included.
    wait_initial_s : float
        First backoff interval in seconds.
    wait_max_s : float
        Cap on a single backoff interval.
    jitter_s : float
        Maximum random jitter added to each interval.
    """

    max_attempts: int = 2
    wait_initial_s: float = 0.1
    wait_max_s: float = 1.0
    jitter_s: float = 0.1

    def retrying(self, *, operation: str) -> AsyncRetrying:
        """Build a tenacity controller for ``operation``."""

        def _before_sleep(state: RetryCallState) -> None:
            outcome = state.outcome
            exc = outcome.exception() if outcome is not None else None
            logger.warning(
                "Retrying upstream call",
                extra={
                    "operation": operation,
                    "status": "retrying",
                    "attempt": state.attempt_number,
                    "error_type": type(exc).__name__ if exc is not None else None,
                },
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.wait_initial_s,
                max=self.wait_max_s,
                jitter=self.jitter_s,
            ),
            retry=retry_if_exception(is_transient),
            before_sleep=_before_sleep,
            reraise=True,
        )


# [nav:anchor send_with_retry]
async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    *,
    operation: str,
) -> httpx.Response:
    """Issue ``send`` under ``policy`` and return the first successful response.

    Parameters
    ----------
    send : Callable[[], Awaitable[httpx.Response]]
        Zero-argument coroutine factory performing one request.
    policy : RetryPolicy
        Attempts and backoff.
    operation : str
        Operation name for logs.

    Returns
    -------
    httpx.Response
        Response with a status below 400.

    Raises
    ------
    HttpError
        The last failure once attempts are exhausted or a failure is not transient.
    """

    async def _attempt() -> httpx.Response:
        try:
            response = await send()
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc
        return raise_for_status(response)

    async for attempt in policy.retrying(operation=operation):
        with attempt:
            return await _attempt()
    # AsyncRetrying with reraise=True either returns or raises above.
    msg = "retry loop exited without an outcome"
    raise AssertionError(msg)
