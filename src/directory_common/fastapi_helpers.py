"""Typed FastAPI helper utilities with structured logging and timeouts.

The helpers wrap FastAPI primitives so dependencies, middleware and exception
handlers emit structured logs carrying the request correlation ID, and so none of
them can hold a request open past a configurable timeout.
"""

# [nav:section public-api]

from __future__ import annotations

import asyncio
import functools
import time
import typing as t
from collections.abc import Callable
from typing import TYPE_CHECKING, cast

from fastapi import Depends
from starlette.middleware.base import BaseHTTPMiddleware

from directory_common.logging import get_correlation_id, get_logger, with_fields
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.requests import Request as StarletteRequest
    from starlette.responses import Response
    from starlette.types import ASGIApp

__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "typed_dependency",
    "typed_exception_handler",
    "typed_middleware",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

# [nav:anchor DEFAULT_TIMEOUT_SECONDS]
DEFAULT_TIMEOUT_SECONDS = 10.0
"""Default timeout applied to FastAPI helpers (in seconds)."""

logger = get_logger(__name__)

MiddlewareFactory = Callable[..., BaseHTTPMiddleware]


async def _await_with_timeout[T](coro: t.Awaitable[T], timeout_seconds: float | None) -> T:
    if timeout_seconds is None:
        return await coro
    return await asyncio.wait_for(coro, timeout_seconds)


# [nav:anchor typed_dependency]
def typed_dependency[**P, T](
    dependency: Callable[P, t.Awaitable[T]],
    *,
    name: str,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
) -> object:
    """Return a ``Depends`` marker that logs and time-bounds ``dependency``.

    Parameters
    ----------
    dependency : Callable[P, t.Awaitable[T]]
        Async dependency function.
    name : str
        Operation name used in logs.
    timeout : float | None, optional
        Timeout in seconds; ``None`` disables it.

    Returns
    -------
    object
        Marker for use in ``Annotated`` parameters.

    Notes
    -----
    Exceptions raised by ``dependency`` are re-raised unchanged.
    """

    @functools.wraps(dependency)
    async def _instrumented(*args: P.args, **kwargs: P.kwargs) -> T:
        with with_fields(logger, operation=name, correlation_id=get_correlation_id()) as log:
            start = time.perf_counter()
            try:
                result = await _await_with_timeout(dependency(*args, **kwargs), timeout)
            except TimeoutError:
                log.exception(
                    "dependency.timeout",
                    extra={
                        "status": "timeout",
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise
            log.debug(
                "dependency.success",
                extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
            )
            return result

    return cast("object", Depends(_instrumented))


# [nav:anchor typed_exception_handler]
def typed_exception_handler[E: Exception](
    app: FastAPI,
    exception_type: type[E],
    handler: Callable[[Request, E], t.Awaitable[Response]],
    *,
    name: str,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    """Register ``handler`` for ``exception_type`` with logging and a timeout."""

    async def _wrapped(request: Request, exc: E) -> Response:
        with with_fields(logger, operation=name, correlation_id=get_correlation_id()) as log:
            start = time.perf_counter()
            response = await _await_with_timeout(handler(request, exc), timeout)
            log.debug(
                "exception_handler.success",
                extra={
                    "exception_type": exception_type.__name__,
                    "duration_ms": (time.perf_counter() - start) * 1000.0,
                },
            )
            return response

    app.add_exception_handler(
        exception_type,
        cast("Callable[[Request, Exception], t.Awaitable[Response]]", _wrapped),
    )


# [nav:anchor typed_middleware]
def typed_middleware(
    app: FastAPI,
    middleware_class: MiddlewareFactory,
    *factory_args: object,
    name: str,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    **options: object,
) -> None:
    """Register ``middleware_class`` wrapped with logging and a timeout."""

    class _InstrumentedMiddleware(BaseHTTPMiddleware):
        def __init__(self, app: ASGIApp) -> None:
            self._delegate = middleware_class(app, *factory_args, **options)
            super().__init__(app)

        async def dispatch(
            self,
            request: StarletteRequest,
            call_next: Callable[[StarletteRequest], t.Awaitable[Response]],
        ) -> Response:
            start = time.perf_counter()
            try:
                response = await _await_with_timeout(
                    self._delegate.dispatch(request, call_next),
                    timeout_seconds=timeout,
                )
            except TimeoutError:
                with with_fields(
                    logger, operation=name, correlation_id=get_correlation_id()
                ) as log:
                    log.exception(
                        "middleware.timeout",
                        extra={
                            "status": "timeout",
                            "duration_ms": (time.perf_counter() - start) * 1000.0,
                        },
                    )
                raise
            return response

    name_attr: object = getattr(middleware_class, "__name__", None)
    _InstrumentedMiddleware.__name__ = name_attr if isinstance(name_attr, str) else name
    app.add_middleware(_InstrumentedMiddleware)
