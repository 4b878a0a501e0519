"""Structured logging helpers with correlation IDs.

This module provides :class:`LoggerAdapter` for structured logging with the standard
fields (``correlation_id``, ``operation``, ``status``, ``duration_ms``), a JSON formatter
for stdout, and contextvar-backed correlation IDs that follow a request through
``asyncio`` tasks.

Examples
--------
>>> from directory_common.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Search started", extra={"operation": "search", "status": "started"})
"""

# [nav:section public-api]

from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Self

from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from collections.abc import Mapping, MutableMapping
    from types import TracebackType

__all__ = [
    "CorrelationContext",
    "JsonFormatter",
    "LoggerAdapter",
    "get_correlation_id",
    "get_logger",
    "setup_logging",
    "with_fields",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

_STRUCTURED_FIELDS = ("correlation_id", "operation", "status", "duration_ms")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


# [nav:anchor JsonFormatter]
class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    The payload always carries ``ts``, ``level``, ``name`` and ``message``; the
    structured fields and any JSON-compatible ``extra`` values are appended. A
    correlation ID present in context is added when the record lacks one.

    Examples
    --------
    >>> import logging
    >>> handler = logging.StreamHandler()
    >>> handler.setFormatter(JsonFormatter())
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format ``record`` as JSON.

        Parameters
        ----------
        record : logging.LogRecord
            Record to render.

        Returns
        -------
        str
            JSON-encoded log entry.
        """
        data: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field in _STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                data[field] = value
        if "correlation_id" not in data:
            ctx_correlation_id = _correlation_id.get()
            if ctx_correlation_id is not None:
                data["correlation_id"] = ctx_correlation_id

        for key, value in record.__dict__.items():
            if (
                key in _RESERVED_ATTRS
                or key in data
                or key.startswith("_")
                or value is None
                or not isinstance(value, (str, int, float, bool, list, dict))
            ):
                continue
            data[key] = value

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


# [nav:anchor LoggerAdapter]
class LoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter that injects structured context fields.

    Fields bound at construction (see :func:`with_fields`) are merged under the
    per-call ``extra`` mapping, the context correlation ID is injected, and
    ``operation``/``status`` always receive a value.

    Parameters
    ----------
    logger : logging.Logger
        Base logger to wrap.
    extra : Mapping[str, object] | None, optional
        Fields added to every record emitted through this adapter.
    """

    def process(
        self, msg: object, kwargs: MutableMapping[str, Any]
    ) -> tuple[object, MutableMapping[str, Any]]:
        """Merge bound fields and the correlation ID into ``kwargs["extra"]``.

        Parameters
        ----------
        msg : object
            Log message.
        kwargs : MutableMapping[str, Any]
            Keyword arguments from the logging call.

        Returns
        -------
        tuple[object, MutableMapping[str, Any]]
            The message and updated keyword arguments.
        """
        extra = dict(kwargs.get("extra") or {})
        for key, value in (self.extra or {}).items():
            extra.setdefault(key, value)
        if "correlation_id" not in extra or extra["correlation_id"] is None:
            ctx_correlation_id = _correlation_id.get()
            if ctx_correlation_id is not None:
                extra["correlation_id"] = ctx_correlation_id
        extra.setdefault("operation", "unknown")
        kwargs["extra"] = extra
        return msg, kwargs

    def log(self, level: int, msg: object, *args: object, **kwargs: Any) -> None:
        """Log ``msg`` at ``level``, deriving ``status`` from the level when absent."""
        extra = dict(kwargs.get("extra") or {})
        if "status" not in extra and "status" not in (self.extra or {}):
            if level >= logging.ERROR:
                extra["status"] = "error"
            elif level >= logging.WARNING:
                extra["status"] = "warning"
            else:
                extra["status"] = "success"
        kwargs["extra"] = extra
        super().log(level, msg, *args, **kwargs)

    def log_success(
        self,
        message: str,
        *,
        operation: str | None = None,
        duration_ms: float | None = None,
        **fields: object,
    ) -> None:
        """Log a successful operation.

        Parameters
        ----------
        message : str
            Success message.
        operation : str | None, optional
            Operation name. Defaults to the bound value or ``"unknown"``.
        duration_ms : float | None, optional
            Elapsed time in milliseconds.
        **fields : object
            Additional structured fields.
        """
        extra: dict[str, object] = {"status": "success"}
        if operation is not None:
            extra["operation"] = operation
        if duration_ms is not None:
            extra["duration_ms"] = duration_ms
        extra.update(fields)
        self.info(message, extra=extra)

    def log_failure(
        self,
        message: str,
        *,
        exception: BaseException | None = None,
        operation: str | None = None,
        duration_ms: float | None = None,
        level: int = logging.ERROR,
        **fields: object,
    ) -> None:
        """Log a failure, recording the exception type and detail when given.

        Parameters
        ----------
        message : str
            Failure message.
        exception : BaseException | None, optional
            Exception that caused the failure.
        operation : str | None, optional
            Operation name.
        duration_ms : float | None, optional
            Elapsed time in milliseconds.
        level : int, optional
            Level to log at. Degraded-but-recovered paths use ``logging.WARNING``.
        **fields : object
            Additional structured fields.
        """
        extra: dict[str, object] = {"status": "error" if level >= logging.ERROR else "degraded"}
        if operation is not None:
            extra["operation"] = operation
        if duration_ms is not None:
            extra["duration_ms"] = duration_ms
        if exception is not None:
            extra["error_type"] = type(exception).__name__
            extra["error_detail"] = str(exception)
        extra.update(fields)
        self.log(level, message, extra=extra)


# [nav:anchor get_logger]
def get_logger(name: str) -> LoggerAdapter:
    """Return a structured logger adapter for ``name``.

    Library loggers get a ``NullHandler`` so nothing is printed until the
    application calls :func:`setup_logging`.

    Parameters
    ----------
    name : str
        Logger name, usually ``__name__``.

    Returns
    -------
    LoggerAdapter
        Adapter with structured field injection.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return LoggerAdapter(logger, {})


# [nav:anchor setup_logging]
def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure the root logger to emit JSON lines on stdout.

    Parameters
    ----------
    level : int | str, optional
        Threshold as a number or a level name such as ``"DEBUG"``.
    """
    if isinstance(level, str):
        level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


# [nav:anchor get_correlation_id]
def get_correlation_id() -> str | None:
    """Return the correlation ID for the current context, if any."""
    return _correlation_id.get()


# [nav:anchor CorrelationContext]
class CorrelationContext:
    """Bind a correlation ID for the duration of a ``with`` block.

    Parameters
    ----------
    correlation_id : str | None
        ID to bind; the previous value is restored on exit.

    Examples
    --------
    >>> with CorrelationContext("req-123"):
    ...     assert get_correlation_id() == "req-123"
    """

    def __init__(self, correlation_id: str | None) -> None:
        self.correlation_id = correlation_id
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> Self:
        self._token = _correlation_id.set(self.correlation_id)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _correlation_id.reset(self._token)
            self._token = None


class _WithFieldsContext(AbstractContextManager[LoggerAdapter]):
    def __init__(
        self, logger: logging.Logger | LoggerAdapter, fields: Mapping[str, object]
    ) -> None:
        self._logger = logger
        self._fields = dict(fields)
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> LoggerAdapter:
        base_logger = (
            self._logger.logger if isinstance(self._logger, LoggerAdapter) else self._logger
        )
        correlation_id = self._fields.get("correlation_id")
        if isinstance(correlation_id, str):
            self._token = _correlation_id.set(correlation_id)
        return LoggerAdapter(base_logger, self._fields)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _correlation_id.reset(self._token)
            self._token = None


# [nav:anchor with_fields]
def with_fields(
    logger: logging.Logger | LoggerAdapter,
    **fields: object,
) -> AbstractContextManager[LoggerAdapter]:
    """Return a context manager yielding an adapter bound to ``fields``.

    A string ``correlation_id`` among ``fields`` is also bound in context until
    the block exits.

    Parameters
    ----------
    logger : logging.Logger | LoggerAdapter
        Logger to wrap.
    **fields : object
        Structured fields attached to every record logged through the adapter.

    Returns
    -------
    AbstractContextManager[LoggerAdapter]
        Context manager yielding the bound adapter.

    Examples
    --------
    >>> logger = get_logger(__name__)
    >>> with with_fields(logger, operation="search", tenant="il211") as log:
    ...     log.info("Searching")
    """
    return _WithFieldsContext(logger, fields)
