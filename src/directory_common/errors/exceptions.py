"""Typed exception hierarchy with Problem Details support.

All directory search exceptions inherit from :class:`DirectorySearchError`, which carries
a stable :class:`ErrorCode`, an HTTP status, a log level and a context mapping, and
converts itself to an RFC 9457 payload.

Examples
--------
>>> from directory_common.errors import RetrievalBackendError, ErrorCode
>>> try:
...     raise RetrievalBackendError("msearch failed", cause=OSError("refused"))
... except RetrievalBackendError as e:
...     assert e.code == ErrorCode.RETRIEVAL_UNAVAILABLE
...     assert e.http_status == 502
...     details = e.to_problem_details(instance="/search")
"""

# [nav:section public-api]

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from directory_common.errors.codes import ErrorCode, get_type_uri
from directory_common.navmap import load_nav_metadata
from directory_common.problem_details import build_problem_details

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from directory_common.problem_details import ProblemDetails
    from directory_common.types import JsonValue

__all__ = [
    "ConfigurationError",
    "DirectorySearchError",
    "InvalidCursorError",
    "InvalidSearchRequestError",
    "RetrievalBackendError",
    "SettingsError",
    "UpstreamAdapterError",
    "WeightConfigError",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))


# [nav:anchor DirectorySearchError]
class DirectorySearchError(Exception):
    """Base exception for all directory search errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode, optional
        Stable error code. Defaults to ``ErrorCode.RUNTIME_ERROR``.
    http_status : int, optional
        Status used when the error reaches an HTTP client. Defaults to 500.
    log_level : int, optional
        Level the HTTP handler logs at. Defaults to ``logging.ERROR``.
    cause : BaseException | None, optional
        Underlying exception, chained as ``__cause__``.
    context : Mapping[str, object] | None, optional
        Extra members rendered as Problem Details ``extensions``.

    Attributes
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode
        Error code enum value.
    http_status : int
        HTTP status code.
    log_level : int
        Logging level.
    context : dict[str, object]
        Additional context.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.RUNTIME_ERROR,
        http_status: int = 500,
        log_level: int = logging.ERROR,
        cause: BaseException | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.log_level = log_level
        self.context: dict[str, object] = dict(context) if context else {}
        if cause is not None:
            self.__cause__ = cause

    def field_errors(self) -> Sequence[JsonValue]:
        """Return field-level errors rendered under ``errors``; none by default."""
        return ()

    def to_problem_details(
        self,
        instance: str | None = None,
        title: str | None = None,
    ) -> ProblemDetails:
        """Convert the error to an RFC 9457 Problem Details payload.

        Parameters
        ----------
        instance : str | None, optional
            URI identifying the occurrence. Defaults to ``urn:directory-search:error``.
        title : str | None, optional
            Short summary. Defaults to the exception class name.

        Returns
        -------
        ProblemDetails
            Validated payload with ``type``, ``title``, ``status``, ``detail``,
            ``instance`` and ``code``.
        """
        extensions = {key: _jsonable(value) for key, value in self.context.items()}
        return build_problem_details(
            problem_type=get_type_uri(self.code),
            title=title or type(self).__name__,
            status=self.http_status,
            detail=self.message,
            instance=instance or "urn:directory-search:error",
            code=self.code.value,
            extensions=extensions or None,
            errors=self.field_errors() or None,
        )

    def __str__(self) -> str:
        base = f"{type(self).__name__}[{self.code.value}]: {self.message}"
        if self.__cause__ is not None:
            base += f" (caused by: {type(self.__cause__).__name__})"
        return base


def _jsonable(value: object) -> JsonValue:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return cast("JsonValue", str(value))


# [nav:anchor InvalidSearchRequestError]
class InvalidSearchRequestError(DirectorySearchError):
    """Client supplied an unusable search or suggestion request (HTTP 400).

    Parameters
    ----------
    message : str
        What is wrong with the request.
    errors : Sequence[Mapping[str, object]] | None, optional
        Field-level errors, each with at least ``loc`` and ``msg``.
    code : ErrorCode, optional
        Defaults to ``ErrorCode.SEARCH_QUERY_INVALID``.
    cause : BaseException | None, optional
        Underlying exception.
    context : Mapping[str, object] | None, optional
        Extra context.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[Mapping[str, object]] | None = None,
        code: ErrorCode = ErrorCode.SEARCH_QUERY_INVALID,
        cause: BaseException | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            http_status=400,
            log_level=logging.INFO,
            cause=cause,
            context=context,
        )
        self.errors = [dict(item) for item in errors or ()]

    def field_errors(self) -> Sequence[JsonValue]:
        return [_jsonable(item) for item in self.errors]


# [nav:anchor InvalidCursorError]
class InvalidCursorError(InvalidSearchRequestError):
    """``search_after`` does not match the ``[score, doc_id]`` sort key (HTTP 400)."""

    def __init__(self, message: str, *, cursor: object = None) -> None:
        super().__init__(
            message,
            code=ErrorCode.INVALID_CURSOR,
            context={"search_after": cursor},
            errors=[{"loc": ["body", "search_after"], "msg": message}],
        )


# [nav:anchor UpstreamAdapterError]
class UpstreamAdapterError(DirectorySearchError):
    """An embedding, classification or rerank call failed.

    Adapters absorb this into their degraded value; it only escapes when a caller
    invokes an adapter's strict method directly.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.EMBEDDING_ERROR,
        cause: BaseException | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            http_status=502,
            log_level=logging.WARNING,
            cause=cause,
            context=context,
        )


# [nav:anchor RetrievalBackendError]
class RetrievalBackendError(DirectorySearchError):
    """The retrieval backend failed; no result set can be built (HTTP 502).

    Parameters
    ----------
    message : str
        Failure summary.
    code : ErrorCode, optional
        ``RETRIEVAL_UNAVAILABLE`` for transport failures (default) or
        ``RETRIEVAL_QUERY_FAILED`` when the backend rejected a query.
    http_status : int, optional
        Defaults to 502.
    cause : BaseException | None, optional
        Underlying exception.
    context : Mapping[str, object] | None, optional
        Extra context such as the index name.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.RETRIEVAL_UNAVAILABLE,
        http_status: int = 502,
        cause: BaseException | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            http_status=http_status,
            cause=cause,
            context=context,
        )


# [nav:anchor ConfigurationError]
class ConfigurationError(DirectorySearchError):
    """Invalid process configuration (HTTP 500)."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        cause: BaseException | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message, code=code, http_status=500, cause=cause, context=context)


# [nav:anchor SettingsError]
class SettingsError(ConfigurationError):
    """Environment-driven settings failed validation at startup."""


# [nav:anchor WeightConfigError]
class WeightConfigError(ConfigurationError):
    """A weight document was unreadable or out of bounds.

    The weight store catches this and keeps serving its previous snapshot.

    Parameters
    ----------
    message : str
        Failure summary.
    violations : Sequence[str] | None, optional
        One entry per offending field, ``"<path>: <reason>"``.
    cause : BaseException | None, optional
        Underlying exception.
    """

    def __init__(
        self,
        message: str,
        *,
        violations: Sequence[str] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.violations = list(violations or ())
        super().__init__(
            message,
            code=ErrorCode.WEIGHT_CONFIG_INVALID,
            cause=cause,
            context={"violations": self.violations} if self.violations else None,
        )
