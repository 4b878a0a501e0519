"""HTTP adapters for Problem Details exception handling.

Registers FastAPI exception handlers that render :class:`DirectorySearchError` and
request validation failures as RFC 9457 ``application/problem+json`` responses.

Examples
--------
>>> from fastapi import FastAPI
>>> from directory_common.errors.http import register_problem_details_handler
>>> app = FastAPI()
>>> register_problem_details_handler(app)
"""

# [nav:section public-api]

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response

from directory_common.errors.codes import ErrorCode
from directory_common.errors.exceptions import DirectorySearchError, InvalidSearchRequestError
from directory_common.fastapi_helpers import typed_exception_handler
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata
from directory_common.problem_details import render_problem

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

__all__ = [
    "PROBLEM_JSON",
    "problem_details_response",
    "register_problem_details_handler",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

# [nav:anchor PROBLEM_JSON]
PROBLEM_JSON = "application/problem+json"

logger = get_logger(__name__)


def _instance(request: Request | None) -> str | None:
    if request is None:
        return None
    instance = str(request.url.path)
    if request.url.query:
        instance += f"?{request.url.query}"
    return instance


# [nav:anchor problem_details_response]
def problem_details_response(
    error: DirectorySearchError,
    request: Request | None = None,
) -> Response:
    """Convert ``error`` to a Problem Details response.

    Parameters
    ----------
    error : DirectorySearchError
        Error to render.
    request : Request | None, optional
        Request whose path becomes the ``instance`` member.

    Returns
    -------
    Response
        Compact JSON body with the error's status and ``application/problem+json`` type.
    """
    details = error.to_problem_details(instance=_instance(request))
    logger.log(
        error.log_level,
        "Request failed: %s",
        error.message,
        extra={"operation": "problem_details", "code": error.code.value},
        exc_info=error.__cause__ if error.log_level >= 40 else None,
    )
    return Response(
        content=render_problem(details),
        status_code=error.http_status,
        media_type=PROBLEM_JSON,
    )


def _validation_error(exc: RequestValidationError) -> InvalidSearchRequestError:
    errors = [
        {
            "loc": [str(part) for part in item.get("loc", ())],
            "msg": str(item.get("msg", "")),
            "type": str(item.get("type", "")),
        }
        for item in exc.errors()
    ]
    first = errors[0]["msg"] if errors else "Request validation failed"
    return InvalidSearchRequestError(first, errors=errors, code=ErrorCode.INVALID_INPUT)


# [nav:anchor register_problem_details_handler]
def register_problem_details_handler(app: FastAPI) -> None:
    """Register Problem Details handlers for domain and validation errors."""

    async def _domain_handler(request: Request, exc: DirectorySearchError) -> Response:
        return problem_details_response(exc, request)

    async def _validation_handler(request: Request, exc: RequestValidationError) -> Response:
        return problem_details_response(_validation_error(exc), request)

    typed_exception_handler(
        app,
        DirectorySearchError,
        _domain_handler,
        name="directory_search_error_handler",
    )
    typed_exception_handler(
        app,
        RequestValidationError,
        _validation_handler,
        name="request_validation_handler",
    )
