"""RFC 9457 Problem Details helpers with schema validation.

Payloads are validated against the packaged JSON Schema 2020-12 document at
``directory_common/schema/problem_details.json`` before they leave the process.

Examples
--------
>>> from directory_common.problem_details import build_problem_details
>>> problem = build_problem_details(
...     problem_type="https://directory-search.dev/problems/retrieval-unavailable",
...     title="RetrievalBackendError",
...     status=502,
...     detail="msearch failed",
...     instance="/search",
... )
>>> problem["status"]
502
"""

# [nav:section public-api]

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import TYPE_CHECKING, TypedDict, cast

from jsonschema import Draft202012Validator

from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from directory_common.types import JsonValue

__all__ = [
    "ProblemDetails",
    "ProblemDetailsValidationError",
    "build_problem_details",
    "render_problem",
    "validate_problem_details",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))


# [nav:anchor ProblemDetails]
class ProblemDetails(TypedDict, total=False):
    """RFC 9457 Problem Details payload."""

    type: str
    title: str
    status: int
    detail: str
    instance: str
    code: str
    extensions: dict[str, JsonValue]
    errors: list[JsonValue]


# [nav:anchor ProblemDetailsValidationError]
class ProblemDetailsValidationError(Exception):
    """Raised when a Problem Details payload does not match the schema.

    Parameters
    ----------
    message : str
        Summary of the failure.
    validation_errors : list[str] | None, optional
        Individual validator messages with their JSON paths.
    """

    def __init__(self, message: str, validation_errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.validation_errors = validation_errors or []


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema_text = (
        resources.files("directory_common")
        .joinpath("schema/problem_details.json")
        .read_text(encoding="utf-8")
    )
    schema = json.loads(schema_text)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


# [nav:anchor validate_problem_details]
def validate_problem_details(payload: Mapping[str, object]) -> None:
    """Validate ``payload`` against the Problem Details schema.

    Raises
    ------
    ProblemDetailsValidationError
        If the payload violates the schema.
    """
    errors = sorted(
        _validator().iter_errors(payload), key=lambda err: [str(p) for p in err.path]
    )
    if errors:
        messages = [
            f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors
        ]
        msg = f"Problem Details validation failed: {messages[0]}"
        raise ProblemDetailsValidationError(msg, messages)


# [nav:anchor build_problem_details]
def build_problem_details(
    *,
    problem_type: str,
    title: str,
    status: int,
    detail: str,
    instance: str,
    code: str | None = None,
    extensions: Mapping[str, JsonValue] | None = None,
    errors: Sequence[JsonValue] | None = None,
) -> ProblemDetails:
    """Build and validate an RFC 9457 Problem Details payload.

    Parameters
    ----------
    problem_type : str
        Type URI identifying the problem class.
    title : str
        Short human-readable summary.
    status : int
        HTTP status code.
    detail : str
        Explanation specific to this occurrence.
    instance : str
        URI reference identifying the occurrence (typically the request path).
    code : str | None, optional
        Stable machine-readable error code.
    extensions : Mapping[str, JsonValue] | None, optional
        Additional context members.
    errors : Sequence[JsonValue] | None, optional
        Field-level validation errors.

    Returns
    -------
    ProblemDetails
        Validated payload.
    """
    payload: dict[str, object] = {
        "type": problem_type,
        "title": title,
        "status": status,
        "detail": detail,
        "instance": instance,
    }
    if code is not None:
        payload["code"] = code
    if extensions:
        payload["extensions"] = dict(extensions)
    if errors:
        payload["errors"] = list(errors)
    validate_problem_details(payload)
    return cast("ProblemDetails", payload)


# [nav:anchor render_problem]
def render_problem(problem: ProblemDetails) -> str:
    """Serialise ``problem`` to a compact JSON string."""
    return json.dumps(problem, separators=(",", ":"), default=str)
