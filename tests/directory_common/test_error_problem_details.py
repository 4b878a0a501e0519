"""Tests for directory_common.errors and directory_common.problem_details.

Tests cover error codes and type URIs, Problem Details rendering and schema
validation, and the FastAPI handlers that emit ``application/problem+json``.
"""

from __future__ import annotations

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from directory_common.errors import (
    BASE_TYPE_URI,
    DirectorySearchError,
    ErrorCode,
    InvalidCursorError,
    InvalidSearchRequestError,
    RetrievalBackendError,
    WeightConfigError,
    get_type_uri,
)
from directory_common.errors.http import PROBLEM_JSON, register_problem_details_handler
from directory_common.problem_details import (
    ProblemDetailsValidationError,
    build_problem_details,
    render_problem,
    validate_problem_details,
)


class TestErrorCodes:
    """Tests for ErrorCode and type URIs."""

    def test_codes_are_kebab_case(self) -> None:
        """Every code value is lowercase kebab-case."""
        for code in ErrorCode:
            assert code.value == code.value.lower()
            assert "_" not in code.value

    def test_type_uri(self) -> None:
        """Type URIs live under the shared base."""
        assert get_type_uri(ErrorCode.INVALID_CURSOR) == f"{BASE_TYPE_URI}/invalid-cursor"


class TestDirectorySearchError:
    """Tests for the exception hierarchy."""

    def test_defaults(self) -> None:
        """The base error is a 500 runtime error."""
        error = DirectorySearchError("boom")
        assert error.code is ErrorCode.RUNTIME_ERROR
        assert error.http_status == 500
        assert str(error) == "DirectorySearchError[runtime-error]: boom"

    def test_cause_is_chained(self) -> None:
        """The cause becomes ``__cause__`` and shows in ``str``."""
        cause = ValueError("bad")
        error = RetrievalBackendError("msearch failed", cause=cause)
        assert error.__cause__ is cause
        assert "caused by: ValueError" in str(error)

    def test_invalid_request_is_400(self) -> None:
        """Client errors render as 400 with field errors."""
        error = InvalidSearchRequestError(
            "limit too large", errors=[{"loc": ["body", "limit"], "msg": "too large"}]
        )
        problem = error.to_problem_details(instance="/search")
        assert problem["status"] == 400
        assert problem["code"] == "search-query-invalid"
        assert problem["errors"] == [{"loc": ["body", "limit"], "msg": "too large"}]

    def test_invalid_cursor_carries_cursor(self) -> None:
        """The rejected cursor is echoed in the extensions."""
        error = InvalidCursorError("search_after must be a [score, doc_id] array", cursor="x")
        problem = error.to_problem_details()
        assert problem["code"] == "invalid-cursor"
        assert problem["extensions"] == {"search_after": "x"}
        assert problem["instance"] == "urn:directory-search:error"

    def test_retrieval_error_is_502(self) -> None:
        """Backend failures map to 502."""
        problem = RetrievalBackendError("down", context={"index": "il211-resources_en"})
        assert problem.to_problem_details()["status"] == 502

    def test_weight_config_error_lists_violations(self) -> None:
        """Violations travel in the context."""
        error = WeightConfigError("rejected", violations=["semantic.service: too big"])
        assert error.code is ErrorCode.WEIGHT_CONFIG_INVALID
        assert error.context == {"violations": ["semantic.service: too big"]}


class TestProblemDetails:
    """Tests for build_problem_details and validation."""

    def test_build_and_render(self) -> None:
        """A built payload renders as compact JSON."""
        problem = build_problem_details(
            problem_type=get_type_uri(ErrorCode.INVALID_INPUT),
            title="InvalidSearchRequestError",
            status=400,
            detail="Query or code is required",
            instance="/suggestion/v1",
            code="invalid-input",
        )
        decoded = json.loads(render_problem(problem))
        assert decoded["detail"] == "Query or code is required"
        assert render_problem(problem).startswith('{"type":"https:')

    def test_rejects_missing_members(self) -> None:
        """Payloads missing required members fail validation."""
        with pytest.raises(ProblemDetailsValidationError) as excinfo:
            validate_problem_details({"title": "x", "status": 400})
        assert excinfo.value.validation_errors

    def test_rejects_out_of_range_status(self) -> None:
        """Status codes must be HTTP error statuses."""
        with pytest.raises(ProblemDetailsValidationError):
            build_problem_details(
                problem_type="https://directory-search.dev/problems/x",
                title="x",
                status=99,
                detail="x",
                instance="/x",
            )


class _Body(BaseModel):
    limit: int


def _app() -> FastAPI:
    app = FastAPI()
    register_problem_details_handler(app)

    @app.get("/cursor")
    async def cursor() -> None:
        raise InvalidCursorError("search_after[1] must be a string", cursor=[1.0, 2])

    @app.get("/backend")
    async def backend() -> None:
        raise RetrievalBackendError("cluster unreachable")

    @app.post("/validate")
    async def validate(body: _Body) -> dict[str, int]:
        return {"limit": body.limit}

    return app


class TestProblemDetailsHandlers:
    """Tests for register_problem_details_handler."""

    def test_domain_error_rendered(self) -> None:
        """Domain errors become problem+json with their status."""
        client = TestClient(_app())
        response = client.get("/cursor?page=2")
        assert response.status_code == 400
        assert response.headers["content-type"].startswith(PROBLEM_JSON)
        body = response.json()
        assert body["code"] == "invalid-cursor"
        assert body["instance"] == "/cursor?page=2"
        assert response.text == json.dumps(body, separators=(",", ":"))

    def test_backend_error_rendered(self) -> None:
        """Backend failures surface as 502."""
        response = TestClient(_app()).get("/backend")
        assert response.status_code == 502
        assert response.json()["code"] == "retrieval-unavailable"

    def test_request_validation_rendered(self) -> None:
        """Pydantic validation failures become 400 invalid-input problems."""
        response = TestClient(_app()).post("/validate", json={"limit": "many"})
        assert response.status_code == 400
        assert response.headers["content-type"].startswith(PROBLEM_JSON)
        body = response.json()
        assert body["code"] == "invalid-input"
        assert body["errors"][0]["loc"] == ["body", "limit"]
