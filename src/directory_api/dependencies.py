"""Request-scoped dependencies for the directory search API.

Annotations here are evaluated eagerly: FastAPI resolves the signatures of the
instrumented wrappers against this module's objects.
"""

# [nav:section public-api]

from typing import Annotated

from fastapi import Header, Request

from directory_common.fastapi_helpers import typed_dependency
from directory_common.navmap import load_nav_metadata
from hybrid_search.orchestrator import Orchestrator
from hybrid_search.suggestion import SuggestionService
from hybrid_search.tenancy import DEFAULT_LANGUAGE, parse_accept_language, resolve_tenant_short

__all__ = [
    "AcceptLanguageDependency",
    "OrchestratorDependency",
    "SuggestionDependency",
    "TenantDependency",
    "get_accept_language",
    "get_orchestrator",
    "get_suggestion_service",
    "get_tenant",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

DEPENDENCY_TIMEOUT_SECONDS = 5.0


# [nav:anchor get_tenant]
async def get_tenant(
    request: Request,
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the ``x-tenant-id`` header to an index short code.

    Raises
    ------
    InvalidSearchRequestError
        If the header is missing or blank, or unmapped in strict mode.
    """
    strict = bool(getattr(request.app.state, "strict_tenants", False))
    return resolve_tenant_short(x_tenant_id or "", strict=strict)


# [nav:anchor get_accept_language]
async def get_accept_language(
    request: Request,
    accept_language: Annotated[str | None, Header()] = None,
) -> str:
    """Return the preferred language of the ``Accept-Language`` header."""
    default = getattr(request.app.state, "default_language", DEFAULT_LANGUAGE)
    return parse_accept_language(accept_language, default)


# [nav:anchor get_orchestrator]
async def get_orchestrator(request: Request) -> Orchestrator:
    """Return the orchestrator built by the application lifespan."""
    orchestrator: Orchestrator = request.app.state.orchestrator
    return orchestrator


# [nav:anchor get_suggestion_service]
async def get_suggestion_service(request: Request) -> SuggestionService:
    """Return the suggestion service built by the application lifespan."""
    service: SuggestionService = request.app.state.suggestions
    return service


TenantDependency = Annotated[
    str,
    typed_dependency(get_tenant, name="tenant", timeout=DEPENDENCY_TIMEOUT_SECONDS),
]
AcceptLanguageDependency = Annotated[
    str,
    typed_dependency(
        get_accept_language, name="accept_language", timeout=DEPENDENCY_TIMEOUT_SECONDS
    ),
]
OrchestratorDependency = Annotated[
    Orchestrator,
    typed_dependency(get_orchestrator, name="orchestrator", timeout=DEPENDENCY_TIMEOUT_SECONDS),
]
SuggestionDependency = Annotated[
    SuggestionService,
    typed_dependency(
        get_suggestion_service, name="suggestions", timeout=DEPENDENCY_TIMEOUT_SECONDS
    ),
]
