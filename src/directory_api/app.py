"""FastAPI application for multi-tenant directory search.

Endpoints
---------
- ``POST /search`` - hybrid search over the tenant's resources index.
- ``GET /suggestion/v{1,2,3}`` - taxonomy autocomplete.
- ``GET /healthz`` - liveness plus a backend ping.
- ``GET /metrics`` - Prometheus exposition.

All failures are rendered as RFC 9457 Problem Details.

Examples
--------
>>> from directory_api.app import create_app
>>> from directory_common.settings import load_settings
>>> app = create_app(load_settings())
>>> app.title
'Directory Search API'
"""

# [nav:section public-api]

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Annotated, Final

import httpx
from fastapi import FastAPI, Path, Query
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from directory_api.dependencies import (
    AcceptLanguageDependency,
    OrchestratorDependency,
    SuggestionDependency,
    TenantDependency,
)
from directory_api.schemas import SearchRequestBody
from directory_common.errors.http import register_problem_details_handler
from directory_common.fastapi_helpers import DEFAULT_TIMEOUT_SECONDS, typed_middleware
from directory_common.http.retry import RetryPolicy
from directory_common.logging import (
    CorrelationContext,
    get_correlation_id,
    get_logger,
    setup_logging,
)
from directory_common.navmap import load_nav_metadata
from directory_common.observability import MetricsProvider
from directory_common.settings import RuntimeSettings, load_settings
from hybrid_search.adapters import UpstreamAdapters
from hybrid_search.enhancement import QueryEnhancer
from hybrid_search.executor import OpenSearchBackend, SearchExecutor
from hybrid_search.nlp import NlpPreprocessor
from hybrid_search.orchestrator import Orchestrator
from hybrid_search.suggestion import SuggestionRequest, SuggestionService
from hybrid_search.weights import WeightConfigReloader, WeightConfigStore

if TYPE_CHECKING:
    from starlette.requests import Request

    from hybrid_search.executor import SearchBackend

__all__ = [
    "CorrelationIDMiddleware",
    "create_app",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

API_VERSION = "1.0.0"
METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


# [nav:anchor CorrelationIDMiddleware]
class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Bind ``X-Correlation-ID`` (or a fresh UUID) to the request and echo it."""

    HEADER_NAME: Final[str] = "X-Correlation-ID"

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        with CorrelationContext(correlation_id):
            response = await call_next(request)
        response.headers[self.HEADER_NAME] = correlation_id
        return response


def _lifespan(
    settings: RuntimeSettings,
    metrics: MetricsProvider | None,
    *,
    backend: SearchBackend | None,
    adapters: UpstreamAdapters | None,
    nlp: NlpPreprocessor | None,
    store: WeightConfigStore | None,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    search = settings.search

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with httpx.AsyncClient() as client:
            retry = RetryPolicy(max_attempts=settings.adapters.max_attempts)
            weight_store = store or WeightConfigStore.from_path(
                search.weights_path, metrics=metrics
            )
            reloader = (
                WeightConfigReloader(
                    weight_store, search.weights_path, interval=search.weights_reload_interval_s
                )
                if store is None and search.weights_path
                else None
            )
            search_backend = backend or OpenSearchBackend(
                client, search.opensearch_url, timeout=search.opensearch_timeout_s, retry=retry
            )
            upstream = adapters or UpstreamAdapters.from_settings(
                settings.adapters, client, metrics=metrics
            )
            preprocessor = nlp or NlpPreprocessor()

            app.state.backend = search_backend
            app.state.store = weight_store
            app.state.orchestrator = Orchestrator(
                weight_store,
                preprocessor,
                upstream,
                SearchExecutor(search_backend),
                metrics=metrics,
                candidates=search.candidates_per_strategy,
                top_hits_trace=search.top_hits_trace,
                dev_mode=search.dev_mode,
            )
            app.state.suggestions = SuggestionService(
                search_backend, QueryEnhancer(preprocessor, upstream.classifier)
            )
            if reloader is not None:
                reloader.start()
            logger.info(
                "Directory search API started",
                extra={
                    "operation": "startup",
                    "weights_version": weight_store.get_snapshot().version,
                    "reranker_enabled": upstream.reranker.enabled,
                },
            )
            try:
                yield
            finally:
                if reloader is not None:
                    reloader.stop()
                logger.info("Directory search API stopped", extra={"operation": "shutdown"})

    return lifespan


# [nav:anchor create_app]
def create_app(
    settings: RuntimeSettings | None = None,
    *,
    backend: SearchBackend | None = None,
    adapters: UpstreamAdapters | None = None,
    nlp: NlpPreprocessor | None = None,
    store: WeightConfigStore | None = None,
    metrics: MetricsProvider | None = None,
) -> FastAPI:
    """Build the API application.

    Parameters
    ----------
    settings : RuntimeSettings | None, optional
        Runtime configuration. Loaded from the environment when omitted.
    backend : SearchBackend | None, optional
        Retrieval backend. Defaults to :class:`OpenSearchBackend` on the shared client.
    adapters : UpstreamAdapters | None, optional
        Embedding, classification and rerank clients.
    nlp : NlpPreprocessor | None, optional
        Noun extraction and stemming. Defaults to the NLTK implementation.
    store : WeightConfigStore | None, optional
        Weight store. When given, no file watcher is started.
    metrics : MetricsProvider | None, optional
        Metrics sink. Defaults to the process-wide provider when metrics are enabled.

    Returns
    -------
    FastAPI
        Application whose components are built when its lifespan starts.
    """
    settings = settings or load_settings()
    setup_logging(settings.observability.log_level)
    if metrics is None and settings.observability.metrics_enabled:
        metrics = MetricsProvider.default()

    app = FastAPI(
        title="Directory Search API",
        version=API_VERSION,
        lifespan=_lifespan(
            settings, metrics, backend=backend, adapters=adapters, nlp=nlp, store=store
        ),
    )
    app.state.default_language = settings.search.default_language
    app.state.strict_tenants = settings.search.strict_tenants
    register_problem_details_handler(app)
    typed_middleware(
        app,
        CorrelationIDMiddleware,
        name="correlation_id",
        timeout=DEFAULT_TIMEOUT_SECONDS * 3,
    )

    @app.post("/search")
    async def search(
        body: SearchRequestBody,
        tenant: TenantDependency,
        accept_language: AcceptLanguageDependency,
        orchestrator: OrchestratorDependency,
    ) -> JSONResponse:
        """Run a hybrid search for ``tenant``."""
        request = body.to_request(
            tenant=tenant,
            lang=body.lang or accept_language,
            request_id=get_correlation_id(),
        )
        outcome = await orchestrator.search(request)
        return JSONResponse(outcome.to_response())

    @app.get("/suggestion/v{version}")
    async def suggestion(
        version: Annotated[int, Path(ge=1, le=3)],
        tenant: TenantDependency,
        accept_language: AcceptLanguageDependency,
        service: SuggestionDependency,
        query: Annotated[str | None, Query()] = None,
        code: Annotated[str | None, Query()] = None,
        page: Annotated[int, Query()] = 1,
        disable_intent_classification: Annotated[bool, Query()] = False,
    ) -> JSONResponse:
        """Autocomplete taxonomy names or codes."""
        result = await service.suggest(
            SuggestionRequest(
                query=query,
                code=code,
                page=page,
                disable_intent_classification=disable_intent_classification,
            ),
            tenant=tenant,
            lang=accept_language,
            version=version,
        )
        return JSONResponse(result)

    @app.get("/healthz")
    async def healthz(orchestrator: OrchestratorDependency) -> JSONResponse:
        """Report liveness and whether the retrieval backend answers."""
        backend_up = await orchestrator.executor.backend.ping()
        payload = {
            "status": "ok" if backend_up else "degraded",
            "components": {
                "opensearch": "up" if backend_up else "down",
                "reranker": "enabled" if orchestrator.adapters.reranker.enabled else "disabled",
            },
            "weights_version": orchestrator.store.get_snapshot().version,
        }
        return JSONResponse(payload, status_code=200 if backend_up else 503)

    if metrics is not None:
        provider = metrics

        @app.get("/metrics")
        async def metrics_endpoint() -> Response:
            """Expose Prometheus metrics."""
            return Response(provider.render(), media_type=METRICS_CONTENT_TYPE)

    return app
