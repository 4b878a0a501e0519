"""Runtime settings with typed configuration and fail-fast validation.

Settings are read from ``DIRSEARCH_*`` environment variables through
:mod:`pydantic_settings`; nested sections use ``__`` as the delimiter
(``DIRSEARCH_SEARCH__OPENSEARCH_URL``).

Examples
--------
>>> from directory_common.settings import load_settings
>>> settings = load_settings()
>>> settings.search.candidates_per_strategy
50
"""

# [nav:section public-api]

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from directory_common.errors import SettingsError
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

__all__ = [
    "AdapterConfig",
    "ObservabilityConfig",
    "RuntimeSettings",
    "SearchConfig",
    "load_settings",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)


# [nav:anchor SearchConfig]
class SearchConfig(BaseSettings):
    """Retrieval and weighting configuration (``DIRSEARCH_SEARCH_*``)."""

    model_config = SettingsConfigDict(env_prefix="DIRSEARCH_SEARCH_", extra="forbid")

    opensearch_url: str = Field(
        default="http://localhost:9200", description="OpenSearch base URL"
    )
    opensearch_timeout_s: float = Field(
        default=10.0, gt=0, description="Timeout for a single _msearch call"
    )
    candidates_per_strategy: int = Field(
        default=50, ge=1, le=1000, description="Hits requested from each strategy clause"
    )
    top_hits_trace: int = Field(
        default=10, ge=0, description="Number of hits described in sources_of_top_hits"
    )
    weights_path: str | None = Field(
        default=None, description="Path of the JSON or YAML weight document"
    )
    weights_reload_interval_s: float = Field(
        default=5.0, gt=0, description="Polling interval of the weight file watcher"
    )
    default_language: str = Field(default="en", description="Fallback index language")
    strict_tenants: bool = Field(
        default=False, description="Reject tenants without a configured short code"
    )
    dev_mode: bool = Field(
        default=False, description="Add resolved weights and clauses to response metadata"
    )


# [nav:anchor AdapterConfig]
class AdapterConfig(BaseSettings):
    """Upstream embedding, classification and rerank services (``DIRSEARCH_ADAPTERS_*``)."""

    model_config = SettingsConfigDict(env_prefix="DIRSEARCH_ADAPTERS_", extra="forbid")

    embedding_url: str | None = Field(
        default=None, description="Base URL of the OpenAI-compatible embedding service"
    )
    embedding_model: str = Field(default="bge-m3:567m", description="Embedding model name")
    embedding_timeout_s: float = Field(default=10.0, gt=0)
    classifier_url: str | None = Field(
        default=None, description="Base URL of the intent classification service"
    )
    classifier_timeout_s: float = Field(default=5.0, gt=0)
    reranker_url: str | None = Field(
        default=None, description="Base URL of the reranker; reranking is off when unset"
    )
    reranker_timeout_s: float = Field(default=5.0, gt=0)
    max_attempts: int = Field(
        default=2, ge=1, le=5, description="Attempts per upstream call, first try included"
    )


# [nav:anchor ObservabilityConfig]
class ObservabilityConfig(BaseSettings):
    """Logging and metrics toggles (``DIRSEARCH_*`` namespace)."""

    model_config = SettingsConfigDict(env_prefix="DIRSEARCH_", extra="forbid")

    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics")


# [nav:anchor RuntimeSettings]
class RuntimeSettings(BaseSettings):
    """Aggregate runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DIRSEARCH_",
        env_nested_delimiter="__",
        extra="forbid",
        case_sensitive=False,
    )

    search: SearchConfig = Field(default_factory=SearchConfig)
    adapters: AdapterConfig = Field(default_factory=AdapterConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# [nav:anchor load_settings]
def load_settings(**overrides: object) -> RuntimeSettings:
    """Load :class:`RuntimeSettings`, converting validation failures.

    Parameters
    ----------
    **overrides : object
        Field values taking precedence over the environment.

    Returns
    -------
    RuntimeSettings
        Validated settings.

    Raises
    ------
    SettingsError
        If any field fails validation.
    """
    try:
        return RuntimeSettings(**overrides)  # type: ignore[arg-type]
    except Exception as exc:
        msg = f"Configuration validation failed: {exc}"
        logger.exception(
            "Settings validation failed",
            extra={"operation": "load_settings", "error_type": type(exc).__name__},
        )
        raise SettingsError(
            msg,
            cause=exc,
            context={"validation_error": str(exc)},
        ) from exc
