"""Prometheus metrics for search phases, adapters and the weight store.

Examples
--------
>>> from prometheus_client import CollectorRegistry
>>> from directory_common.observability import MetricsProvider, observe_duration
>>> provider = MetricsProvider(registry=CollectorRegistry())
>>> with observe_duration(provider, "msearch", component="executor") as observation:
...     observation.mark_success()
"""

# [nav:section public-api]

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, generate_latest

from directory_common.logging import get_logger, with_fields
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    import types

__all__ = [
    "DurationObservation",
    "MetricsProvider",
    "observe_duration",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

LOGGER = get_logger(__name__)
StatusLiteral = Literal["success", "error"]

_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_default_provider: MetricsProvider | None = None


# [nav:anchor MetricsProvider]
class MetricsProvider:
    """Own the Prometheus collectors used by the search service.

    Parameters
    ----------
    registry : CollectorRegistry | None, optional
        Registry the collectors are registered with. Defaults to the process-wide
        ``prometheus_client.REGISTRY``; tests pass a fresh registry.

    Attributes
    ----------
    runs_total : Counter
        Operations executed, labelled by ``component`` and ``status``.
    operation_duration_seconds : Histogram
        Durations labelled by ``component``, ``operation`` and ``status``.
    adapter_fallbacks_total : Counter
        Degraded adapter results, labelled by ``adapter`` and ``reason``.
    weight_reloads_total : Counter
        Weight reload attempts, labelled by ``outcome`` (``applied``/``rejected``/``error``).
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else REGISTRY
        self.runs_total = Counter(
            "dirsearch_runs_total",
            "Total number of operations executed by a component.",
            ("component", "status"),
            registry=self.registry,
        )
        self.operation_duration_seconds = Histogram(
            "dirsearch_operation_duration_seconds",
            "Operation duration in seconds for each component/operation pair.",
            ("component", "operation", "status"),
            buckets=_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.adapter_fallbacks_total = Counter(
            "dirsearch_adapter_fallbacks_total",
            "Upstream adapter calls answered with their degraded value.",
            ("adapter", "reason"),
            registry=self.registry,
        )
        self.weight_reloads_total = Counter(
            "dirsearch_weight_reloads_total",
            "Weight configuration reload attempts by outcome.",
            ("outcome",),
            registry=self.registry,
        )

    @classmethod
    def default(cls) -> MetricsProvider:
        """Return the process-wide provider bound to the default registry."""
        global _default_provider  # noqa: PLW0603
        if _default_provider is None:
            _default_provider = cls()
        return _default_provider

    def record_fallback(self, adapter: str, reason: str) -> None:
        """Count one degraded ``adapter`` result."""
        self.adapter_fallbacks_total.labels(adapter=adapter, reason=reason).inc()

    def record_reload(self, outcome: str) -> None:
        """Count one weight reload attempt."""
        self.weight_reloads_total.labels(outcome=outcome).inc()

    def render(self) -> bytes:
        """Return the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)


@dataclass(slots=True)
# [nav:anchor DurationObservation]
class DurationObservation:
    """Status and start time of an in-flight operation."""

    metrics: MetricsProvider
    operation: str
    component: str
    correlation_id: str | None
    status: StatusLiteral = "success"
    _start: float = field(default_factory=time.monotonic)

    def mark_success(self) -> None:
        """Mark the operation as successful."""
        self.status = "success"

    def mark_error(self) -> None:
        """Mark the operation as failed."""
        self.status = "error"

    def duration_seconds(self) -> float:
        """Return the elapsed wall-clock time in seconds."""
        return time.monotonic() - self._start


class _DurationObservationContext:
    def __init__(
        self,
        *,
        metrics: MetricsProvider,
        operation: str,
        component: str,
        correlation_id: str | None,
    ) -> None:
        self._observation = DurationObservation(
            metrics=metrics,
            operation=operation,
            component=component,
            correlation_id=correlation_id,
        )

    def __enter__(self) -> DurationObservation:
        return self._observation

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        _tb: types.TracebackType | None,
    ) -> bool:
        if exc_type is not None:
            self._observation.mark_error()
        _finalise_observation(self._observation)
        return False


# [nav:anchor observe_duration]
def observe_duration(
    metrics: MetricsProvider,
    operation: str,
    *,
    component: str = "unknown",
    correlation_id: str | None = None,
) -> _DurationObservationContext:
    """Record metrics and a structured log line for a component operation.

    Parameters
    ----------
    metrics : MetricsProvider
        Provider receiving the observation.
    operation : str
        Operation name.
    component : str, optional
        Component name. Defaults to ``"unknown"``.
    correlation_id : str | None, optional
        Correlation ID for the log line.

    Returns
    -------
    _DurationObservationContext
        Context manager yielding a :class:`DurationObservation`.

    Notes
    -----
    Exceptions raised in the managed block mark the observation ``"error"`` and
    propagate.
    """
    return _DurationObservationContext(
        metrics=metrics,
        operation=operation,
        component=component,
        correlation_id=correlation_id,
    )


def _finalise_observation(observation: DurationObservation) -> None:
    duration = observation.duration_seconds()
    observation.metrics.runs_total.labels(
        component=observation.component,
        status=observation.status,
    ).inc()
    observation.metrics.operation_duration_seconds.labels(
        component=observation.component,
        operation=observation.operation,
        status=observation.status,
    ).observe(duration)
    with with_fields(
        LOGGER,
        correlation_id=observation.correlation_id,
        operation=observation.operation,
        status=observation.status,
    ) as adapter:
        adapter.debug(
            "Operation completed",
            extra={"component": observation.component, "duration_ms": duration * 1000},
        )
