"""Hot-reloadable weight configuration for the multi-strategy search.

The store holds one immutable :class:`WeightConfig` snapshot. A reload validates the
whole candidate against the packaged JSON Schema (``schema/weights_config.json``) and
either swaps the snapshot reference in one assignment or rejects the candidate
outright; readers never lock and never observe a partial update.

Examples
--------
>>> from hybrid_search.weights import WeightConfigStore
>>> store = WeightConfigStore()
>>> store.get_snapshot().geospatial.weight
2.0
>>> result = store.reload({"version": "bad", "semantic": {"service": 20}})
>>> result.ok
False
"""

# [nav:section public-api]

from __future__ import annotations

import json
import math
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from jsonschema import Draft202012Validator

from directory_common.errors import ErrorCode, InvalidSearchRequestError, WeightConfigError
from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

if TYPE_CHECKING:
    from directory_common.observability import MetricsProvider
    from directory_common.types import JsonObject

__all__ = [
    "DEFAULT_WEIGHTS",
    "GeospatialWeights",
    "KeywordVariationWeights",
    "ReloadResult",
    "SemanticWeights",
    "StrategyWeights",
    "WeightConfig",
    "WeightConfigReloader",
    "WeightConfigStore",
    "load_weight_document",
    "resolve_weights",
    "validate_weight_document",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

DECAY_SCALE_BOUNDS = (1.0, 200.0)

# Document sections a request may override.
OVERRIDE_SECTIONS = ("semantic", "strategies", "geospatial", "keyword_variations")

# Flat request fields kept for older clients, mapped onto nested weight paths.
LEGACY_WEIGHT_FIELDS: Mapping[str, tuple[str, str]] = {
    "semantic_weight": ("strategies", "semantic_search"),
    "keyword_weight": ("strategies", "keyword_search"),
    "intent_weight": ("strategies", "intent_driven"),
    "geospatial_weight": ("geospatial", "weight"),
}


@dataclass(frozen=True, slots=True)
# [nav:anchor SemanticWeights]
class SemanticWeights:
    """Per-field weights for the three vector-similarity clauses."""

    service: float = 1.0
    taxonomy: float = 1.0
    organization: float = 1.0


@dataclass(frozen=True, slots=True)
# [nav:anchor StrategyWeights]
class StrategyWeights:
    """Weights applied to each retrieval strategy family."""

    semantic_search: float = 1.0
    keyword_search: float = 1.0
    intent_driven: float = 1.0


@dataclass(frozen=True, slots=True)
# [nav:anchor GeospatialWeights]
class GeospatialWeights:
    """Gaussian proximity decay parameters; distances are in miles."""

    weight: float = 2.0
    decay_scale: float = 50.0
    decay_offset: float = 0.0


@dataclass(frozen=True, slots=True)
# [nav:anchor KeywordVariationWeights]
class KeywordVariationWeights:
    """Multipliers for the noun-only and stemmed-noun keyword clauses."""

    nouns_multiplier: float = 1.0
    stemmed_nouns_multiplier: float = 1.0


@dataclass(frozen=True, slots=True)
# [nav:anchor WeightConfig]
class WeightConfig:
    """Immutable weighting snapshot.

    Attributes
    ----------
    version : str
        Document version label.
    semantic : SemanticWeights
        Vector clause field weights.
    strategies : StrategyWeights
        Strategy family weights.
    geospatial : GeospatialWeights
        Proximity decay parameters.
    keyword_variations : KeywordVariationWeights
        Keyword variant multipliers.
    description : str | None
        Free-form description from the document.
    last_updated : str | None
        Timestamp string from the document.
    metadata : Mapping[str, object]
        Tuning notes and evaluation metrics, carried verbatim.
    """

    version: str = "default"
    semantic: SemanticWeights = field(default_factory=SemanticWeights)
    strategies: StrategyWeights = field(default_factory=StrategyWeights)
    geospatial: GeospatialWeights = field(default_factory=GeospatialWeights)
    keyword_variations: KeywordVariationWeights = field(default_factory=KeywordVariationWeights)
    description: str | None = None
    last_updated: str | None = None
    metadata: Mapping[str, object] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, document: Mapping[str, object]) -> WeightConfig:
        """Validate ``document`` and build a snapshot from it.

        Raises
        ------
        WeightConfigError
            If any field is missing, mistyped or out of bounds.
        """
        violations = validate_weight_document(document)
        if violations:
            msg = f"Weight configuration rejected: {violations[0]}"
            raise WeightConfigError(msg, violations=violations)
        semantic = _section(document, "semantic")
        strategies = _section(document, "strategies")
        geospatial = _section(document, "geospatial")
        variations = _section(document, "keyword_variations")
        description = document.get("description")
        last_updated = document.get("last_updated")
        return cls(
            version=str(document["version"]),
            semantic=SemanticWeights(**_floats(semantic)),
            strategies=StrategyWeights(**_floats(strategies)),
            geospatial=GeospatialWeights(**_floats(geospatial)),
            keyword_variations=KeywordVariationWeights(**_floats(variations)),
            description=description if isinstance(description, str) else None,
            last_updated=last_updated if isinstance(last_updated, str) else None,
            metadata=dict(_section(document, "metadata")),
        )

    def to_dict(self) -> JsonObject:
        """Render the snapshot in document form."""
        payload: JsonObject = {
            "version": self.version,
            "semantic": {
                "service": self.semantic.service,
                "taxonomy": self.semantic.taxonomy,
                "organization": self.semantic.organization,
            },
            "strategies": {
                "semantic_search": self.strategies.semantic_search,
                "keyword_search": self.strategies.keyword_search,
                "intent_driven": self.strategies.intent_driven,
            },
            "geospatial": {
                "weight": self.geospatial.weight,
                "decay_scale": self.geospatial.decay_scale,
                "decay_offset": self.geospatial.decay_offset,
            },
            "keyword_variations": {
                "nouns_multiplier": self.keyword_variations.nouns_multiplier,
                "stemmed_nouns_multiplier": self.keyword_variations.stemmed_nouns_multiplier,
            },
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.last_updated is not None:
            payload["last_updated"] = self.last_updated
        if self.metadata:
            payload["metadata"] = json.loads(json.dumps(self.metadata, default=str))
        return payload


# [nav:anchor DEFAULT_WEIGHTS]
DEFAULT_WEIGHTS = WeightConfig(description="Hardcoded fallback configuration")


def _section(document: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = document.get(name)
    return value if isinstance(value, Mapping) else {}


def _floats(section: Mapping[str, object]) -> dict[str, float]:
    return {key: float(value) for key, value in section.items()}  # type: ignore[arg-type]


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema_text = (
        resources.files("hybrid_search")
        .joinpath("schema/weights_config.json")
        .read_text(encoding="utf-8")
    )
    schema = json.loads(schema_text)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def _non_finite_paths(value: object, path: str = "") -> list[str]:
    if isinstance(value, float) and not math.isfinite(value):
        return [f"{path or '<root>'}: must be a finite number"]
    if isinstance(value, Mapping):
        found: list[str] = []
        for key, item in value.items():
            found.extend(_non_finite_paths(item, f"{path}.{key}" if path else str(key)))
        return found
    return []


@lru_cache(maxsize=1)
def _override_validator() -> Draft202012Validator:
    # the weight sections of the document schema with every field optional
    base = _validator().schema
    sections = {
        name: {
            key: value for key, value in base["properties"][name].items() if key != "required"
        }
        for name in OVERRIDE_SECTIONS
    }
    schema = {
        "type": "object",
        "additionalProperties": False,
        "$defs": base["$defs"],
        "properties": sections,
    }
    return Draft202012Validator(schema)


def _violations(validator: Draft202012Validator, document: object) -> list[str]:
    violations = [
        f"{'.'.join(str(part) for part in error.absolute_path) or '<root>'}: {error.message}"
        for error in validator.iter_errors(document)
    ]
    violations.extend(_non_finite_paths(document))
    return sorted(violations)


def _reject_overrides(violations: list[str]) -> InvalidSearchRequestError:
    errors = []
    for item in violations:
        path = item.split(":", 1)[0]
        location = [] if path == "<root>" else path.split(".")
        errors.append({"loc": ["body", "custom_weights", *location], "msg": item})
    msg = f"custom_weights rejected: {violations[0]}"
    return InvalidSearchRequestError(msg, code=ErrorCode.INVALID_WEIGHTS, errors=errors)


# [nav:anchor validate_weight_document]
def validate_weight_document(document: object) -> list[str]:
    """Return every violation in ``document`` as ``"<path>: <reason>"``.

    An empty list means the document is a valid weight configuration.
    """
    return _violations(_validator(), document)


# [nav:anchor load_weight_document]
def load_weight_document(path: Path) -> Mapping[str, object]:
    """Read and parse a JSON or YAML weight document.

    Parameters
    ----------
    path : Path
        ``.yaml``/``.yml`` files are parsed with :func:`yaml.safe_load`; anything
        else as JSON.

    Returns
    -------
    Mapping[str, object]
        Parsed, not yet validated, document.

    Raises
    ------
    WeightConfigError
        If the file cannot be read or parsed, or is not a mapping.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read weight configuration {path}: {exc}"
        raise WeightConfigError(msg, cause=exc) from exc
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            document = yaml.safe_load(text)
        else:
            document = json.loads(text)
    except (ValueError, yaml.YAMLError) as exc:
        msg = f"Cannot parse weight configuration {path}: {exc}"
        raise WeightConfigError(msg, cause=exc) from exc
    if not isinstance(document, Mapping):
        msg = f"Weight configuration {path} must contain a mapping"
        raise WeightConfigError(msg)
    return document


@dataclass(frozen=True, slots=True)
# [nav:anchor ReloadResult]
class ReloadResult:
    """Outcome of :meth:`WeightConfigStore.reload`."""

    ok: bool
    version: str | None = None
    reason: str | None = None
    violations: tuple[str, ...] = ()

    @classmethod
    def applied(cls, version: str) -> ReloadResult:
        """Return a successful outcome for ``version``."""
        return cls(ok=True, version=version)

    @classmethod
    def rejected(cls, reason: str, violations: tuple[str, ...] = ()) -> ReloadResult:
        """Return a rejection carrying ``reason``."""
        return cls(ok=False, reason=reason, violations=violations)


# [nav:anchor WeightConfigStore]
class WeightConfigStore:
    """Single-writer holder of the current :class:`WeightConfig`.

    Parameters
    ----------
    initial : WeightConfig, optional
        Snapshot served until the first successful reload.
    metrics : MetricsProvider | None, optional
        Receives one ``weight_reloads_total`` increment per reload attempt.

    Notes
    -----
    :meth:`get_snapshot` is a plain attribute read of an immutable object and is
    safe from any thread or task. Writers serialise on an internal lock.
    """

    def __init__(
        self,
        initial: WeightConfig = DEFAULT_WEIGHTS,
        *,
        metrics: MetricsProvider | None = None,
    ) -> None:
        self._snapshot = initial
        self._write_lock = threading.Lock()
        self._metrics = metrics

    @classmethod
    def from_path(
        cls,
        path: Path | str | None,
        *,
        metrics: MetricsProvider | None = None,
    ) -> WeightConfigStore:
        """Create a store seeded from ``path``, or the defaults if that fails."""
        store = cls(metrics=metrics)
        if path is None:
            logger.info(
                "No weight configuration path; using defaults",
                extra={"operation": "weights.load", "status": "default"},
            )
            return store
        try:
            document = load_weight_document(Path(path))
        except WeightConfigError as exc:
            logger.warning(
                "Weight configuration unavailable; using defaults: %s",
                exc.message,
                extra={"operation": "weights.load", "status": "default"},
            )
            store._record("error")
            return store
        store.reload(document)
        return store

    def get_snapshot(self) -> WeightConfig:
        """Return the current snapshot without blocking."""
        return self._snapshot

    def reload(self, candidate: Mapping[str, object]) -> ReloadResult:
        """Validate ``candidate`` and swap it in, or keep the current snapshot.

        Parameters
        ----------
        candidate : Mapping[str, object]
            Full weight document.

        Returns
        -------
        ReloadResult
            ``ok`` with the new version, or a rejection listing the violations.
        """
        try:
            snapshot = WeightConfig.from_mapping(candidate)
        except WeightConfigError as exc:
            logger.warning(
                "Rejected weight configuration: %s",
                exc.message,
                extra={
                    "operation": "weights.reload",
                    "status": "rejected",
                    "violations": exc.violations,
                },
            )
            self._record("rejected")
            return ReloadResult.rejected(exc.message, tuple(exc.violations))
        with self._write_lock:
            self._snapshot = snapshot
        logger.info(
            "Applied weight configuration v%s",
            snapshot.version,
            extra={"operation": "weights.reload", "status": "applied"},
        )
        self._record("applied")
        return ReloadResult.applied(snapshot.version)

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_reload(outcome)


# [nav:anchor WeightConfigReloader]
class WeightConfigReloader:
    """Background poller that reloads the store when the weight file changes.

    Parameters
    ----------
    store : WeightConfigStore
        Store to update.
    path : Path | str
        Watched document.
    interval : float, optional
        Seconds between modification-time checks. Defaults to 5.0.
    """

    def __init__(self, store: WeightConfigStore, path: Path | str, interval: float = 5.0) -> None:
        self._store = store
        self._path = Path(path)
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_mtime = self._mtime()

    def _mtime(self) -> int | None:
        try:
            return self._path.stat().st_mtime_ns
        except OSError:
            return None

    def check_once(self) -> ReloadResult | None:
        """Poll the file once; reload when its modification time changed.

        Returns
        -------
        ReloadResult | None
            ``None`` when the file is unchanged or missing.
        """
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return None
        self._last_mtime = mtime
        logger.info(
            "Weight configuration changed, reloading",
            extra={"operation": "weights.watch", "path": str(self._path)},
        )
        try:
            document = load_weight_document(self._path)
        except WeightConfigError as exc:
            logger.warning(
                "Keeping previous weight configuration: %s",
                exc.message,
                extra={"operation": "weights.watch", "status": "error"},
            )
            self._store._record("error")
            return ReloadResult.rejected(exc.message)
        return self._store.reload(document)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.check_once()
            except Exception:
                logger.exception(
                    "Weight watcher iteration failed",
                    extra={"operation": "weights.watch", "status": "error"},
                )

    def start(self) -> None:
        """Start the polling thread; calling twice is a no-op."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="weight-config-reloader", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the polling thread to exit and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def _override(
    current: float,
    overrides: Mapping[str, object],
    section: str,
    key: str,
) -> float:
    values = overrides.get(section)
    if isinstance(values, Mapping):
        value = values.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return current


# [nav:anchor resolve_weights]
def resolve_weights(
    snapshot: WeightConfig,
    overrides: Mapping[str, object] | None = None,
    request_distance: float | None = None,
    *,
    legacy: Mapping[str, float | None] | None = None,
) -> WeightConfig:
    """Apply per-request weight overrides on top of ``snapshot``.

    Parameters
    ----------
    snapshot : WeightConfig
        Current store snapshot.
    overrides : Mapping[str, object] | None, optional
        ``custom_weights`` in document shape; each present field wins.
    request_distance : float | None, optional
        Request search radius in miles. Used as ``decay_scale`` when no override
        sets one, clamped to the scale bounds.
    legacy : Mapping[str, float | None] | None, optional
        Deprecated flat fields (``semantic_weight``, ``keyword_weight``,
        ``intent_weight``, ``geospatial_weight``). ``custom_weights`` take
        precedence over them.

    Returns
    -------
    WeightConfig
        Resolved snapshot for this request.

    Raises
    ------
    InvalidSearchRequestError
        If an override names an unknown section or field, is not a number, or is
        outside its bounds.
    """
    requested = {
        section: (
            {key: value for key, value in values.items() if value is not None}
            if isinstance(values, Mapping)
            else values
        )
        for section, values in (overrides or {}).items()
    }
    violations = _violations(_override_validator(), requested)
    if violations:
        raise _reject_overrides(violations)

    merged: dict[str, dict[str, object]] = {}
    for name, (section, key) in LEGACY_WEIGHT_FIELDS.items():
        value = (legacy or {}).get(name)
        if value is not None:
            merged.setdefault(section, {})[key] = value
    for section, values in requested.items():
        merged.setdefault(section, {}).update(values)  # type: ignore[arg-type]

    resolved = replace(
        snapshot,
        semantic=SemanticWeights(
            service=_override(snapshot.semantic.service, merged, "semantic", "service"),
            taxonomy=_override(snapshot.semantic.taxonomy, merged, "semantic", "taxonomy"),
            organization=_override(
                snapshot.semantic.organization, merged, "semantic", "organization"
            ),
        ),
        strategies=StrategyWeights(
            semantic_search=_override(
                snapshot.strategies.semantic_search, merged, "strategies", "semantic_search"
            ),
            keyword_search=_override(
                snapshot.strategies.keyword_search, merged, "strategies", "keyword_search"
            ),
            intent_driven=_override(
                snapshot.strategies.intent_driven, merged, "strategies", "intent_driven"
            ),
        ),
        geospatial=GeospatialWeights(
            weight=_override(snapshot.geospatial.weight, merged, "geospatial", "weight"),
            decay_scale=snapshot.geospatial.decay_scale,
            decay_offset=_override(
                snapshot.geospatial.decay_offset, merged, "geospatial", "decay_offset"
            ),
        ),
        keyword_variations=KeywordVariationWeights(
            nouns_multiplier=_override(
                snapshot.keyword_variations.nouns_multiplier,
                merged,
                "keyword_variations",
                "nouns_multiplier",
            ),
            stemmed_nouns_multiplier=_override(
                snapshot.keyword_variations.stemmed_nouns_multiplier,
                merged,
                "keyword_variations",
                "stemmed_nouns_multiplier",
            ),
        ),
    )

    scale_override = merged.get("geospatial", {}).get("decay_scale")
    if scale_override is not None:
        decay_scale = _override(
            snapshot.geospatial.decay_scale, merged, "geospatial", "decay_scale"
        )
    elif request_distance is not None:
        low, high = DECAY_SCALE_BOUNDS
        decay_scale = min(max(float(request_distance), low), high)
    else:
        decay_scale = snapshot.geospatial.decay_scale
    resolved = replace(resolved, geospatial=replace(resolved.geospatial, decay_scale=decay_scale))

    violations = validate_weight_document(resolved.to_dict())
    if violations:
        raise _reject_overrides(violations)
    return resolved
