"""Shared pytest fixtures for the directory search tests.

This module provides reusable fixtures for:
- Deterministic NLP (a keyword tagger instead of NLTK models)
- Isolated Prometheus registries
- Weight documents on disk
- Fast retry policies for upstream fakes
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from prometheus_client import CollectorRegistry

REPO_ROOT = Path(__file__).resolve().parent.parent
SRC_PATH = REPO_ROOT / "src"
TESTS_PATH = Path(__file__).resolve().parent
for path in (SRC_PATH, TESTS_PATH):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from directory_common.http.retry import RetryPolicy  # noqa: E402
from directory_common.logging import CorrelationContext  # noqa: E402
from directory_common.observability import MetricsProvider  # noqa: E402
from search_fakes import make_nlp  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import Iterator

    from hybrid_search.nlp import NlpPreprocessor


@pytest.fixture(autouse=True)
def _reset_correlation_id() -> Iterator[None]:
    with CorrelationContext(None):
        yield


@pytest.fixture(name="metrics")
def _metrics() -> MetricsProvider:
    """Metrics provider bound to a private registry."""
    return MetricsProvider(registry=CollectorRegistry())


@pytest.fixture(name="nlp")
def _nlp() -> NlpPreprocessor:
    """Preprocessor whose tagger treats a fixed vocabulary as nouns."""
    return make_nlp()


@pytest.fixture(name="fast_retry")
def _fast_retry() -> RetryPolicy:
    """Three attempts without backoff."""
    return RetryPolicy(max_attempts=3, wait_initial_s=0.0, wait_max_s=0.0, jitter_s=0.0)


@pytest.fixture(name="weight_document")
def _weight_document() -> dict[str, object]:
    """A valid weight document that differs from the defaults."""
    return {
        "version": "2024.06-tuned",
        "description": "Tuned for food and housing queries",
        "semantic": {"service": 1.5, "taxonomy": 0.8, "organization": 0.5},
        "strategies": {"semantic_search": 2.0, "keyword_search": 1.0, "intent_driven": 1.2},
        "geospatial": {"weight": 3.0, "decay_scale": 25.0, "decay_offset": 2.0},
        "keyword_variations": {"nouns_multiplier": 0.8, "stemmed_nouns_multiplier": 0.6},
        "metadata": {"tuning_notes": "offline eval", "evaluation_metrics": {"ndcg": 0.71}},
    }


@pytest.fixture(name="weight_file")
def _weight_file(tmp_path: Path, weight_document: dict[str, object]) -> Path:
    """The weight document written as JSON."""
    path = tmp_path / "weights.json"
    path.write_text(json.dumps(weight_document), encoding="utf-8")
    return path
