"""Shared infrastructure for the directory search service.

Structured logging, Problem Details errors, environment settings, Prometheus metrics,
HTTP retry helpers and FastAPI wrappers used by :mod:`hybrid_search` and
:mod:`directory_api`.
"""
# [nav:section public-api]

from __future__ import annotations

# [nav:anchor errors]
# [nav:anchor logging]
# [nav:anchor problem_details]
# [nav:anchor settings]
from directory_common import errors, logging, problem_details, settings
from directory_common.navmap import load_nav_metadata

__all__ = [
    "errors",
    "logging",
    "problem_details",
    "settings",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))
