"""Tests for per-request weight resolution."""

from __future__ import annotations

import pytest

from directory_common.errors import ErrorCode, InvalidSearchRequestError
from hybrid_search.weights import DEFAULT_WEIGHTS, WeightConfig, resolve_weights


class TestResolveWeights:
    """Tests for resolve_weights."""

    def test_no_overrides_returns_equal_snapshot(self) -> None:
        """Without overrides the snapshot values are kept."""
        resolved = resolve_weights(DEFAULT_WEIGHTS)
        assert resolved.to_dict() == DEFAULT_WEIGHTS.to_dict()

    def test_partial_override(self) -> None:
        """Only the named fields change."""
        resolved = resolve_weights(
            DEFAULT_WEIGHTS, {"semantic": {"service": 3.0}, "strategies": {"intent_driven": 0}}
        )
        assert resolved.semantic.service == 3.0
        assert resolved.semantic.taxonomy == 1.0
        assert resolved.strategies.intent_driven == 0.0
        assert resolved.version == DEFAULT_WEIGHTS.version

    def test_snapshot_not_mutated(self, weight_document: dict[str, object]) -> None:
        """Resolution never changes the stored snapshot."""
        snapshot = WeightConfig.from_mapping(weight_document)
        resolve_weights(snapshot, {"semantic": {"service": 9.0}})
        assert snapshot.semantic.service == 1.5

    def test_distance_sets_decay_scale(self) -> None:
        """The request radius becomes the decay scale."""
        assert resolve_weights(DEFAULT_WEIGHTS, None, 12.5).geospatial.decay_scale == 12.5

    def test_distance_is_clamped(self) -> None:
        """Radii outside the scale bounds are clamped."""
        assert resolve_weights(DEFAULT_WEIGHTS, None, 500).geospatial.decay_scale == 200.0
        assert resolve_weights(DEFAULT_WEIGHTS, None, 0.2).geospatial.decay_scale == 1.0

    def test_explicit_decay_scale_beats_distance(self) -> None:
        """A custom decay_scale wins over the request radius."""
        resolved = resolve_weights(DEFAULT_WEIGHTS, {"geospatial": {"decay_scale": 30}}, 80)
        assert resolved.geospatial.decay_scale == 30.0

    def test_legacy_fields(self) -> None:
        """Flat legacy fields map onto nested paths."""
        resolved = resolve_weights(
            DEFAULT_WEIGHTS,
            legacy={"semantic_weight": 2.5, "keyword_weight": None, "geospatial_weight": 4.0},
        )
        assert resolved.strategies.semantic_search == 2.5
        assert resolved.strategies.keyword_search == 1.0
        assert resolved.geospatial.weight == 4.0

    def test_custom_weights_beat_legacy(self) -> None:
        """custom_weights take precedence over legacy fields."""
        resolved = resolve_weights(
            DEFAULT_WEIGHTS,
            {"strategies": {"semantic_search": 0.5}},
            legacy={"semantic_weight": 2.5},
        )
        assert resolved.strategies.semantic_search == 0.5

    def test_out_of_bounds_override(self) -> None:
        """Out-of-bounds overrides are a client error naming the field."""
        with pytest.raises(InvalidSearchRequestError) as excinfo:
            resolve_weights(DEFAULT_WEIGHTS, {"semantic": {"service": 11}})
        error = excinfo.value
        assert error.code is ErrorCode.INVALID_WEIGHTS
        assert error.http_status == 400
        assert error.errors[0]["loc"] == ["body", "custom_weights", "semantic", "service"]

    @pytest.mark.parametrize(
        ("overrides", "loc"),
        [
            ({"semantic": {"service": "20"}}, ["semantic", "service"]),
            ({"semantic": {"service": True}}, ["semantic", "service"]),
            ({"semantic": {"servce": 2}}, ["semantic"]),
            ({"semantics": {"service": 2}}, []),
            ({"version": "mine"}, []),
        ],
    )
    def test_malformed_override_rejected(
        self, overrides: dict[str, object], loc: list[str]
    ) -> None:
        """Unknown sections, unknown fields and non-numbers are rejected, not ignored."""
        with pytest.raises(InvalidSearchRequestError) as excinfo:
            resolve_weights(DEFAULT_WEIGHTS, overrides)
        error = excinfo.value
        assert error.code is ErrorCode.INVALID_WEIGHTS
        assert error.errors[0]["loc"] == ["body", "custom_weights", *loc]

    def test_null_override_keeps_snapshot_value(self) -> None:
        """A null field leaves the snapshot value in place."""
        resolved = resolve_weights(DEFAULT_WEIGHTS, {"semantic": {"service": None, "taxonomy": 2}})
        assert resolved.semantic.service == 1.0
        assert resolved.semantic.taxonomy == 2.0
