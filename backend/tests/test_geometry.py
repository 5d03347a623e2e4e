"""
Unit tests for the geometry mapper - relative placement and preconditions.
"""

import random

import pytest

from procedural_remap.models.layers import LayerNode, Rect
from procedural_remap.services.geometry import (
    GeometryPreconditionError,
    map_layer,
    map_position,
    relative_position,
    validate_rects,
)
from procedural_remap.services.remap import RemapService


class TestMapPosition:
    """Tests for target-relative position mapping."""

    def test_origin_maps_to_origin(self):
        """Layer at the source origin lands on the target origin."""
        source = Rect(x=100, y=50, w=400, h=300)
        target = Rect(x=20, y=30, w=800, h=600)

        x, y = map_position(source, target, Rect(x=100, y=50, w=10, h=10))

        assert (x, y) == (20, 30)

    def test_relative_position_preserved(self):
        """Half-way through the source is half-way through the target."""
        source = Rect(x=0, y=0, w=200, h=100)
        target = Rect(x=1000, y=1000, w=400, h=50)

        rel_x, rel_y = relative_position(source, Rect(x=100, y=50, w=1, h=1))
        x, y = map_position(source, target, Rect(x=100, y=50, w=1, h=1))

        assert (rel_x, rel_y) == (0.5, 0.5)
        assert (x, y) == (1200, 1025)

    def test_layer_outside_source_extrapolates(self):
        """Layers bleeding outside the source keep their relative overshoot."""
        source = Rect(x=0, y=0, w=100, h=100)
        target = Rect(x=0, y=0, w=200, h=200)

        x, y = map_position(source, target, Rect(x=-10, y=110, w=5, h=5))

        assert (x, y) == (-20, 220)


class TestMapLayer:
    """Tests for full layer mapping including size."""

    def test_end_to_end_no_aspect_correction(self):
        """Width/height are scaled by the scale factor only, never by aspect."""
        source = Rect(x=0, y=0, w=1000, h=1000)
        target = Rect(x=0, y=0, w=500, h=2000)

        mapped = map_layer(source, target, Rect(x=100, y=100, w=200, h=200), scale_factor=1.0)

        assert mapped.to_rect() == Rect(x=50, y=200, w=200, h=200)

    def test_scale_factor_applies_to_size_only(self):
        source = Rect(x=0, y=0, w=100, h=100)
        target = Rect(x=0, y=0, w=100, h=100)

        mapped = map_layer(source, target, Rect(x=10, y=20, w=30, h=40), scale_factor=0.5)

        assert (mapped.x, mapped.y) == (10, 20)
        assert (mapped.w, mapped.h) == (15, 20)

    @pytest.mark.parametrize("seed", range(20))
    def test_mapping_is_idempotent(self, seed):
        """Identical inputs always produce bit-identical outputs."""
        rng = random.Random(seed)
        source = Rect(x=rng.uniform(-500, 500), y=rng.uniform(-500, 500),
                      w=rng.uniform(1, 2000), h=rng.uniform(1, 2000))
        target = Rect(x=rng.uniform(-500, 500), y=rng.uniform(-500, 500),
                      w=rng.uniform(1, 2000), h=rng.uniform(1, 2000))
        bounds = Rect(x=rng.uniform(-1000, 1000), y=rng.uniform(-1000, 1000),
                      w=rng.uniform(0, 500), h=rng.uniform(0, 500))
        scale = rng.uniform(0.1, 3.0)

        first = map_layer(source, target, bounds, scale)
        second = map_layer(source, target, bounds, scale)

        assert first == second


class TestPreconditions:
    """Tests for zero-area rectangle rejection."""

    @pytest.mark.parametrize("rect", [
        Rect(x=0, y=0, w=0, h=100),
        Rect(x=0, y=0, w=100, h=0),
        Rect(x=0, y=0, w=-5, h=100),
    ])
    def test_degenerate_source_rejected(self, rect):
        with pytest.raises(GeometryPreconditionError) as exc_info:
            validate_rects(rect, Rect(x=0, y=0, w=100, h=100))

        assert exc_info.value.code == "INVALID_GEOMETRY"
        assert exc_info.value.details["rect"] == "source"

    def test_degenerate_target_rejected(self):
        with pytest.raises(GeometryPreconditionError) as exc_info:
            validate_rects(Rect(x=0, y=0, w=100, h=100), Rect(x=0, y=0, w=100, h=0))

        assert exc_info.value.details["rect"] == "target"

    def test_remap_rejects_zero_area_target(self):
        """The remap pipeline halts before any division by zero."""
        layer = LayerNode(id="0", name="Logo", bounds=Rect(x=0, y=0, w=10, h=10))

        with pytest.raises(GeometryPreconditionError):
            RemapService().remap([layer], Rect(x=0, y=0, w=100, h=100), Rect(x=0, y=0, w=0, h=0))
