"""
Unit tests for the physics solver - distribution, collisions, anchoring, clamping.
"""

import pytest

from procedural_remap.models.layers import Rect
from procedural_remap.models.strategy import LayoutMode, LayoutRole, PhysicsRules
from procedural_remap.services.physics import Body, PhysicsSolver


TARGET = Rect(x=100, y=50, w=600, h=400)


def body(layer_id, x, y, w, h, role=None, anchor=None, source=None):
    return Body(
        layer_id=layer_id, x=x, y=y, w=w, h=h,
        role=role, linked_anchor_id=anchor, source_bounds=source,
    )


class TestDistribution:
    """Tests for flow-layer grid distribution."""

    @pytest.fixture
    def solver(self):
        return PhysicsSolver()

    def test_horizontal_slots(self, solver):
        """Three flow layers are centred in three equal slots."""
        bodies = [body(str(i), 0, 60, 100, 50, role=LayoutRole.FLOW) for i in range(3)]

        distributed = solver.distribute(bodies, TARGET, LayoutMode.DISTRIBUTE_HORIZONTAL)

        assert distributed == ["0", "1", "2"]
        assert [b.x for b in bodies] == [150, 350, 550]
        assert all(b.y == 60 for b in bodies)

    def test_vertical_slots(self, solver):
        bodies = [body(str(i), 120, 0, 50, 100, role=LayoutRole.FLOW) for i in range(2)]

        solver.distribute(bodies, TARGET, LayoutMode.DISTRIBUTE_VERTICAL)

        assert [b.y for b in bodies] == [100, 300]
        assert all(b.x == 120 for b in bodies)

    def test_non_flow_untouched(self, solver):
        static = body("s", 5, 5, 10, 10, role=LayoutRole.STATIC)
        unroled = body("u", 7, 7, 10, 10)

        solver.distribute([static, unroled], TARGET, LayoutMode.DISTRIBUTE_HORIZONTAL)

        assert (static.x, unroled.x) == (5, 7)

    @pytest.mark.parametrize("mode", [None, LayoutMode.STANDARD, LayoutMode.GRID])
    def test_other_modes_do_nothing(self, solver, mode):
        flow = body("f", 5, 5, 10, 10, role=LayoutRole.FLOW)

        assert solver.distribute([flow], TARGET, mode) == []
        assert flow.x == 5


class TestCollisions:
    """Tests for the single left-to-right collision sweep."""

    @pytest.fixture
    def solver(self):
        return PhysicsSolver(padding=10)

    def test_overlap_pushed_past_padding(self, solver):
        first = body("a", 100, 0, 200, 50)
        second = body("b", 150, 0, 100, 50)

        pushed = solver.resolve_collisions([second, first])

        assert pushed == ["b"]
        assert second.x >= first.x + first.w + 10
        assert second.x == 310

    def test_chain_of_overlaps(self, solver):
        bodies = [body(str(i), 100 + i * 5, 0, 50, 50, role=LayoutRole.FLOW) for i in range(3)]

        solver.resolve_collisions(bodies)

        assert [b.x for b in bodies] == [100, 160, 220]

    def test_static_and_overlay_ignored(self, solver):
        first = body("a", 100, 0, 200, 50)
        static = body("s", 150, 0, 100, 50, role=LayoutRole.STATIC)
        overlay = body("o", 160, 0, 100, 50, role=LayoutRole.OVERLAY)

        assert solver.resolve_collisions([first, static, overlay]) == []
        assert (static.x, overlay.x) == (150, 160)

    def test_vertical_overlap_not_resolved(self, solver):
        """Only horizontal positions change."""
        first = body("a", 100, 0, 200, 50)
        second = body("b", 150, 10, 100, 50)

        solver.resolve_collisions([first, second])

        assert second.y == 10

    def test_separated_layers_untouched(self, solver):
        first = body("a", 0, 0, 50, 50)
        second = body("b", 60, 0, 50, 50)

        assert solver.resolve_collisions([first, second]) == []
        assert second.x == 60


class TestOverlayAnchoring:
    """Tests for overlays following their anchors."""

    @pytest.fixture
    def solver(self):
        return PhysicsSolver()

    def test_overlay_keeps_scaled_source_offset(self, solver):
        anchor = body("hero", 300, 200, 100, 100, source=Rect(x=0, y=0, w=200, h=200))
        badge = body(
            "badge", 0, 0, 20, 20, role=LayoutRole.OVERLAY, anchor="hero",
            source=Rect(x=40, y=10, w=40, h=40),
        )

        anchored, unresolved = solver.anchor_overlays([anchor, badge], scale_factor=0.5)

        assert anchored == ["badge"]
        assert unresolved == []
        assert (badge.x, badge.y) == (320, 205)

    def test_missing_anchor_keeps_position(self, solver):
        badge = body(
            "badge", 12, 34, 20, 20, role=LayoutRole.OVERLAY, anchor="ghost",
            source=Rect(x=0, y=0, w=20, h=20),
        )

        anchored, unresolved = solver.anchor_overlays([badge], scale_factor=1.0)

        assert anchored == []
        assert unresolved == ["badge"]
        assert (badge.x, badge.y) == (12, 34)

    def test_anchor_without_source_geometry_ignored(self, solver):
        anchor = body("hero", 300, 200, 100, 100, source=None)
        badge = body("badge", 1, 2, 20, 20, role=LayoutRole.OVERLAY, anchor="hero",
                     source=Rect(x=0, y=0, w=20, h=20))

        solver.anchor_overlays([anchor, badge], scale_factor=1.0)

        assert (badge.x, badge.y) == (1, 2)

    def test_anchor_id_on_non_overlay_ignored(self, solver):
        anchor = body("hero", 300, 200, 100, 100, source=Rect(x=0, y=0, w=10, h=10))
        flow = body("f", 1, 2, 20, 20, role=LayoutRole.FLOW, anchor="hero",
                    source=Rect(x=5, y=5, w=20, h=20))

        solver.anchor_overlays([anchor, flow], scale_factor=1.0)

        assert (flow.x, flow.y) == (1, 2)


class TestClamping:
    """Tests for boundary clamping."""

    @pytest.fixture
    def solver(self):
        return PhysicsSolver()

    def test_layer_as_wide_as_target_pinned_to_origin(self, solver):
        wide = body("w", 250, 60, TARGET.w, 10)

        solver.clamp([wide], TARGET, exempt=set())

        assert wide.x == TARGET.x

    def test_layer_larger_than_target_pinned_to_origin(self, solver):
        huge = body("h", 400, 400, TARGET.w + 100, TARGET.h + 100)

        solver.clamp([huge], TARGET, exempt=set())

        assert (huge.x, huge.y) == (TARGET.x, TARGET.y)

    def test_clamped_inside(self, solver):
        stray = body("s", 690, -20, 50, 50)

        clamped = solver.clamp([stray], TARGET, exempt=set())

        assert clamped == ["s"]
        assert (stray.x, stray.y) == (650, 50)

    def test_manual_layers_exempt(self, solver):
        stray = body("s", 900, 900, 50, 50)

        assert solver.clamp([stray], TARGET, exempt={"s"}) == []
        assert (stray.x, stray.y) == (900, 900)

    @pytest.mark.parametrize("value,size,expected", [
        (0, 10, 100),
        (150, 10, 150),
        (800, 10, 690),
        (150, 700, 100),
    ])
    def test_clamp_axis(self, value, size, expected):
        assert PhysicsSolver.clamp_axis(value, size, 100, 600) == expected


class TestSolve:
    """Tests for the full rule pipeline."""

    @pytest.fixture
    def solver(self):
        return PhysicsSolver(padding=10)

    def test_rules_off_by_default(self, solver):
        """Without physics rules neither collisions nor clipping are handled."""
        a = body("a", 100, 50, 200, 50)
        b = body("b", 150, 50, 100, 50)
        c = body("c", 5000, 5000, 10, 10)

        report = solver.solve([a, b, c], TARGET)

        assert report.pushed == []
        assert report.clamped == []
        assert (b.x, c.x) == (150, 5000)

    def test_collision_then_clamp(self, solver):
        """A layer pushed out of the target is clamped back in."""
        a = body("a", 100, 50, 500, 50)
        b = body("b", 120, 50, 100, 50)

        report = solver.solve(
            [a, b], TARGET,
            physics_rules=PhysicsRules(prevent_overlap=True, prevent_clipping=True),
        )

        assert report.pushed == ["b"]
        assert report.clamped == ["b"]
        assert b.x == TARGET.x + TARGET.w - b.w

    def test_overlay_follows_distributed_anchor(self, solver):
        anchor = body("hero", 0, 100, 100, 100, role=LayoutRole.FLOW, source=Rect(x=0, y=0, w=100, h=100))
        badge = body("badge", 0, 0, 10, 10, role=LayoutRole.OVERLAY, anchor="hero",
                     source=Rect(x=10, y=10, w=10, h=10))

        report = solver.solve([anchor, badge], TARGET, scale_factor=1.0,
                              layout_mode=LayoutMode.DISTRIBUTE_HORIZONTAL)

        assert report.distributed == ["hero"]
        assert anchor.x == 350
        assert (badge.x, badge.y) == (360, 110)
