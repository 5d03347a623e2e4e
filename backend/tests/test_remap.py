"""
Tests for the remap pipeline and reviewer synchronization checks.
"""

import pytest

from procedural_remap.models.layers import LayerKind, LayerNode, Rect
from procedural_remap.models.payload import PayloadStatus
from procedural_remap.models.strategy import (
    LayoutMode,
    LayoutRole,
    Override,
    PhysicsRules,
    Strategy,
    StrategyMethod,
)
from procedural_remap.services.remap import RemapService, check_synchronization


SOURCE = Rect(x=0, y=0, w=1000, h=1000)
TARGET = Rect(x=0, y=0, w=500, h=2000)


def leaf(layer_id, x, y, w, h, **kwargs):
    return LayerNode(id=layer_id, name=f"Layer {layer_id}", bounds=Rect(x=x, y=y, w=w, h=h), **kwargs)


def group(layer_id, x, y, w, h, children):
    return LayerNode(
        id=layer_id, name=f"Group {layer_id}", kind=LayerKind.GROUP,
        bounds=Rect(x=x, y=y, w=w, h=h), children=children,
    )


@pytest.fixture
def service():
    return RemapService()


class TestBasicRemap:
    """Tests for plain proportional remapping."""

    def test_end_to_end_pinned_case(self, service):
        payload = service.remap([leaf("0", 100, 100, 200, 200)], SOURCE, TARGET)

        (layer,) = payload.layers
        assert layer.bounds == Rect(x=50, y=200, w=200, h=200)
        assert payload.status == PayloadStatus.SUCCESS
        assert payload.metrics.source.w == 1000
        assert payload.metrics.target.h == 2000
        assert payload.target_bounds == TARGET

    def test_transform_records_offsets(self, service):
        payload = service.remap([leaf("0", 100, 100, 200, 200)], SOURCE, TARGET)

        transform = payload.layers[0].transform
        assert (transform.offset_x, transform.offset_y) == (-50, 100)
        assert (transform.scale_x, transform.scale_y) == (1.0, 1.0)

    def test_nested_layers_mapped_independently(self, service):
        tree = [group("0", 0, 0, 1000, 1000, [leaf("0.0", 500, 500, 100, 100)])]

        payload = service.remap(tree, SOURCE, TARGET)

        child = payload.layers[0].children[0]
        assert (child.bounds.x, child.bounds.y) == (250, 1000)

    def test_empty_tree_is_idle(self, service):
        payload = service.remap([], SOURCE, TARGET)

        assert payload.status == PayloadStatus.IDLE
        assert payload.layers == []

    def test_source_tree_not_mutated(self, service):
        node = leaf("0", 100, 100, 200, 200)

        service.remap([node], SOURCE, TARGET, strategy=Strategy(suggested_scale=2.0))

        assert node.bounds == Rect(x=100, y=100, w=200, h=200)

    def test_remap_is_deterministic(self, service):
        tree = [leaf("0", 100, 100, 200, 200), leaf("1", 600, 300, 50, 50)]
        strategy = Strategy(
            suggested_scale=0.75,
            overrides=[Override(layer_id="1", x_offset=10, y_offset=20)],
            physics_rules=PhysicsRules(prevent_overlap=True, prevent_clipping=True),
        )

        first = service.remap(tree, SOURCE, TARGET, strategy=strategy)
        second = service.remap(tree, SOURCE, TARGET, strategy=strategy)

        assert first == second


class TestOverrides:
    """Tests for override application."""

    def test_override_positions_relative_to_target(self, service):
        target = Rect(x=1000, y=500, w=500, h=500)
        strategy = Strategy(
            suggested_scale=0.5,
            overrides=[Override(
                layer_id="0", x_offset=20, y_offset=30, individual_scale=2.0,
                rotation=15, layout_role=LayoutRole.STATIC, cited_rule="pin logo",
            )],
        )

        payload = service.remap([leaf("0", 100, 100, 200, 100)], SOURCE, target, strategy=strategy)

        layer = payload.layers[0]
        assert layer.bounds == Rect(x=1020, y=530, w=200, h=100)
        assert layer.transform.scale_x == 1.0
        assert layer.transform.rotation == 15
        assert layer.layout_role == LayoutRole.STATIC
        assert layer.cited_rule == "pin logo"

    def test_group_override_moves_descendants(self, service):
        tree = [group("0", 0, 0, 400, 400, [
            leaf("0.0", 100, 100, 50, 50),
            leaf("0.1", 200, 200, 50, 50),
        ])]
        strategy = Strategy(
            overrides=[
                Override(layer_id="0", x_offset=100, y_offset=100),
                Override(layer_id="0.1", x_offset=5, y_offset=5),
            ],
        )

        payload = service.remap(tree, SOURCE, TARGET, strategy=strategy)

        grp = payload.layers[0]
        free_child, pinned_child = grp.children
        assert (grp.bounds.x, grp.bounds.y) == (100, 100)
        # Mapped at (50, 200), then dragged by the group's (+100, +100) delta
        assert (free_child.bounds.x, free_child.bounds.y) == (150, 300)
        assert (pinned_child.bounds.x, pinned_child.bounds.y) == (5, 5)

    def test_effective_overrides_take_precedence(self, service):
        strategy = Strategy(overrides=[Override(layer_id="0", x_offset=1, y_offset=1)])
        effective = [Override(layer_id="0", x_offset=40, y_offset=50)]

        payload = service.remap([leaf("0", 0, 0, 10, 10)], SOURCE, TARGET,
                                strategy=strategy, effective_overrides=effective)

        assert (payload.layers[0].bounds.x, payload.layers[0].bounds.y) == (40, 50)

    def test_unknown_override_ignored(self, service):
        strategy = Strategy(overrides=[Override(layer_id="ghost", x_offset=1, y_offset=1)])

        payload = service.remap([leaf("0", 100, 100, 200, 200)], SOURCE, TARGET, strategy=strategy)

        assert payload.layers[0].bounds == Rect(x=50, y=200, w=200, h=200)


class TestPhysicsIntegration:
    """Tests for physics applied to root layers and their subtrees."""

    def test_subtree_follows_clamped_root(self, service):
        tree = [group("0", 900, 0, 300, 100, [leaf("0.0", 950, 10, 20, 20)])]
        strategy = Strategy(physics_rules=PhysicsRules(prevent_clipping=True))

        payload = service.remap(tree, SOURCE, Rect(x=0, y=0, w=1000, h=1000), strategy=strategy)

        grp = payload.layers[0]
        assert grp.bounds.x == 700
        assert grp.children[0].bounds.x == 750
        assert grp.transform.offset_x == -200

    def test_manual_layers_not_clamped(self, service):
        strategy = Strategy(physics_rules=PhysicsRules(prevent_clipping=True))
        effective = [Override(layer_id="0", x_offset=2000, y_offset=0)]

        payload = service.remap([leaf("0", 0, 0, 10, 10)], SOURCE, TARGET, strategy=strategy,
                                effective_overrides=effective, manual_ids={"0"})

        assert payload.layers[0].bounds.x == 2000


class TestGenerativeLayers:
    """Tests for generative replacement and synthetic layers."""

    def test_replace_layer_becomes_generative(self, service):
        tree = [group("0", 0, 0, 500, 500, [leaf("0.0", 0, 0, 10, 10)]), leaf("1", 10, 10, 10, 10)]
        strategy = Strategy(replace_layer_id="0", generative_prompt="sunset beach",
                            method=StrategyMethod.HYBRID)

        payload = service.remap(tree, SOURCE, TARGET, strategy=strategy)

        replaced = payload.layers[0]
        assert replaced.kind == LayerKind.GENERATIVE
        assert replaced.children is None
        assert replaced.bounds == TARGET
        assert replaced.generative_prompt == "sunset beach"
        assert payload.requires_generation is True
        assert payload.replace_layer_id == "0"
        assert len(payload.layers) == 2

    def test_nested_replacement_stays_on_target_after_physics(self, service):
        """Moving a root with physics never drags a replaced child off the target."""
        target = Rect(x=0, y=0, w=1000, h=1000)
        tree = [group("0", 900, 0, 300, 100, [
            leaf("0.0", 900, 0, 50, 50),
            leaf("0.1", 950, 10, 20, 20),
        ])]
        strategy = Strategy(
            replace_layer_id="0.0",
            generative_prompt="sky",
            physics_rules=PhysicsRules(prevent_clipping=True),
        )

        payload = service.remap(tree, SOURCE, target, strategy=strategy)

        grp = payload.layers[0]
        replaced, sibling = grp.children
        assert grp.bounds.x == 700
        assert sibling.bounds.x == 750
        assert replaced.kind == LayerKind.GENERATIVE
        assert replaced.bounds == target

    def test_nested_replacement_under_distributed_root(self, service):
        tree = [group("0", 0, 0, 200, 200, [leaf("0.0", 0, 0, 10, 10)])]
        strategy = Strategy(
            replace_layer_id="0.0",
            generative_prompt="sky",
            layout_mode=LayoutMode.DISTRIBUTE_HORIZONTAL,
            overrides=[Override(layer_id="0", x_offset=0, y_offset=0, layout_role=LayoutRole.FLOW)],
        )
        target = Rect(x=0, y=0, w=500, h=500)

        payload = service.remap(tree, SOURCE, target, strategy=strategy)

        grp = payload.layers[0]
        assert grp.bounds.x == 150
        assert grp.children[0].bounds == target

    def test_replacement_skipped_when_generation_disallowed(self, service):
        strategy = Strategy(replace_layer_id="0", generative_prompt="sunset")

        payload = service.remap([leaf("0", 0, 0, 10, 10)], SOURCE, TARGET, strategy=strategy,
                                generation_allowed=False)

        assert payload.layers[0].kind == LayerKind.PIXEL
        assert payload.requires_generation is False
        assert payload.generation_allowed is False

    def test_synthetic_layer_inserted_at_bottom(self, service):
        strategy = Strategy(method=StrategyMethod.GENERATIVE, generative_prompt="mountains")

        payload = service.remap([leaf("0", 0, 0, 10, 10)], SOURCE, TARGET, strategy=strategy,
                                target_container="STORY HERO")

        synthetic = payload.layers[0]
        assert synthetic.id == "gen-layer-STORY_HERO"
        assert synthetic.kind == LayerKind.GENERATIVE
        assert synthetic.bounds == TARGET
        assert payload.requires_generation is True
        assert payload.layers[1].id == "0"

    def test_geometric_strategy_has_no_synthetic_layer(self, service):
        strategy = Strategy(method=StrategyMethod.GEOMETRIC, generative_prompt="mountains")

        payload = service.remap([leaf("0", 0, 0, 10, 10)], SOURCE, TARGET, strategy=strategy)

        assert [layer.id for layer in payload.layers] == ["0"]
        assert payload.requires_generation is False

    def test_explicit_intent_marks_mandatory(self, service):
        strategy = Strategy(method=StrategyMethod.GENERATIVE, generative_prompt="x", is_explicit_intent=True)

        payload = service.remap([leaf("0", 0, 0, 10, 10)], SOURCE, TARGET, strategy=strategy)

        assert payload.is_mandatory is True


class TestSynchronization:
    """Tests for reviewer synchronization checks."""

    def test_synchronized_payload(self, service):
        overrides = [Override(layer_id="0", x_offset=30, y_offset=40, individual_scale=0.5)]
        payload = service.remap([leaf("0", 0, 0, 100, 100)], SOURCE, TARGET,
                                strategy=Strategy(suggested_scale=2.0), effective_overrides=overrides)

        assert check_synchronization(payload, overrides) is True

    def test_out_of_sync_position(self, service):
        payload = service.remap([leaf("0", 0, 0, 100, 100)], SOURCE, TARGET)
        overrides = [Override(layer_id="0", x_offset=30, y_offset=40)]

        assert check_synchronization(payload, overrides) is False

    def test_within_tolerance(self, service):
        applied = [Override(layer_id="0", x_offset=30.4, y_offset=40)]
        payload = service.remap([leaf("0", 0, 0, 100, 100)], SOURCE, TARGET, effective_overrides=applied)

        assert check_synchronization(payload, [Override(layer_id="0", x_offset=30, y_offset=40)]) is True

    def test_missing_layer_out_of_sync(self, service):
        payload = service.remap([leaf("0", 0, 0, 100, 100)], SOURCE, TARGET)

        assert check_synchronization(payload, [Override(layer_id="9", x_offset=0, y_offset=0)]) is False

    def test_no_overrides_always_synchronized(self):
        assert check_synchronization(None, []) is True

    def test_overrides_without_payload_out_of_sync(self):
        """Committed overrides cannot be reflected by a slot that was never remapped."""
        overrides = [Override(layer_id="0", x_offset=0, y_offset=0)]

        assert check_synchronization(None, overrides) is False
