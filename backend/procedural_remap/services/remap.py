"""
Remap service - computes a TransformedPayload for one slot.

Pipeline (pure; same inputs always give the same payload):

1. Validate source/target rectangles
2. Map every layer independently into the target (geometry mapper)
3. Apply effective overrides; an overridden group drags its subtree along
4. Replace the strategy's replace_layer_id with a generative layer
5. Run physics on root-level layers and translate their subtrees
6. Insert a synthetic generative layer for generative strategies

Generation-lifecycle fields are left for the reconciler to fill in.
"""

import logging
from typing import Dict, List, Optional, Set

from procedural_remap.config import settings
from procedural_remap.models.layers import (
    LayerKind,
    LayerNode,
    Rect,
    Size,
    TransformInfo,
    TransformedLayerNode,
)
from procedural_remap.models.payload import PayloadMetrics, PayloadStatus, TransformedPayload
from procedural_remap.models.strategy import Override, Strategy, StrategyMethod
from procedural_remap.services.geometry import map_layer, validate_rects
from procedural_remap.services.physics import Body, PhysicsSolver, physics_solver

logger = logging.getLogger(__name__)


class RemapService:
    """Builds transformed layer trees from source trees and strategies."""

    def __init__(self, solver: Optional[PhysicsSolver] = None):
        self.solver = solver or physics_solver

    # ============================================================
    # TREE TRANSFORMATION
    # ============================================================

    def _transform_nodes(
        self,
        nodes: List[LayerNode],
        source_rect: Rect,
        target_rect: Rect,
        scale_factor: float,
        overrides: Dict[str, Override],
        replace_layer_id: Optional[str],
        generative_prompt: Optional[str],
        inherited_dx: float = 0.0,
        inherited_dy: float = 0.0,
    ) -> List[TransformedLayerNode]:
        result = []
        for node in nodes:
            if replace_layer_id is not None and node.id == replace_layer_id:
                result.append(self._generative_replacement(node, target_rect, generative_prompt))
                continue

            mapped = map_layer(source_rect, target_rect, node.bounds, scale_factor)
            x = mapped.x + inherited_dx
            y = mapped.y + inherited_dy
            w, h = mapped.w, mapped.h
            layer_scale = scale_factor
            child_dx, child_dy = inherited_dx, inherited_dy

            override = overrides.get(node.id)
            rotation = None
            if override is not None:
                new_x = target_rect.x + override.x_offset
                new_y = target_rect.y + override.y_offset
                child_dx += new_x - x
                child_dy += new_y - y
                x, y = new_x, new_y
                layer_scale = scale_factor * override.effective_scale
                w = node.bounds.w * layer_scale
                h = node.bounds.h * layer_scale
                rotation = override.rotation

            children = None
            if node.children is not None:
                children = self._transform_nodes(
                    node.children,
                    source_rect,
                    target_rect,
                    scale_factor,
                    overrides,
                    replace_layer_id,
                    generative_prompt,
                    child_dx,
                    child_dy,
                )

            result.append(TransformedLayerNode(
                id=node.id,
                name=node.name,
                kind=node.kind,
                visible=node.visible,
                opacity=node.opacity,
                bounds=Rect(x=x, y=y, w=w, h=h),
                children=children,
                transform=TransformInfo(
                    scale_x=layer_scale,
                    scale_y=layer_scale,
                    offset_x=x - node.bounds.x,
                    offset_y=y - node.bounds.y,
                    rotation=rotation,
                ),
                layout_role=override.layout_role if override else None,
                linked_anchor_id=override.linked_anchor_id if override else None,
                cited_rule=override.cited_rule if override else None,
            ))
        return result

    @staticmethod
    def _generative_replacement(
        node: LayerNode,
        target_rect: Rect,
        generative_prompt: Optional[str],
    ) -> TransformedLayerNode:
        """Swap a layer for a generative layer filling the whole target."""
        logger.info(f"Replacing layer {node.id} ('{node.name}') with generative fill")
        return TransformedLayerNode(
            id=node.id,
            name=node.name,
            kind=LayerKind.GENERATIVE,
            visible=True,
            opacity=1.0,
            bounds=target_rect.model_copy(),
            children=None,
            transform=TransformInfo(
                scale_x=target_rect.w / node.bounds.w if node.bounds.w else 1.0,
                scale_y=target_rect.h / node.bounds.h if node.bounds.h else 1.0,
                offset_x=target_rect.x - node.bounds.x,
                offset_y=target_rect.y - node.bounds.y,
            ),
            generative_prompt=generative_prompt,
        )

    @staticmethod
    def _translate(node: TransformedLayerNode, dx: float, dy: float) -> None:
        """Shift a transformed node and its subtree; generative layers stay pinned to the target."""
        if (dx == 0 and dy == 0) or node.kind == LayerKind.GENERATIVE:
            return
        node.bounds = node.bounds.translated(dx, dy)
        node.transform.offset_x += dx
        node.transform.offset_y += dy
        for child in node.children or []:
            RemapService._translate(child, dx, dy)

    # ============================================================
    # PHYSICS
    # ============================================================

    def _apply_physics(
        self,
        layers: List[TransformedLayerNode],
        source_index: Dict[str, LayerNode],
        target_rect: Rect,
        scale_factor: float,
        strategy: Strategy,
        manual_ids: Set[str],
    ) -> None:
        solvable = [layer for layer in layers if layer.kind != LayerKind.GENERATIVE]
        bodies = [
            Body(
                layer_id=layer.id,
                x=layer.bounds.x,
                y=layer.bounds.y,
                w=layer.bounds.w,
                h=layer.bounds.h,
                role=layer.layout_role,
                linked_anchor_id=layer.linked_anchor_id,
                source_bounds=source_index[layer.id].bounds if layer.id in source_index else None,
            )
            for layer in solvable
        ]

        self.solver.solve(
            bodies,
            target_rect,
            scale_factor=scale_factor,
            layout_mode=strategy.layout_mode,
            physics_rules=strategy.physics_rules,
            manual_ids=manual_ids,
        )

        for layer, body in zip(solvable, bodies):
            self._translate(layer, body.x - layer.bounds.x, body.y - layer.bounds.y)

    # ============================================================
    # ENTRY POINT
    # ============================================================

    def remap(
        self,
        source_layers: List[LayerNode],
        source_rect: Rect,
        target_rect: Rect,
        strategy: Optional[Strategy] = None,
        effective_overrides: Optional[List[Override]] = None,
        manual_ids: Optional[Set[str]] = None,
        generation_allowed: bool = True,
        source_container: str = "",
        target_container: str = "",
    ) -> TransformedPayload:
        """
        Compute the transformed payload for a source tree and target rectangle.

        Args:
            source_layers: Root layers of the source container (index 0 = bottom)
            source_rect: Source container bounds
            target_rect: Target container bounds
            strategy: Analyst strategy (None = plain proportional remap)
            effective_overrides: Output of the override resolver; defaults to the
                strategy's own overrides
            manual_ids: Layer ids overridden by the reviewer (exempt from clamping)
            generation_allowed: Whether generative replacement/insertion may happen
            source_container: Name of the source container
            target_container: Name of the target container

        Returns:
            TransformedPayload with geometry filled in

        Raises:
            GeometryPreconditionError: If either rectangle has zero area
        """
        validate_rects(source_rect, target_rect)

        strategy = strategy or Strategy(suggested_scale=settings.default_scale)
        if effective_overrides is None:
            effective_overrides = strategy.overrides
        scale_factor = strategy.suggested_scale
        if strategy.generation_allowed is False:
            generation_allowed = False

        override_map: Dict[str, Override] = {o.layer_id: o for o in effective_overrides}
        source_index = {}
        self._index(source_layers, source_index)

        missing = [layer_id for layer_id in override_map if layer_id not in source_index]
        if missing:
            logger.warning(f"Overrides reference unknown layers, ignored: {missing}")

        replace_layer_id = strategy.replace_layer_id if generation_allowed else None

        layers = self._transform_nodes(
            source_layers,
            source_rect,
            target_rect,
            scale_factor,
            override_map,
            replace_layer_id,
            strategy.generative_prompt,
        )

        self._apply_physics(
            layers,
            source_index,
            target_rect,
            scale_factor,
            strategy,
            manual_ids or set(),
        )

        requires_generation = replace_layer_id is not None and replace_layer_id in source_index

        if (
            generation_allowed and
            replace_layer_id is None and
            strategy.generative_prompt and
            strategy.method in (StrategyMethod.GENERATIVE, StrategyMethod.HYBRID)
        ):
            layers.insert(0, self._synthetic_layer(target_rect, target_container, strategy.generative_prompt))
            requires_generation = True

        directives = strategy.directives
        is_mandatory = bool(strategy.is_explicit_intent)

        payload = TransformedPayload(
            status=PayloadStatus.SUCCESS if source_layers else PayloadStatus.IDLE,
            source_container=source_container,
            target_container=target_container,
            layers=layers,
            scale_factor=scale_factor,
            metrics=PayloadMetrics(
                source=Size(w=source_rect.w, h=source_rect.h),
                target=Size(w=target_rect.w, h=target_rect.h),
            ),
            target_bounds=target_rect.model_copy(),
            requires_generation=requires_generation,
            generation_allowed=generation_allowed,
            source_reference=strategy.source_reference,
            directives=directives,
            is_mandatory=is_mandatory,
            replace_layer_id=replace_layer_id,
            generative_prompt=strategy.generative_prompt if requires_generation else None,
            triangulation=strategy.triangulation,
        )

        logger.info(
            f"Remapped '{source_container}' -> '{target_container}': "
            f"{len(source_index)} layers, scale={scale_factor:.3f}, "
            f"overrides={len(effective_overrides)}, requires_generation={requires_generation}"
        )
        return payload

    @staticmethod
    def _index(nodes: List[LayerNode], out: Dict[str, LayerNode]) -> None:
        for node in nodes:
            out[node.id] = node
            if node.children:
                RemapService._index(node.children, out)

    @staticmethod
    def _synthetic_layer(target_rect: Rect, target_container: str, prompt: str) -> TransformedLayerNode:
        suffix = target_container.replace(" ", "_") or "slot"
        return TransformedLayerNode(
            id=f"{settings.synthetic_layer_prefix}{suffix}",
            name="Generative Fill",
            kind=LayerKind.GENERATIVE,
            bounds=target_rect.model_copy(),
            transform=TransformInfo(),
            generative_prompt=prompt,
        )


def check_synchronization(
    payload: Optional[TransformedPayload],
    overrides: Optional[List[Override]],
) -> bool:
    """
    Check that a payload already reflects a set of reviewer overrides.

    Each overridden layer must sit at target origin + offset (within
    sync_position_epsilon) with scale_x close to scale_factor *
    individual_scale. A missing layer means the payload is out of sync.
    """
    if not overrides:
        return True
    if payload is None:
        return False

    origin = payload.canvas_rect
    by_id = {}
    stack = list(payload.layers)
    while stack:
        layer = stack.pop()
        by_id[layer.id] = layer
        stack.extend(layer.children or [])

    for override in overrides:
        layer = by_id.get(override.layer_id)
        if layer is None:
            return False
        if abs(layer.bounds.x - (origin.x + override.x_offset)) > settings.sync_position_epsilon:
            return False
        if abs(layer.bounds.y - (origin.y + override.y_offset)) > settings.sync_position_epsilon:
            return False
        expected_scale = payload.scale_factor * override.effective_scale
        if abs(layer.transform.scale_x - expected_scale) > settings.sync_scale_epsilon:
            return False

    return True


# Global service instance
remap_service = RemapService()
