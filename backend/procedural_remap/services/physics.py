"""
Physics solver - role-based layout rules applied after mapping.

Only root-level layers are solved. Rules run in a fixed order:

1. Grid distribution (flow layers, DISTRIBUTE_HORIZONTAL / DISTRIBUTE_VERTICAL)
2. Collision resolution (single left-to-right sweep, horizontal only)
3. Overlay anchoring (overlays follow their linked anchor)
4. Boundary clamping (layers without a manual override stay inside the target)

This is intentionally a small fixed rule set, not a general constraint solver.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from procedural_remap.config import settings
from procedural_remap.models.layers import Rect
from procedural_remap.models.strategy import LayoutMode, LayoutRole, PhysicsRules

logger = logging.getLogger(__name__)


@dataclass
class Body:
    """Mutable working geometry of one root-level layer."""
    layer_id: str
    x: float
    y: float
    w: float
    h: float
    role: Optional[LayoutRole] = None
    linked_anchor_id: Optional[str] = None
    source_bounds: Optional[Rect] = None  # Pre-transform bounds


@dataclass
class SolveReport:
    """What the solver changed, for logging and diagnostics."""
    distributed: List[str] = field(default_factory=list)
    pushed: List[str] = field(default_factory=list)
    anchored: List[str] = field(default_factory=list)
    unresolved_anchors: List[str] = field(default_factory=list)
    clamped: List[str] = field(default_factory=list)


class PhysicsSolver:
    """Applies layout physics to a list of root-level bodies in place."""

    def __init__(self, padding: float = None):
        self.padding = settings.collision_padding if padding is None else padding

    # ============================================================
    # RULE 1: GRID DISTRIBUTION
    # ============================================================

    def distribute(self, bodies: List[Body], target: Rect, mode: Optional[LayoutMode]) -> List[str]:
        """Centre flow layers in N equal slots along the distribution axis."""
        if mode not in (LayoutMode.DISTRIBUTE_HORIZONTAL, LayoutMode.DISTRIBUTE_VERTICAL):
            return []

        candidates = [b for b in bodies if b.role == LayoutRole.FLOW]
        if not candidates:
            return []

        count = len(candidates)
        if mode == LayoutMode.DISTRIBUTE_HORIZONTAL:
            slot = target.w / count
            for i, body in enumerate(candidates):
                body.x = target.x + i * slot + (slot - body.w) / 2
        else:
            slot = target.h / count
            for i, body in enumerate(candidates):
                body.y = target.y + i * slot + (slot - body.h) / 2

        return [b.layer_id for b in candidates]

    # ============================================================
    # RULE 2: COLLISION RESOLUTION
    # ============================================================

    def resolve_collisions(self, bodies: List[Body]) -> List[str]:
        """
        Push overlapping flow/unroled layers to the right.

        Candidates are sorted by x (stable) and swept once; each layer that
        starts before the previous layer's right edge plus padding is moved
        to exactly that edge. Vertical overlaps are not resolved.
        """
        candidates = [b for b in bodies if b.role in (LayoutRole.FLOW, None)]
        candidates.sort(key=lambda b: b.x)

        pushed = []
        for i in range(1, len(candidates)):
            previous = candidates[i - 1]
            current = candidates[i]
            limit = previous.x + previous.w + self.padding
            if current.x < limit:
                current.x = limit
                pushed.append(current.layer_id)
        return pushed

    # ============================================================
    # RULE 3: OVERLAY ANCHORING
    # ============================================================

    def anchor_overlays(self, bodies: List[Body], scale_factor: float):
        """
        Move overlays so they keep their source offset to their anchor.

        The source offset (overlay - anchor, pre-transform) is scaled by the
        global scale factor and added to the anchor's new position. Overlays
        whose anchor (or own source geometry) is missing keep their position.

        Returns:
            Tuple of (anchored ids, unresolved ids)
        """
        by_id: Dict[str, Body] = {b.layer_id: b for b in bodies}
        anchored, unresolved = [], []

        for body in bodies:
            if body.role != LayoutRole.OVERLAY or not body.linked_anchor_id:
                continue

            anchor = by_id.get(body.linked_anchor_id)
            if (
                anchor is None or
                anchor is body or
                anchor.source_bounds is None or
                body.source_bounds is None
            ):
                logger.debug(
                    f"Overlay {body.layer_id} anchor '{body.linked_anchor_id}' not resolvable; "
                    f"keeping mapped position"
                )
                unresolved.append(body.layer_id)
                continue

            dx = (body.source_bounds.x - anchor.source_bounds.x) * scale_factor
            dy = (body.source_bounds.y - anchor.source_bounds.y) * scale_factor
            body.x = anchor.x + dx
            body.y = anchor.y + dy
            anchored.append(body.layer_id)

        return anchored, unresolved

    # ============================================================
    # RULE 4: BOUNDARY CLAMPING
    # ============================================================

    @staticmethod
    def clamp_axis(value: float, size: float, origin: float, extent: float) -> float:
        """
        Clamp a position so [value, value + size] stays inside [origin, origin + extent].

        A layer larger than the extent has an inverted range; it is pinned
        to the origin.
        """
        upper = origin + extent - size
        if upper < origin:
            return origin
        return min(max(value, origin), upper)

    def clamp(self, bodies: List[Body], target: Rect, exempt: Set[str]) -> List[str]:
        """Clamp every non-exempt layer inside the target rectangle."""
        clamped = []
        for body in bodies:
            if body.layer_id in exempt:
                continue
            new_x = self.clamp_axis(body.x, body.w, target.x, target.w)
            new_y = self.clamp_axis(body.y, body.h, target.y, target.h)
            if new_x != body.x or new_y != body.y:
                body.x, body.y = new_x, new_y
                clamped.append(body.layer_id)
        return clamped

    # ============================================================
    # PIPELINE
    # ============================================================

    def solve(
        self,
        bodies: List[Body],
        target: Rect,
        scale_factor: float = 1.0,
        layout_mode: Optional[LayoutMode] = None,
        physics_rules: Optional[PhysicsRules] = None,
        manual_ids: Optional[Set[str]] = None,
    ) -> SolveReport:
        """
        Run all rules in order on the given bodies (mutated in place).

        Args:
            bodies: Root-level layer geometry after mapping and overrides
            target: Target container bounds
            scale_factor: Global scale used for overlay offsets
            layout_mode: Distribution mode from the strategy
            physics_rules: Optional overlap/clipping toggles
            manual_ids: Layer ids carrying a reviewer override (exempt from clamping)

        Returns:
            SolveReport listing the affected layer ids per rule
        """
        rules = physics_rules or PhysicsRules()
        report = SolveReport()

        report.distributed = self.distribute(bodies, target, layout_mode)

        if rules.prevent_overlap:
            report.pushed = self.resolve_collisions(bodies)

        report.anchored, report.unresolved_anchors = self.anchor_overlays(bodies, scale_factor)

        if rules.prevent_clipping:
            report.clamped = self.clamp(bodies, target, manual_ids or set())

        logger.debug(
            f"Physics: distributed={len(report.distributed)}, pushed={len(report.pushed)}, "
            f"anchored={len(report.anchored)}, clamped={len(report.clamped)}"
        )
        return report


# Global service instance
physics_solver = PhysicsSolver()
