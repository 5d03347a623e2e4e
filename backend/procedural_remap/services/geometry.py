"""
Geometry mapper - target-relative placement of source layers.

Every layer is mapped independently: its position is expressed as a fraction
of the source container and re-projected into the target container. Sizes
are scaled by the scalar scale factor only; no per-axis aspect correction is
applied when source and target have different aspect ratios.

    relX  = (bounds.x - source.x) / source.w
    relY  = (bounds.y - source.y) / source.h
    geomX = target.x + relX * target.w
    geomY = target.y + relY * target.h
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from procedural_remap.models.layers import Rect

logger = logging.getLogger(__name__)


class GeometryPreconditionError(Exception):
    """Raised when a rectangle cannot be mapped (zero or negative area)."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


@dataclass(frozen=True)
class MappedGeometry:
    """Result of mapping a single layer into the target container."""
    x: float
    y: float
    w: float
    h: float
    rel_x: float
    rel_y: float

    def to_rect(self) -> Rect:
        return Rect(x=self.x, y=self.y, w=self.w, h=self.h)


def validate_rects(source_rect: Rect, target_rect: Rect) -> None:
    """
    Reject rectangles that would make the mapping undefined.

    Raises:
        GeometryPreconditionError: If either rectangle has zero width or height
    """
    for label, rect in (("source", source_rect), ("target", target_rect)):
        if rect.is_degenerate:
            raise GeometryPreconditionError(
                code="INVALID_GEOMETRY",
                message=f"{label.capitalize()} rectangle has zero area ({rect.w}x{rect.h})",
                details={"rect": label, "w": rect.w, "h": rect.h},
            )


def relative_position(source_rect: Rect, bounds: Rect) -> Tuple[float, float]:
    """Position of a layer as a fraction of the source container."""
    rel_x = (bounds.x - source_rect.x) / source_rect.w
    rel_y = (bounds.y - source_rect.y) / source_rect.h
    return rel_x, rel_y


def map_position(source_rect: Rect, target_rect: Rect, bounds: Rect) -> Tuple[float, float]:
    """
    Map a source layer's top-left corner into the target container.

    Callers must have validated both rectangles with validate_rects().
    """
    rel_x, rel_y = relative_position(source_rect, bounds)
    return (
        target_rect.x + rel_x * target_rect.w,
        target_rect.y + rel_y * target_rect.h,
    )


def map_layer(
    source_rect: Rect,
    target_rect: Rect,
    bounds: Rect,
    scale_factor: float = 1.0,
) -> MappedGeometry:
    """
    Map a layer's bounds into the target container.

    Args:
        source_rect: Source container bounds
        target_rect: Target container bounds
        bounds: Layer bounds in the source coordinate space
        scale_factor: Uniform scale applied to width and height

    Returns:
        MappedGeometry with the unscaled target-relative position and scaled size
    """
    rel_x, rel_y = relative_position(source_rect, bounds)
    return MappedGeometry(
        x=target_rect.x + rel_x * target_rect.w,
        y=target_rect.y + rel_y * target_rect.h,
        w=bounds.w * scale_factor,
        h=bounds.h * scale_factor,
        rel_x=rel_x,
        rel_y=rel_y,
    )
