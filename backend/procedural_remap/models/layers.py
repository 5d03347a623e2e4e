"""
Layer tree and geometry models.

A source document is captured as a tree of LayerNode records with path-like
ids ("0", "0.3", "0.3.1") that stay stable across recomputation. Remapping
produces TransformedLayerNode records whose bounds live in the target
coordinate space.
"""

from enum import Enum
from typing import Optional, List, Dict, Iterator
from pydantic import BaseModel, Field

from procedural_remap.models.strategy import LayoutRole


# ============================================================
# Geometry Models
# ============================================================

class Rect(BaseModel):
    """Axis-aligned rectangle in the global pixel coordinate space."""
    x: float = Field(default=0.0, description="Left edge X coordinate")
    y: float = Field(default=0.0, description="Top edge Y coordinate")
    w: float = Field(default=0.0, description="Width in pixels")
    h: float = Field(default=0.0, description="Height in pixels")

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    @property
    def is_degenerate(self) -> bool:
        """True when the rectangle has no area."""
        return self.w <= 0 or self.h <= 0

    def translated(self, dx: float, dy: float) -> "Rect":
        return Rect(x=self.x + dx, y=self.y + dy, w=self.w, h=self.h)

    def contains(self, other: "Rect") -> bool:
        """Check if another rectangle lies fully inside this one."""
        return (
            other.x >= self.x and
            other.y >= self.y and
            other.right <= self.right and
            other.bottom <= self.bottom
        )


class Size(BaseModel):
    """Width/height pair."""
    w: float
    h: float


# ============================================================
# Layer Models
# ============================================================

class LayerKind(str, Enum):
    """Structural kind of a layer."""
    PIXEL = "pixel"             # Leaf carrying original pixel data
    GROUP = "group"             # Structural container (possibly empty)
    GENERATIVE = "generative"   # Leaf painted from a generated proxy image


class LayerNode(BaseModel):
    """A node of the source design tree."""
    id: str = Field(description="Stable path-like identifier, e.g. '0.3.1'")
    name: str = Field(description="Human-readable layer name")
    kind: LayerKind = Field(default=LayerKind.PIXEL, description="Structural kind")
    visible: bool = Field(default=True, description="Layer visibility")
    opacity: float = Field(default=1.0, ge=0.0, le=1.0, description="Layer opacity")
    bounds: Rect = Field(description="Layer bounds in global coordinates")
    children: Optional[List["LayerNode"]] = Field(
        default=None,
        description="Ordered children (index 0 = bottom-most). Present only for groups.",
    )

    @property
    def is_group(self) -> bool:
        return self.kind == LayerKind.GROUP


class TransformInfo(BaseModel):
    """Transform applied to a layer during remapping."""
    scale_x: float = Field(default=1.0, description="X scale factor")
    scale_y: float = Field(default=1.0, description="Y scale factor")
    offset_x: float = Field(default=0.0, description="X translation from source position")
    offset_y: float = Field(default=0.0, description="Y translation from source position")
    rotation: Optional[float] = Field(default=None, description="Rotation in degrees")


class TransformedLayerNode(LayerNode):
    """A layer after remapping. Bounds are in the target coordinate space."""
    transform: TransformInfo = Field(default_factory=TransformInfo)
    children: Optional[List["TransformedLayerNode"]] = None

    # Hydrated from the effective override so reviewers can see semantics
    layout_role: Optional[LayoutRole] = None
    linked_anchor_id: Optional[str] = None
    cited_rule: Optional[str] = None
    generative_prompt: Optional[str] = None


TransformedLayerNode.model_rebuild()


# ============================================================
# Tree Helpers
# ============================================================

def iter_layers(layers: List[LayerNode]) -> Iterator[LayerNode]:
    """Depth-first iteration over a layer tree, parents before children."""
    for layer in layers:
        yield layer
        if layer.children:
            yield from iter_layers(layer.children)


def index_layers(layers: List[LayerNode]) -> Dict[str, LayerNode]:
    """Build an id -> node lookup for a whole tree."""
    return {layer.id: layer for layer in iter_layers(layers)}


def find_layer(layers: List[LayerNode], layer_id: str) -> Optional[LayerNode]:
    """Find a layer anywhere in the tree by id."""
    for layer in iter_layers(layers):
        if layer.id == layer_id:
            return layer
    return None


def count_leaves(layers: List[LayerNode]) -> Dict[str, int]:
    """
    Count leaves and groups in a tree.

    Empty groups count as groups with zero leaves, so the result depends
    only on structure, never on content.
    """
    counts = {"pixel": 0, "generative": 0, "group": 0}
    for layer in iter_layers(layers):
        counts[layer.kind.value] += 1
    counts["total"] = counts["pixel"] + counts["generative"] + counts["group"]
    return counts
