"""
Layout strategy and override models.

A Strategy is produced by the analysis collaborator and is immutable here.
A FeedbackStrategy carries manual corrections committed by a reviewer and is
merged on top of the strategy's overrides.
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


class LayoutRole(str, Enum):
    """Semantic role controlling which physics rule applies to a layer."""
    FLOW = "flow"               # Distributed and de-collided
    STATIC = "static"           # Left where mapping/overrides put it
    OVERLAY = "overlay"         # Follows a linked anchor layer
    BACKGROUND = "background"   # Never moved by physics (except clamping)


class LayoutMode(str, Enum):
    """Grid distribution mode for flow layers."""
    STANDARD = "STANDARD"
    DISTRIBUTE_HORIZONTAL = "DISTRIBUTE_HORIZONTAL"
    DISTRIBUTE_VERTICAL = "DISTRIBUTE_VERTICAL"
    GRID = "GRID"


class StrategyMethod(str, Enum):
    """How the analyst proposes to fill the target."""
    GEOMETRIC = "GEOMETRIC"
    GENERATIVE = "GENERATIVE"
    HYBRID = "HYBRID"


class AnchorMode(str, Enum):
    """Vertical anchoring hint from the analyst."""
    TOP = "TOP"
    CENTER = "CENTER"
    BOTTOM = "BOTTOM"
    STRETCH = "STRETCH"


class ConfidenceVerdict(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Override(BaseModel):
    """
    Per-layer positional/scale adjustment.

    Offsets are relative to the target rectangle's origin, not absolute.
    """
    layer_id: str = Field(description="Id of the layer this override applies to")
    x_offset: float = Field(description="X offset from the target origin")
    y_offset: float = Field(description="Y offset from the target origin")
    individual_scale: Optional[float] = Field(
        default=None, description="Per-layer scale multiplied with the global scale"
    )
    rotation: Optional[float] = Field(default=None, description="Rotation in degrees")
    cited_rule: Optional[str] = Field(default=None, description="Rule that motivated this override")
    anchor_index: Optional[int] = None
    layout_role: Optional[LayoutRole] = None
    linked_anchor_id: Optional[str] = Field(
        default=None,
        description="Anchor layer id; only meaningful when layout_role is 'overlay'",
    )

    @property
    def effective_scale(self) -> float:
        return self.individual_scale if self.individual_scale is not None else 1.0


class PhysicsRules(BaseModel):
    """Optional physics rules toggled by the analyst."""
    prevent_overlap: bool = False
    prevent_clipping: bool = False


class TriangulationAudit(BaseModel):
    """Confidence audit attached by the analyst."""
    visual_identification: str = ""
    knowledge_correlation: str = ""
    metadata_validation: str = ""
    evidence_count: int = 0
    confidence_verdict: ConfidenceVerdict = ConfidenceVerdict.LOW


class Strategy(BaseModel):
    """Layout strategy delivered by the analysis collaborator."""
    method: Optional[StrategyMethod] = None
    suggested_scale: float = Field(default=1.0, gt=0.0, description="Global scale factor")
    anchor: AnchorMode = AnchorMode.CENTER
    generative_prompt: Optional[str] = None
    reasoning: Optional[str] = None
    overrides: List[Override] = Field(default_factory=list)
    directives: Optional[List[str]] = None
    replace_layer_id: Optional[str] = None
    layout_mode: Optional[LayoutMode] = None
    physics_rules: Optional[PhysicsRules] = None

    # Logic gate flags
    is_explicit_intent: Optional[bool] = None
    generation_allowed: Optional[bool] = None

    source_reference: Optional[str] = None
    triangulation: Optional[TriangulationAudit] = None


class FeedbackStrategy(BaseModel):
    """Manual corrections committed by the review collaborator."""
    overrides: List[Override] = Field(default_factory=list)
    directives: Optional[List[str]] = None
    is_committed: bool = False
