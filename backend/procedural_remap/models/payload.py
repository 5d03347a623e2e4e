"""
Transformed payload model: the computed output of one slot.

Geometry fields are recomputed from scratch on every input change. The
generation-lifecycle fields (preview_url, is_confirmed, generation_id, ...)
carry memory across recomputation through the reconciler.
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field

from procedural_remap.models.layers import Rect, Size, TransformedLayerNode
from procedural_remap.models.strategy import TriangulationAudit


class PayloadStatus(str, Enum):
    """Status of a transformed payload."""
    SUCCESS = "success"
    ERROR = "error"
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class PayloadMetrics(BaseModel):
    """Source and target container dimensions."""
    source: Size
    target: Size


class TransformedPayload(BaseModel):
    """Remapped layer tree plus generation lifecycle state for one slot."""
    status: PayloadStatus = PayloadStatus.SUCCESS
    source_container: str = ""
    target_container: str = ""
    layers: List[TransformedLayerNode] = Field(default_factory=list)
    scale_factor: float = 1.0
    metrics: PayloadMetrics
    target_bounds: Optional[Rect] = None

    # Generation lifecycle
    requires_generation: bool = False
    preview_url: Optional[str] = Field(default=None, description="Data URL of the generated preview")
    is_confirmed: Optional[bool] = None
    is_transient: bool = False
    is_synthesizing: bool = False
    source_reference: Optional[str] = None
    generation_id: Optional[int] = Field(
        default=None,
        description="Monotonic token minted per generation request; sole staleness tie-breaker",
    )
    generation_allowed: bool = True
    is_polished: bool = False

    directives: Optional[List[str]] = None
    is_mandatory: bool = False

    replace_layer_id: Optional[str] = None
    generative_prompt: Optional[str] = None
    triangulation: Optional[TriangulationAudit] = None

    @property
    def canvas_rect(self) -> Rect:
        """Target bounds, falling back to the target metrics at the origin."""
        if self.target_bounds is not None:
            return self.target_bounds
        return Rect(x=0, y=0, w=self.metrics.target.w, h=self.metrics.target.h)
