"""
Pydantic models for layer trees, strategies, payloads and API schemas.
"""

from procedural_remap.models.layers import (
    Rect,
    Size,
    LayerKind,
    LayerNode,
    TransformInfo,
    TransformedLayerNode,
)
from procedural_remap.models.strategy import (
    LayoutRole,
    LayoutMode,
    StrategyMethod,
    Override,
    PhysicsRules,
    Strategy,
    FeedbackStrategy,
)
from procedural_remap.models.payload import (
    PayloadStatus,
    PayloadMetrics,
    TransformedPayload,
)
from procedural_remap.models.session import (
    SessionStatus,
    Session,
    SlotBinding,
)
from procedural_remap.models.responses import (
    SessionResponse,
    ErrorDetail,
    ErrorResponse,
)

__all__ = [
    "Rect",
    "Size",
    "LayerKind",
    "LayerNode",
    "TransformInfo",
    "TransformedLayerNode",
    "LayoutRole",
    "LayoutMode",
    "StrategyMethod",
    "Override",
    "PhysicsRules",
    "Strategy",
    "FeedbackStrategy",
    "PayloadStatus",
    "PayloadMetrics",
    "TransformedPayload",
    "SessionStatus",
    "Session",
    "SlotBinding",
    "SessionResponse",
    "ErrorDetail",
    "ErrorResponse",
]
