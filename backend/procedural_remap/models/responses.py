"""
API request/response models.
"""

from datetime import datetime
from typing import Optional, Any, List, Dict
from pydantic import BaseModel, Field

from procedural_remap.models.session import SessionStatus
from procedural_remap.models.strategy import Override
from procedural_remap.models.template import (
    ContainerDefinition,
    DesignValidationReport,
    RawDocument,
    ResolverStatus,
)


# ============================================================
# Session Models
# ============================================================

class CreateSessionRequest(BaseModel):
    """Request body for POST /api/v1/sessions."""
    source: RawDocument = Field(description="Parsed source document (with its !!TEMPLATE group)")
    target: RawDocument = Field(description="Target template document (with its !!TEMPLATE group)")


class SlotSummary(BaseModel):
    """Summary of a slot binding."""
    slot_id: str
    source_container: str
    target_container: str
    generation_allowed: bool
    has_strategy: bool = False
    has_feedback: bool = False
    resolver_status: Optional[ResolverStatus] = None


class SessionResponse(BaseModel):
    """Response from POST /sessions and GET /sessions/{session_id}."""
    session_id: str
    status: SessionStatus
    created_at: datetime
    expires_at: datetime
    ttl_seconds: int

    source_containers: List[ContainerDefinition] = Field(default_factory=list)
    target_containers: List[ContainerDefinition] = Field(default_factory=list)
    validation: Optional[DesignValidationReport] = None

    layer_counts: Dict[str, int] = Field(default_factory=dict)
    pixel_layers: List[str] = Field(default_factory=list)
    slots: List[SlotSummary] = Field(default_factory=list)

    error_message: Optional[str] = None


class PixelUploadResponse(BaseModel):
    """Response from PUT /sessions/{session_id}/layers/{layer_id}/pixels."""
    session_id: str
    layer_id: str
    width_px: int
    height_px: int
    size_bytes: int


# ============================================================
# Slot Models
# ============================================================

class SlotBindingRequest(BaseModel):
    """Request body for PUT /sessions/{session_id}/slots/{slot_id}."""
    source_container: str
    target_container: str
    generation_allowed: bool = True


class GenerationRequest(BaseModel):
    """Request body for POST .../generation."""
    prompt: Optional[str] = Field(default=None, description="Defaults to the payload's generative prompt")
    use_reference: bool = Field(
        default=False,
        description="Send the current render as a reference image",
    )


class VerifyRequest(BaseModel):
    """Request body for POST .../verify: a reviewer-polished layer set."""
    overrides: List[Override] = Field(default_factory=list)


class SyncResponse(BaseModel):
    """Whether the stored payload reflects the committed manual overrides."""
    session_id: str
    slot_id: str
    synchronized: bool
    override_count: int


# ============================================================
# Error Models
# ============================================================

class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorDetail
