"""
Session and internal data models.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict
from pydantic import BaseModel, Field
import json

from procedural_remap.models.layers import LayerNode
from procedural_remap.models.strategy import Strategy, FeedbackStrategy
from procedural_remap.models.template import RawDocument, TemplateMetadata, DesignValidationReport


class SessionStatus(str, Enum):
    """Session processing status."""
    CREATED = "created"
    READY = "ready"
    ERROR = "error"


class PixelBufferInfo(BaseModel):
    """Information about an uploaded layer pixel buffer."""
    layer_id: str
    storage_path: str
    width_px: int
    height_px: int
    size_bytes: int
    uploaded_at: datetime


class SlotBinding(BaseModel):
    """A (source container -> target container) pairing inside a session."""
    slot_id: str
    source_container: str
    target_container: str
    generation_allowed: bool = True
    strategy: Optional[Strategy] = None
    feedback: Optional[FeedbackStrategy] = None
    created_at: datetime


class Session(BaseModel):
    """Session state model - persisted as JSON."""
    session_id: str
    status: SessionStatus
    created_at: datetime
    expires_at: datetime

    # Parsed source document and target template
    source_document: RawDocument
    target_document: RawDocument
    source_template: TemplateMetadata
    target_template: TemplateMetadata
    validation: Optional[DesignValidationReport] = None

    # Normalized source tree (ids are stable path indices)
    tree: List[LayerNode] = Field(default_factory=list)

    pixels: Dict[str, PixelBufferInfo] = Field(default_factory=dict)
    slots: Dict[str, SlotBinding] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def save(self, path: Path) -> None:
        """Save session to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    @classmethod
    def load(cls, path: Path) -> "Session":
        """Load session from JSON file."""
        with open(path, "r") as f:
            data = json.load(f)
        return cls.model_validate(data)
