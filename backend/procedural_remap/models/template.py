"""
Template and container models.

Templates describe the named rectangular containers of a document; the
parsing collaborator delivers documents as RawLayer trees.
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field

from procedural_remap.models.layers import Rect


class RawLayer(BaseModel):
    """Layer as delivered by the document parser (edge coordinates, 0-255 opacity)."""
    name: Optional[str] = None
    top: Optional[float] = None
    left: Optional[float] = None
    bottom: Optional[float] = None
    right: Optional[float] = None
    hidden: bool = False
    opacity: Optional[float] = Field(default=None, description="Raw opacity 0-255")
    children: Optional[List["RawLayer"]] = None


class RawDocument(BaseModel):
    """A parsed document: canvas size plus the raw layer tree."""
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    layers: List[RawLayer] = Field(default_factory=list)


class CanvasSize(BaseModel):
    width: int
    height: int


class ContainerDefinition(BaseModel):
    """A named container from a document's template group."""
    id: str
    name: str = Field(description="Container name with the '!!' prefix stripped")
    original_name: str
    bounds: Rect
    normalized: Rect = Field(description="Bounds as fractions of the canvas")


class TemplateMetadata(BaseModel):
    """Lightweight template: canvas size and containers."""
    canvas: CanvasSize
    containers: List[ContainerDefinition] = Field(default_factory=list)

    def container(self, name: str) -> Optional[ContainerDefinition]:
        return next((c for c in self.containers if c.name == name), None)


class ContainerContext(BaseModel):
    """Scoped view of a single container."""
    container_name: str
    bounds: Rect
    canvas_dimensions: CanvasSize


class ValidationIssue(BaseModel):
    layer_name: str
    container_name: str
    type: str = "PROCEDURAL_VIOLATION"
    message: str


class DesignValidationReport(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)


class ResolverStatus(str, Enum):
    """Outcome of matching a container to its design group."""
    RESOLVED = "RESOLVED"
    CASE_MISMATCH = "CASE_MISMATCH"
    EMPTY_GROUP = "EMPTY_GROUP"
    NOT_FOUND = "NOT_FOUND"
