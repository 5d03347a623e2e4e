"""
Business logic services.
"""

from procedural_remap.services.storage import StorageService
from procedural_remap.services.geometry import GeometryPreconditionError, map_layer, map_position, validate_rects
from procedural_remap.services.overrides import resolve_overrides, overrides_signature
from procedural_remap.services.physics import PhysicsSolver, Body
from procedural_remap.services.remap import RemapService, check_synchronization
from procedural_remap.services.reconcile import reconcile
from procedural_remap.services.compositor import CompositorService, CompositeResult, optical_bounds
from procedural_remap.services.context import PipelineContext, SlotNotReadyError

__all__ = [
    "StorageService",
    "GeometryPreconditionError",
    "map_layer",
    "map_position",
    "validate_rects",
    "resolve_overrides",
    "overrides_signature",
    "PhysicsSolver",
    "Body",
    "RemapService",
    "check_synchronization",
    "reconcile",
    "CompositorService",
    "CompositeResult",
    "optical_bounds",
    "PipelineContext",
    "SlotNotReadyError",
]
