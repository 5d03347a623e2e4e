"""
API route modules.
"""

from procedural_remap.routes.sessions import router as sessions_router
from procedural_remap.routes.slots import router as slots_router

__all__ = [
    "sessions_router",
    "slots_router",
]
