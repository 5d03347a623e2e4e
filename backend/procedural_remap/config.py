"""
Application configuration settings.
"""

from pathlib import Path
from typing import Tuple
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    # API Settings
    api_v1_prefix: str = "/api/v1"
    debug: bool = False
    
    # File Storage
    data_dir: Path = Path("./data")
    
    # Upload Limits
    max_file_size_mb: int = 25
    allowed_content_types: list[str] = ["image/png"]
    
    # Session Settings
    session_ttl_hours: int = 4
    
    # ============================================================
    # REMAP / PHYSICS SETTINGS
    # ============================================================
    
    # Minimum horizontal gap enforced by the collision sweep
    collision_padding: float = 10.0
    
    # Default global scale when a strategy does not suggest one
    default_scale: float = 1.0
    
    # Reviewer synchronization tolerances
    sync_position_epsilon: float = 1.0   # pixels
    sync_scale_epsilon: float = 0.01
    
    # ============================================================
    # GENERATION LIFECYCLE SETTINGS
    # ============================================================
    
    # Layers inserted by the generation pipeline carry this id prefix.
    # They are removed entirely when generation is disabled for a slot.
    synthetic_layer_prefix: str = "gen-layer-"
    
    # Directive that marks a generative fill as mandatory
    mandatory_directive: str = "MANDATORY_GEN_FILL"
    
    # Image generation backend
    generation_model_name: str = "gemini-2.0-flash-preview-image-generation"
    generation_timeout_s: float = 60.0
    
    # ============================================================
    # COMPOSITOR SETTINGS
    # ============================================================
    
    # Opaque matte behind every composite (Slate 900)
    matte_color: Tuple[int, int, int] = (15, 23, 42)
    
    # Generative placeholder styling (RGBA)
    placeholder_fill: Tuple[int, int, int, int] = (192, 132, 252, 77)
    placeholder_outline: Tuple[int, int, int, int] = (192, 132, 252, 204)
    placeholder_label_color: Tuple[int, int, int, int] = (233, 213, 255, 255)
    placeholder_label: str = "AI GEN"
    
    # Layers with opacity exactly 0 are painted at full opacity.
    # Diagnostic aid for files that report hidden-by-opacity layers.
    compositor_force_zero_opacity: bool = True
    
    # Names of template/design structure in source documents
    template_group_name: str = "!!TEMPLATE"
    container_name_prefix: str = "!!"
    
    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024
    
    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"
    
    class Config:
        env_prefix = "PROCEDURAL_REMAP_"
        env_file = ".env"
        extra = "ignore"  # Allow extra env vars like GOOGLE_API_KEY


# Global settings instance
settings = Settings()
