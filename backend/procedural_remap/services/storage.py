"""
Storage service for managing sessions and layer pixel buffers on the local filesystem.
"""

import io
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

import cv2
import numpy as np
from PIL import Image

from procedural_remap.config import settings
from procedural_remap.models.session import PixelBufferInfo, Session, SessionStatus
from procedural_remap.models.template import DesignValidationReport, RawDocument, TemplateMetadata
from procedural_remap.models.layers import LayerNode

logger = logging.getLogger(__name__)


class InvalidImageError(Exception):
    """Raised when uploaded pixel data is not a decodable PNG."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class StorageService:
    """Manages session storage and file operations."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = base_dir or settings.sessions_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def create_session(
        self,
        source_document: RawDocument,
        target_document: RawDocument,
        source_template: TemplateMetadata,
        target_template: TemplateMetadata,
        tree: list[LayerNode],
        validation: Optional[DesignValidationReport] = None,
    ) -> Session:
        """Create a new session with unique ID."""
        session_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=settings.session_ttl_hours)

        session = Session(
            session_id=session_id,
            status=SessionStatus.READY,
            created_at=now,
            expires_at=expires_at,
            source_document=source_document,
            target_document=target_document,
            source_template=source_template,
            target_template=target_template,
            validation=validation,
            tree=tree,
        )

        # Create session directories
        session_dir = self.get_session_dir(session_id)
        (session_dir / "pixels").mkdir(parents=True, exist_ok=True)
        (session_dir / "renders").mkdir(parents=True, exist_ok=True)

        self.save_session(session)
        logger.info(f"Created session {session_id}")
        return session

    def get_session_dir(self, session_id: str) -> Path:
        """Get the directory path for a session."""
        return self.base_dir / session_id

    def get_session_path(self, session_id: str) -> Path:
        """Get the path to the session.json file."""
        return self.get_session_dir(session_id) / "session.json"

    def save_session(self, session: Session) -> None:
        """Persist session to disk."""
        path = self.get_session_path(session.session_id)
        session.save(path)
        logger.debug(f"Saved session {session.session_id}")

    def load_session(self, session_id: str) -> Optional[Session]:
        """Load session from disk. Returns None if not found."""
        path = self.get_session_path(session_id)
        if not path.exists():
            return None
        try:
            session = Session.load(path)
            # Check expiration
            if datetime.now(timezone.utc) > session.expires_at:
                logger.warning(f"Session {session_id} has expired")
                return None
            return session
        except Exception as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            return None

    def session_exists(self, session_id: str) -> bool:
        """Check if a session exists and is not expired."""
        return self.load_session(session_id) is not None

    # ============================================================
    # PIXEL BUFFERS
    # ============================================================

    def get_pixels_path(self, session_id: str, layer_id: str) -> Path:
        """Get the path to a layer's pixel buffer."""
        return self.get_session_dir(session_id) / "pixels" / f"layer_{layer_id}.png"

    def get_render_path(self, session_id: str, slot_id: str) -> Path:
        """Get the path to a slot's last rendered preview."""
        return self.get_session_dir(session_id) / "renders" / f"render_{slot_id}.png"

    async def save_pixels(self, session_id: str, layer_id: str, file_content: bytes) -> PixelBufferInfo:
        """
        Store a PNG pixel buffer for a layer.

        Raises:
            InvalidImageError: If the content is not a decodable PNG
        """
        try:
            with Image.open(io.BytesIO(file_content)) as image:
                image.verify()
            with Image.open(io.BytesIO(file_content)) as image:
                width, height = image.size
                image_format = image.format
        except Exception as e:
            raise InvalidImageError(
                code="INVALID_IMAGE",
                message=f"Pixel data for layer {layer_id} is not a valid image: {e}",
            )
        if image_format != "PNG":
            raise InvalidImageError(
                code="INVALID_IMAGE",
                message=f"Pixel data for layer {layer_id} must be PNG, got {image_format}",
            )

        storage_path = self.get_pixels_path(session_id, layer_id)
        storage_path.parent.mkdir(parents=True, exist_ok=True)
        storage_path.write_bytes(file_content)

        logger.info(f"Saved pixels for layer {layer_id} ({width}x{height}, {len(file_content)} bytes)")
        return PixelBufferInfo(
            layer_id=layer_id,
            storage_path=str(storage_path),
            width_px=width,
            height_px=height,
            size_bytes=len(file_content),
            uploaded_at=datetime.now(timezone.utc),
        )

    def load_pixels(self, session_id: str, layer_id: str) -> Optional[np.ndarray]:
        """Load a layer's pixel buffer as RGBA. Returns None if missing."""
        path = self.get_pixels_path(session_id, layer_id)
        if not path.exists():
            return None
        image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if image is None:
            logger.error(f"Failed to decode pixels at {path}")
            return None
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)

    def load_all_pixels(self, session: Session) -> Dict[str, np.ndarray]:
        """Load every uploaded pixel buffer of a session, keyed by layer id."""
        buffers = {}
        for layer_id in session.pixels:
            pixels = self.load_pixels(session.session_id, layer_id)
            if pixels is not None:
                buffers[layer_id] = pixels
        return buffers


# Global service instance
storage_service = StorageService()
