"""
Session management endpoints.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from procedural_remap.config import settings
from procedural_remap.models.layers import count_leaves, find_layer
from procedural_remap.models.responses import (
    CreateSessionRequest,
    ErrorResponse,
    PixelUploadResponse,
    SessionResponse,
    SlotSummary,
)
from procedural_remap.models.session import Session
from procedural_remap.services.storage import InvalidImageError, storage_service
from procedural_remap.services.template import (
    extract_template_metadata,
    normalize_layer_tree,
    resolve_container_layers,
    validate_layers,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def get_session_or_404(session_id: str) -> Session:
    """Load session or raise 404."""
    session = storage_service.load_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "SESSION_NOT_FOUND",
                "message": f"Session '{session_id}' does not exist or has expired",
            },
        )
    return session


def build_session_response(session: Session) -> SessionResponse:
    """Summarize a session for API responses."""
    now = datetime.now(timezone.utc)
    ttl_seconds = max(0, int((session.expires_at - now).total_seconds()))

    slots = []
    for binding in session.slots.values():
        resolver_status, _, _ = resolve_container_layers(binding.source_container, session.tree)
        slots.append(SlotSummary(
            slot_id=binding.slot_id,
            source_container=binding.source_container,
            target_container=binding.target_container,
            generation_allowed=binding.generation_allowed,
            has_strategy=binding.strategy is not None,
            has_feedback=binding.feedback is not None,
            resolver_status=resolver_status,
        ))

    return SessionResponse(
        session_id=session.session_id,
        status=session.status,
        created_at=session.created_at,
        expires_at=session.expires_at,
        ttl_seconds=ttl_seconds,
        source_containers=session.source_template.containers,
        target_containers=session.target_template.containers,
        validation=session.validation,
        layer_counts=count_leaves(session.tree),
        pixel_layers=sorted(session.pixels),
        slots=slots,
        error_message=session.error_message,
    )


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        422: {"model": ErrorResponse, "description": "Invalid document"},
    },
)
async def create_session(request: CreateSessionRequest) -> SessionResponse:
    """
    Start a remap session from a parsed source document and a target template.

    Both documents declare their containers in a "!!TEMPLATE" group. The
    source layer tree is normalized once and stays read-only for the life
    of the session.
    """
    source, target = request.source, request.target
    logger.info(
        f"Create session: source {source.width}x{source.height} ({len(source.layers)} root layers), "
        f"target {target.width}x{target.height}"
    )

    source_template = extract_template_metadata(source.layers, source.width, source.height)
    target_template = extract_template_metadata(target.layers, target.width, target.height)
    validation = validate_layers(source.layers, source_template)
    tree = normalize_layer_tree(source.layers)

    session = storage_service.create_session(
        source_document=source,
        target_document=target,
        source_template=source_template,
        target_template=target_template,
        tree=tree,
        validation=validation,
    )
    return build_session_response(session)


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(session_id: str) -> SessionResponse:
    """
    Get the current status and metadata of a session.
    """
    return build_session_response(get_session_or_404(session_id))


@router.put(
    "/{session_id}/layers/{layer_id}/pixels",
    response_model=PixelUploadResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid file type or image"},
        404: {"model": ErrorResponse, "description": "Session or layer not found"},
        413: {"model": ErrorResponse, "description": "File too large"},
    },
)
async def upload_layer_pixels(
    session_id: str,
    layer_id: str,
    file: UploadFile = File(..., description="PNG pixel buffer for the layer"),
) -> PixelUploadResponse:
    """
    Upload the pixel buffer of a single layer.

    The image is stretched to the layer's transformed bounds at render time.
    """
    session = get_session_or_404(session_id)

    if find_layer(session.tree, layer_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "LAYER_NOT_FOUND",
                "message": f"Layer '{layer_id}' does not exist in session '{session_id}'",
            },
        )

    if file.content_type not in settings.allowed_content_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "INVALID_FILE_TYPE",
                "message": "Pixel buffers must be PNG images",
                "details": {
                    "received_type": file.content_type,
                    "expected_types": settings.allowed_content_types,
                },
            },
        )

    content = await file.read()
    if len(content) > settings.max_file_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "code": "FILE_TOO_LARGE",
                "message": f"File '{file.filename}' exceeds the {settings.max_file_size_mb}MB limit",
                "details": {
                    "size_bytes": len(content),
                    "max_bytes": settings.max_file_size_bytes,
                },
            },
        )

    try:
        info = await storage_service.save_pixels(session_id, layer_id, content)
    except InvalidImageError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": e.code, "message": e.message},
        )

    session.pixels[layer_id] = info
    storage_service.save_session(session)

    return PixelUploadResponse(
        session_id=session_id,
        layer_id=layer_id,
        width_px=info.width_px,
        height_px=info.height_px,
        size_bytes=info.size_bytes,
    )
