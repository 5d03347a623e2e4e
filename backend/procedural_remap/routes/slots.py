"""
Slot endpoints: bindings, strategies, feedback, remap, generation and rendering.

A slot pairs one source container with one target container inside a
session. Strategies and feedback are persisted on the session and mirrored
into the pipeline context, which owns the computed payloads.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from fastapi import APIRouter, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from procedural_remap.models.layers import LayerNode, Rect
from procedural_remap.models.payload import TransformedPayload
from procedural_remap.models.responses import (
    ErrorResponse,
    GenerationRequest,
    SessionResponse,
    SlotBindingRequest,
    SyncResponse,
    VerifyRequest,
)
from procedural_remap.models.session import Session, SlotBinding
from procedural_remap.models.strategy import FeedbackStrategy, Strategy
from procedural_remap.models.template import ResolverStatus
from procedural_remap.routes.sessions import build_session_response, get_session_or_404
from procedural_remap.services.compositor import compositor_service, data_url_to_rgba
from procedural_remap.services.context import SlotNotReadyError, pipeline_context
from procedural_remap.services.generation import GenerationError, generation_coordinator
from procedural_remap.services.geometry import GeometryPreconditionError
from procedural_remap.services.overrides import resolve_overrides
from procedural_remap.services.remap import check_synchronization, remap_service
from procedural_remap.services.storage import storage_service
from procedural_remap.services.template import resolve_container_layers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions/{session_id}/slots", tags=["slots"])


# ============================================================
# HELPERS
# ============================================================

def get_slot_or_404(session: Session, slot_id: str) -> SlotBinding:
    """Look up a slot binding or raise 404."""
    binding = session.slots.get(slot_id)
    if binding is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "SLOT_NOT_FOUND",
                "message": f"Slot '{slot_id}' is not bound in session '{session.session_id}'",
            },
        )
    return binding


def sync_context(session: Session, binding: SlotBinding) -> None:
    """Mirror persisted strategy/feedback into the pipeline context."""
    owner_id, slot_id = session.session_id, binding.slot_id
    if binding.strategy is not None and pipeline_context.get_strategy(owner_id, slot_id) is None:
        pipeline_context.register_strategy(owner_id, slot_id, binding.strategy)
    if binding.feedback is not None and pipeline_context.get_feedback(owner_id, slot_id) is None:
        pipeline_context.register_feedback(owner_id, slot_id, binding.feedback)


def slot_inputs(session: Session, binding: SlotBinding) -> Tuple[List[LayerNode], Rect, Rect]:
    """Source layers, source rect and target rect for a slot."""
    source = session.source_template.container(binding.source_container)
    target = session.target_template.container(binding.target_container)
    if source is None or target is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "CONTAINER_NOT_FOUND",
                "message": (
                    f"Containers '{binding.source_container}' -> '{binding.target_container}' "
                    f"are not both defined"
                ),
            },
        )

    resolver_status, group, _ = resolve_container_layers(binding.source_container, session.tree)
    if resolver_status == ResolverStatus.NOT_FOUND:
        logger.warning(f"No design group for container '{binding.source_container}'")
    layers = (group.children or []) if group is not None else []
    return layers, source.bounds, target.bounds


def recompute_slot(session: Session, binding: SlotBinding) -> TransformedPayload:
    """Run the remap pipeline for a slot, mapping geometry errors to 422."""
    sync_context(session, binding)
    layers, source_rect, target_rect = slot_inputs(session, binding)
    try:
        return pipeline_context.recompute(
            session.session_id,
            binding.slot_id,
            layers,
            source_rect,
            target_rect,
            generation_allowed=binding.generation_allowed,
            source_container=binding.source_container,
            target_container=binding.target_container,
        )
    except GeometryPreconditionError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": e.message, "details": e.details},
        )


def require_payload(session: Session, binding: SlotBinding) -> TransformedPayload:
    payload = pipeline_context.get_payload(session.session_id, binding.slot_id)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "SLOT_NOT_READY",
                "message": f"Slot '{binding.slot_id}' has not been remapped yet",
            },
        )
    return payload


def generation_http_error(e: Exception) -> HTTPException:
    """Map lifecycle errors to HTTP errors."""
    if isinstance(e, GenerationError) and e.code == "GENERATOR_UNAVAILABLE":
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_409_CONFLICT
    return HTTPException(status_code=status_code, detail={"code": e.code, "message": e.message})


def render_png(session: Session, binding: SlotBinding, payload: TransformedPayload) -> bytes:
    """Composite a payload with the session's pixel buffers."""
    pixels = storage_service.load_all_pixels(session)
    generated = data_url_to_rgba(payload.preview_url) if payload.preview_url else None
    result = compositor_service.composite(payload, pixels.get, generated_image=generated)
    for diagnostic in result.diagnostics:
        logger.debug(f"Render {binding.slot_id}: {diagnostic.code} {diagnostic.layer_id}")
    return result.to_png_bytes()


# ============================================================
# BINDINGS
# ============================================================

@router.put(
    "/{slot_id}",
    response_model=SessionResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Session or container not found"},
    },
)
async def bind_slot(session_id: str, slot_id: str, request: SlotBindingRequest) -> SessionResponse:
    """Bind a slot to a source container and a target container."""
    session = get_session_or_404(session_id)

    binding = SlotBinding(
        slot_id=slot_id,
        source_container=request.source_container,
        target_container=request.target_container,
        generation_allowed=request.generation_allowed,
        created_at=datetime.now(timezone.utc),
    )
    previous = session.slots.get(slot_id)
    if previous is not None:
        binding.strategy = previous.strategy
        binding.feedback = previous.feedback
        if (previous.source_container, previous.target_container) != (
            binding.source_container, binding.target_container
        ):
            pipeline_context.flush_slot(session_id, slot_id)

    slot_inputs(session, binding)  # 404 if either container is unknown

    session.slots[slot_id] = binding
    storage_service.save_session(session)
    logger.info(
        f"Bound slot {slot_id}: '{binding.source_container}' -> '{binding.target_container}' "
        f"(generation_allowed={binding.generation_allowed})"
    )
    return build_session_response(session)


# ============================================================
# STRATEGY & FEEDBACK
# ============================================================

@router.put("/{slot_id}/strategy", response_model=Strategy)
async def put_strategy(session_id: str, slot_id: str, strategy: Strategy) -> Strategy:
    """Replace the slot's analysis strategy."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)

    binding.strategy = strategy
    storage_service.save_session(session)
    pipeline_context.register_strategy(session_id, slot_id, strategy)
    return strategy


@router.get(
    "/{slot_id}/strategy",
    response_model=Strategy,
    responses={
        404: {"model": ErrorResponse, "description": "No strategy registered"},
    },
)
async def get_strategy(session_id: str, slot_id: str) -> Strategy:
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)
    if binding.strategy is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "STRATEGY_NOT_FOUND", "message": f"Slot '{slot_id}' has no strategy"},
        )
    return binding.strategy


@router.put("/{slot_id}/feedback", response_model=FeedbackStrategy)
async def commit_feedback(session_id: str, slot_id: str, feedback: FeedbackStrategy) -> FeedbackStrategy:
    """Commit reviewer overrides; they persist until reset."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)

    committed = feedback.model_copy(update={"is_committed": True})
    binding.feedback = committed
    storage_service.save_session(session)
    pipeline_context.register_feedback(session_id, slot_id, committed)
    return committed


@router.delete("/{slot_id}/feedback", status_code=status.HTTP_204_NO_CONTENT)
async def reset_feedback(session_id: str, slot_id: str) -> Response:
    """Drop all reviewer overrides for the slot."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)

    binding.feedback = None
    storage_service.save_session(session)
    pipeline_context.clear_feedback(session_id, slot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================
# REMAP & RENDER
# ============================================================

@router.post(
    "/{slot_id}/remap",
    response_model=TransformedPayload,
    responses={
        404: {"model": ErrorResponse, "description": "Session or slot not found"},
        422: {"model": ErrorResponse, "description": "Zero-area container"},
    },
)
async def remap_slot(session_id: str, slot_id: str) -> TransformedPayload:
    """Recompute the slot's transformed payload from its current inputs."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)
    return recompute_slot(session, binding)


@router.get(
    "/{slot_id}/render",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}}},
        409: {"model": ErrorResponse, "description": "Slot not remapped yet"},
    },
)
async def render_slot(session_id: str, slot_id: str) -> Response:
    """Render the slot's current payload as a PNG."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)
    payload = require_payload(session, binding)

    png_bytes = pipeline_context.get_preview(session_id, slot_id)
    if png_bytes is None:
        png_bytes = await run_in_threadpool(render_png, session, binding, payload)
        pipeline_context.register_preview(session_id, slot_id, png_bytes)
        render_path = storage_service.get_render_path(session_id, slot_id)
        render_path.parent.mkdir(parents=True, exist_ok=True)
        render_path.write_bytes(png_bytes)

    return Response(content=png_bytes, media_type="image/png")


# ============================================================
# GENERATION LIFECYCLE
# ============================================================

@router.post("/{slot_id}/generation", response_model=TransformedPayload)
async def request_generation(
    session_id: str,
    slot_id: str,
    request: Optional[GenerationRequest] = None,
) -> TransformedPayload:
    """Generate a preview for the slot's generative fill."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)
    payload = require_payload(session, binding)

    request = request or GenerationRequest()
    reference = None
    if request.use_reference:
        reference = await run_in_threadpool(render_png, session, binding, payload)
    try:
        return await generation_coordinator.request(
            session_id, slot_id, prompt=request.prompt, reference_image=reference,
        )
    except (GenerationError, SlotNotReadyError) as e:
        raise generation_http_error(e)


@router.post("/{slot_id}/generation/confirm", response_model=TransformedPayload)
async def confirm_generation(session_id: str, slot_id: str) -> TransformedPayload:
    session = get_session_or_404(session_id)
    get_slot_or_404(session, slot_id)
    try:
        return generation_coordinator.confirm(session_id, slot_id)
    except (GenerationError, SlotNotReadyError) as e:
        raise generation_http_error(e)


@router.post("/{slot_id}/generation/discard", response_model=TransformedPayload)
async def discard_generation(session_id: str, slot_id: str) -> TransformedPayload:
    session = get_session_or_404(session_id)
    get_slot_or_404(session, slot_id)
    try:
        return generation_coordinator.discard(session_id, slot_id)
    except (GenerationError, SlotNotReadyError) as e:
        raise generation_http_error(e)


# ============================================================
# REVIEWER SUPPORT
# ============================================================

@router.post(
    "/{slot_id}/verify",
    response_model=TransformedPayload,
    responses={
        422: {"model": ErrorResponse, "description": "Zero-area container"},
    },
)
async def verify_slot(session_id: str, slot_id: str, request: VerifyRequest) -> TransformedPayload:
    """
    Compute a reviewer-polished payload with uncommitted overrides applied.

    The pipeline's own payload is left untouched.
    """
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)
    sync_context(session, binding)
    layers, source_rect, target_rect = slot_inputs(session, binding)

    overrides = resolve_overrides(pipeline_context.effective_overrides(session_id, slot_id), request.overrides)
    manual_ids = pipeline_context.manual_ids(session_id, slot_id) | {o.layer_id for o in request.overrides}
    try:
        payload = await run_in_threadpool(
            remap_service.remap,
            layers,
            source_rect,
            target_rect,
            strategy=pipeline_context.get_strategy(session_id, slot_id),
            effective_overrides=overrides,
            manual_ids=manual_ids,
            generation_allowed=binding.generation_allowed,
            source_container=binding.source_container,
            target_container=binding.target_container,
        )
    except GeometryPreconditionError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": e.message, "details": e.details},
        )
    return pipeline_context.register_reviewer_payload(session_id, slot_id, payload)


@router.get("/{slot_id}/sync", response_model=SyncResponse)
async def get_sync(session_id: str, slot_id: str) -> SyncResponse:
    """Check whether the stored payload reflects the committed manual overrides."""
    session = get_session_or_404(session_id)
    binding = get_slot_or_404(session, slot_id)
    sync_context(session, binding)

    feedback = pipeline_context.get_feedback(session_id, slot_id)
    overrides = feedback.overrides if feedback else []
    return SyncResponse(
        session_id=session_id,
        slot_id=slot_id,
        synchronized=check_synchronization(pipeline_context.get_payload(session_id, slot_id), overrides),
        override_count=len(overrides),
    )
