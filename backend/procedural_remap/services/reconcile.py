"""
Generation state reconciler.

Geometry is recomputed from scratch whenever inputs change, but the
generation lifecycle (preview, confirmation, generation id) must survive
recomputation. reconcile() merges a freshly computed payload with the
currently stored one; the first matching rule wins:

1. Idle without a generation id   -> full reset of lifecycle fields
2. Generation disallowed          -> strip preview, drop synthetic layers
3. Mandatory generative fill      -> auto-confirm, inherit preview
4. Stale generation id            -> keep current untouched
5. Idle with a generation id      -> clear preview and confirmation
6. Synthesizing                   -> keep current preview while working
7. Default merge
"""

import logging
from typing import Optional

from procedural_remap.config import settings
from procedural_remap.models.layers import LayerKind
from procedural_remap.models.payload import PayloadStatus, TransformedPayload

logger = logging.getLogger(__name__)


def is_mandatory(payload: TransformedPayload) -> bool:
    """Explicit intent or the mandatory directive makes a fill mandatory."""
    if payload.is_mandatory:
        return True
    return settings.mandatory_directive in (payload.directives or [])


def _strip_synthetic_layers(payload: TransformedPayload):
    prefix = settings.synthetic_layer_prefix
    return [
        layer for layer in payload.layers
        if not (layer.kind == LayerKind.GENERATIVE and layer.id.startswith(prefix))
    ]


def reconcile(
    incoming: TransformedPayload,
    current: Optional[TransformedPayload],
) -> TransformedPayload:
    """
    Merge an incoming payload with the stored one.

    Neither argument is mutated; the result is always a new object (or
    `current` itself when the incoming payload is stale).

    Args:
        incoming: Freshly computed or partially updated payload
        current: Payload currently stored for the slot, if any

    Returns:
        The payload to store
    """
    # 1. Hard reset
    if incoming.status == PayloadStatus.IDLE and incoming.generation_id is None:
        return incoming.model_copy(update={
            "preview_url": None,
            "is_confirmed": False,
            "is_transient": False,
            "is_synthesizing": False,
            "is_polished": False,
            "requires_generation": False,
            "source_reference": None,
        })

    # 2. Generation disabled for this slot
    if not incoming.generation_allowed:
        layers = _strip_synthetic_layers(incoming)
        if len(layers) != len(incoming.layers):
            logger.debug(
                f"Generation disallowed for '{incoming.target_container}': "
                f"removed {len(incoming.layers) - len(layers)} synthetic layer(s)"
            )
        return incoming.model_copy(update={
            "layers": layers,
            "preview_url": None,
            "is_confirmed": False,
            "is_transient": False,
            "is_synthesizing": False,
            "requires_generation": False,
        })

    # 3. Mandatory fill is auto-confirmed
    if is_mandatory(incoming) and incoming.requires_generation:
        update = {
            "status": PayloadStatus.SUCCESS,
            "is_confirmed": True,
            "is_transient": False,
        }
        if current is not None:
            if incoming.preview_url is None:
                update["preview_url"] = current.preview_url
            if incoming.source_reference is None:
                update["source_reference"] = current.source_reference
            if incoming.generation_id is None:
                update["generation_id"] = current.generation_id
        return incoming.model_copy(update=update)

    # 4. Out-of-order completion
    if (
        current is not None and
        incoming.generation_id is not None and
        current.generation_id is not None and
        incoming.generation_id < current.generation_id
    ):
        logger.info(
            f"Discarding stale payload for '{incoming.target_container}' "
            f"(generation {incoming.generation_id} < {current.generation_id})"
        )
        return current

    # 5. Explicit discard
    if incoming.status == PayloadStatus.IDLE:
        return incoming.model_copy(update={
            "preview_url": None,
            "is_confirmed": False,
            "is_transient": False,
            "is_synthesizing": False,
        })

    # 6. Generation in flight
    if incoming.is_synthesizing:
        base = current or incoming
        return base.model_copy(update={
            "is_synthesizing": True,
            "preview_url": current.preview_url if current else incoming.preview_url,
            "is_confirmed": current.is_confirmed if current else incoming.is_confirmed,
            "generation_id": current.generation_id if current else incoming.generation_id,
            "source_reference": incoming.source_reference or base.source_reference,
            "target_container": incoming.target_container or base.target_container,
            "metrics": incoming.metrics or base.metrics,
            "generation_allowed": True,
        })

    # 7. Default merge
    if incoming.is_confirmed is not None:
        is_confirmed = incoming.is_confirmed
    elif current is not None and current.is_confirmed is not None:
        is_confirmed = current.is_confirmed
    else:
        is_confirmed = False
    if incoming.is_transient:
        is_confirmed = False

    if incoming.generation_id is None and current is not None and current.generation_id is not None:
        return incoming.model_copy(update={
            "preview_url": current.preview_url,
            "generation_id": current.generation_id,
            "is_synthesizing": current.is_synthesizing,
            "is_confirmed": False if incoming.is_transient else current.is_confirmed,
            "is_transient": current.is_transient,
            "source_reference": current.source_reference or incoming.source_reference,
            "generation_allowed": True,
        })

    return incoming.model_copy(update={
        "is_confirmed": is_confirmed,
        "source_reference": incoming.source_reference or (current.source_reference if current else None),
        "generation_id": (
            incoming.generation_id if incoming.generation_id is not None
            else (current.generation_id if current else None)
        ),
        "generation_allowed": True,
    })
