"""
Override resolver - merges analyst overrides with reviewer feedback.

Manual edits replace geometry only. The semantic fields of a base override
(layout_role, linked_anchor_id, cited_rule, anchor_index) always survive a
merge, so a reviewer nudging a layer never changes what the layer *is*.
"""

import hashlib
import json
import logging
from typing import List, Optional, Dict

from procedural_remap.models.strategy import Override, FeedbackStrategy

logger = logging.getLogger(__name__)


def resolve_overrides(
    base: List[Override],
    feedback: Optional[List[Override]],
) -> List[Override]:
    """
    Produce the effective override list for a slot.

    1. Base overrides also present in feedback keep their semantic fields and
       take x_offset/y_offset (and individual_scale/rotation when given) from
       the feedback entry.
    2. Feedback overrides for ids not in base are appended verbatim.
    3. Empty feedback leaves the base list unchanged.

    Duplicate ids in feedback resolve to the last entry.
    """
    if not feedback:
        return list(base)

    feedback_by_id: Dict[str, Override] = {}
    feedback_order: List[str] = []
    for entry in feedback:
        if entry.layer_id not in feedback_by_id:
            feedback_order.append(entry.layer_id)
        feedback_by_id[entry.layer_id] = entry

    base_ids = {entry.layer_id for entry in base}
    effective: List[Override] = []

    for entry in base:
        manual = feedback_by_id.get(entry.layer_id)
        if manual is None:
            effective.append(entry)
            continue

        update = {
            "x_offset": manual.x_offset,
            "y_offset": manual.y_offset,
        }
        if manual.individual_scale is not None:
            update["individual_scale"] = manual.individual_scale
        if manual.rotation is not None:
            update["rotation"] = manual.rotation
        effective.append(entry.model_copy(update=update))

    for layer_id in feedback_order:
        if layer_id not in base_ids:
            effective.append(feedback_by_id[layer_id])

    logger.debug(
        f"Resolved {len(base)} base + {len(feedback)} feedback overrides "
        f"into {len(effective)} effective overrides"
    )
    return effective


def resolve_strategy_overrides(
    base: List[Override],
    feedback: Optional[FeedbackStrategy],
) -> List[Override]:
    """Convenience wrapper accepting a whole FeedbackStrategy (or None)."""
    return resolve_overrides(base, feedback.overrides if feedback else None)


def overrides_signature(overrides: List[Override]) -> str:
    """Stable digest of an override list, used to detect geometry changes."""
    canonical = json.dumps(
        [entry.model_dump(mode="json") for entry in overrides],
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
