"""
Pipeline context - registries for strategies, feedback and payloads.

Everything the pipeline remembers between recomputations lives here, keyed
by (owner_id, slot_id). State only changes through the methods below; every
payload write goes through the reconciler.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from procedural_remap.models.layers import LayerNode, Rect
from procedural_remap.models.payload import TransformedPayload
from procedural_remap.models.strategy import FeedbackStrategy, Override, Strategy
from procedural_remap.services.overrides import overrides_signature, resolve_strategy_overrides
from procedural_remap.services.reconcile import reconcile
from procedural_remap.services.remap import RemapService, remap_service

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, str]


class SlotNotReadyError(Exception):
    """Raised when an operation needs a payload the slot does not have yet."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class PipelineContext:
    """Holds per-slot pipeline state for all owners."""

    def __init__(self, remapper: Optional[RemapService] = None):
        self.remapper = remapper or remap_service

        self.strategies: Dict[SlotKey, Strategy] = {}
        self.feedback: Dict[SlotKey, FeedbackStrategy] = {}
        self.payloads: Dict[SlotKey, TransformedPayload] = {}
        self.reviewer_payloads: Dict[SlotKey, TransformedPayload] = {}
        self.previews: Dict[SlotKey, bytes] = {}
        self.signatures: Dict[SlotKey, str] = {}
        self.prompts: Dict[SlotKey, str] = {}

        self._last_generation_id = 0

    # ============================================================
    # STRATEGY & FEEDBACK
    # ============================================================

    def register_strategy(self, owner_id: str, slot_id: str, strategy: Strategy) -> None:
        """Replace the analysis strategy for a slot wholesale."""
        self.strategies[(owner_id, slot_id)] = strategy
        logger.debug(f"Registered strategy for {owner_id}/{slot_id}: {len(strategy.overrides)} overrides")

    def get_strategy(self, owner_id: str, slot_id: str) -> Optional[Strategy]:
        return self.strategies.get((owner_id, slot_id))

    def register_feedback(self, owner_id: str, slot_id: str, feedback: FeedbackStrategy) -> None:
        """Commit reviewer feedback; it persists until clear_feedback()."""
        self.feedback[(owner_id, slot_id)] = feedback.model_copy(update={"is_committed": True})
        logger.info(f"Committed {len(feedback.overrides)} manual overrides for {owner_id}/{slot_id}")

    def get_feedback(self, owner_id: str, slot_id: str) -> Optional[FeedbackStrategy]:
        return self.feedback.get((owner_id, slot_id))

    def clear_feedback(self, owner_id: str, slot_id: str) -> None:
        if self.feedback.pop((owner_id, slot_id), None) is not None:
            logger.info(f"Reset manual overrides for {owner_id}/{slot_id}")

    def effective_overrides(self, owner_id: str, slot_id: str) -> List[Override]:
        """Analyst overrides merged with committed reviewer feedback."""
        key = (owner_id, slot_id)
        strategy = self.strategies.get(key)
        base = strategy.overrides if strategy else []
        return resolve_strategy_overrides(base, self.feedback.get(key))

    def manual_ids(self, owner_id: str, slot_id: str) -> Set[str]:
        feedback = self.feedback.get((owner_id, slot_id))
        return {o.layer_id for o in feedback.overrides} if feedback else set()

    # ============================================================
    # PAYLOADS
    # ============================================================

    def get_payload(self, owner_id: str, slot_id: str) -> Optional[TransformedPayload]:
        return self.payloads.get((owner_id, slot_id))

    def _invalidate_preview(self, key: SlotKey) -> None:
        """Drop the preview tied to geometry that no longer exists."""
        current = self.payloads.get(key)
        if current is not None and (current.preview_url or current.is_confirmed):
            logger.info(f"Overrides changed for {key[0]}/{key[1]}; invalidating preview")
            self.payloads[key] = current.model_copy(update={
                "preview_url": None,
                "is_confirmed": False,
            })
        self.previews.pop(key, None)

    def recompute(
        self,
        owner_id: str,
        slot_id: str,
        tree: List[LayerNode],
        source_rect: Rect,
        target_rect: Rect,
        generation_allowed: bool = True,
        source_container: str = "",
        target_container: str = "",
    ) -> TransformedPayload:
        """
        Recompute a slot's payload from its current inputs.

        Resolves overrides, remaps, invalidates the preview if the effective
        overrides changed since the last run, then reconciles and stores.

        Raises:
            GeometryPreconditionError: If either rectangle has zero area
        """
        key = (owner_id, slot_id)
        overrides = self.effective_overrides(owner_id, slot_id)

        incoming = self.remapper.remap(
            tree,
            source_rect,
            target_rect,
            strategy=self.strategies.get(key),
            effective_overrides=overrides,
            manual_ids=self.manual_ids(owner_id, slot_id),
            generation_allowed=generation_allowed,
            source_container=source_container,
            target_container=target_container,
        )

        feedback = self.feedback.get(key)
        if feedback is not None and feedback.directives:
            merged = list(dict.fromkeys((incoming.directives or []) + feedback.directives))
            incoming = incoming.model_copy(update={"directives": merged})

        signature = overrides_signature(overrides)
        previous = self.signatures.get(key)
        if previous is not None and previous != signature:
            self._invalidate_preview(key)
        self.signatures[key] = signature

        return self.register_payload(owner_id, slot_id, incoming)

    def register_payload(
        self,
        owner_id: str,
        slot_id: str,
        payload: TransformedPayload,
        master_override: Optional[bool] = None,
    ) -> TransformedPayload:
        """
        Reconcile a payload against the stored one and store the result.

        Args:
            master_override: False forces generation off for this payload
        """
        key = (owner_id, slot_id)
        if master_override is False:
            payload = payload.model_copy(update={"generation_allowed": False})

        current = self.payloads.get(key)
        effective = reconcile(payload, current)
        if effective is not current:
            self.previews.pop(key, None)
        self.payloads[key] = effective

        if not effective.generation_allowed:
            self.prompts.pop(key, None)
        return effective

    def update_payload(self, owner_id: str, slot_id: str, **partial) -> TransformedPayload:
        """
        Merge partial fields onto the stored payload, then reconcile.

        Raises:
            SlotNotReadyError: If the slot has no payload yet
        """
        current = self.payloads.get((owner_id, slot_id))
        if current is None:
            raise SlotNotReadyError(
                code="SLOT_NOT_READY",
                message=f"Slot {slot_id} has no payload; remap it first",
                details={"owner_id": owner_id, "slot_id": slot_id},
            )
        return self.register_payload(owner_id, slot_id, current.model_copy(update=partial))

    def register_reviewer_payload(self, owner_id: str, slot_id: str, payload: TransformedPayload) -> TransformedPayload:
        """
        Reconcile and store a reviewer-polished payload next to the pipeline's own.

        Reconciles against the previous reviewer payload, or the pipeline
        payload on first registration, so the preview bundle carries over.
        """
        key = (owner_id, slot_id)
        current = self.reviewer_payloads.get(key) or self.payloads.get(key)
        effective = reconcile(payload.model_copy(update={"is_polished": True}), current)
        polished = effective.model_copy(update={"is_polished": True})
        self.reviewer_payloads[key] = polished
        return polished

    def get_reviewer_payload(self, owner_id: str, slot_id: str) -> Optional[TransformedPayload]:
        return self.reviewer_payloads.get((owner_id, slot_id))

    def register_preview(self, owner_id: str, slot_id: str, png_bytes: bytes) -> None:
        self.previews[(owner_id, slot_id)] = png_bytes

    def get_preview(self, owner_id: str, slot_id: str) -> Optional[bytes]:
        return self.previews.get((owner_id, slot_id))

    # ============================================================
    # GENERATION BOOKKEEPING
    # ============================================================

    def mint_generation_id(self) -> int:
        """Next generation id; strictly increasing for the context's lifetime."""
        self._last_generation_id += 1
        return self._last_generation_id

    def claim_prompt(self, owner_id: str, slot_id: str, prompt: str) -> bool:
        """
        Record a generation attempt for a prompt.

        Returns False when this exact prompt was already attempted for the slot.
        """
        key = (owner_id, slot_id)
        if self.prompts.get(key) == prompt:
            return False
        self.prompts[key] = prompt
        return True

    # ============================================================
    # CLEANUP
    # ============================================================

    def _registries(self) -> List[dict]:
        return [
            self.strategies,
            self.feedback,
            self.payloads,
            self.reviewer_payloads,
            self.previews,
            self.signatures,
            self.prompts,
        ]

    def _drop_keys(self, predicate) -> int:
        removed = 0
        for registry in self._registries():
            for key in [k for k in registry if predicate(k)]:
                del registry[key]
                removed += 1
        return removed

    def flush_slot(self, owner_id: str, slot_id: str) -> None:
        """Forget everything about one slot."""
        self._drop_keys(lambda key: key == (owner_id, slot_id))
        logger.debug(f"Flushed slot {owner_id}/{slot_id}")

    def remove_instance(self, instance_id: str) -> None:
        """Drop every entry whose owner or slot id contains the instance id."""
        removed = self._drop_keys(lambda key: instance_id in key[0] or instance_id in key[1])
        logger.debug(f"Removed instance {instance_id}: {removed} entries")

    def unregister_owner(self, owner_id: str) -> None:
        removed = self._drop_keys(lambda key: key[0] == owner_id)
        logger.info(f"Unregistered owner {owner_id}: {removed} entries")


# Global context instance
pipeline_context = PipelineContext()
