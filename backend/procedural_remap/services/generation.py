"""
Generation service - drives generative fills through their lifecycle.

    idle -> synthesizing -> preview (awaiting confirmation) -> confirmed | discarded

Each request mints a new generation id before calling the image generator.
Completions are registered through the pipeline context, so a result that
arrives after a newer one is dropped by the reconciler's staleness rule.
Failures and timeouts leave the existing preview in place; there is no
automatic retry.
"""

import asyncio
import io
import logging
import os
from typing import Optional

from PIL import Image
import google.generativeai as genai

from procedural_remap.config import settings
from procedural_remap.models.payload import PayloadStatus, TransformedPayload
from procedural_remap.services.compositor import to_data_url, to_png_bytes
from procedural_remap.services.context import PipelineContext, SlotNotReadyError, pipeline_context
from procedural_remap.services.reconcile import is_mandatory

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Raised when an image cannot be generated or a lifecycle step is invalid."""
    def __init__(self, code: str, message: str, details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


def normalize_png(image_bytes: bytes) -> bytes:
    """Re-encode generator output (any Pillow format) as RGBA PNG."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            return to_png_bytes(image.convert("RGBA"))
    except Exception as e:
        raise GenerationError(
            code="INVALID_IMAGE",
            message=f"Generator returned undecodable image data: {e}",
        )


class GeminiImageGenerator:
    """Image generator backed by Google's Gemini image models."""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        """
        Args:
            api_key: Google API key. If not provided, reads GOOGLE_API_KEY.
            model_name: Model to use; defaults to settings.generation_model_name
        """
        self.api_key = api_key or os.environ.get("GOOGLE_API_KEY")
        self.model_name = model_name or settings.generation_model_name
        self._configured = False

        if self.api_key:
            genai.configure(api_key=self.api_key)
            self._configured = True
            logger.info(f"Image generator configured with model: {self.model_name}")
        else:
            logger.warning("Image generation unavailable: GOOGLE_API_KEY is not set")

    @property
    def is_available(self) -> bool:
        return self._configured

    async def generate(self, prompt: str, reference_image: Optional[bytes] = None) -> bytes:
        """
        Generate an image for a prompt, optionally guided by a reference PNG.

        Returns:
            Raw image bytes as returned by the model

        Raises:
            GenerationError: If the generator is unavailable, fails or returns no image
        """
        if not self.is_available:
            raise GenerationError(code="GENERATOR_UNAVAILABLE", message="Image generator is not configured")

        parts = [prompt]
        if reference_image is not None:
            parts.append({"mime_type": "image/png", "data": reference_image})

        logger.info(f"Requesting generative fill: model={self.model_name}, prompt='{prompt[:80]}'")
        try:
            model = genai.GenerativeModel(self.model_name)
            response = await model.generate_content_async(parts)
            for candidate in response.candidates:
                for part in candidate.content.parts:
                    inline = getattr(part, "inline_data", None)
                    if inline is not None and inline.data:
                        return inline.data
        except Exception as e:
            raise GenerationError(code="GENERATION_FAILED", message=f"Image generation failed: {e}") from e

        raise GenerationError(code="NO_IMAGE", message="Model response contained no image")


class GenerationCoordinator:
    """Runs generation requests and lifecycle transitions for slots."""

    def __init__(
        self,
        context: Optional[PipelineContext] = None,
        generator=None,
        timeout_s: Optional[float] = None,
    ):
        self.context = context or pipeline_context
        self.generator = generator
        self.timeout_s = settings.generation_timeout_s if timeout_s is None else timeout_s

    def _require_payload(self, owner_id: str, slot_id: str) -> TransformedPayload:
        payload = self.context.get_payload(owner_id, slot_id)
        if payload is None:
            raise SlotNotReadyError(
                code="SLOT_NOT_READY",
                message=f"Slot {slot_id} has no payload; remap it first",
                details={"owner_id": owner_id, "slot_id": slot_id},
            )
        return payload

    def _abandon(self, owner_id: str, slot_id: str, prompt: str) -> TransformedPayload:
        """Record a failed attempt; the preview is untouched and the prompt may be requested again."""
        if self.context.prompts.get((owner_id, slot_id)) == prompt:
            self.context.prompts.pop((owner_id, slot_id))
        return self.context.update_payload(owner_id, slot_id, is_synthesizing=False)

    async def request(
        self,
        owner_id: str,
        slot_id: str,
        prompt: Optional[str] = None,
        reference_image: Optional[bytes] = None,
    ) -> TransformedPayload:
        """
        Generate a preview for a slot.

        At most one attempt is made per distinct prompt; repeating the last
        prompt returns the stored payload unchanged. A failed attempt releases
        its prompt so it can be requested again; nothing is retried automatically.

        Raises:
            SlotNotReadyError: If the slot has no payload
            GenerationError: If the slot does not need or allow generation
        """
        current = self._require_payload(owner_id, slot_id)
        prompt = prompt or current.generative_prompt

        if not current.generation_allowed:
            raise GenerationError(code="GENERATION_DISABLED", message=f"Generation is disabled for slot {slot_id}")
        if not current.requires_generation or not prompt:
            raise GenerationError(code="GENERATION_NOT_REQUIRED", message=f"Slot {slot_id} has no generative fill")
        if self.generator is None or not self.generator.is_available:
            raise GenerationError(code="GENERATOR_UNAVAILABLE", message="No image generator configured")

        if not self.context.claim_prompt(owner_id, slot_id, prompt):
            logger.info(f"Prompt already attempted for {owner_id}/{slot_id}; not regenerating")
            return current

        generation_id = self.context.mint_generation_id()
        self.context.update_payload(owner_id, slot_id, is_synthesizing=True)
        logger.info(f"Generation {generation_id} started for {owner_id}/{slot_id}")

        try:
            raw = await asyncio.wait_for(
                self.generator.generate(prompt, reference_image),
                timeout=self.timeout_s,
            )
            png_bytes = normalize_png(raw)
        except asyncio.TimeoutError:
            logger.error(f"Generation {generation_id} timed out after {self.timeout_s}s")
            return self._abandon(owner_id, slot_id, prompt)
        except GenerationError as e:
            logger.error(f"Generation {generation_id} failed: {e.code} - {e.message}")
            return self._abandon(owner_id, slot_id, prompt)
        except Exception as e:
            logger.exception(f"Generation {generation_id} crashed: {e}")
            return self._abandon(owner_id, slot_id, prompt)

        # The slot may have been recomputed while we were waiting
        latest = self._require_payload(owner_id, slot_id)
        mandatory = is_mandatory(latest)
        completed = latest.model_copy(update={
            "preview_url": to_data_url(png_bytes),
            "generation_id": generation_id,
            "generative_prompt": prompt,
            "is_synthesizing": False,
            "is_transient": False,
            "is_confirmed": mandatory,
            "status": PayloadStatus.SUCCESS if mandatory else PayloadStatus.AWAITING_CONFIRMATION,
        })
        effective = self.context.register_payload(owner_id, slot_id, completed)
        logger.info(
            f"Generation {generation_id} completed for {owner_id}/{slot_id} "
            f"({len(png_bytes)} bytes, stored generation={effective.generation_id})"
        )
        return effective

    def confirm(self, owner_id: str, slot_id: str) -> TransformedPayload:
        """
        Accept the current preview.

        Raises:
            GenerationError: If there is no preview to confirm
        """
        current = self._require_payload(owner_id, slot_id)
        if not current.preview_url:
            raise GenerationError(code="NO_PREVIEW", message=f"Slot {slot_id} has no preview to confirm")
        logger.info(f"Preview confirmed for {owner_id}/{slot_id} (generation {current.generation_id})")
        return self.context.update_payload(
            owner_id, slot_id,
            is_confirmed=True,
            is_transient=False,
            status=PayloadStatus.SUCCESS,
        )

    def discard(self, owner_id: str, slot_id: str) -> TransformedPayload:
        """Reject the current preview; the same prompt may be requested again."""
        self._require_payload(owner_id, slot_id)
        self.context.prompts.pop((owner_id, slot_id), None)
        logger.info(f"Preview discarded for {owner_id}/{slot_id}")
        return self.context.update_payload(owner_id, slot_id, status=PayloadStatus.IDLE)


# Global service instances
image_generator = GeminiImageGenerator()
generation_coordinator = GenerationCoordinator(generator=image_generator)
