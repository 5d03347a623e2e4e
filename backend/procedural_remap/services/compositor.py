"""
Compositor service - paints a transformed payload into a PNG preview.

Painter's algorithm over the layer tree:
- Opaque matte fills the canvas first
- Depth-first, array order (index 0 = bottom, painted first)
- Hidden layers are skipped with their whole subtree
- Groups recurse and paint nothing themselves
- Generative leaves show the generated image, or a placeholder tint
- Standard leaves paint their pixel buffer resized to the layer bounds

Pixel buffers are RGBA numpy arrays (H x W x 4, uint8).
"""

import base64
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from procedural_remap.config import settings
from procedural_remap.models.layers import LayerKind, Rect, TransformedLayerNode
from procedural_remap.models.payload import TransformedPayload

logger = logging.getLogger(__name__)

PixelLookup = Callable[[str], Optional[np.ndarray]]


@dataclass
class CompositeDiagnostic:
    """A layer that could not be painted as requested."""
    layer_id: str
    code: str
    message: str


@dataclass
class CompositeResult:
    """Result of compositing a payload."""
    image: Image.Image  # RGBA
    width: int
    height: int
    processing_time_ms: int
    painted: List[str] = field(default_factory=list)
    diagnostics: List[CompositeDiagnostic] = field(default_factory=list)

    def to_png_bytes(self) -> bytes:
        return to_png_bytes(self.image)

    def to_data_url(self) -> str:
        return to_data_url(self.to_png_bytes())


@dataclass
class OpticalBounds:
    """Visible extent of a pixel buffer."""
    x: int
    y: int
    w: int
    h: int
    visual_center_x: float
    visual_center_y: float
    pixel_density: float  # Fraction of the bounding box that is non-transparent


def to_png_bytes(image: Image.Image) -> bytes:
    """Encode an image as lossless PNG."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_url(png_bytes: bytes) -> str:
    """Wrap PNG bytes in a data URL."""
    base64_str = base64.b64encode(png_bytes).decode("utf-8")
    return f"data:image/png;base64,{base64_str}"


def data_url_to_rgba(data_url: str) -> np.ndarray:
    """Decode a base64 image data URL into an RGBA array."""
    _, _, encoded = data_url.partition(",")
    with Image.open(io.BytesIO(base64.b64decode(encoded))) as image:
        return np.array(image.convert("RGBA"))


def ensure_rgba(pixels: np.ndarray) -> np.ndarray:
    """Convert grayscale or RGB buffers to RGBA."""
    if pixels.ndim == 2:
        return cv2.cvtColor(pixels, cv2.COLOR_GRAY2RGBA)
    if pixels.shape[2] == 3:
        return cv2.cvtColor(pixels, cv2.COLOR_RGB2RGBA)
    return pixels


def optical_bounds(rgba: np.ndarray) -> Optional[OpticalBounds]:
    """
    Bounding box of the non-transparent pixels of an RGBA buffer.

    Returns None when every pixel is fully transparent.
    """
    alpha = ensure_rgba(rgba)[:, :, 3]
    ys, xs = np.nonzero(alpha)
    if len(xs) == 0:
        return None

    x0, x1 = int(xs.min()), int(xs.max())
    y0, y1 = int(ys.min()), int(ys.max())
    w = x1 - x0 + 1
    h = y1 - y0 + 1

    weights = alpha[ys, xs].astype(np.float64)
    return OpticalBounds(
        x=x0,
        y=y0,
        w=w,
        h=h,
        visual_center_x=float(np.average(xs, weights=weights)),
        visual_center_y=float(np.average(ys, weights=weights)),
        pixel_density=len(xs) / float(w * h),
    )


class CompositorService:
    """Service for painting transformed payloads."""

    def __init__(self, force_zero_opacity: bool = None):
        self.force_zero_opacity = (
            settings.compositor_force_zero_opacity if force_zero_opacity is None
            else force_zero_opacity
        )

    # ============================================================
    # PRIMITIVES
    # ============================================================

    @staticmethod
    def _paste(canvas: Image.Image, tile: Image.Image, left: int, top: int) -> None:
        """Alpha-composite a tile onto the canvas, cropping anything off-canvas."""
        src_x0 = max(0, -left)
        src_y0 = max(0, -top)
        src_x1 = min(tile.width, canvas.width - left)
        src_y1 = min(tile.height, canvas.height - top)
        if src_x1 <= src_x0 or src_y1 <= src_y0:
            return
        region = tile.crop((src_x0, src_y0, src_x1, src_y1))
        canvas.alpha_composite(region, dest=(left + src_x0, top + src_y0))

    @staticmethod
    def _target_size(bounds: Rect) -> Tuple[int, int]:
        return max(1, int(round(bounds.w))), max(1, int(round(bounds.h)))

    def _resize(self, pixels: np.ndarray, bounds: Rect) -> np.ndarray:
        width, height = self._target_size(bounds)
        rgba = ensure_rgba(pixels)
        if rgba.shape[1] == width and rgba.shape[0] == height:
            return rgba
        shrinking = width < rgba.shape[1] and height < rgba.shape[0]
        return cv2.resize(
            rgba,
            (width, height),
            interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR,
        )

    def _placeholder(self, bounds: Rect) -> np.ndarray:
        """Purple tint with outline and label marking a pending generative fill."""
        width, height = self._target_size(bounds)
        tile = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(tile)
        draw.rectangle(
            [0, 0, width - 1, height - 1],
            fill=settings.placeholder_fill,
            outline=settings.placeholder_outline,
            width=2,
        )
        draw.text((4, 2), settings.placeholder_label, fill=settings.placeholder_label_color,
                  font=ImageFont.load_default())
        return np.array(tile)

    def _paint_tile(
        self,
        canvas: Image.Image,
        rgba: np.ndarray,
        layer: TransformedLayerNode,
        origin: Rect,
        opacity: float,
    ) -> None:
        if opacity < 1.0:
            rgba = rgba.copy()
            rgba[:, :, 3] = (rgba[:, :, 3].astype(np.float32) * opacity).astype(np.uint8)

        tile = Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8))
        left = layer.bounds.x - origin.x
        top = layer.bounds.y - origin.y

        rotation = layer.transform.rotation if layer.transform else None
        if rotation:
            # Positive degrees are clockwise; the layer centre stays fixed
            center_x = left + tile.width / 2
            center_y = top + tile.height / 2
            tile = tile.rotate(-rotation, resample=Image.Resampling.BICUBIC, expand=True)
            left = center_x - tile.width / 2
            top = center_y - tile.height / 2

        self._paste(canvas, tile, int(round(left)), int(round(top)))

    # ============================================================
    # TRAVERSAL
    # ============================================================

    def _effective_opacity(self, layer: TransformedLayerNode) -> float:
        if layer.opacity == 0 and self.force_zero_opacity:
            logger.warning(
                f"Layer {layer.id} ('{layer.name}') has opacity 0; painting at full opacity"
            )
            return 1.0
        return layer.opacity

    def _paint_layers(
        self,
        canvas: Image.Image,
        layers: List[TransformedLayerNode],
        origin: Rect,
        pixels_of: PixelLookup,
        generated_image: Optional[np.ndarray],
        result: CompositeResult,
    ) -> None:
        for layer in layers:
            if not layer.visible:
                continue

            if layer.kind == LayerKind.GROUP or layer.children is not None:
                self._paint_layers(canvas, layer.children or [], origin, pixels_of, generated_image, result)
                continue

            if layer.bounds.w <= 0 or layer.bounds.h <= 0:
                result.diagnostics.append(CompositeDiagnostic(
                    layer_id=layer.id,
                    code="EMPTY_BOUNDS",
                    message=f"Layer '{layer.name}' has no area",
                ))
                continue

            opacity = self._effective_opacity(layer)

            if layer.kind == LayerKind.GENERATIVE:
                if generated_image is not None:
                    rgba = self._resize(generated_image, layer.bounds)
                else:
                    rgba = self._placeholder(layer.bounds)
            else:
                pixels = pixels_of(layer.id)
                if pixels is None:
                    logger.warning(f"No pixel buffer for layer {layer.id} ('{layer.name}'); skipped")
                    result.diagnostics.append(CompositeDiagnostic(
                        layer_id=layer.id,
                        code="MISSING_PIXELS",
                        message=f"No pixel buffer for layer '{layer.name}'",
                    ))
                    continue
                rgba = self._resize(pixels, layer.bounds)

            self._paint_tile(canvas, rgba, layer, origin, opacity)
            result.painted.append(layer.id)

    # ============================================================
    # ENTRY POINT
    # ============================================================

    def composite(
        self,
        payload: TransformedPayload,
        pixels_of: PixelLookup,
        generated_image: Optional[np.ndarray] = None,
    ) -> CompositeResult:
        """
        Paint a payload onto an opaque canvas the size of its target.

        Args:
            payload: Transformed payload to render
            pixels_of: Lookup from layer id to RGBA pixel buffer (None if missing)
            generated_image: Shared generated image for generative layers

        Returns:
            CompositeResult with the RGBA image and per-layer diagnostics
        """
        start_time = time.time()
        origin = payload.canvas_rect
        width, height = self._target_size(origin)

        canvas = Image.new("RGBA", (width, height), tuple(settings.matte_color) + (255,))
        result = CompositeResult(image=canvas, width=width, height=height, processing_time_ms=0)

        self._paint_layers(canvas, payload.layers, origin, pixels_of, generated_image, result)

        result.processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Composited '{payload.target_container}' ({width}x{height}): "
            f"{len(result.painted)} painted, {len(result.diagnostics)} diagnostics "
            f"in {result.processing_time_ms}ms"
        )
        return result


# Global service instance
compositor_service = CompositorService()
