"""Dominant colour and palette extraction.

Pixels are sampled at a fixed stride and quantized with Pillow's median-cut
quantizer.  The result seeds the background fill of a freshly loaded slot.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

from PIL import Image

from . import config
from .models import Color, Palette

logger = logging.getLogger(__name__)


class PaletteError(RuntimeError):
    """Raised when an image cannot be sampled for colours."""


def _sample_pixels(image: Image.Image, stride: int) -> Image.Image:
    """Return a one-row RGB image holding every ``stride``-th pixel."""
    rgb = image if image.mode == "RGB" else image.convert("RGB")
    raw = rgb.tobytes()
    step = 3 * stride
    reds, greens, blues = raw[0::step], raw[1::step], raw[2::step]
    count = len(blues)
    sampled = bytearray(count * 3)
    sampled[0::3] = reds[:count]
    sampled[1::3] = greens[:count]
    sampled[2::3] = blues[:count]
    return Image.frombytes("RGB", (count, 1), bytes(sampled))


def extract_palette(
    image: Image.Image,
    *,
    color_count: int = config.PALETTE_COLOR_COUNT,
    stride: int = config.PALETTE_SAMPLE_STRIDE,
) -> Palette:
    """Extract a dominant colour and up to ``color_count`` swatches.

    Args:
        image: Decoded image in any Pillow mode.
        color_count: Maximum number of swatches.
        stride: Sample every ``stride``-th pixel.

    Returns:
        Palette: swatches ordered by how many samples they represent.

    Raises:
        PaletteError: If the image has no pixels to sample.
    """
    if color_count < 1 or stride < 1:
        raise ValueError("color_count and stride must be positive")
    width, height = image.size
    if width == 0 or height == 0:
        raise PaletteError("Cannot extract colours from an empty image")

    try:
        samples = _sample_pixels(image, stride)
        quantized = samples.quantize(colors=color_count, method=Image.Quantize.MEDIANCUT)
    except (OSError, ValueError) as exc:
        raise PaletteError(f"Failed to sample image colours: {exc}") from exc

    flat = quantized.getpalette() or []
    counts = quantized.getcolors(maxcolors=max(256, quantized.width)) or []
    # most populated first, palette index breaks ties
    ranked: List[Tuple[int, int]] = sorted(counts, key=lambda item: (-item[0], item[1]))

    swatches: List[Color] = []
    for _, index in ranked:
        base = index * 3
        if base + 2 >= len(flat):
            continue
        color = Color(flat[base], flat[base + 1], flat[base + 2])
        if color not in swatches:
            swatches.append(color)
        if len(swatches) == color_count:
            break

    if not swatches:
        raise PaletteError("Quantizer returned no colours")
    return Palette(dominant=swatches[0], swatches=tuple(swatches))


class ColorExtractor:
    """Callable wrapper so the store can be given a different extractor."""

    def __init__(
        self,
        color_count: int = config.PALETTE_COLOR_COUNT,
        stride: int = config.PALETTE_SAMPLE_STRIDE,
    ) -> None:
        self.color_count = color_count
        self.stride = stride

    def __call__(self, image: Image.Image) -> Palette:
        palette = extract_palette(image, color_count=self.color_count, stride=self.stride)
        logger.debug("Extracted palette dominant=%s swatches=%d", palette.dominant.hex, len(palette.swatches))
        return palette


__all__ = ["PaletteError", "extract_palette", "ColorExtractor"]
