"""Reusable image byte and mode helpers.

Functions are small and pure so they can be shared by the compositor, the
export pipeline and the caption client.
"""

from __future__ import annotations

import base64
import binascii
import logging
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

JPEG_MEDIA_TYPE = "image/jpeg"


def has_alpha(image: Image.Image) -> bool:
    """Return ``True`` when ``image`` carries transparency."""
    return "A" in image.getbands() or "transparency" in image.info


def normalize_mode(image: Image.Image) -> Image.Image:
    """Convert ``image`` to ``RGBA`` when it has transparency, else ``RGB``.

    Returns ``image`` itself when it is already in the target mode.
    """
    target = "RGBA" if has_alpha(image) else "RGB"
    if image.mode == target:
        return image
    if image.mode == "P" and target == "RGBA":
        # palette transparency has to pass through RGBA explicitly
        return image.convert("RGBA")
    return image.convert(target)


def request_draft(image: Image.Image, bound: Tuple[int, int]) -> None:
    """Ask the decoder to downscale early when it supports it (JPEG only).

    The decoder keeps the result at least as large as ``bound``.
    """
    if image.format != "JPEG":
        return
    try:
        image.draft("RGB", bound)
    except (AttributeError, ValueError, OSError) as exc:
        logger.debug("Decoder draft unavailable: %s", exc)


def encode_jpeg(image: Image.Image, quality: int) -> bytes:
    """Encode ``image`` as baseline JPEG bytes at ``quality``."""
    if not 1 <= quality <= 100:
        raise ValueError(f"JPEG quality must be within 1-100, got {quality}")
    if image.mode != "RGB":
        image = image.convert("RGB")
    save_params: Dict[str, Any] = {
        "format": "JPEG",
        "quality": quality,
        "optimize": True,
    }
    if quality >= 90:
        # full chroma resolution for export-grade output
        save_params["subsampling"] = 0
    buffer = BytesIO()
    image.save(buffer, **save_params)
    return buffer.getvalue()


def to_data_url(data: bytes, media_type: str = JPEG_MEDIA_TYPE) -> str:
    """Wrap ``data`` in a ``data:`` URL."""
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(url: str) -> Tuple[str, bytes]:
    """Split a base64 ``data:`` URL into ``(media_type, payload)``.

    Raises ``ValueError`` for anything that is not a base64 data URL.
    """
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Invalid image data URL")
    header, encoded = url[5:].split(",", 1)
    if not header.endswith(";base64") or not encoded:
        raise ValueError("Invalid image data URL")
    media_type = header[: -len(";base64")] or "text/plain"
    try:
        payload = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid image data URL") from exc
    return media_type, payload


def image_size(data: bytes) -> Optional[Tuple[int, int]]:
    """Return the pixel size encoded in ``data`` without decoding pixels."""
    try:
        with Image.open(BytesIO(data)) as img:
            return img.size
    except (OSError, ValueError):
        return None


__all__ = [
    "JPEG_MEDIA_TYPE",
    "has_alpha",
    "normalize_mode",
    "request_draft",
    "encode_jpeg",
    "to_data_url",
    "parse_data_url",
    "image_size",
]
