from dataclasses import dataclass
from io import BytesIO
from typing import List, Optional, Tuple
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from . import config
from .formats import Format
from .models import Background, BackgroundKind, Color, CropAnchor, FillMode, CENTER
from .utils.image_operations import encode_jpeg, normalize_mode, request_draft

logger = logging.getLogger(__name__)

# Decoders may downscale huge JPEGs as long as both sides stay above this.
DRAFT_BOUND = (2700, 2700)
_ROTATED_ORIENTATIONS = {5, 6, 7, 8}


@dataclass(frozen=True)
class Placement:
    """
    Where a scaled source lands on the target canvas.

    Attributes:
        x (float): Left edge in canvas pixels (negative when cropped)
        y (float): Top edge in canvas pixels (negative when cropped)
        width (float): Scaled source width
        height (float): Scaled source height
    """
    x: float
    y: float
    width: float
    height: float


class DecodeError(RuntimeError):
    """Raised when source bytes are not a decodable image."""
    pass


class RenderError(RuntimeError):
    """Raised when a drawing surface cannot be produced."""
    pass


def contain_geometry(src_size: Tuple[int, int], dst_size: Tuple[int, int]) -> Placement:
    """Scale ``src_size`` to fit entirely inside ``dst_size``, centred."""
    src_w, src_h = src_size
    dst_w, dst_h = dst_size
    src_ratio = src_w / src_h
    dst_ratio = dst_w / dst_h

    if src_ratio > dst_ratio:
        # wider than target: bars top and bottom
        draw_w = float(dst_w)
        draw_h = dst_w / src_ratio
    else:
        # taller than target: bars on the sides
        draw_h = float(dst_h)
        draw_w = dst_h * src_ratio

    return Placement((dst_w - draw_w) / 2, (dst_h - draw_h) / 2, draw_w, draw_h)


def cover_geometry(
    src_size: Tuple[int, int],
    dst_size: Tuple[int, int],
    anchor: CropAnchor = CENTER,
) -> Placement:
    """Scale ``src_size`` to cover ``dst_size`` and shift by ``anchor``.

    The offset on each axis is ``-(draw - target) * anchor``.
    """
    src_w, src_h = src_size
    dst_w, dst_h = dst_size
    src_ratio = src_w / src_h
    dst_ratio = dst_w / dst_h

    if src_ratio > dst_ratio:
        draw_h = float(dst_h)
        draw_w = dst_h * src_ratio
    else:
        draw_w = float(dst_w)
        draw_h = dst_w / src_ratio

    offset_x = -((draw_w - dst_w) * anchor.x)
    offset_y = -((draw_h - dst_h) * anchor.y)
    return Placement(offset_x, offset_y, draw_w, draw_h)


def _interpolate(a: Color, b: Color, t: float) -> Tuple[int, int, int]:
    return (
        round(a.r + (b.r - a.r) * t),
        round(a.g + (b.g - a.g) * t),
        round(a.b + (b.b - a.b) * t),
    )


def _gradient_column(stops: Tuple[Color, ...], height: int) -> List[Tuple[int, int, int]]:
    """Colour per row for evenly spaced vertical stops."""
    segments = len(stops) - 1
    rows: List[Tuple[int, int, int]] = []
    for y in range(height):
        t = (y + 0.5) / height  # sample at pixel centres
        position = t * segments
        index = min(int(position), segments - 1)
        rows.append(_interpolate(stops[index], stops[index + 1], position - index))
    return rows


def paint_background(canvas: Image.Image, background: Background) -> None:
    """Fill ``canvas`` with a solid colour or a top-to-bottom gradient."""
    width, height = canvas.size
    stops = background.stops()
    if background.kind is BackgroundKind.SOLID:
        canvas.paste(tuple(stops[0]), (0, 0, width, height))
        return

    column = Image.new("RGB", (1, height))
    column.putdata(_gradient_column(stops, height))
    canvas.paste(column.resize((width, height), Image.Resampling.NEAREST), (0, 0))


def decode_image(
    data: bytes,
    draft_bound: Optional[Tuple[int, int]] = DRAFT_BOUND,
) -> Tuple[Image.Image, Tuple[int, int]]:
    """
    Decode source bytes into an upright RGB/RGBA image.

    Args:
        data: Encoded image bytes
        draft_bound: Minimum size to keep when the decoder can downscale

    Returns:
        Tuple of the decoded image and the natural (upright) pixel size

    Raises:
        DecodeError: If the bytes are not a supported image
    """
    try:
        img = Image.open(BytesIO(data))
        natural = img.size
        orientation = img.getexif().get(0x0112, 1)
        if orientation in _ROTATED_ORIENTATIONS:
            natural = (natural[1], natural[0])
        if draft_bound:
            request_draft(img, draft_bound)
        img.load()
        upright = ImageOps.exif_transpose(img)
        decoded = normalize_mode(upright)
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        MemoryError,
        OSError,
        ValueError,
        SyntaxError,
    ) as e:
        logger.warning("Image decode failed: %s", e)
        raise DecodeError("Failed to decode image. Please use JPG, PNG, or WEBP.") from e

    if decoded.width == 0 or decoded.height == 0 or natural[0] == 0 or natural[1] == 0:
        raise DecodeError("Failed to decode image. Please use JPG, PNG, or WEBP.")
    return decoded, natural


class Compositor:
    """Renders a decoded image into one of the fixed output canvases."""

    RESAMPLE = Image.Resampling.LANCZOS

    def __init__(
        self,
        preview_quality: int = config.PREVIEW_QUALITY,
        export_quality: int = config.EXPORT_QUALITY,
    ):
        self.preview_quality = preview_quality
        self.export_quality = export_quality

    def render(
        self,
        image: Image.Image,
        format: Format,
        fill_mode: FillMode,
        background: Background,
        anchor: CropAnchor = CENTER,
    ) -> Image.Image:
        """
        Composite ``image`` onto a canvas of ``format``'s dimensions.

        Raises:
            RenderError: If the canvas cannot be created or drawn
        """
        target = format.size
        try:
            canvas = Image.new("RGB", target)
            if fill_mode is FillMode.CROP:
                self._draw_cover(canvas, image, anchor)
            else:
                paint_background(canvas, background)
                self._draw_contain(canvas, image)
        except (MemoryError, OSError, ValueError) as e:
            raise RenderError(f"Failed to render {format.value.lower()} canvas: {e}") from e
        return canvas

    def render_bytes(
        self,
        image: Image.Image,
        format: Format,
        fill_mode: FillMode,
        background: Background,
        anchor: CropAnchor = CENTER,
        *,
        quality: int,
    ) -> bytes:
        """Render and encode as JPEG at ``quality``."""
        canvas = self.render(image, format, fill_mode, background, anchor)
        try:
            return encode_jpeg(canvas, quality)
        except (OSError, ValueError) as e:
            raise RenderError(f"Failed to encode render: {e}") from e
        finally:
            canvas.close()

    def preview(self, image, format, fill_mode, background, anchor=CENTER) -> bytes:
        return self.render_bytes(image, format, fill_mode, background, anchor,
                                 quality=self.preview_quality)

    def export(self, image, format, fill_mode, background, anchor=CENTER) -> bytes:
        return self.render_bytes(image, format, fill_mode, background, anchor,
                                 quality=self.export_quality)

    def _scaled(self, image: Image.Image, width: float, height: float) -> Image.Image:
        size = (max(1, round(width)), max(1, round(height)))
        if image.size == size:
            return image.copy()
        return image.resize(size, self.RESAMPLE, reducing_gap=3.0)

    def _paste(self, canvas: Image.Image, layer: Image.Image, position: Tuple[int, int]) -> None:
        if layer.mode == "RGBA":
            canvas.paste(layer, position, layer)
        else:
            canvas.paste(layer, position)

    def _draw_contain(self, canvas: Image.Image, image: Image.Image) -> None:
        placement = contain_geometry(image.size, canvas.size)
        scaled = self._scaled(image, placement.width, placement.height)
        self._paste(canvas, scaled, (round(placement.x), round(placement.y)))

    def _draw_cover(self, canvas: Image.Image, image: Image.Image, anchor: CropAnchor) -> None:
        target_w, target_h = canvas.size
        placement = cover_geometry(image.size, canvas.size, anchor)
        scaled = self._scaled(image, placement.width, placement.height)
        excess_w = max(0, scaled.width - target_w)
        excess_h = max(0, scaled.height - target_h)
        left = min(excess_w, max(0, round(excess_w * anchor.x)))
        top = min(excess_h, max(0, round(excess_h * anchor.y)))
        window = scaled.crop((left, top, left + target_w, top + target_h))
        self._paste(canvas, window, (0, 0))


__all__ = [
    "Placement",
    "DecodeError",
    "RenderError",
    "contain_geometry",
    "cover_geometry",
    "paint_background",
    "decode_image",
    "Compositor",
]
