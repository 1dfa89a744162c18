"""Value types and the per-image slot record.

Everything here is plain Python so it can be unit tested without an event
loop.  Slots are mutated only by :class:`instagrid.controllers.ImageStore`.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional, Tuple, Union

from PIL import Image

from . import config
from .formats import Format
from .utils.validation import validate_image_path


class Color(NamedTuple):
    """A 24-bit RGB colour."""

    r: int
    g: int
    b: int

    @classmethod
    def from_hex(cls, value: str) -> "Color":
        text = value.strip().lstrip("#")
        if len(text) == 3:
            text = "".join(ch * 2 for ch in text)
        if len(text) != 6:
            raise ValueError(f"Invalid hex colour: {value!r}")
        try:
            return cls(int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
        except ValueError:
            raise ValueError(f"Invalid hex colour: {value!r}") from None

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def darken(self, amount: int = config.GRADIENT_DARKEN_STEP) -> "Color":
        """Return the colour with every channel reduced by ``amount``, floored at 0."""
        return Color(max(0, self.r - amount), max(0, self.g - amount), max(0, self.b - amount))


ColorLike = Union[Color, str, Tuple[int, int, int]]


def as_color(value: ColorLike) -> Color:
    if isinstance(value, Color):
        return value
    if isinstance(value, str):
        return Color.from_hex(value)
    r, g, b = (int(c) for c in value)
    for channel in (r, g, b):
        if not 0 <= channel <= 255:
            raise ValueError(f"Colour channel out of range: {value!r}")
    return Color(r, g, b)


@dataclass(frozen=True)
class Palette:
    """Dominant colour plus up to six representative swatches."""

    dominant: Color
    swatches: Tuple[Color, ...] = ()


class BackgroundKind(str, Enum):
    SOLID = "solid"
    GRADIENT = "gradient"


@dataclass(frozen=True)
class Background:
    """Canvas fill used behind a letterboxed image."""

    kind: BackgroundKind
    colors: Tuple[Color, ...]

    def __post_init__(self) -> None:
        if not self.colors:
            raise ValueError("Background requires at least one colour")
        object.__setattr__(self, "kind", BackgroundKind(self.kind))
        object.__setattr__(self, "colors", tuple(as_color(c) for c in self.colors))

    @classmethod
    def solid(cls, color: ColorLike) -> "Background":
        return cls(BackgroundKind.SOLID, (as_color(color),))

    @classmethod
    def gradient(cls, *colors: ColorLike) -> "Background":
        return cls(BackgroundKind.GRADIENT, tuple(as_color(c) for c in colors))

    def stops(self) -> Tuple[Color, ...]:
        """Colours to paint, top to bottom.

        A solid fill yields its single colour.  A gradient always yields at
        least two stops; a one-colour gradient gets a darker second stop.
        """
        if self.kind is BackgroundKind.SOLID:
            return self.colors[:1]
        if len(self.colors) >= 2:
            return self.colors
        first = self.colors[0]
        return (first, first.darken(config.GRADIENT_DARKEN_STEP))


DEFAULT_BACKGROUND = Background.solid(config.DEFAULT_BACKGROUND_HEX)


class FillMode(str, Enum):
    BACKGROUND = "background"  # letterbox/pillarbox onto a filled canvas
    CROP = "crop"              # cover the canvas, crop the excess


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class CropAnchor:
    """Normalised point selecting which excess is cropped away.

    ``0`` keeps the left/top edge, ``0.5`` centres, ``1`` keeps the
    right/bottom edge.  Values outside ``[0, 1]`` are clamped.
    """

    x: float = 0.5
    y: float = 0.5

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", _clamp_unit(self.x))
        object.__setattr__(self, "y", _clamp_unit(self.y))


CENTER = CropAnchor(0.5, 0.5)


@dataclass(frozen=True)
class SourceFile:
    """Raw file blob handed over by file acquisition."""

    name: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def is_image(self) -> bool:
        return self.media_type.lower().startswith("image/")

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "SourceFile":
        """Read a validated image file from disk."""
        safe_path = validate_image_path(path, config.SUPPORTED_EXTENSIONS)
        media_type = mimetypes.guess_type(safe_path.name)[0] or "application/octet-stream"
        return cls(name=safe_path.name, media_type=media_type, data=safe_path.read_bytes())


class SlotState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    RENDERING = "rendering"
    FAILED = "failed"      # decode failed, or first render failed
    REMOVED = "removed"


@dataclass
class ImageSlot:
    """One user-loaded image and its independent editing/render state.

    Attributes:
        id: Identity, stable for the slot's lifetime.
        source: The original file blob.
        source_url: Temporary ``blob:`` handle for the source bytes.
        decoded: Decoded image owned by this slot.
        rendered: Latest preview render (JPEG bytes).
        generation: Render request counter used to discard stale results.
    """

    id: str
    source: SourceFile
    format: Format = Format.PORTRAIT
    background: Background = DEFAULT_BACKGROUND
    fill_mode: FillMode = FillMode.BACKGROUND
    crop_anchor: CropAnchor = CENTER
    palette: Optional[Palette] = None
    source_url: Optional[str] = None
    decoded: Optional[Image.Image] = field(default=None, repr=False)
    rendered: Optional[bytes] = field(default=None, repr=False)
    is_processing: bool = True
    width: int = 0
    height: int = 0
    state: SlotState = SlotState.LOADING
    generation: int = 0

    @property
    def is_ready(self) -> bool:
        return self.rendered is not None

    def release(self) -> None:
        """Close the decoded image and drop rendered output."""
        if self.decoded is not None:
            self.decoded.close()
            self.decoded = None
        self.rendered = None
        self.state = SlotState.REMOVED

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the displayable state."""
        return {
            "id": self.id,
            "name": self.source.name,
            "format": self.format.value,
            "background": {
                "type": self.background.kind.value,
                "colors": [c.hex for c in self.background.colors],
            },
            "fillMode": self.fill_mode.value,
            "cropX": self.crop_anchor.x,
            "cropY": self.crop_anchor.y,
            "palette": None if self.palette is None else {
                "dominant": self.palette.dominant.hex,
                "palette": [c.hex for c in self.palette.swatches],
            },
            "isProcessing": self.is_processing,
            "hasOutput": self.rendered is not None,
            "width": self.width,
            "height": self.height,
            "state": self.state.value,
        }


__all__ = [
    "Color",
    "as_color",
    "Palette",
    "BackgroundKind",
    "Background",
    "DEFAULT_BACKGROUND",
    "FillMode",
    "CropAnchor",
    "CENTER",
    "SourceFile",
    "SlotState",
    "ImageSlot",
]
