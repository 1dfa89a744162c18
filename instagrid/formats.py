"""Supported output formats and aspect-ratio detection.

The catalog is constant data shared by the whole process: three fixed
targets, each with pixel dimensions and a canonical width/height ratio.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Tuple


class Format(str, Enum):
    """Output targets, declared in tie-break order."""

    PORTRAIT = "PORTRAIT"
    SQUARE = "SQUARE"
    LANDSCAPE = "LANDSCAPE"

    @property
    def size(self) -> Tuple[int, int]:
        return FORMAT_DIMENSIONS[self]

    @property
    def ratio(self) -> float:
        return FORMAT_RATIOS[self]

    @classmethod
    def parse(cls, value: str) -> "Format":
        """Look up a format by name, ignoring case."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            choices = ", ".join(f.name.lower() for f in cls)
            raise ValueError(f"Unknown format {value!r}; expected one of {choices}") from None


FORMAT_DIMENSIONS: Mapping[Format, Tuple[int, int]] = MappingProxyType({
    Format.PORTRAIT: (1080, 1350),
    Format.SQUARE: (1080, 1080),
    Format.LANDSCAPE: (1080, 566),
})

FORMAT_RATIOS: Mapping[Format, float] = MappingProxyType({
    Format.PORTRAIT: 4 / 5,
    Format.SQUARE: 1.0,
    Format.LANDSCAPE: 1.91,
})


def detect_format(width: float, height: float) -> Format:
    """Return the catalog format whose ratio is closest to ``width / height``.

    Ties go to the format declared first.  Any positive size yields a
    result; non-positive sizes raise ``ValueError``.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
    ratio = width / height
    # min() keeps the first of equal keys, which gives declaration order.
    return min(Format, key=lambda fmt: abs(ratio - FORMAT_RATIOS[fmt]))


__all__ = ["Format", "FORMAT_DIMENSIONS", "FORMAT_RATIOS", "detect_format"]
