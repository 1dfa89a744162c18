"""Controller layer owning engine state for presentation front ends."""

from .store import ImageStore

__all__ = [
    "ImageStore",
]
