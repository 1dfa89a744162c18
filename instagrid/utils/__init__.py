"""Utility package for instagrid."""

from . import image_operations, validation

__all__ = ["image_operations", "validation"]
