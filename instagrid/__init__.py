"""instagrid: fit photos into Instagram formats and export them as a 3x3 grid."""

from .controllers import ImageStore
from .formats import Format, detect_format
from .managers import ExportArtifact, ExportError
from .models import Background, Color, CropAnchor, FillMode, ImageSlot, SourceFile

__version__ = "0.1.0"

__all__ = [
    "ImageStore",
    "Format",
    "detect_format",
    "ExportArtifact",
    "ExportError",
    "Background",
    "Color",
    "CropAnchor",
    "FillMode",
    "ImageSlot",
    "SourceFile",
]
