"""Export helpers for instagrid."""

from .export import (
    ExportArtifact,
    ExportError,
    ExportPipeline,
    build_archive,
    export_metrics,
    grid_entries,
)

__all__ = [
    "ExportArtifact",
    "ExportError",
    "ExportPipeline",
    "build_archive",
    "export_metrics",
    "grid_entries",
]
