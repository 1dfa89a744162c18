"""Path checks for images read from disk and artifacts written back."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union
from urllib.parse import urlparse

PathLike = Union[str, Path]


def _looks_like_url(raw: str) -> bool:
    # one-letter schemes are Windows drive letters
    scheme = urlparse(raw).scheme
    return len(scheme) > 1


def _require_extension(candidate: Path, allowed_exts: Iterable[str]) -> None:
    allowed = {ext.lower() for ext in allowed_exts}
    if candidate.suffix.lower() not in allowed:
        raise ValueError(f"Unsupported file extension: {candidate.suffix or '(none)'}")


def validate_image_path(path: PathLike, allowed_exts: Iterable[str]) -> Path:
    """Resolve a source image *path* or raise ``ValueError``.

    URLs, missing paths, directories and unsupported extensions are rejected.
    """
    raw = str(path)
    if _looks_like_url(raw):
        raise ValueError(f"Expected a local file, got URL: {raw}")

    try:
        resolved = Path(raw).expanduser().resolve(strict=True)
    except FileNotFoundError as exc:
        raise ValueError(f"File does not exist: {raw}") from exc
    if not resolved.is_file():
        raise ValueError(f"Not a regular file: {raw}")

    _require_extension(resolved, allowed_exts)
    return resolved


def validate_export_path(directory: PathLike, filename: str, allowed_exts: Iterable[str]) -> Path:
    """Return ``directory / filename`` once both are safe to write.

    *directory* must already exist; *filename* must be a bare name with one
    of *allowed_exts*, so an artifact can never escape the chosen folder.
    """
    raw = str(directory)
    if _looks_like_url(raw):
        raise ValueError(f"Expected a local directory, got URL: {raw}")
    if not filename or filename in {".", ".."} or Path(filename).name != filename:
        raise ValueError(f"Invalid export filename: {filename!r}")

    folder = Path(raw).expanduser().resolve()
    if not folder.is_dir():
        raise ValueError(f"Directory does not exist: {folder}")

    target = folder / filename
    _require_extension(target, allowed_exts)
    return target
