# managers/export.py
"""Export pipeline with structured logging and metrics.

This module exposes :class:`ExportPipeline` which renders a single slot to a
downloadable JPEG or renders every occupied grid position concurrently and
bundles the results into a zip archive.  Only one export (single or grid)
runs at a time; a second request while one is in flight is a no-op.
Failures surface as :class:`ExportError` and abort the whole operation; a
grid export never produces a partial archive.

All operations emit structured logs carrying a correlation identifier
(``cid``).  Counters and durations are recorded on the module level
``export_metrics`` instance.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import zipfile
from collections import Counter
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from PIL import Image

from .. import config
from ..compositor import Compositor, DecodeError, RenderError
from ..formats import Format
from ..models import Background, CropAnchor, FillMode, ImageSlot
from ..utils.image_operations import JPEG_MEDIA_TYPE, to_data_url
from ..utils.validation import validate_export_path
from ..workers import TaskRunner

ZIP_MEDIA_TYPE = "application/zip"


class ExportError(RuntimeError):
    """Raised when an export operation ultimately fails."""


class _ExportMetrics:
    """Simple in-memory metrics collector."""

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.durations: list[float] = []

    def record(self, name: str, duration: float | None = None) -> None:
        self.counters[name] += 1
        if duration is not None:
            self.durations.append(duration)

    def reset(self) -> None:
        self.counters.clear()
        self.durations.clear()


export_metrics = _ExportMetrics()


@dataclass(frozen=True)
class ExportArtifact:
    """A downloadable export result."""

    filename: str
    data: bytes = field(repr=False)
    media_type: str = JPEG_MEDIA_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def data_url(self) -> str:
        return to_data_url(self.data, self.media_type)

    def save(self, directory: Union[str, Path]) -> Path:
        """Write the artifact into an existing ``directory``."""
        target = validate_export_path(directory, self.filename, config.EXPORT_EXTENSIONS)
        target.write_bytes(self.data)
        return target


@dataclass(frozen=True)
class _RenderJob:
    """Snapshot of one slot's render parameters taken when an export starts."""

    position: int
    image: Image.Image = field(repr=False)
    format: Format
    fill_mode: FillMode
    background: Background
    anchor: CropAnchor

    @classmethod
    def from_slot(cls, slot: ImageSlot, position: int = 0) -> "_RenderJob":
        # copy so a concurrent removal cannot close the pixels mid-render
        return cls(
            position=position,
            image=slot.decoded.copy(),
            format=slot.format,
            fill_mode=slot.fill_mode,
            background=slot.background,
            anchor=slot.crop_anchor,
        )


@dataclass(slots=True)
class _ExportContext:
    """Holds state shared across one export operation."""

    cid: str
    kind: str
    log: logging.LoggerAdapter
    start: float


def grid_entries(
    grid: Sequence[Optional[str]],
    lookup: Callable[[str], Optional[ImageSlot]],
) -> List[Tuple[int, ImageSlot]]:
    """Occupied positions in reading order, paired with 1-based numbers.

    Positions whose slot is missing or not decoded yet are skipped.
    """
    entries: List[Tuple[int, ImageSlot]] = []
    for index, slot_id in enumerate(grid):
        if slot_id is None:
            continue
        slot = lookup(slot_id)
        if slot is None or slot.decoded is None:
            continue
        entries.append((index + 1, slot))
    return entries


def build_archive(members: Sequence[Tuple[str, bytes]], timestamp: float) -> bytes:
    """Serialize ``(name, data)`` pairs into a flat zip archive."""
    date_time = time.localtime(timestamp)[:6]
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as archive:
        for name, data in members:
            info = zipfile.ZipInfo(name, date_time=date_time)
            info.compress_type = zipfile.ZIP_STORED
            archive.writestr(info, data)
    return buffer.getvalue()


class ExportPipeline:
    """Renders slots at export quality and packages the results."""

    def __init__(
        self,
        compositor: Compositor,
        runner: TaskRunner,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._compositor = compositor
        self._runner = runner
        self._clock = clock
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    def _begin(self, kind: str) -> _ExportContext:
        self._busy = True
        cid = uuid.uuid4().hex
        log = logging.LoggerAdapter(logging.getLogger(__name__), {"cid": cid})
        return _ExportContext(cid=cid, kind=kind, log=log, start=time.perf_counter())

    def _finish(self, context: _ExportContext, artifact: Optional[ExportArtifact]) -> None:
        duration = (time.perf_counter() - context.start) * 1000
        if artifact is None:
            export_metrics.record("skipped")
            context.log.info("%s export skipped: nothing to export", context.kind)
            return
        export_metrics.record("success", duration)
        context.log.info(
            "%s export complete: %s (%d bytes, %.1f ms)",
            context.kind,
            artifact.filename,
            artifact.size,
            duration,
        )

    def _fail(self, context: _ExportContext, exc: BaseException) -> ExportError:
        export_metrics.record("failure")
        context.log.error("%s export failed: %s", context.kind, exc)
        return ExportError(f"Export failed: {exc}")

    async def _render(self, job: _RenderJob) -> bytes:
        return await self._runner.run(
            self._compositor.export,
            job.image,
            job.format,
            job.fill_mode,
            job.background,
            job.anchor,
        )

    async def export_single(self, slot: Optional[ImageSlot]) -> Optional[ExportArtifact]:
        """Render ``slot`` at export quality.

        Returns ``None`` without doing anything when the slot has no
        successful render yet or another export is running.
        """
        if self._busy or slot is None or not slot.is_ready or slot.decoded is None:
            return None

        context = self._begin("single")
        job: Optional[_RenderJob] = None
        try:
            job = _RenderJob.from_slot(slot)
            data = await self._render(job)
            artifact = ExportArtifact(
                filename=f"{config.SINGLE_EXPORT_PREFIX}-{job.format.value.lower()}.jpg",
                data=data,
            )
        except (RenderError, DecodeError, OSError, ValueError) as exc:
            raise self._fail(context, exc) from exc
        finally:
            if job is not None:
                job.image.close()
            self._busy = False
        self._finish(context, artifact)
        return artifact

    async def export_grid(
        self,
        grid: Sequence[Optional[str]],
        lookup: Callable[[str], Optional[ImageSlot]],
    ) -> Optional[ExportArtifact]:
        """Render every occupied grid position.

        One occupied position yields ``<position>.jpg``; several yield a zip
        archive of ``<position>.jpg`` entries.  Any render failure fails the
        whole export.
        """
        if self._busy:
            return None

        context = self._begin("grid")
        artifact: Optional[ExportArtifact] = None
        jobs: List[_RenderJob] = []
        try:
            jobs = [_RenderJob.from_slot(slot, position) for position, slot in grid_entries(grid, lookup)]
            if len(jobs) == 1:
                job = jobs[0]
                artifact = ExportArtifact(filename=f"{job.position}.jpg", data=await self._render(job))
            elif jobs:
                rendered = await asyncio.gather(
                    *(self._render(job) for job in jobs), return_exceptions=True
                )
                failures = [result for result in rendered if isinstance(result, BaseException)]
                if failures:
                    raise failures[0]
                members = [(f"{job.position}.jpg", data) for job, data in zip(jobs, rendered)]
                timestamp = self._clock()
                archive = await self._runner.run(build_archive, members, timestamp)
                artifact = ExportArtifact(
                    filename=f"{config.GRID_ARCHIVE_PREFIX}-{int(timestamp * 1000)}.zip",
                    data=archive,
                    media_type=ZIP_MEDIA_TYPE,
                )
        except (RenderError, DecodeError, OSError, ValueError, zipfile.BadZipFile) as exc:
            raise self._fail(context, exc) from exc
        finally:
            for job in jobs:
                job.image.close()
            self._busy = False
        self._finish(context, artifact)
        return artifact


__all__ = [
    "ExportError",
    "ExportArtifact",
    "ExportPipeline",
    "build_archive",
    "grid_entries",
    "export_metrics",
]
