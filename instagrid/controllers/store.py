"""Image store: slot lifecycle, grid placement and render orchestration.

:class:`ImageStore` owns every mutable piece of engine state: the ordered
slot mapping, the nine-position grid, the active slot pointer and the last
error message.  Presentation code reads its properties and sends discrete
commands; nothing else mutates slots.

All state transitions run synchronously on the event loop thread.  The only
suspension points are image decode, palette sampling, render+encode and
archive serialization, which run on the :class:`~instagrid.workers.TaskRunner`
executor.  Every render request bumps the slot's ``generation``; a result is
applied only while that generation is still current and the slot is still
present, so the last issued request always determines what the user sees.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .. import config
from ..blobs import BlobRegistry, get_registry
from ..compositor import Compositor, DecodeError, RenderError, decode_image
from ..formats import Format, detect_format
from ..managers.export import ExportArtifact, ExportError, ExportPipeline
from ..models import Background, CropAnchor, FillMode, ImageSlot, SlotState, SourceFile
from ..palette import ColorExtractor, PaletteError
from ..scheduler import DebounceScheduler
from ..utils.image_operations import to_data_url
from ..workers import TaskRunner

logger = logging.getLogger(__name__)


class ImageStore:
    """Manage up to ``max_images`` independently loading and editable slots."""

    def __init__(
        self,
        *,
        compositor: Optional[Compositor] = None,
        extractor: Optional[ColorExtractor] = None,
        runner: Optional[TaskRunner] = None,
        scheduler: Optional[DebounceScheduler] = None,
        blobs: Optional[BlobRegistry] = None,
        exporter: Optional[ExportPipeline] = None,
        max_images: int = config.MAX_IMAGES,
    ) -> None:
        if max_images <= 0:
            raise ValueError("max_images must be greater than zero")
        self.max_images = max_images
        self._compositor = compositor or Compositor()
        self._extractor = extractor or ColorExtractor()
        self._runner = runner or TaskRunner()
        self._scheduler = scheduler or DebounceScheduler()
        self._blobs = blobs or get_registry()
        self._exporter = exporter or ExportPipeline(self._compositor, self._runner)

        self._slots: Dict[str, ImageSlot] = {}
        self._grid: List[Optional[str]] = [None] * max_images
        self._active_id: Optional[str] = None
        self._error: Optional[str] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def slots(self) -> Tuple[ImageSlot, ...]:
        """Slots in insertion order."""
        return tuple(self._slots.values())

    def get(self, slot_id: str) -> Optional[ImageSlot]:
        return self._slots.get(slot_id)

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_slot(self) -> Optional[ImageSlot]:
        if self._active_id is None:
            return None
        return self._slots.get(self._active_id)

    @property
    def grid(self) -> Tuple[Optional[str], ...]:
        return tuple(self._grid)

    @property
    def error(self) -> Optional[str]:
        """Message describing the most recent failure, if any."""
        return self._error

    @property
    def has_images(self) -> bool:
        return bool(self._slots)

    @property
    def grid_image_count(self) -> int:
        return sum(1 for slot_id in self._grid if slot_id is not None)

    @property
    def is_exporting(self) -> bool:
        return self._exporter.is_busy

    @property
    def can_export(self) -> bool:
        slot = self.active_slot
        return slot is not None and slot.is_ready and not self._exporter.is_busy

    @property
    def can_export_all(self) -> bool:
        return self.grid_image_count > 0 and not self._exporter.is_busy

    def rendered_data_url(self, slot_id: Optional[str] = None) -> Optional[str]:
        """Preview of ``slot_id`` (default: active slot) as a JPEG data URL."""
        slot = self.active_slot if slot_id is None else self._slots.get(slot_id)
        if slot is None or slot.rendered is None:
            return None
        return to_data_url(slot.rendered)

    def snapshot(self) -> Dict[str, object]:
        """Plain-data view of the whole store for presentation layers."""
        return {
            "images": [slot.to_dict() for slot in self._slots.values()],
            "activeImageId": self._active_id,
            "gridLayout": list(self._grid),
            "error": self._error,
            "isExporting": self._exporter.is_busy,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _generate_id() -> str:
        return f"img-{uuid.uuid4().hex[:12]}"

    def _first_free_position(self) -> Optional[int]:
        for index, slot_id in enumerate(self._grid):
            if slot_id is None:
                return index
        return None

    def _valid_position(self, position: int) -> bool:
        if 0 <= position < len(self._grid):
            return True
        self._reject(f"Grid position {position} out of range 0-{len(self._grid) - 1}")
        return False

    def _is_current(self, slot: ImageSlot, generation: int) -> bool:
        return self._slots.get(slot.id) is slot and slot.generation == generation

    def _record_error(self, message: str) -> None:
        self._error = message

    def _reject(self, message: str) -> None:
        logger.warning("Rejected command: %s", message)
        self._record_error(message)

    def _next_generation(self, slot: ImageSlot) -> int:
        slot.generation += 1
        return slot.generation

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def add_images(self, files: Iterable[SourceFile]) -> List[str]:
        """Add a batch of files and load them concurrently.

        Placeholder slots, grid positions and the active pointer are all
        assigned before the first suspension point, so concurrent batches
        cannot race on placement.  Files that are not images, and files
        beyond the remaining capacity, are dropped.

        Returns:
            Ids of the slots created for this batch.
        """
        self._error = None
        candidates = list(files)
        valid = [source for source in candidates if source.is_image]
        if len(valid) < len(candidates):
            logger.info("Ignoring %d non-image file(s)", len(candidates) - len(valid))
        available = max(0, self.max_images - len(self._slots))
        accepted = valid[:available]
        if len(accepted) < len(valid):
            logger.warning(
                "Capacity of %d images reached; dropping %d file(s)",
                self.max_images,
                len(valid) - len(accepted),
            )
        if not accepted:
            return []

        new_ids: List[str] = []
        for source in accepted:
            slot_id = self._generate_id()
            slot = ImageSlot(id=slot_id, source=source)
            slot.source_url = self._blobs.create_url(source.data, source.media_type)
            self._slots[slot_id] = slot

            position = self._first_free_position()
            if position is not None:
                self._grid[position] = slot_id
            if self._active_id is None:
                self._active_id = slot_id
            new_ids.append(slot_id)
            logger.info("Added %s as %s at grid position %s", source.name, slot_id, position)

        tasks = [self._runner.spawn(self._load_and_prepare(slot_id), key=slot_id) for slot_id in new_ids]
        await asyncio.gather(*tasks, return_exceptions=True)
        return new_ids

    async def _load_and_prepare(self, slot_id: str) -> None:
        slot = self._slots.get(slot_id)
        if slot is None:
            return

        try:
            image, natural = await self._runner.run(decode_image, slot.source.data)
        except DecodeError as exc:
            self._fail_load(slot, str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected error decoding %s", slot_id)
            self._fail_load(slot, f"Failed to load image: {exc}")
            return

        palette = None
        if self._slots.get(slot_id) is slot:
            try:
                palette = await self._runner.run(self._extractor, image)
            except (PaletteError, MemoryError, OSError, ValueError) as exc:
                logger.warning("Palette extraction failed for %s: %s", slot_id, exc)
        if self._slots.get(slot_id) is not slot:
            # removed while preparing
            image.close()
            return

        slot.decoded = image
        slot.width, slot.height = natural
        slot.format = detect_format(*natural)
        if palette is not None:
            slot.palette = palette
            slot.background = Background.solid(palette.dominant)
        logger.debug("Prepared %s: %dx%d -> %s", slot_id, slot.width, slot.height, slot.format.value)

        await self._render(slot_id, self._next_generation(slot))

    def _fail_load(self, slot: ImageSlot, message: str) -> None:
        if self._slots.get(slot.id) is not slot:
            return
        slot.is_processing = False
        slot.state = SlotState.FAILED
        self._record_error(message)
        logger.error("Failed to load %s (%s): %s", slot.source.name, slot.id, message)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def _request_render(self, slot_id: str) -> Optional[asyncio.Task]:
        slot = self._slots.get(slot_id)
        if slot is None:
            return None
        if slot.decoded is None:
            # still loading: the prepare step renders with the latest values
            return None
        generation = self._next_generation(slot)
        return self._runner.spawn(self._render(slot_id, generation), key=slot_id)

    async def _render(self, slot_id: str, generation: int) -> None:
        slot = self._slots.get(slot_id)
        if slot is None or slot.decoded is None or slot.generation != generation:
            return
        slot.is_processing = True
        slot.state = SlotState.RENDERING
        try:
            data = await self._runner.run(
                self._compositor.preview,
                slot.decoded,
                slot.format,
                slot.fill_mode,
                slot.background,
                slot.crop_anchor,
            )
        except Exception as exc:
            if not self._is_current(slot, generation):
                return
            if not isinstance(exc, (RenderError, OSError, ValueError)):
                logger.exception("Unexpected error rendering %s", slot_id)
            slot.is_processing = False
            slot.state = SlotState.READY if slot.rendered is not None else SlotState.FAILED
            self._record_error(str(exc) or "Failed to process image")
            logger.error("Render failed for %s: %s", slot_id, exc)
            return

        if not self._is_current(slot, generation):
            logger.debug("Discarding stale render %d for %s", generation, slot_id)
            return
        slot.rendered = data
        slot.is_processing = False
        slot.state = SlotState.READY

    # ------------------------------------------------------------------
    # Editing commands (active slot only)
    # ------------------------------------------------------------------
    def set_active(self, slot_id: str) -> None:
        if slot_id not in self._slots:
            logger.warning("Ignoring unknown active slot %s", slot_id)
            return
        self._active_id = slot_id

    def _update_active(self, **changes: object) -> Optional[ImageSlot]:
        slot = self.active_slot
        if slot is None:
            return None
        for name, value in changes.items():
            setattr(slot, name, value)
        if slot.decoded is not None:
            slot.is_processing = True
            self._request_render(slot.id)
        return slot

    def set_format(self, format: Union[Format, str]) -> None:
        try:
            value = format if isinstance(format, Format) else Format.parse(format)
        except ValueError as exc:
            self._reject(str(exc))
            return
        self._update_active(format=value)

    def set_background(self, background: Background) -> None:
        self._update_active(background=background)

    def set_fill_mode(self, fill_mode: Union[FillMode, str]) -> None:
        try:
            value = FillMode(fill_mode)
        except ValueError:
            self._reject(f"Unknown fill mode {fill_mode!r}")
            return
        self._update_active(fill_mode=value)

    def set_crop_anchor(self, x: float, y: float) -> None:
        """Move the crop anchor now; re-render once dragging pauses."""
        slot = self.active_slot
        if slot is None:
            return
        slot.crop_anchor = CropAnchor(x, y)
        slot_id = slot.id
        self._scheduler.schedule(slot_id, lambda: self._request_render(slot_id))

    # ------------------------------------------------------------------
    # Removal and grid
    # ------------------------------------------------------------------
    def remove(self, slot_id: str) -> bool:
        """Remove a slot and release everything it owns."""
        slot = self._slots.pop(slot_id, None)
        if slot is None:
            return False
        self._scheduler.cancel(slot_id)
        self._runner.cancel(slot_id)
        slot.generation += 1
        self._blobs.revoke(slot.source_url)
        slot.source_url = None
        slot.release()

        for index, occupant in enumerate(self._grid):
            if occupant == slot_id:
                self._grid[index] = None

        if self._active_id == slot_id:
            self._active_id = next(iter(self._slots), None)
        logger.info("Removed %s", slot_id)
        return True

    def swap(self, position_a: int, position_b: int) -> bool:
        """Exchange the occupants of two grid positions (either may be empty).

        Out-of-range positions leave the grid untouched and set ``error``.
        """
        if not (self._valid_position(position_a) and self._valid_position(position_b)):
            return False
        self._grid[position_a], self._grid[position_b] = self._grid[position_b], self._grid[position_a]
        return True

    def assign(self, slot_id: str, position: int) -> bool:
        """Place ``slot_id`` at ``position``, clearing its previous position."""
        if slot_id not in self._slots:
            self._reject(f"Unknown image {slot_id}")
            return False
        if not self._valid_position(position):
            return False
        for index, occupant in enumerate(self._grid):
            if occupant == slot_id:
                self._grid[index] = None
        self._grid[position] = slot_id
        return True

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    async def export_single(self) -> Optional[ExportArtifact]:
        """Export the active slot at export quality."""
        try:
            return await self._exporter.export_single(self.active_slot)
        except ExportError as exc:
            self._record_error(str(exc))
            return None

    async def export_grid(self) -> Optional[ExportArtifact]:
        """Export every occupied grid position (single JPEG or zip)."""
        try:
            return await self._exporter.export_grid(self.grid, self._slots.get)
        except ExportError as exc:
            self._record_error(str(exc))
            return None

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def wait_idle(self) -> None:
        """Wait for in-flight loads/renders and pending debounced renders."""
        while True:
            await self._runner.wait_idle()
            if not len(self._scheduler):
                return
            await asyncio.sleep(self._scheduler.delay_ms / 1000)

    def cleanup(self) -> None:
        """Release every owned resource and return to the empty state."""
        self._scheduler.cancel_all()
        self._runner.cancel_all()
        for slot in self._slots.values():
            slot.generation += 1
            self._blobs.revoke(slot.source_url)
            slot.source_url = None
            slot.release()
        self._slots.clear()
        self._grid = [None] * self.max_images
        self._active_id = None
        self._error = None

    def close(self) -> None:
        """Clean up and shut the render executor down."""
        self.cleanup()
        self._runner.shutdown()

    async def __aenter__(self) -> "ImageStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["ImageStore"]
