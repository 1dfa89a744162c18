"""Behavioural tests for the image store."""
import asyncio
import logging
import threading
import time

from instagrid.blobs import BlobRegistry
from instagrid.compositor import Compositor
from instagrid.controllers import ImageStore
from instagrid.controllers import store as store_module
from instagrid.formats import Format
from instagrid.models import CENTER, Background, FillMode, SlotState, SourceFile
from instagrid.scheduler import DebounceScheduler
from instagrid.utils.image_operations import image_size

from conftest import make_source, oversized_png


class CountingCompositor(Compositor):
    """Compositor that records every preview request."""

    def __init__(self):
        super().__init__()
        self.previews = []

    def preview(self, image, format, fill_mode, background, anchor=CENTER):
        self.previews.append((format, fill_mode, anchor))
        return super().preview(image, format, fill_mode, background, anchor)


def make_store(**kwargs):
    kwargs.setdefault("blobs", BlobRegistry())
    return ImageStore(**kwargs)


def run(scenario):
    return asyncio.run(scenario())


def test_first_image_becomes_active_and_renders():
    async def scenario():
        async with make_store() as store:
            ids = await store.add_images([make_source(size=(100, 100))])
            slot = store.get(ids[0])
            assert store.active_id == ids[0]
            assert store.grid[0] == ids[0]
            assert slot.format is Format.SQUARE
            assert slot.palette is not None
            assert slot.background == Background.solid(slot.palette.dominant)
            assert not slot.is_processing
            assert slot.state is SlotState.READY
            assert image_size(slot.rendered) == (1080, 1080)
            assert store.rendered_data_url().startswith("data:image/jpeg;base64,")
            assert store.can_export

    run(scenario)


def test_nine_images_fill_grid_and_tenth_is_ignored():
    async def scenario():
        blobs = BlobRegistry()
        async with make_store(blobs=blobs) as store:
            ids = await store.add_images([make_source() for _ in range(9)])
            assert list(store.grid) == ids
            assert store.grid_image_count == 9
            assert await store.add_images([make_source()]) == []
            assert len(store.slots) == 9
            assert blobs.active_count() == 9
        assert blobs.active_count() == 0

    run(scenario)


def test_batch_is_truncated_to_capacity():
    async def scenario():
        async with make_store(max_images=3) as store:
            ids = await store.add_images([make_source() for _ in range(5)])
            assert len(ids) == 3
            assert list(store.grid) == ids

    run(scenario)


def test_non_images_are_filtered():
    async def scenario():
        async with make_store() as store:
            text = SourceFile("notes.txt", "text/plain", b"hello")
            ids = await store.add_images([text, make_source()])
            assert len(ids) == 1
            assert store.get(ids[0]).source.name == "photo.png"

    run(scenario)


def test_removing_active_promotes_next_slot():
    async def scenario():
        blobs = BlobRegistry()
        async with make_store(blobs=blobs) as store:
            first, second, third = await store.add_images([make_source() for _ in range(3)])
            assert store.remove(first)
            assert store.active_id == second
            assert store.grid[0] is None
            assert store.grid[1] == second
            store.remove(second)
            store.remove(third)
            assert store.active_id is None
            assert not store.has_images
            assert blobs.active_count() == 0
            assert store.remove(third) is False

    run(scenario)


def test_removed_slot_reuses_first_free_position():
    async def scenario():
        async with make_store() as store:
            first, second = await store.add_images([make_source(), make_source()])
            store.remove(first)
            (third,) = await store.add_images([make_source()])
            assert store.grid[0] == third
            assert store.grid[1] == second

    run(scenario)


def test_rapid_crop_updates_render_once_with_final_anchor():
    async def scenario():
        compositor = CountingCompositor()
        async with make_store(compositor=compositor) as store:
            await store.add_images([make_source(size=(200, 100))])
            store.set_fill_mode(FillMode.CROP)
            await store.wait_idle()
            compositor.previews.clear()

            for step in range(5):
                store.set_crop_anchor(step / 4, 0.5)
            assert store.active_slot.crop_anchor.x == 1.0
            await store.wait_idle()

            assert len(compositor.previews) == 1
            assert compositor.previews[0][2].x == 1.0

    run(scenario)


def test_latest_parameter_change_wins():
    async def scenario():
        async with make_store() as store:
            await store.add_images([make_source(size=(100, 100))])
            store.set_format(Format.PORTRAIT)
            store.set_format(Format.LANDSCAPE)
            await store.wait_idle()
            slot = store.active_slot
            assert slot.format is Format.LANDSCAPE
            assert image_size(slot.rendered) == (1080, 566)
            assert not slot.is_processing

    run(scenario)


def test_commands_target_only_active_slot():
    async def scenario():
        async with make_store() as store:
            first, second = await store.add_images([make_source(size=(100, 100)), make_source(size=(100, 100))])
            store.set_active(second)
            store.set_background(Background.gradient("#ff0000"))
            store.set_active("img-missing")
            await store.wait_idle()
            assert store.active_id == second
            assert store.get(second).background.kind.value == "gradient"
            assert store.get(first).background.kind.value == "solid"

    run(scenario)


def test_failed_decode_keeps_slot_with_error():
    async def scenario():
        async with make_store() as store:
            (slot_id,) = await store.add_images([SourceFile("broken.jpg", "image/jpeg", b"garbage")])
            slot = store.get(slot_id)
            assert slot is not None
            assert slot.is_processing is False
            assert slot.rendered is None
            assert slot.state is SlotState.FAILED
            assert "Failed to decode image" in store.error
            assert not store.can_export

    run(scenario)


def test_swap_and_assign():
    async def scenario():
        async with make_store() as store:
            first, second = await store.add_images([make_source(), make_source()])
            assert store.swap(0, 5)
            assert store.grid[5] == first
            assert store.grid[0] is None
            assert store.assign(second, 8)
            assert store.grid[1] is None
            assert store.grid[8] == second
            assert store.error is None

    run(scenario)


def test_invalid_commands_record_error_instead_of_raising():
    async def scenario():
        async with make_store() as store:
            first, second = await store.add_images([make_source(), make_source()])
            before = store.grid

            assert store.swap(0, 9) is False
            assert "out of range" in store.error
            assert store.assign("img-missing", 0) is False
            assert "img-missing" in store.error
            assert store.assign(first, -1) is False
            assert store.grid == before

            store.set_format("story")
            assert "Unknown format" in store.error
            store.set_fill_mode("stretch")
            assert "Unknown fill mode" in store.error
            await store.wait_idle()
            assert store.active_slot.format is Format.PORTRAIT
            assert store.active_slot.fill_mode is FillMode.BACKGROUND

    run(scenario)


def test_cleanup_releases_everything():
    async def scenario():
        blobs = BlobRegistry()
        store = make_store(blobs=blobs)
        await store.add_images([make_source(), make_source()])
        store.set_crop_anchor(0.1, 0.1)
        store.cleanup()
        assert store.slots == ()
        assert store.active_id is None
        assert store.grid_image_count == 0
        assert blobs.active_count() == 0
        store.close()

    run(scenario)


def test_snapshot_is_plain_data():
    async def scenario():
        async with make_store() as store:
            (slot_id,) = await store.add_images([make_source()])
            snapshot = store.snapshot()
            assert snapshot["activeImageId"] == slot_id
            assert snapshot["gridLayout"][0] == slot_id
            assert snapshot["images"][0]["hasOutput"] is True
            assert snapshot["isExporting"] is False

    run(scenario)


def test_oversized_image_fails_instead_of_hanging():
    async def scenario():
        async with make_store() as store:
            (slot_id,) = await store.add_images([SourceFile("huge.png", "image/png", oversized_png())])
            slot = store.get(slot_id)
            assert slot.state is SlotState.FAILED
            assert slot.is_processing is False
            assert slot.rendered is None
            assert "Failed to decode image" in store.error

    run(scenario)


def test_unexpected_load_error_marks_slot_failed(monkeypatch):
    def explode(data):
        raise RuntimeError("decoder crashed")

    monkeypatch.setattr(store_module, "decode_image", explode)

    async def scenario():
        async with make_store() as store:
            (slot_id,) = await store.add_images([make_source()])
            slot = store.get(slot_id)
            assert slot.state is SlotState.FAILED
            assert slot.is_processing is False
            assert store.error == "Failed to load image: decoder crashed"

    run(scenario)


class ExhaustedCompositor(Compositor):
    def preview(self, *args, **kwargs):
        raise MemoryError()


def test_render_memory_error_marks_slot_failed():
    async def scenario():
        async with make_store(compositor=ExhaustedCompositor()) as store:
            (slot_id,) = await store.add_images([make_source()])
            slot = store.get(slot_id)
            assert slot.state is SlotState.FAILED
            assert slot.is_processing is False
            assert store.error == "Failed to process image"

    run(scenario)


class SlowFormatCompositor(CountingCompositor):
    """Takes ``delay`` seconds to render ``slow_format`` previews."""

    def __init__(self, slow_format, delay=0.5):
        super().__init__()
        self.slow_format = slow_format
        self.delay = delay
        self.finished = []

    def preview(self, image, format, fill_mode, background, anchor=CENTER):
        if format is self.slow_format:
            time.sleep(self.delay)
        data = super().preview(image, format, fill_mode, background, anchor)
        self.finished.append(format)
        return data


def test_older_render_finishing_last_is_discarded(caplog):
    caplog.set_level(logging.DEBUG, logger="instagrid")

    async def scenario():
        compositor = SlowFormatCompositor(Format.PORTRAIT)
        async with make_store(compositor=compositor) as store:
            await store.add_images([make_source(size=(100, 100))])
            store.set_format(Format.PORTRAIT)
            await asyncio.sleep(0.05)
            store.set_format(Format.LANDSCAPE)
            await store.wait_idle()

            assert compositor.finished == [Format.SQUARE, Format.LANDSCAPE, Format.PORTRAIT]
            slot = store.active_slot
            assert slot.format is Format.LANDSCAPE
            assert image_size(slot.rendered) == (1080, 566)
            assert slot.state is SlotState.READY
            assert not slot.is_processing
            assert store.error is None

    run(scenario)
    assert "Discarding stale render" in caplog.text


class GatedCompositor(CountingCompositor):
    """Blocks every preview until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()

    def preview(self, image, format, fill_mode, background, anchor=CENTER):
        self.entered.set()
        self.gate.wait(timeout=5)
        return super().preview(image, format, fill_mode, background, anchor)


def test_remove_during_render_discards_result_and_releases_resources():
    async def scenario():
        compositor = GatedCompositor()
        blobs = BlobRegistry()
        scheduler = DebounceScheduler()
        async with make_store(compositor=compositor, blobs=blobs, scheduler=scheduler) as store:
            first, second = await store.add_images([make_source(), make_source()])
            target = store.get(first)

            compositor.gate.clear()
            compositor.entered.clear()
            compositor.previews.clear()
            store.set_format(Format.LANDSCAPE)
            while not compositor.entered.is_set():
                await asyncio.sleep(0.01)
            store.set_crop_anchor(0.2, 0.2)
            assert scheduler.is_pending(first)

            assert store.remove(first)
            assert not scheduler.is_pending(first)
            compositor.gate.set()
            await store.wait_idle()
            await asyncio.sleep(scheduler.delay_ms / 1000 * 2)

            assert store.get(first) is None
            assert target.rendered is None
            assert target.decoded is None
            assert target.state is SlotState.REMOVED
            assert store.active_id == second
            assert store.error is None
            assert blobs.active_count() == 1
            assert [call[0] for call in compositor.previews] == [Format.LANDSCAPE]

    run(scenario)


def test_remove_during_load_discards_decode():
    async def scenario():
        blobs = BlobRegistry()
        async with make_store(blobs=blobs) as store:
            pending = asyncio.ensure_future(store.add_images([make_source()]))
            await asyncio.sleep(0)
            (slot,) = store.slots
            assert slot.state is SlotState.LOADING

            assert store.remove(slot.id)
            assert await pending == [slot.id]
            await store.wait_idle()

            assert slot.decoded is None
            assert slot.rendered is None
            assert store.active_id is None
            assert store.error is None
            assert blobs.active_count() == 0

    run(scenario)
