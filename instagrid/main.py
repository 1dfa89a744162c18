# main.py
"""
Command-line entry point for instagrid.

Loads images into an :class:`~instagrid.controllers.ImageStore`, applies the
requested format/fill settings to every slot and writes the grid export
(a single JPEG or a zip archive) into the output directory.
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional, Sequence

from . import config
from .captions import CaptionClient, CaptionError, load_environment
from .controllers import ImageStore
from .formats import Format
from .models import Background, FillMode, SourceFile


def configure_logging(log_path: Optional[Path] = None) -> logging.Logger:
    """Attach file and stdout handlers to the ``instagrid`` logger once.

    Later calls return the already configured logger untouched.  The log file
    defaults to ``INSTAGRID_LOG_PATH`` (or ``instagrid.log`` in the working
    directory) and rotates at 1 MiB, keeping five backups.
    """

    logger = logging.getLogger(config.LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    )

    if log_path is None:
        log_path = Path(os.environ.get(config.LOG_PATH_ENV, config.LOG_FILENAME))
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=config.LOG_MAX_BYTES,
        backupCount=config.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False

    return logger


logger = logging.getLogger(f"{config.LOGGER_NAME}.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="instagrid",
        description="Fit photos into Instagram formats and export them as a grid.",
    )
    parser.add_argument("images", nargs="+", help="Image files (up to 9 are used)")
    parser.add_argument("-o", "--out", type=Path, default=Path("."), help="Output directory")
    parser.add_argument(
        "-f", "--format", type=Format.parse, default=None,
        help="portrait, square or landscape (default: detected per image)",
    )
    parser.add_argument(
        "--fill", type=FillMode, choices=list(FillMode), default=FillMode.BACKGROUND,
        help="background (letterbox) or crop (fill the frame)",
    )
    parser.add_argument(
        "--anchor", type=float, nargs=2, metavar=("X", "Y"), default=None,
        help="Crop anchor in [0, 1] for --fill crop (default: 0.5 0.5)",
    )
    parser.add_argument(
        "--gradient", action="store_true",
        help="Use a gradient of the image's two dominant colours as background",
    )
    parser.add_argument(
        "--single", action="store_true",
        help="Export only the first image instead of the grid",
    )
    parser.add_argument(
        "--caption", action="store_true",
        help="Print AI caption suggestions for the first image",
    )
    return parser


def _read_sources(paths: Sequence[str]) -> List[SourceFile]:
    """Load validated *paths*, skipping anything unreadable."""
    sources: List[SourceFile] = []
    for raw in paths:
        try:
            sources.append(SourceFile.from_path(raw))
        except (ValueError, OSError) as exc:
            logger.warning("Skipping invalid image %s: %s", raw, exc)
    return sources


def _apply_settings(store: ImageStore, args: argparse.Namespace) -> None:
    first = store.active_id
    for slot in store.slots:
        if slot.decoded is None:
            continue
        store.set_active(slot.id)
        if args.format is not None:
            store.set_format(args.format)
        if args.gradient and slot.palette is not None:
            store.set_background(Background.gradient(*slot.palette.swatches[:2]))
        if args.fill is not FillMode.BACKGROUND:
            store.set_fill_mode(args.fill)
        if args.anchor is not None:
            store.set_crop_anchor(*args.anchor)
    if first is not None:
        store.set_active(first)


def _print_caption(store: ImageStore) -> None:
    data_url = store.rendered_data_url()
    if data_url is None:
        return
    load_environment()
    try:
        suggestions = CaptionClient().suggest(data_url)
    except CaptionError as exc:
        logger.warning("Caption suggestions unavailable: %s", exc)
        return
    print(json.dumps({
        "caption": suggestions.caption,
        "hashtags": suggestions.hashtags,
        "modelTemplate": suggestions.model_template,
        "photographerTemplate": suggestions.photographer_template,
        "placeTemplate": suggestions.place_template,
    }, indent=2, ensure_ascii=False))


async def run(args: argparse.Namespace) -> int:
    sources = _read_sources(args.images)
    if not sources:
        logger.error("No readable images given.")
        return 1

    async with ImageStore() as store:
        await store.add_images(sources)
        _apply_settings(store, args)
        await store.wait_idle()

        if args.single:
            artifact = await store.export_single()
        else:
            artifact = await store.export_grid()
        if store.error:
            logger.error("%s", store.error)
        if artifact is None:
            logger.error("Nothing was exported.")
            return 1

        try:
            saved = artifact.save(args.out)
        except (ValueError, OSError) as exc:
            logger.error("Save failed: %s", exc)
            return 1
        logger.info("Saved %s", saved)
        print(saved)

        if args.caption:
            _print_caption(store)
        return 1 if store.error else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    return asyncio.run(run(args))


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
