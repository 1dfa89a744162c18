"""Shared fixtures for instagrid tests."""
from __future__ import annotations

import struct
import zlib
from io import BytesIO

import pytest
from PIL import Image

from instagrid.managers import export_metrics
from instagrid.models import SourceFile


def encode_image(size=(40, 50), color="red", fmt="PNG", mode="RGB", **save_kwargs) -> bytes:
    img = Image.new(mode, size, color=color)
    buffer = BytesIO()
    img.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_source(size=(40, 50), color="red", name="photo.png") -> SourceFile:
    return SourceFile(name=name, media_type="image/png", data=encode_image(size, color))


@pytest.fixture
def source_factory():
    return make_source


@pytest.fixture(autouse=True)
def reset_export_metrics():
    export_metrics.reset()
    yield
    export_metrics.reset()


def oversized_png(width=20000, height=20000) -> bytes:
    """PNG whose header declares ``width`` x ``height`` with no pixel data."""
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)

    def chunk(kind: bytes, body: bytes) -> bytes:
        crc = zlib.crc32(kind + body) & 0xFFFFFFFF
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", crc)

    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IEND", b"")
