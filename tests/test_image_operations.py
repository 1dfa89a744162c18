from io import BytesIO

import pytest
from PIL import Image

from instagrid.utils.image_operations import (
    encode_jpeg,
    has_alpha,
    image_size,
    normalize_mode,
    parse_data_url,
    to_data_url,
)


def assert_color_close(actual, expected, tolerance=10):
    assert len(actual) == len(expected)
    for component_actual, component_expected in zip(actual, expected, strict=True):
        assert abs(component_actual - component_expected) <= tolerance


def test_normalize_mode_picks_rgb_or_rgba():
    assert normalize_mode(Image.new("L", (4, 4))).mode == "RGB"
    assert normalize_mode(Image.new("LA", (4, 4))).mode == "RGBA"
    rgb = Image.new("RGB", (4, 4))
    assert normalize_mode(rgb) is rgb


def test_palette_transparency_becomes_rgba():
    img = Image.new("P", (4, 4))
    img.info["transparency"] = 0
    assert has_alpha(img)
    assert normalize_mode(img).mode == "RGBA"


def test_encode_jpeg_flattens_alpha():
    data = encode_jpeg(Image.new("RGBA", (8, 8), (200, 10, 10, 255)), 95)
    with Image.open(BytesIO(data)) as decoded:
        assert decoded.format == "JPEG"
        assert decoded.mode == "RGB"
        assert_color_close(decoded.getpixel((4, 4)), (200, 10, 10))


def test_encode_jpeg_rejects_bad_quality():
    with pytest.raises(ValueError):
        encode_jpeg(Image.new("RGB", (2, 2)), 0)


def test_data_url_parsing():
    url = to_data_url(b"abc", "image/png")
    assert url == "data:image/png;base64,YWJj"
    assert parse_data_url(url) == ("image/png", b"abc")
    for bad in ("http://x", "data:image/png,abc", "data:image/png;base64,@@@"):
        with pytest.raises(ValueError):
            parse_data_url(bad)


def test_image_size_reads_header_only():
    buffer = BytesIO()
    Image.new("RGB", (30, 12)).save(buffer, format="PNG")
    assert image_size(buffer.getvalue()) == (30, 12)
    assert image_size(b"nope") is None
