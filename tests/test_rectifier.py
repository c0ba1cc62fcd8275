from __future__ import annotations

import io
from types import SimpleNamespace

import numpy as np
import pytest
import requests
from PIL import Image

import rectifier
from config import RectifierSettings
from errors import EmptyOutputError, GeometryError, SourceAccessError
from models import CornerPoint
from rectifier import rectify, rectify_array, target_dimensions


def _quadrant_png(size: int = 200) -> bytes:
    img = Image.new("RGB", (size, size), (255, 0, 0))
    half = size // 2
    img.paste((0, 255, 0), (half, 0, size, half))
    img.paste((0, 0, 255), (0, half, half, size))
    img.paste((255, 255, 255), (half, half, size, size))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _frame(width: float, height: float):
    return [CornerPoint(0, 0), CornerPoint(width, 0), CornerPoint(width, height), CornerPoint(0, height)]


def _decode(jpeg: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(jpeg))
    img.load()
    return img


def test_target_dimensions_uses_longest_opposite_edges() -> None:
    corners = [CornerPoint(0, 0), CornerPoint(300, 0), CornerPoint(280, 200), CornerPoint(10, 210)]

    width, height = target_dimensions(corners)

    assert width == 300
    assert height == 210


def test_target_dimensions_clamps_keeping_aspect() -> None:
    assert target_dimensions(_frame(3000, 1500)) == (1200, 600)
    assert target_dimensions(_frame(1000, 2400)) == (500, 1200)


def test_target_dimensions_floor() -> None:
    assert target_dimensions(_frame(4, 3)) == (10, 10)


def test_full_frame_rectify_keeps_quadrants() -> None:
    out = _decode(rectify(_quadrant_png(), _frame(200, 200)))

    assert out.format == "JPEG"
    assert out.size == (200, 200)
    r, g, b = out.getpixel((50, 50))
    assert r > 200 and g < 60 and b < 60
    r, g, b = out.getpixel((150, 150))
    assert r > 200 and g > 200 and b > 200


def test_display_scale_maps_corners_to_natural_size() -> None:
    out = _decode(rectify(_quadrant_png(), _frame(100, 100), display_scale=2.0))

    assert out.size == (200, 200)


def test_separate_horizontal_and_vertical_scale() -> None:
    out = _decode(rectify(_quadrant_png(), _frame(100, 50), display_scale=(2.0, 4.0)))

    assert out.size == (200, 200)


def test_inner_quad_is_stretched_to_output() -> None:
    # Top-left quadrant only: the whole output is red
    corners = [CornerPoint(0, 0), CornerPoint(90, 0), CornerPoint(90, 90), CornerPoint(0, 90)]

    out = _decode(rectify(_quadrant_png(), corners))

    assert out.size == (90, 90)
    r, g, b = out.getpixel((80, 80))
    assert r > 200 and g < 60 and b < 60


def test_degenerate_corners_raise_geometry_error() -> None:
    corners = [CornerPoint(0, 0), CornerPoint(50, 50), CornerPoint(100, 100), CornerPoint(150, 150)]

    with pytest.raises(GeometryError):
        rectify(_quadrant_png(), corners)


def test_wrong_corner_count_raises_geometry_error() -> None:
    with pytest.raises(GeometryError):
        rectify(_quadrant_png(), _frame(10, 10)[:3])


def test_quad_outside_source_raises_empty_output() -> None:
    corners = [CornerPoint(5000, 5000), CornerPoint(5100, 5000), CornerPoint(5100, 5100), CornerPoint(5000, 5100)]

    with pytest.raises(EmptyOutputError):
        rectify(_quadrant_png(), corners)


def test_unreadable_bytes_raise_source_access_error() -> None:
    with pytest.raises(SourceAccessError):
        rectify(b"not an image", _frame(10, 10))


def test_url_source_is_downloaded(monkeypatch) -> None:
    payload = _quadrant_png()
    seen = {}

    def _fake_get(url, timeout=None):
        seen["url"] = url
        return SimpleNamespace(content=payload, raise_for_status=lambda: None)

    monkeypatch.setattr(rectifier.requests, "get", _fake_get)

    out = _decode(rectify("https://example.test/cover.png", _frame(200, 200)))

    assert seen["url"] == "https://example.test/cover.png"
    assert out.size == (200, 200)


def test_url_download_failure_is_source_access_error(monkeypatch) -> None:
    def _fake_get(url, timeout=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(rectifier.requests, "get", _fake_get)

    with pytest.raises(SourceAccessError):
        rectify("https://example.test/cover.png", _frame(200, 200))


def test_large_source_is_downscaled_before_warp(capsys) -> None:
    img = Image.new("RGB", (3000, 100), (10, 200, 30))
    settings = RectifierSettings(max_dim=1200, max_source_dim=2048)

    out = _decode(rectify(img, _frame(3000, 100), settings=settings))

    assert out.size == (1200, 40)
    assert "Downscaling source input" in capsys.readouterr().out
    r, g, b = out.getpixel((600, 20))
    assert g > 150


def test_jpeg_quality_setting_is_applied() -> None:
    png = _quadrant_png()
    low = rectify(png, _frame(200, 200), settings=RectifierSettings(jpeg_quality=10))
    high = rectify(png, _frame(200, 200), settings=RectifierSettings(jpeg_quality=95))

    assert len(low) < len(high)


def test_rectify_array_returns_rgba() -> None:
    src = np.full((50, 60, 3), 128, dtype=np.uint8)

    out = rectify_array(src, [(0, 0), (60, 0), (60, 50), (0, 50)])

    assert out.shape == (50, 60, 4)
    assert np.all(out[..., 3] == 255)


def test_target_dimensions_with_collapsed_side() -> None:
    corners = [CornerPoint(0, 0), CornerPoint(0, 0), CornerPoint(0, 1500), CornerPoint(0, 1500)]

    assert target_dimensions(corners) == (10, 1200)


def test_corners_collapsed_onto_a_line_raise_geometry_error() -> None:
    src = np.zeros((1600, 100, 3), dtype=np.uint8)

    with pytest.raises(GeometryError):
        rectify_array(src, [(0, 0), (0, 0), (0, 1500), (0, 1500)])
