"""
Perspective rectification of photographed covers.

Takes four user-picked corners (TL, TR, BR, BL) in display coordinates,
maps them to natural image resolution, and warps the enclosed quadrilateral
to an upright rectangle encoded as JPEG.
"""

import io
import math
from pathlib import Path
from typing import Sequence, Tuple, Union

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from config import RectifierSettings
from errors import GeometryError, SourceAccessError
from homography import solve_homography
from models import CornerPoint
from resampler import warp_nearest


def _as_corner(p) -> CornerPoint:
    if isinstance(p, CornerPoint):
        return p
    if isinstance(p, dict):
        return CornerPoint(float(p["x"]), float(p["y"]))
    return CornerPoint(float(p[0]), float(p[1]))


def target_dimensions(corners: Sequence[CornerPoint], max_dim: int = 1200, min_dim: int = 10) -> Tuple[int, int]:
    """
    Output rectangle size for a TL, TR, BR, BL quadrilateral: the longer of
    each pair of opposite edges, scaled down to fit max_dim (aspect kept),
    then floored at min_dim.
    """
    tl, tr, br, bl = corners
    width = max(math.hypot(tr.x - tl.x, tr.y - tl.y), math.hypot(br.x - bl.x, br.y - bl.y))
    height = max(math.hypot(tl.x - bl.x, tl.y - bl.y), math.hypot(tr.x - br.x, tr.y - br.y))

    # A collapsed side (0) is left to the homography solver to reject
    if width > max_dim or height > max_dim:
        scale = min(max_dim / d for d in (width, height) if d > 0)
        width *= scale
        height *= scale

    return max(min_dim, int(round(width))), max(min_dim, int(round(height)))


def load_source(source) -> Image.Image:
    """
    Open a source image from bytes, a path, a URL or a PIL image.
    Any failure to get at the pixels is a SourceAccessError.
    """
    if isinstance(source, Image.Image):
        return source
    try:
        if isinstance(source, (bytes, bytearray)):
            img = Image.open(io.BytesIO(source))
        elif isinstance(source, str) and source.startswith(("http://", "https://")):
            r = requests.get(source, timeout=30)
            r.raise_for_status()
            img = Image.open(io.BytesIO(r.content))
        else:
            img = Image.open(Path(source))
        img.load()
        return img
    except (requests.RequestException, UnidentifiedImageError, OSError) as e:
        raise SourceAccessError(f"Cannot process image. {e}") from e


def _downscale_source(img: Image.Image, max_source_dim: int) -> Tuple[Image.Image, float]:
    """Shrink very large sources before warping. Returns (image, scale applied)."""
    w, h = img.size
    if w <= max_source_dim and h <= max_source_dim:
        return img, 1.0
    scale = min(max_source_dim / w, max_source_dim / h)
    new_size = (max(1, int(w * scale)), max(1, int(h * scale)))
    print(f"Downscaling source input by {scale:.2f} for performance")
    return img.resize(new_size, Image.BILINEAR), scale


def rectify_array(src: np.ndarray, corners: Sequence, max_dim: int = 1200, min_dim: int = 10,
                  min_valid_pixels: int = 100, sample_scale: float = 1.0) -> np.ndarray:
    """
    Warp the quadrilateral given by natural-resolution corners to an upright
    RGBA raster. The output size comes from the corners as given; sampling
    uses them multiplied by sample_scale (src downscaled by that factor).

    Raises:
        GeometryError: corners give a singular homography
        EmptyOutputError: the warp produced an (almost) empty image
    """
    corners = [_as_corner(p) for p in corners]
    if len(corners) != 4:
        raise GeometryError(f"Expected 4 corner points, got {len(corners)}")

    width, height = target_dimensions(corners, max_dim=max_dim, min_dim=min_dim)
    print(f"Warping to {width}x{height}")
    dst = [(0, 0), (width, 0), (width, height), (0, height)]

    # Destination -> source, so each output pixel is looked up exactly once
    h = solve_homography(dst, [(p.x * sample_scale, p.y * sample_scale) for p in corners])
    if h is None:
        raise GeometryError("Failed to calculate perspective matrix (singular corner configuration)")

    return warp_nearest(src, h, width, height, min_valid_pixels=min_valid_pixels)


def encode_jpeg(rgba: np.ndarray, quality: int = 90) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(rgba, "RGBA").convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def rectify(source, corners: Sequence, display_scale: Union[float, Tuple[float, float]] = 1.0,
            settings: RectifierSettings = None) -> bytes:
    """
    Rectify a photographed cover.

    Args:
        source: image bytes, file path, URL or PIL image
        corners: 4 points TL, TR, BR, BL in display coordinates
        display_scale: natural/display ratio, one number or (sx, sy)
        settings: output bounds and JPEG quality

    Returns:
        JPEG bytes of the corrected image.
    """
    settings = settings or RectifierSettings()
    if isinstance(display_scale, (int, float)):
        sx = sy = float(display_scale)
    else:
        sx, sy = (float(v) for v in display_scale)

    natural = [_as_corner(p).scaled(sx, sy) for p in corners]
    if len(natural) != 4:
        raise GeometryError(f"Expected 4 corner points, got {len(natural)}")

    img = load_source(source)
    try:
        img = img.convert("RGBA")
    except OSError as e:
        raise SourceAccessError(f"Cannot process image. {e}") from e

    img, src_scale = _downscale_source(img, settings.max_source_dim)
    out = rectify_array(np.asarray(img), natural, settings.max_dim, settings.min_dim,
                        settings.min_valid_pixels, sample_scale=src_scale)
    return encode_jpeg(out, quality=settings.jpeg_quality)
