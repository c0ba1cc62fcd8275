"""
Inverse warp: fill every destination pixel by looking up its source pixel
through a homography (destination -> source), nearest neighbour sampling.
"""

import numpy as np

from errors import EmptyOutputError
from homography import SINGULAR_EPS

MIN_VALID_PIXELS = 100


def warp_nearest(src: np.ndarray, h: np.ndarray, out_width: int, out_height: int,
                 min_valid_pixels: int = MIN_VALID_PIXELS) -> np.ndarray:
    """
    Resample src into an out_height x out_width RGBA raster.

    Args:
        src: (H, W, 3) or (H, W, 4) uint8 raster
        h: 3x3 homography mapping destination (u, v) to source (x, y)
        out_width, out_height: destination size in pixels
        min_valid_pixels: fewer written pixels than this is a failure

    Returns:
        (out_height, out_width, 4) uint8 array. Written pixels copy the source
        RGB with alpha 255; pixels that map outside the source, or to infinity,
        stay zero.

    Raises:
        EmptyOutputError: if fewer than min_valid_pixels pixels were written.
    """
    if src.ndim != 3 or src.shape[2] not in (3, 4):
        raise ValueError(f"Expected an (H, W, 3|4) raster, got shape {src.shape}")
    src_h, src_w = src.shape[:2]
    out = np.zeros((out_height, out_width, 4), dtype=np.uint8)

    vs, us = np.mgrid[0:out_height, 0:out_width].astype(np.float64)
    den = h[2, 0] * us + h[2, 1] * vs + h[2, 2]
    valid = np.abs(den) >= SINGULAR_EPS
    den = np.where(valid, den, 1.0)

    with np.errstate(over="ignore", invalid="ignore"):
        sx = np.floor((h[0, 0] * us + h[0, 1] * vs + h[0, 2]) / den + 0.5)
        sy = np.floor((h[1, 0] * us + h[1, 1] * vs + h[1, 2]) / den + 0.5)
        valid &= (sx >= 0) & (sx < src_w) & (sy >= 0) & (sy < src_h)

    written = int(np.count_nonzero(valid))
    if written < min_valid_pixels:
        raise EmptyOutputError(
            f"Perspective correction failed: output image is empty "
            f"({written} valid pixels, {out_width}x{out_height} target, {src_w}x{src_h} source)"
        )

    xi = sx[valid].astype(np.intp)
    yi = sy[valid].astype(np.intp)
    out[valid, :3] = src[yi, xi, :3]
    out[valid, 3] = 255
    return out
