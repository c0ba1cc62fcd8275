"""
Planar homography from four point correspondences.

Builds the 8x8 direct linear transform system (h33 fixed to 1) and solves it
with Gauss-Jordan elimination and partial pivoting.
"""

from typing import Optional, Sequence

import numpy as np

SINGULAR_EPS = 1e-10


def _xy(point):
    if hasattr(point, "x"):
        return float(point.x), float(point.y)
    return float(point[0]), float(point[1])


def solve_linear_system(a: np.ndarray, b: np.ndarray, eps: float = SINGULAR_EPS) -> Optional[np.ndarray]:
    """
    Solve a @ x = b by Gauss-Jordan elimination with partial pivoting.
    Returns None if any pivot falls below eps (singular system).
    Inputs are not modified.
    """
    n = a.shape[0]
    m = np.hstack([np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64).reshape(n, 1)])

    for i in range(n):
        # Pick the largest magnitude pivot in column i
        max_row = i + int(np.argmax(np.abs(m[i:, i])))
        if abs(m[max_row, i]) < eps:
            return None

        if max_row != i:
            m[[i, max_row]] = m[[max_row, i]]

        m[i, i:] /= m[i, i]

        for k in range(n):
            if k != i:
                factor = m[k, i]
                if factor != 0.0:
                    m[k, i:] -= factor * m[i, i:]

    return m[:, n].copy()


def has_collinear_triple(points: Sequence, rel_eps: float = 1e-9) -> bool:
    """True if any three of the points are collinear (or coincide)."""
    pts = [_xy(p) for p in points]
    xs = [p[0] for p in pts]
    ys = [p[1] for p in pts]
    span = max(max(xs) - min(xs), max(ys) - min(ys), 1.0)
    tol = rel_eps * span * span
    n = len(pts)
    for i in range(n):
        for j in range(i + 1, n):
            for k in range(j + 1, n):
                (x1, y1), (x2, y2), (x3, y3) = pts[i], pts[j], pts[k]
                cross = (x2 - x1) * (y3 - y1) - (y2 - y1) * (x3 - x1)
                if abs(cross) <= tol:
                    return True
    return False


def solve_homography(src_points: Sequence, dst_points: Sequence) -> Optional[np.ndarray]:
    """
    Compute the 3x3 projective transform H with H @ [src_i, 1] ~ [dst_i, 1].

    Args:
        src_points: 4 points, (x, y) pairs or objects with .x/.y
        dst_points: 4 points, same form

    Returns:
        3x3 float64 array with H[2, 2] == 1, or None when the configuration is
        degenerate (collinear or duplicate points).
    """
    if len(src_points) != 4 or len(dst_points) != 4:
        raise ValueError(f"Expected exactly 4 point pairs, got {len(src_points)} and {len(dst_points)}")

    # Three collinear points can still give a solvable system, but only a rank deficient H
    if has_collinear_triple(src_points) or has_collinear_triple(dst_points):
        return None

    a = np.zeros((8, 8), dtype=np.float64)
    b = np.zeros(8, dtype=np.float64)
    for i in range(4):
        x, y = _xy(src_points[i])
        u, v = _xy(dst_points[i])
        a[2 * i] = [x, y, 1.0, 0.0, 0.0, 0.0, -u * x, -u * y]
        b[2 * i] = u
        a[2 * i + 1] = [0.0, 0.0, 0.0, x, y, 1.0, -v * x, -v * y]
        b[2 * i + 1] = v

    h = solve_linear_system(a, b)
    if h is None or not np.all(np.isfinite(h)):
        return None
    return np.append(h, 1.0).reshape(3, 3)
