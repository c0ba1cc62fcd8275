from __future__ import annotations

import numpy as np
import pytest

from homography import has_collinear_triple, solve_homography, solve_linear_system
from models import CornerPoint


def _assert_maps(h, src, dst, tol=1e-6) -> None:
    for (x, y), (u, v) in zip(src, dst):
        p = h @ np.array([x, y, 1.0])
        mapped = p[:2] / p[2]
        assert mapped[0] == pytest.approx(u, abs=tol)
        assert mapped[1] == pytest.approx(v, abs=tol)


def test_identity_correspondence_gives_identity_matrix() -> None:
    square = [(0, 0), (100, 0), (100, 100), (0, 100)]

    h = solve_homography(square, square)

    assert h is not None
    assert np.allclose(h, np.eye(3), atol=1e-9)


def test_translation_and_scale() -> None:
    src = [(0, 0), (10, 0), (10, 10), (0, 10)]
    dst = [(5, 7), (25, 7), (25, 27), (5, 27)]

    h = solve_homography(src, dst)

    assert h is not None
    assert h[0, 0] == pytest.approx(2.0)
    assert h[1, 1] == pytest.approx(2.0)
    assert h[0, 2] == pytest.approx(5.0)
    assert h[1, 2] == pytest.approx(7.0)
    assert h[2, 2] == 1.0


def test_perspective_quad_maps_all_four_corners() -> None:
    src = [(0, 0), (400, 0), (400, 300), (0, 300)]
    dst = [(12.5, 30.0), (380.0, 5.0), (420.0, 310.0), (-8.0, 280.0)]

    h = solve_homography(src, dst)

    assert h is not None
    _assert_maps(h, src, dst)


def test_accepts_corner_points() -> None:
    src = [CornerPoint(0, 0), CornerPoint(1, 0), CornerPoint(1, 1), CornerPoint(0, 1)]
    dst = [CornerPoint(10, 10), CornerPoint(20, 12), CornerPoint(22, 25), CornerPoint(8, 20)]

    h = solve_homography(src, dst)

    assert h is not None
    _assert_maps(h, [(p.x, p.y) for p in src], [(p.x, p.y) for p in dst])


def test_collinear_points_are_degenerate() -> None:
    collinear = [(0, 0), (1, 1), (2, 2), (3, 3)]
    square = [(0, 0), (1, 0), (1, 1), (0, 1)]

    assert solve_homography(collinear, square) is None
    assert solve_homography(square, collinear) is None


def test_three_collinear_points_are_degenerate() -> None:
    src = [(0, 0), (50, 0), (100, 0), (0, 100)]
    dst = [(0, 0), (100, 0), (100, 100), (0, 100)]

    assert has_collinear_triple(src)
    assert solve_homography(src, dst) is None


def test_duplicate_points_are_degenerate() -> None:
    src = [(0, 0), (0, 0), (100, 100), (0, 100)]
    dst = [(0, 0), (100, 0), (100, 100), (0, 100)]

    assert solve_homography(src, dst) is None


def test_wrong_point_count_raises() -> None:
    with pytest.raises(ValueError):
        solve_homography([(0, 0), (1, 0), (1, 1)], [(0, 0), (1, 0), (1, 1)])


def test_linear_solver_reports_singular_system() -> None:
    a = np.array([[1.0, 2.0], [2.0, 4.0]])
    b = np.array([3.0, 6.0])

    assert solve_linear_system(a, b) is None


def test_linear_solver_needs_pivoting() -> None:
    # Zero on the diagonal: only solvable with row exchange
    a = np.array([[0.0, 1.0], [1.0, 0.0]])
    b = np.array([2.0, 3.0])

    x = solve_linear_system(a, b)

    assert x is not None
    assert np.allclose(x, [3.0, 2.0])
    assert a[0, 0] == 0.0
