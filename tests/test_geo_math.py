from __future__ import annotations

import numpy as np
import pytest

from trackreplay import geo_math


def test_flat_distance_zero_for_same_point() -> None:
    assert geo_math.flat_distance_m((8.5, 47.3, 400.0), (8.5, 47.3, 400.0)) == 0.0


def test_flat_distance_uses_per_axis_scale_factors() -> None:
    north = geo_math.flat_distance_m((0.0, 0.0, 0.0), (0.0, 0.001, 0.0))
    east = geo_math.flat_distance_m((0.0, 0.0, 0.0), (0.001, 0.0, 0.0))
    up = geo_math.flat_distance_m((0.0, 0.0, 0.0), (0.0, 0.0, 12.0))

    assert north == pytest.approx(110.54)
    assert east == pytest.approx(111.32)
    assert up == pytest.approx(12.0)


def test_longitude_shrinks_with_latitude() -> None:
    at_equator = geo_math.flat_distance_m((0.0, 0.0, 0.0), (0.001, 0.0, 0.0))
    at_60 = geo_math.flat_distance_m((0.0, 60.0, 0.0), (0.001, 60.0, 0.0))
    assert at_60 == pytest.approx(at_equator * 0.5, rel=1e-6)


def test_displacement_is_signed() -> None:
    dx, dy, dz = geo_math.flat_displacement_m((0.001, 0.001, 5.0), (0.0, 0.0, 0.0))
    assert dx < 0
    assert dy < 0
    assert dz == -5.0


def test_distances_to_matches_pairwise_distance() -> None:
    point = (7.0, 46.0, 100.0)
    coords = np.asarray([
        [7.0, 46.0, 100.0],
        [7.001, 46.0005, 90.0],
        [6.999, 45.998, 130.0],
    ])
    vectorized = geo_math.distances_to(point, coords)
    expected = [geo_math.flat_distance_m(point, c) for c in coords]
    assert np.allclose(vectorized, expected)


def test_cumulative_distances_start_at_zero() -> None:
    coords = np.asarray([[0.0, 0.0, 0.0], [0.0, 0.001, 0.0], [0.0, 0.002, 0.0]])
    cumulative = geo_math.cumulative_distances_m(coords)

    assert cumulative.shape == (3,)
    assert cumulative[0] == 0.0
    assert cumulative[-1] == pytest.approx(2 * 110.54)
    assert len(geo_math.segment_distances_m(coords[:1])) == 0
