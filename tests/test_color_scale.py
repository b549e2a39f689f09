from __future__ import annotations

import numpy as np
import pytest

from trackreplay import color_scale
from trackreplay.color_scale import ColorScale, interpolate


def _coords(n: int) -> list[tuple[float, float, float]]:
    return [(0.0, i * 0.0001, 0.0) for i in range(n)]


def test_interpolate_endpoints_and_clamping() -> None:
    scale = color_scale.SPEED_SCALE
    assert interpolate(scale, 0.0) == (255, 0, 0)
    assert interpolate(scale, 1.0) == (0, 128, 0)
    assert interpolate(scale, -3.0) == (255, 0, 0)
    assert interpolate(scale, 7.0) == (0, 128, 0)


def test_interpolate_between_stops() -> None:
    assert interpolate(color_scale.SPEED_SCALE, 0.04) == (255, 20, 0)


def test_channels_never_reverse_inside_a_bracket() -> None:
    scale = color_scale.SPEED_SCALE
    for lo, hi in zip(scale.stops, scale.stops[1:]):
        colors = np.array([interpolate(scale, v) for v in np.linspace(lo.value, hi.value, 41)])
        steps = np.diff(colors, axis=0)
        for channel in range(3):
            assert (steps[:, channel] >= 0).all() or (steps[:, channel] <= 0).all()
        assert tuple(colors[0]) == lo.color
        assert tuple(colors[-1]) == hi.color


def test_single_stop_scale_is_constant() -> None:
    scale = ColorScale([(0.5, "#336699")])
    assert interpolate(scale, 0.0) == (0x33, 0x66, 0x99)
    assert interpolate(scale, 1.0) == (0x33, 0x66, 0x99)


def test_scale_validation() -> None:
    with pytest.raises(ValueError):
        ColorScale([])
    with pytest.raises(ValueError):
        ColorScale([(0.5, "#000000"), (0.2, "#ffffff")])
    assert len(color_scale.LOST_TIME_SCALE) == 11


def test_normalize_values_clamps_and_handles_zero_span() -> None:
    normalized = color_scale.normalize_values([-5.0, 0.0, 5.0, 10.0, 50.0], 0.0, 10.0)
    assert normalized.tolist() == [0.0, 0.0, 0.5, 1.0, 1.0]
    assert color_scale.normalize_values([1.0, 2.0], 3.0, 3.0).tolist() == [0.0, 0.0]


def test_continuous_segments_one_edge_per_pair() -> None:
    features = color_scale.colored_segments(
        _coords(4), [0.0, 0.0, 10.0, 10.0], 0.0, 10.0, color_scale.SPEED_SCALE, continuous=True
    )

    assert len(features) == 3
    assert all(len(f["geometry"]["coordinates"]) == 2 for f in features)
    assert features[0]["properties"]["stroke"] == "#ff0000"
    assert features[2]["properties"]["stroke"] == "#008000"


def test_stepped_segments_share_boundary_samples() -> None:
    features = color_scale.colored_segments(
        _coords(4), [0.0, 0.0, 10.0, 10.0], 0.0, 10.0, color_scale.SPEED_SCALE, continuous=False
    )

    assert len(features) == 2
    first, second = features
    assert len(first["geometry"]["coordinates"]) == 3
    assert len(second["geometry"]["coordinates"]) == 2
    assert first["geometry"]["coordinates"][-1] == second["geometry"]["coordinates"][0]
    assert first["properties"]["band"] == 0
    assert second["properties"]["band"] == 9
    assert second["properties"]["stroke"] == color_scale.to_hex(color_scale.SPEED_SCALE[9].color)


def test_stepped_segments_single_band_is_one_run() -> None:
    features = color_scale.stepped_segments(
        _coords(5), np.full(5, 0.42), color_scale.SPEED_SCALE
    )
    assert len(features) == 1
    assert len(features[0]["geometry"]["coordinates"]) == 5


def test_stepped_segments_with_single_value() -> None:
    features = color_scale.stepped_segments(_coords(3), [0.9], color_scale.SPEED_SCALE)
    assert len(features) == 1
    assert features[0]["properties"]["stroke"] == "#ff0000"


def test_value_band_boundaries() -> None:
    assert color_scale.value_band(0.0, 10) == 0
    assert color_scale.value_band(0.0999, 10) == 0
    assert color_scale.value_band(0.5, 10) == 5
    assert color_scale.value_band(1.0, 10) == 9


def test_solid_line_and_empty_input() -> None:
    assert color_scale.solid_line(_coords(1), "#ffffff") == []
    line = color_scale.solid_line(_coords(3), "#ffffff")
    assert line[0]["properties"]["stroke"] == "#ffffff"
    assert color_scale.colored_segments([], [], 0.0, 1.0, color_scale.SPEED_SCALE) == []


def test_legend_labels_and_stops() -> None:
    labels = color_scale.legend_labels(0.0, 30.0, "speed", "kph")
    assert len(labels) == 7
    assert labels[0]["text"] == "30.0 kph"
    assert labels[-1]["text"] == "0.0 kph"
    assert color_scale.legend_labels(0.0, 1.0, "none") == []

    stepped = color_scale.legend_stops(color_scale.SPEED_SCALE, continuous=False)
    assert len(stepped) == 10
    assert stepped[0]["color"] == "#008000"
    continuous = color_scale.legend_stops(color_scale.SPEED_SCALE)
    assert continuous[0]["offset_pct"] == 0.0
    assert continuous[-1]["color"] == "#ff0000"
