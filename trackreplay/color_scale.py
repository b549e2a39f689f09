"""
Color Scales for Track Replay

This module maps normalized metric values onto colors and turns per-sample
metric series into colored track segments for rendering.

Color scales are ordered (value, color) stops over [0, 1]; colors between
stops are interpolated channel by channel. Segments are emitted either
continuously (one colored edge per sample pair) or stepped (one run per
contiguous sequence of samples in the same value band).
"""

import numpy as np
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

RGB = Tuple[int, int, int]


class ColorStop(NamedTuple):
    value: float
    color: RGB


def parse_hex(color: str) -> RGB:
    """Parse '#rrggbb' into an (r, g, b) tuple of 0-255 ints."""
    color = color.lstrip("#")
    if len(color) != 6:
        raise ValueError(f"Invalid hex color: #{color}")
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16)


def to_hex(rgb: Sequence[int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


class ColorScale:
    """
    Ordered value-to-color stops.

    Args:
        stops: Sequence of (value, color) pairs. Values must lie in [0, 1]
            and be non-decreasing; colors are hex strings or RGB tuples.

    Raises:
        ValueError: If there are no stops or the values are out of order.
    """

    def __init__(self, stops: Sequence[Tuple[float, object]]):
        if not stops:
            raise ValueError("A color scale needs at least one stop")

        parsed = []
        for value, color in stops:
            rgb = parse_hex(color) if isinstance(color, str) else tuple(int(c) for c in color)
            parsed.append(ColorStop(float(value), rgb))

        for prev, cur in zip(parsed, parsed[1:]):
            if cur.value < prev.value:
                raise ValueError("Color stop values must be non-decreasing")

        self.stops: List[ColorStop] = parsed

    def __len__(self) -> int:
        return len(self.stops)

    def __getitem__(self, idx: int) -> ColorStop:
        return self.stops[idx]

    def __iter__(self):
        return iter(self.stops)


def interpolate(scale: ColorScale, value: float) -> RGB:
    """
    Interpolate a color for a normalized value.

    The value is clamped to [0, 1]. The first stop pair that brackets the
    value is used; a zero-width bracket yields its lower color. Values below
    the first stop or above the last take the end colors.

    Args:
        scale: Color scale to sample.
        value: Normalized value.

    Returns:
        RGB tuple of 0-255 ints.
    """
    value = max(0.0, min(1.0, float(value)))
    stops = scale.stops

    if len(stops) == 1 or value <= stops[0].value:
        return stops[0].color
    if value >= stops[-1].value:
        return stops[-1].color

    for lo, hi in zip(stops, stops[1:]):
        if lo.value <= value <= hi.value:
            span = hi.value - lo.value
            frac = (value - lo.value) / span if span != 0 else 0.0
            return tuple(
                int(round(lo.color[j] + frac * (hi.color[j] - lo.color[j]))) for j in range(3)
            )

    return stops[-1].color


# ============================================================================
# BUILT-IN SCALES
# ============================================================================

SPEED_SCALE = ColorScale([
    (0.0, "#ff0000"),
    (0.1, "#ff3300"),
    (0.2, "#ff6600"),
    (0.3, "#ff9900"),
    (0.4, "#ffff00"),
    (0.5, "#ccff00"),
    (0.6, "#99ff00"),
    (0.7, "#66ff00"),
    (0.8, "#33ff00"),
    (0.9, "#00ff00"),
    (1.0, "#008000"),
])

ACCELERATION_SCALE = ColorScale([
    (0.0, "#ff0000"),
    (0.1, "#ff3300"),
    (0.2, "#ff6600"),
    (0.3, "#ff9900"),
    (0.4, "#ffcc00"),
    (0.5, "#ffffff"),
    (0.6, "#ccffcc"),
    (0.7, "#99ff99"),
    (0.8, "#66ff66"),
    (0.9, "#33ff33"),
    (1.0, "#008000"),
])

TIME_DIFFERENCE_SCALE = ColorScale([
    (0.0, "#ffffff"),
    (0.1, "#ffeeee"),
    (0.2, "#ffdddd"),
    (0.3, "#ffcccc"),
    (0.4, "#ffbbbb"),
    (0.5, "#ffaaaa"),
    (0.6, "#ff8888"),
    (0.7, "#ff6666"),
    (0.8, "#ff4444"),
    (0.9, "#ff2222"),
    (1.0, "#ff0000"),
])

# Green = gaining time, white = neutral, red = losing time
LOST_TIME_SCALE = ColorScale([
    (0.0, "#00aa00"),
    (0.1, "#22cc22"),
    (0.2, "#44dd44"),
    (0.3, "#88eeaa"),
    (0.4, "#ccffcc"),
    (0.5, "#ffffff"),
    (0.6, "#ffdddd"),
    (0.7, "#ffbbbb"),
    (0.8, "#ff8888"),
    (0.9, "#ff4444"),
    (1.0, "#cc0000"),
])

COLOR_SCALES: Dict[str, ColorScale] = {
    "speed": SPEED_SCALE,
    "acceleration": ACCELERATION_SCALE,
    "timeDifference": TIME_DIFFERENCE_SCALE,
    "lostTime": LOST_TIME_SCALE,
}


# ============================================================================
# NORMALIZATION & SEGMENTS
# ============================================================================

def normalize_values(values: Sequence[float], legend_min: float, legend_max: float) -> np.ndarray:
    """
    Clamp values into [legend_min, legend_max] and scale them to [0, 1].

    A zero-width legend maps everything to 0.
    """
    values = np.asarray(values, dtype=float)
    span = legend_max - legend_min
    if span == 0:
        return np.zeros(len(values))
    clamped = np.clip(values, min(legend_min, legend_max), max(legend_min, legend_max))
    return np.clip((clamped - legend_min) / span, 0.0, 1.0)


def _line_feature(coords: Sequence[Sequence[float]], color: RGB, **properties) -> Dict:
    return {
        "type": "Feature",
        "geometry": {
            "type": "LineString",
            "coordinates": [[float(c[0]), float(c[1]), float(c[2])] for c in coords],
        },
        "properties": {"stroke": to_hex(color), "stroke_width": 5, **properties},
    }


def continuous_segments(coords: Sequence[Sequence[float]], normalized: Sequence[float],
                        scale: ColorScale) -> List[Dict]:
    """
    One colored edge per consecutive sample pair.

    Each edge takes the color of the average of its two normalized values.

    Args:
        coords: Sample coordinates (lon, lat, alt).
        normalized: Normalized values aligned with coords.
        scale: Color scale to sample.

    Returns:
        List of GeoJSON LineString features with a stroke color.
    """
    features = []
    count = min(len(coords), len(normalized))
    for i in range(count - 1):
        avg = (normalized[i] + normalized[i + 1]) / 2
        features.append(
            _line_feature([coords[i], coords[i + 1]], interpolate(scale, avg), start_index=i)
        )
    return features


def value_band(value: float, band_count: int) -> int:
    """Index of the equal-width band a normalized value falls into."""
    band_width = 1.0 / band_count
    return min(int(np.floor(value / band_width)), band_count - 1)


def stepped_segments(coords: Sequence[Sequence[float]], normalized: Sequence[float],
                     scale: ColorScale) -> List[Dict]:
    """
    One run per maximal contiguous sequence of samples in the same band.

    Normalized values are bucketed into len(scale) - 1 equal-width bands, and
    each run is colored with the stop color at its band index. A run is
    closed when the band changes or the series ends; consecutive runs share
    their boundary sample.

    Args:
        coords: Sample coordinates (lon, lat, alt).
        normalized: Normalized values aligned with coords.
        scale: Color scale to sample.

    Returns:
        List of GeoJSON LineString features with a stroke color.
    """
    if len(coords) < 2:
        return []

    band_count = max(len(scale) - 1, 1)
    if len(normalized) <= 1:
        return [_line_feature(coords, scale[0].color, start_index=0, band=0)]

    features = []
    count = min(len(coords), len(normalized))
    current = value_band(normalized[0], band_count)
    run_start = 0

    for i in range(1, count):
        band = value_band(normalized[i], band_count)
        if band != current or i == count - 1:
            if run_start < i:
                features.append(
                    _line_feature(
                        coords[run_start:i + 1],
                        scale[current].color,
                        start_index=run_start,
                        band=current,
                    )
                )
            current = band
            run_start = i

    return features


def colored_segments(coords: Sequence[Sequence[float]], values: Sequence[float],
                     legend_min: float, legend_max: float, scale: ColorScale,
                     continuous: bool = True) -> List[Dict]:
    """Normalize a metric series and build its colored segments."""
    if not len(coords) or not len(values):
        return []
    normalized = normalize_values(values, legend_min, legend_max)
    if continuous:
        return continuous_segments(coords, normalized, scale)
    return stepped_segments(coords, normalized, scale)


def solid_line(coords: Sequence[Sequence[float]], color: str) -> List[Dict]:
    """Single uncolored line for the whole track."""
    if len(coords) < 2:
        return []
    return [_line_feature(coords, parse_hex(color), start_index=0)]


# ============================================================================
# LEGEND
# ============================================================================

def legend_stops(scale: ColorScale, continuous: bool = True) -> List[Dict]:
    """
    Describe the legend bar from top (max) to bottom (min).

    Continuous legends list gradient stops with their offset from the top in
    percent; stepped legends list one band per stop pair.
    """
    if continuous:
        return [
            {"offset_pct": round((1 - stop.value) * 100, 3), "color": to_hex(stop.color)}
            for stop in reversed(scale.stops)
        ]

    band_count = max(len(scale) - 1, 1)
    height = 100 / band_count
    return [
        {"height_pct": round(height, 3), "color": to_hex(scale[len(scale) - 1 - i].color)}
        for i in range(band_count)
    ]


def legend_labels(legend_min: float, legend_max: float, mode: str,
                  speed_units: str = "mph", count: int = 7) -> List[Dict]:
    """Evenly spaced legend labels, from legend_max at the top to legend_min."""
    suffix = {
        "speed": f" {speed_units}",
        "acceleration": " m/s²",
        "timeDifference": "s",
        "lostTime": "s",
    }.get(mode)
    if suffix is None or count < 2:
        return []

    span = legend_max - legend_min
    labels = []
    for i in range(count):
        value = legend_max - (i / (count - 1)) * span
        labels.append({
            "position_pct": round(i / (count - 1) * 100, 3),
            "value": value,
            "text": f"{value:.1f}{suffix}",
        })
    return labels
