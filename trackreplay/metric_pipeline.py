"""
Metric Pipeline for Track Replay

This module computes the per-sample scalar series that are color-encoded on
each track. Intrinsic modes (speed, acceleration) read a track's own derived
arrays; comparative modes (time difference, lost time) match every synced
sample to its spatially nearest sample on a reference track and compare the
synced times.
"""

import logging
import numpy as np
from typing import Dict, List, NamedTuple, Optional, Sequence
from . import geo_math
from .color_scale import COLOR_SCALES, interpolate, normalize_values, to_hex
from .config import MetricMode, ReplaySettings
from .errors import InsufficientDataError, ReferenceResolutionError, StateError
from .references import ReferencePoint, resolve_reference
from .sync import most_samples_track
from .track import NOT_FOUND, Track

logger = logging.getLogger(__name__)


class MetricSeries(NamedTuple):
    track_index: int
    values: np.ndarray
    normalized: np.ndarray
    absolute_lost_time: Optional[np.ndarray] = None


class MetricResult(NamedTuple):
    mode: MetricMode
    reference_index: Optional[int]
    series: Dict[int, MetricSeries]


def choose_reference_track(tracks: Sequence[Track],
                           start_ref: Optional[ReferencePoint] = None) -> Optional[int]:
    """
    Pick the track comparative metrics are measured against.

    The start flag's track wins when it resolves; otherwise the visible track
    with the most samples.
    """
    if start_ref is not None:
        try:
            return resolve_reference(tracks, start_ref)[0]
        except ReferenceResolutionError:
            logger.debug("Start reference unresolved; using the longest track as reference")
    return most_samples_track(tracks)


def nearest_neighbor_time_deltas(track: Track, reference: Track) -> np.ndarray:
    """
    Signed time delta to the reference at the spatially nearest point.

    For every synced sample of the track, the reference's synced sample with
    the minimum flat-earth distance is found by full scan, and the delta
    track_time - reference_time is taken in seconds.

    Args:
        track: Track being compared (must be synced).
        reference: Reference track (must be synced).

    Returns:
        Array of signed deltas in seconds, aligned with track.synced_series.
    """
    if not track.synced_series or not reference.synced_series:
        raise StateError("Both tracks must be synchronized before comparing them")

    ref_coords = np.array([s.coord for s in reference.synced_series], dtype=float)
    ref_ns = np.array([s.time.value for s in reference.synced_series], dtype=np.int64)

    deltas = np.zeros(len(track.synced_series))
    for j, sample in enumerate(track.synced_series):
        closest = int(np.argmin(geo_math.distances_to(sample.coord, ref_coords)))
        deltas[j] = (sample.time.value - ref_ns[closest]) / 1e9
    return deltas


def lost_time_derivative(absolute_lost_time: Sequence[float]) -> np.ndarray:
    """Frame-to-frame change of a lost-time series, starting at 0."""
    series = np.asarray(absolute_lost_time, dtype=float)
    if not len(series):
        return np.zeros(0)
    return np.concatenate([[0.0], np.diff(series)])


def value_unit(mode: MetricMode, speed_units: str = "mph") -> str:
    return {
        MetricMode.SPEED: speed_units,
        MetricMode.ACCELERATION: "m/s²",
        MetricMode.TIME_DIFFERENCE: "s",
        MetricMode.LOST_TIME: "s",
    }.get(mode, "")


class MetricPipeline:
    """
    Computes and attaches metric series for the active mode.

    Args:
        settings: Shared ReplaySettings (mode, legend range, units).
    """

    def __init__(self, settings: ReplaySettings):
        self.settings = settings
        self.last_result: Optional[MetricResult] = None

    def _series(self, idx: int, values: np.ndarray,
                absolute_lost_time: Optional[np.ndarray] = None) -> MetricSeries:
        normalized = normalize_values(values, self.settings.legend_min, self.settings.legend_max)
        return MetricSeries(idx, values, normalized, absolute_lost_time)

    def compute(self, tracks: Sequence[Track], mode: Optional[MetricMode] = None,
                start_ref: Optional[ReferencePoint] = None) -> MetricResult:
        """
        Compute scalar series for every visible track.

        Results are also written to each track's metric_values (and
        absolute_lost_time in lost-time mode). The reference track of a
        comparative mode carries no values.

        Args:
            tracks: All loaded tracks.
            mode: Metric mode; defaults to the settings' mode.
            start_ref: Start reference, used to choose the comparison track.

        Returns:
            MetricResult with one MetricSeries per colored track.

        Raises:
            InsufficientDataError: Comparative mode with fewer than two
                visible synchronized tracks.
            StateError: Comparative mode before the reference is synchronized.
        """
        mode = MetricMode.parse(mode if mode is not None else self.settings.metric_mode)

        for track in tracks:
            track.metric_mode = mode.value
            track.metric_values = None
            track.absolute_lost_time = None

        if mode == MetricMode.NONE:
            result = MetricResult(mode, None, {})
        elif mode in (MetricMode.SPEED, MetricMode.ACCELERATION):
            result = self._compute_intrinsic(tracks, mode)
        else:
            result = self._compute_comparative(tracks, mode, start_ref)

        for idx, series in result.series.items():
            tracks[idx].metric_values = series.values
            tracks[idx].absolute_lost_time = series.absolute_lost_time

        self.last_result = result
        return result

    def _compute_intrinsic(self, tracks: Sequence[Track], mode: MetricMode) -> MetricResult:
        series = {}
        for idx, track in enumerate(tracks):
            if not track.visible:
                continue
            if mode == MetricMode.SPEED:
                values = track.speed_in_units(self.settings.speed_units)
            else:
                values = np.asarray(track.acceleration, dtype=float)
            series[idx] = self._series(idx, values)
        return MetricResult(mode, None, series)

    def _compute_comparative(self, tracks: Sequence[Track], mode: MetricMode,
                             start_ref: Optional[ReferencePoint]) -> MetricResult:
        visible = [idx for idx, track in enumerate(tracks) if track.visible]
        if len(visible) < 2:
            raise InsufficientDataError("Comparing tracks needs at least two visible tracks")

        ref_idx = choose_reference_track(tracks, start_ref)
        if ref_idx is None:
            raise InsufficientDataError("No reference track available")
        reference = tracks[ref_idx]
        if not reference.synced_series:
            raise StateError(f"Reference track '{reference.name}' is not synchronized")

        series = {}
        for idx in visible:
            track = tracks[idx]
            if idx == ref_idx or not track.synced_series:
                continue
            deltas = nearest_neighbor_time_deltas(track, reference)
            if mode == MetricMode.TIME_DIFFERENCE:
                series[idx] = self._series(idx, np.abs(deltas))
            else:
                series[idx] = self._series(idx, lost_time_derivative(deltas), deltas)

        if not series:
            raise InsufficientDataError("No synchronized track to compare against the reference")

        logger.info("Computed %s against reference track %d for %d track(s)",
                    mode.value, ref_idx, len(series))
        return MetricResult(mode, ref_idx, series)

    def probe(self, tracks: Sequence[Track], coord: Sequence[float]) -> List[Dict]:
        """
        Tooltip values for every visible track near a coordinate.

        Each track reports the metric at its sample closest to the
        coordinate, along with the color that value is drawn in. In lost-time
        mode the absolute (non-derivative) lost time is reported as well.

        Args:
            tracks: All loaded tracks.
            coord: Coordinate (lon, lat, alt) under the pointer.

        Returns:
            List of dicts with trackIndex, name, sampleIndex, value, unit,
            color (and absoluteLostTime in lost-time mode).
        """
        mode = self.settings.metric_mode
        result = self.last_result
        reference_index = result.reference_index if result is not None else None
        scale = COLOR_SCALES.get(mode.value)
        entries = []

        for idx, track in enumerate(tracks):
            if not track.visible:
                continue
            sample_index = track.find_closest_sample(coord)
            if sample_index == NOT_FOUND:
                continue

            value = None
            absolute = None
            if mode == MetricMode.SPEED:
                value = float(track.speed_in_units(self.settings.speed_units)[sample_index])
            elif mode == MetricMode.ACCELERATION:
                value = float(track.acceleration[sample_index])
            elif mode.comparative:
                if idx == reference_index:
                    value = 0.0
                    absolute = 0.0 if mode == MetricMode.LOST_TIME else None
                elif track.metric_values is not None and sample_index < len(track.metric_values):
                    value = float(track.metric_values[sample_index])
                    if track.absolute_lost_time is not None:
                        absolute = float(track.absolute_lost_time[sample_index])

            if value is None or scale is None:
                color = track.color
            else:
                normalized = normalize_values(
                    [value], self.settings.legend_min, self.settings.legend_max
                )[0]
                color = to_hex(interpolate(scale, normalized))

            entry = {
                "trackIndex": idx,
                "name": track.name or f"Track {idx + 1}",
                "sampleIndex": sample_index,
                "value": value,
                "unit": value_unit(mode, self.settings.speed_units),
                "color": color,
            }
            if mode == MetricMode.LOST_TIME:
                entry["absoluteLostTime"] = absolute
            entries.append(entry)

        return entries
