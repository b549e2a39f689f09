"""
Track Model for Track Replay

This module holds one recorded trajectory: its time-ordered samples, the
derived per-sample speed and acceleration, and the synced series produced by
synchronization. It also implements the per-track queries used when placing
reference flags (closest sample, best animation point).
"""

import logging
import numpy as np
import pandas as pd
from typing import Iterable, List, NamedTuple, Optional, Tuple
from . import constants
from . import geo_math
from .errors import ParseError

logger = logging.getLogger(__name__)

NOT_FOUND = -1


class Sample(NamedTuple):
    time: pd.Timestamp
    coord: Tuple[float, float, float]


class SyncedSample(NamedTuple):
    time: pd.Timestamp
    coord: Tuple[float, float, float]


def _usable(sample) -> bool:
    if sample is None or len(sample) != 2:
        return False
    time, coord = sample
    if time is None or pd.isna(time):
        return False
    if coord is None or len(coord) != 3:
        return False
    return bool(np.all(np.isfinite(np.asarray(coord, dtype=float))))


def _forward_filled_rate(numerator: np.ndarray, dt: np.ndarray) -> np.ndarray:
    """
    Divide by dt, repeating the previous rate wherever dt <= 0.

    Leading gaps with no previous rate become 0.
    """
    rate = np.full(len(numerator), np.nan)
    np.divide(numerator, dt, out=rate, where=dt > 0)
    return pd.Series(rate).ffill().fillna(0.0).to_numpy()


class Track:
    """
    One trajectory's samples plus derived metrics.

    Attributes:
        name: Display name.
        color: Display color (hex string).
        samples: Current samples (possibly densified, elevation adjusted).
        original_samples: Samples exactly as ingested.
        speed: Per-sample speed in m/s, aligned with samples.
        acceleration: Per-sample acceleration in m/s², aligned with samples.
        synced_series: Samples re-expressed on the global clock; empty until
            the track is synchronized, cleared whenever samples change.
        metric_values: Scalar series for the active metric mode, or None.
        absolute_lost_time: Signed nearest-neighbor time delta series kept
            for inspection in lost-time mode, or None.
    """

    def __init__(self, samples: Optional[Iterable] = None, name: str = "Track",
                 color: str = constants.TRACK_PALETTE[0]):
        self.name = name
        self.color = color
        self.samples: List[Sample] = []
        self.original_samples: List[Sample] = []
        self._base_samples: List[Sample] = []
        self.speed = np.zeros(0)
        self.acceleration = np.zeros(0)
        self.visible = True
        self.is_interpolated = False
        self.elevation_offset = 0.0
        self.original_sample_count = 0
        self.synced_series: List[SyncedSample] = []
        self.metric_mode: Optional[str] = None
        self.metric_values: Optional[np.ndarray] = None
        self.absolute_lost_time: Optional[np.ndarray] = None

        if samples is not None:
            self.ingest(samples)

    def __len__(self) -> int:
        return len(self.samples)

    def __repr__(self) -> str:
        return f"Track(name={self.name!r}, samples={len(self.samples)}, visible={self.visible})"

    # ------------------------------------------------------------------
    # Ingestion and derived metrics
    # ------------------------------------------------------------------

    def ingest(self, samples: Iterable) -> None:
        """
        Store time-sorted samples and derive speed/acceleration.

        Args:
            samples: Iterable of Sample or (time, (lon, lat, alt)) pairs.

        Raises:
            ParseError: If no usable sample remains.
        """
        cleaned = [
            Sample(pd.Timestamp(time), tuple(float(c) for c in coord))
            for time, coord in (s for s in samples if _usable(s))
        ]
        if not cleaned:
            raise ParseError(f"Track '{self.name}' has no usable samples")

        cleaned.sort(key=lambda s: s.time)
        self.original_samples = list(cleaned)
        self._base_samples = list(cleaned)
        self.samples = list(cleaned)
        self.original_sample_count = len(cleaned)
        self.is_interpolated = False
        self.elevation_offset = 0.0
        self.derive_metrics()
        self.invalidate_synced()
        logger.info("Ingested track '%s' with %d samples", self.name, len(cleaned))

    def derive_metrics(self) -> None:
        """
        Compute per-sample speed and acceleration from the samples.

        speed[i] is the 3D flat-earth distance from sample i-1 over the elapsed
        seconds; non-positive intervals repeat the previous value. speed[0]
        copies speed[1]. Acceleration follows the same rules on speed.
        """
        n = len(self.samples)
        if n < 2:
            self.speed = np.zeros(n)
            self.acceleration = np.zeros(n)
            return

        times = pd.Series([s.time for s in self.samples])
        dt = times.diff().dt.total_seconds().to_numpy()[1:]
        dist = geo_math.segment_distances_m(self.coords)

        tail_speed = _forward_filled_rate(dist, dt)
        speed = np.concatenate([[tail_speed[0]], tail_speed])

        tail_accel = _forward_filled_rate(np.diff(speed), dt)
        acceleration = np.concatenate([[tail_accel[0]], tail_accel])

        self.speed = speed
        self.acceleration = acceleration

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def coords(self) -> np.ndarray:
        """Sample coordinates as an (N, 3) array."""
        return np.array([s.coord for s in self.samples], dtype=float).reshape(-1, 3)

    @property
    def start_time(self) -> Optional[pd.Timestamp]:
        return self.samples[0].time if self.samples else None

    @property
    def end_time(self) -> Optional[pd.Timestamp]:
        return self.samples[-1].time if self.samples else None

    @property
    def duration(self) -> Optional[pd.Timedelta]:
        if not self.samples:
            return None
        return self.end_time - self.start_time

    def has_synced_series(self) -> bool:
        return bool(self.synced_series)

    def speed_in_units(self, units: str = "mph") -> np.ndarray:
        """Speed converted from m/s to mph or kph."""
        factor = constants.MPS_TO_MPH if units == "mph" else constants.MPS_TO_KPH
        return self.speed * factor

    def speed_range(self, units: str = "mph") -> Tuple[float, float]:
        if not len(self.speed):
            return 0.0, 30.0
        converted = self.speed_in_units(units)
        return float(converted.min()), float(converted.max())

    def acceleration_range(self) -> Tuple[float, float]:
        if not len(self.acceleration):
            return -5.0, 5.0
        return float(self.acceleration.min()), float(self.acceleration.max())

    def toggle_visibility(self) -> bool:
        self.visible = not self.visible
        return self.visible

    # ------------------------------------------------------------------
    # Mutations that invalidate the synced series
    # ------------------------------------------------------------------

    def invalidate_synced(self) -> None:
        """Drop the synced series and everything computed from it."""
        self.synced_series = []
        self.metric_mode = None
        self.metric_values = None
        self.absolute_lost_time = None

    def densify(self) -> bool:
        """
        Insert evenly time-spaced interpolated samples between every pair.

        Time, longitude, latitude, altitude, speed and acceleration are all
        interpolated linearly at fractions 1/6 .. 5/6. Allowed once per track.

        Returns:
            True if the track was densified, False if it was already
            densified or has fewer than 2 samples.
        """
        if self.is_interpolated:
            logger.warning("Track '%s' is already interpolated", self.name)
            return False
        if len(self.samples) < 2:
            logger.warning("Track '%s' has too few samples to interpolate", self.name)
            return False

        steps = constants.DENSIFY_POINTS + 1
        base = self._base_samples
        new_base = [base[0]]
        new_speed = [self.speed[0]]
        new_accel = [self.acceleration[0]]

        for i in range(len(base) - 1):
            start, end = base[i], base[i + 1]
            span = end.time - start.time
            start_coord = np.asarray(start.coord)
            end_coord = np.asarray(end.coord)

            for j in range(1, steps):
                fraction = j / steps
                coord = start_coord + (end_coord - start_coord) * fraction
                new_base.append(Sample(start.time + span * fraction, tuple(float(c) for c in coord)))
                new_speed.append(self.speed[i] + (self.speed[i + 1] - self.speed[i]) * fraction)
                new_accel.append(
                    self.acceleration[i] + (self.acceleration[i + 1] - self.acceleration[i]) * fraction
                )

            new_base.append(end)
            new_speed.append(self.speed[i + 1])
            new_accel.append(self.acceleration[i + 1])

        self._base_samples = new_base
        self.samples = self._with_offset(new_base, self.elevation_offset)
        self.speed = np.asarray(new_speed, dtype=float)
        self.acceleration = np.asarray(new_accel, dtype=float)
        self.is_interpolated = True
        self.invalidate_synced()
        logger.info("Interpolated track '%s' to %d samples", self.name, len(self.samples))
        return True

    def set_elevation_offset(self, meters: float) -> None:
        """
        Shift every sample's altitude by a fixed amount.

        The offset is applied to the unadjusted altitudes, so repeated calls
        do not accumulate.
        """
        self.elevation_offset = float(meters)
        self.samples = self._with_offset(self._base_samples, self.elevation_offset)
        self.invalidate_synced()

    @staticmethod
    def _with_offset(samples: List[Sample], offset: float) -> List[Sample]:
        if not offset:
            return list(samples)
        return [Sample(s.time, (s.coord[0], s.coord[1], s.coord[2] + offset)) for s in samples]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_closest_sample(self, point) -> int:
        """
        Index of the sample nearest to a coordinate.

        Args:
            point: Coordinate (lon, lat, alt).

        Returns:
            Sample index, or NOT_FOUND (-1) if the track is empty.
        """
        if not self.samples:
            return NOT_FOUND
        return int(np.argmin(geo_math.distances_to(point, self.coords)))

    def find_optimal_animation_point(self, initial_index: int) -> int:
        """
        Find a better flag position near a clicked sample.

        Scores each sample within min(20, len/4) of the initial index and
        returns the best one. Samples with a timestamp, with positive speed,
        near the first tenth of the track and close to the initial index
        score higher. Ties keep the first candidate found.

        Args:
            initial_index: Index of the sample closest to the click.

        Returns:
            Index of the best-scoring sample.
        """
        n = len(self.samples)
        if n < 2:
            return initial_index

        radius = min(constants.OPTIMAL_POINT_MAX_RADIUS, n // 4)
        if radius == 0:
            return initial_index

        best_index = initial_index
        best_score = -np.inf
        for i in range(max(0, initial_index - radius), min(n - 1, initial_index + radius) + 1):
            score = 0.0
            if self.samples[i].time is not None and not pd.isna(self.samples[i].time):
                score += 100
            if self.speed[i] > 0:
                score += 50
            score += 30 * (1 - abs(i / (n - 1) - 0.1))
            score += 20 * (1 - abs(i - initial_index) / radius)

            if score > best_score:
                best_score = score
                best_index = i

        return best_index

    def set_synced_series(self, series: List[SyncedSample]) -> None:
        if len(series) != len(self.samples):
            raise ValueError(
                f"Synced series length {len(series)} does not match {len(self.samples)} samples"
            )
        self.synced_series = list(series)

    def nearest_synced_index(self, time: pd.Timestamp) -> int:
        """
        Index of the synced sample nearest in time.

        Returns:
            Index into synced_series, or NOT_FOUND if the track is not synced.
        """
        if not self.synced_series:
            return NOT_FOUND
        synced_ns = np.array([s.time.value for s in self.synced_series], dtype=np.int64)
        return int(np.argmin(np.abs(synced_ns - pd.Timestamp(time).value)))

    def position_at(self, time: pd.Timestamp) -> Optional[Tuple[float, float, float]]:
        """Synced coordinate nearest in time, or None if not synced."""
        idx = self.nearest_synced_index(time)
        if idx == NOT_FOUND:
            return None
        return self.synced_series[idx].coord

    @property
    def cumulative_distances(self) -> np.ndarray:
        """Running distance along the synced series in meters."""
        if not self.synced_series:
            return np.zeros(0)
        coords = np.array([s.coord for s in self.synced_series], dtype=float)
        return geo_math.cumulative_distances_m(coords)

    @property
    def total_distance_m(self) -> float:
        if len(self.samples) < 2:
            return 0.0
        return float(geo_math.segment_distances_m(self.coords).sum())
