"""
Export Functions for Track Replay

This module provides functions to export track data to CSV for external
analysis or backup.
"""

import csv
import io
from typing import Optional
from . import utils
from .track import Track


def export_track_csv(track: Track, speed_units: str = "mph") -> str:
    """
    Export a track's samples, derived metrics and synced times to CSV format.

    Synced time and metric columns are left empty when the track has not been
    synchronized or has no active metric.

    Args:
        track: Track to export.
        speed_units: Units for the speed column ("mph" or "kph").

    Returns:
        CSV string with one row per sample.

    Raises:
        ValueError: If the track has no samples.
    """
    if not track.samples:
        raise ValueError(f"Track '{track.name}' has no samples to export")

    synced = track.synced_series if track.has_synced_series() else None
    metric = track.metric_values
    lost_time = track.absolute_lost_time
    speed = track.speed_in_units(speed_units)

    buffer = io.StringIO()
    writer = csv.writer(buffer)

    # Write header
    writer.writerow([
        "sample_index",
        "timestamp",
        "synced_timestamp",
        "lon",
        "lat",
        "alt",
        f"speed_{speed_units}",
        "acceleration_mps2",
        "metric_mode",
        "metric_value",
        "absolute_lost_time_s",
    ])

    # Write data rows
    for idx, sample in enumerate(track.samples):
        writer.writerow([
            idx,
            sample.time.isoformat(),
            synced[idx].time.isoformat() if synced else None,
            sample.coord[0],
            sample.coord[1],
            utils.round_float(sample.coord[2]),
            utils.round_float(speed[idx]),
            utils.round_float(track.acceleration[idx]),
            track.metric_mode,
            _value_at(metric, idx),
            _value_at(lost_time, idx),
        ])

    return buffer.getvalue()


def _value_at(values, idx: int) -> Optional[float]:
    if values is None or idx >= len(values):
        return None
    return utils.round_float(values[idx])
