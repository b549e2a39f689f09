"""
Track Replay Module

This module loads recorded trajectories, synchronizes them onto a shared
clock, computes comparison metrics and drives playback.

This file serves as a compatibility layer that imports and re-exports the
public functions and classes from the modular structure, so callers can use
a single import.
"""

# Import constants
from .constants import (
    FINISH_PROXIMITY_M,
    FLAG_SNAP_RADIUS_M,
    MIN_WINDOW_DURATION,
    TRACK_PALETTE,
)

# Import errors
from .errors import (
    ReplayError,
    ParseError,
    ReferenceResolutionError,
    InsufficientDataError,
    StateError,
)

# Import utility functions
from .utils import (
    safe_float,
    round_float,
    to_timestamp,
    format_time,
)

# Import geometry functions
from .geo_math import (
    flat_distance_m,
    distances_to,
    cumulative_distances_m,
)

# Import track model and ingestion
from .track import Track, Sample, SyncedSample
from .ingest import (
    samples_from_frame,
    samples_from_records,
    build_track,
)

# Import color functions
from .color_scale import (
    ColorScale,
    COLOR_SCALES,
    interpolate,
    normalize_values,
    colored_segments,
    legend_stops,
    legend_labels,
)

# Import configuration
from .config import MetricMode, ReplaySettings, load_settings

# Import reference point handling
from .references import (
    FlagKind,
    ReferencePoint,
    FlagState,
    FlagPlacement,
    resolve_reference,
)

# Import synchronization
from .sync import Synchronizer, SyncResult, GlobalWindow

# Import metric pipeline
from .metric_pipeline import MetricPipeline, nearest_neighbor_time_deltas

# Import playback
from .playback import AnimationClock, PlaybackScheduler, PlaybackStatus

# Import session
from .session import ReplaySession, StatusCode, OperationResult

# Import export functions
from .export import export_track_csv

# Re-export everything for a single import point
__all__ = [
    # Constants
    "FINISH_PROXIMITY_M",
    "FLAG_SNAP_RADIUS_M",
    "MIN_WINDOW_DURATION",
    "TRACK_PALETTE",
    # Errors
    "ReplayError",
    "ParseError",
    "ReferenceResolutionError",
    "InsufficientDataError",
    "StateError",
    # Utilities
    "safe_float",
    "round_float",
    "to_timestamp",
    "format_time",
    # Geometry
    "flat_distance_m",
    "distances_to",
    "cumulative_distances_m",
    # Tracks
    "Track",
    "Sample",
    "SyncedSample",
    "samples_from_frame",
    "samples_from_records",
    "build_track",
    # Colors
    "ColorScale",
    "COLOR_SCALES",
    "interpolate",
    "normalize_values",
    "colored_segments",
    "legend_stops",
    "legend_labels",
    # Configuration
    "MetricMode",
    "ReplaySettings",
    "load_settings",
    # References
    "FlagKind",
    "ReferencePoint",
    "FlagState",
    "FlagPlacement",
    "resolve_reference",
    # Synchronization
    "Synchronizer",
    "SyncResult",
    "GlobalWindow",
    # Metrics
    "MetricPipeline",
    "nearest_neighbor_time_deltas",
    # Playback
    "AnimationClock",
    "PlaybackScheduler",
    "PlaybackStatus",
    # Session
    "ReplaySession",
    "StatusCode",
    "OperationResult",
    # Export
    "export_track_csv",
]
