"""
Constants for Track Replay

This module defines the physical and algorithmic constants shared by the
replay core: flat-earth scale factors, synchronization windows, playback
limits, and unit conversions.
"""

import pandas as pd

# Flat-earth scale factors (meters per degree)
METERS_PER_DEG_LON = 111320.0  # scaled by cos(latitude)
METERS_PER_DEG_LAT = 110540.0

# Synchronization window
MIN_WINDOW_DURATION = pd.Timedelta(seconds=5)
FALLBACK_WINDOW_DURATION = pd.Timedelta(minutes=10)

# Densification: points inserted between each consecutive sample pair
DENSIFY_POINTS = 5

# Flag placement
OPTIMAL_POINT_MAX_RADIUS = 20
FLAG_SNAP_RADIUS_M = 50.0

# Playback
MAX_FRAME_ELAPSED_MS = 100.0
FINISH_PROXIMITY_M = 10.0
DEFAULT_FRAME_INTERVAL_S = 1.0 / 60.0

# Unit conversions from m/s
MPS_TO_MPH = 2.23694
MPS_TO_KPH = 3.6

# Display palette for tracks, cycled by index
TRACK_PALETTE = ["#ff2d55", "#00ffa3", "#ffd60a", "#28a2ff", "#b28dff", "#ff8a5b"]
REFERENCE_TRACK_COLOR = "#ffffff"
