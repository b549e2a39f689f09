"""
Utility Functions for Track Replay

This module provides helper functions for value conversion, rounding, and
timestamp handling used throughout the replay pipeline.
"""

import numpy as np
import pandas as pd
from typing import Optional


def safe_float(value) -> float:
    """
    Safely convert a value to float, returning NaN on failure.

    Args:
        value: Value to convert (string, number, etc.).

    Returns:
        Float value, or np.nan if conversion fails.
    """
    try:
        return float(value)
    except (TypeError, ValueError):
        return np.nan


def round_float(value, digits: int = 3) -> Optional[float]:
    """
    Round a float value, handling None, NaN, and Inf.

    Args:
        value: Value to round.
        digits: Number of decimal places. Default 3.

    Returns:
        Rounded float, or None if value is None, NaN, or Inf.
    """
    if value is None:
        return None
    value = float(value)
    if np.isnan(value) or np.isinf(value):
        return None
    return round(value, digits)


def to_timestamp(value) -> Optional[pd.Timestamp]:
    """
    Convert a value to a UTC pandas Timestamp.

    Numbers are read as Unix milliseconds, matching how recorded fixes store
    their time. Naive datetimes are assumed to be UTC.

    Args:
        value: ISO string, datetime, Timestamp, or Unix milliseconds.

    Returns:
        UTC Timestamp, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    try:
        if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
            if np.isnan(value):
                return None
            ts = pd.to_datetime(value, unit="ms", utc=True)
        else:
            ts = pd.to_datetime(value, utc=True)
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is pd.NaT or pd.isna(ts):
        return None
    return ts


def format_time(ts: Optional[pd.Timestamp]) -> str:
    """Format a timestamp as HH:MM:SS for timeline labels."""
    if ts is None:
        return "--:--:--"
    return ts.strftime("%H:%M:%S")
