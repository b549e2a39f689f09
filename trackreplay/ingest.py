"""
Sample Ingestion for Track Replay

This module turns decoded sample records (from whatever loader parsed the
source file) into Track samples. Parsing of the source markup itself happens
outside the replay core.
"""

import logging
import numpy as np
import pandas as pd
from typing import Dict, Iterable, List, Optional
from . import constants
from . import utils
from .errors import ParseError
from .track import Sample, Track

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("time", "lon", "lat")


def samples_from_frame(df: pd.DataFrame) -> List[Sample]:
    """
    Convert a DataFrame of decoded fixes into time-sorted samples.

    Rows with an unparseable time or a missing coordinate are dropped. A
    missing altitude column (or value) is treated as 0.

    Args:
        df: DataFrame with columns time, lon, lat and optionally alt.

    Returns:
        List of Sample sorted by time.

    Raises:
        ParseError: If required columns are missing or no usable row remains.
    """
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ParseError(f"Missing required columns: {missing}")

    df = df.copy()
    if "alt" not in df.columns:
        df["alt"] = 0.0

    df["timestamp"] = [utils.to_timestamp(value) for value in df["time"]]
    for col in ("lon", "lat", "alt"):
        df[col] = [utils.safe_float(value) for value in df[col]]
    df["alt"] = df["alt"].fillna(0.0)

    before = len(df)
    df = df[df["timestamp"].notna()]
    df = df.dropna(subset=["lon", "lat"])
    df = df[np.isfinite(df["lon"]) & np.isfinite(df["lat"]) & np.isfinite(df["alt"])]
    dropped = before - len(df)
    if dropped:
        logger.debug("Dropped %d unusable rows", dropped)

    if df.empty:
        raise ParseError("No usable samples in input")

    df = df.sort_values("timestamp", kind="stable")
    return [
        Sample(row.timestamp, (float(row.lon), float(row.lat), float(row.alt)))
        for row in df.itertuples()
    ]


def samples_from_records(records: Iterable[Dict]) -> List[Sample]:
    """
    Convert decoded sample dictionaries into time-sorted samples.

    Args:
        records: Iterable of dicts with keys time, lon, lat and optional alt.

    Returns:
        List of Sample sorted by time.

    Raises:
        ParseError: If no usable record remains.
    """
    records = list(records)
    if not records:
        raise ParseError("No samples supplied")
    return samples_from_frame(pd.DataFrame.from_records(records))


def build_track(records: Iterable[Dict], name: str, index: int = 0,
                color: Optional[str] = None) -> Track:
    """
    Build a Track from decoded records.

    Args:
        records: Decoded sample dicts.
        name: Track display name.
        index: Position in the session, used to pick a palette color.
        color: Explicit display color; overrides the palette.

    Returns:
        Track with derived metrics.

    Raises:
        ParseError: If the records contain no usable sample.
    """
    palette = constants.TRACK_PALETTE
    color = color or palette[index % len(palette)]
    return Track(samples_from_records(records), name=name, color=color)
