"""
Flat-Earth Geometry for Track Replay

This module provides the distance and displacement primitives shared by the
replay core. Coordinates are (lon, lat, alt) triples in degrees and meters.

Uses a local equirectangular approximation: longitude is scaled by the cosine
of the mean latitude of the two points. Suitable for course-scale distances
(kilometers), not for continental ones.
"""

import numpy as np
from typing import Sequence, Tuple
from .constants import METERS_PER_DEG_LAT, METERS_PER_DEG_LON

Coord = Tuple[float, float, float]


def flat_displacement_m(a: Sequence[float], b: Sequence[float]) -> Tuple[float, float, float]:
    """
    Compute the east/north/up displacement from a to b.

    Args:
        a: Origin coordinate (lon, lat, alt).
        b: Target coordinate (lon, lat, alt).

    Returns:
        Tuple of (dx, dy, dz) in meters, where x is east and y is north.
    """
    lat_rad = np.deg2rad((a[1] + b[1]) / 2)
    dx = (b[0] - a[0]) * METERS_PER_DEG_LON * np.cos(lat_rad)
    dy = (b[1] - a[1]) * METERS_PER_DEG_LAT
    dz = b[2] - a[2]
    return float(dx), float(dy), float(dz)


def flat_distance_m(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Calculate the flat-earth 3D distance between two coordinates.

    Args:
        a, b: Coordinates (lon, lat, alt) in degrees and meters.

    Returns:
        Distance in meters.
    """
    dx, dy, dz = flat_displacement_m(a, b)
    return float(np.sqrt(dx * dx + dy * dy + dz * dz))


def distances_to(point: Sequence[float], coords: np.ndarray) -> np.ndarray:
    """
    Vectorized flat-earth distance from one point to many coordinates.

    Each pair uses its own mean latitude, so the result matches
    flat_distance_m element by element.

    Args:
        point: Coordinate (lon, lat, alt).
        coords: Array of shape (N, 3).

    Returns:
        Array of N distances in meters.
    """
    coords = np.asarray(coords, dtype=float).reshape(-1, 3)
    lat_rad = np.deg2rad((coords[:, 1] + point[1]) / 2)
    dx = (coords[:, 0] - point[0]) * METERS_PER_DEG_LON * np.cos(lat_rad)
    dy = (coords[:, 1] - point[1]) * METERS_PER_DEG_LAT
    dz = coords[:, 2] - point[2]
    return np.sqrt(dx**2 + dy**2 + dz**2)


def segment_distances_m(coords: np.ndarray) -> np.ndarray:
    """
    Distances between consecutive coordinates.

    Args:
        coords: Array of shape (N, 3).

    Returns:
        Array of N-1 edge lengths in meters (empty for fewer than 2 points).
    """
    coords = np.asarray(coords, dtype=float).reshape(-1, 3)
    if len(coords) < 2:
        return np.zeros(0)
    prev, cur = coords[:-1], coords[1:]
    lat_rad = np.deg2rad((prev[:, 1] + cur[:, 1]) / 2)
    dx = (cur[:, 0] - prev[:, 0]) * METERS_PER_DEG_LON * np.cos(lat_rad)
    dy = (cur[:, 1] - prev[:, 1]) * METERS_PER_DEG_LAT
    dz = cur[:, 2] - prev[:, 2]
    return np.sqrt(dx**2 + dy**2 + dz**2)


def cumulative_distances_m(coords: np.ndarray) -> np.ndarray:
    """Running distance along a series, starting at 0 for the first point."""
    coords = np.asarray(coords, dtype=float).reshape(-1, 3)
    if len(coords) == 0:
        return np.zeros(0)
    return np.concatenate([[0.0], np.cumsum(segment_distances_m(coords))])
