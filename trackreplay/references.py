"""
Reference Points for Track Replay

This module resolves the start and finish reference points used by
synchronization and playback, and implements flag placement driven by
explicit pointer events. Hit-testing and screen projection happen outside the
core: events carry geographic coordinates.
"""

import logging
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple
from . import constants
from . import geo_math
from .errors import ReferenceResolutionError
from .track import NOT_FOUND, Track

logger = logging.getLogger(__name__)


class FlagKind(str, Enum):
    START = "start"
    FINISH = "finish"


class ReferencePoint:
    """
    A start or finish reference: a track sample or a free coordinate.

    Use ReferencePoint.at_sample() or ReferencePoint.at_coord() to build one.
    """

    def __init__(self, track_index: Optional[int] = None, sample_index: Optional[int] = None,
                 coord: Optional[Sequence[float]] = None):
        if coord is None and (track_index is None or sample_index is None):
            raise ValueError("Reference point needs a (track, sample) pair or a coordinate")
        self.track_index = track_index
        self.sample_index = sample_index
        self.coord = tuple(float(c) for c in coord) if coord is not None else None

    @classmethod
    def at_sample(cls, track_index: int, sample_index: int) -> "ReferencePoint":
        return cls(track_index=int(track_index), sample_index=int(sample_index))

    @classmethod
    def at_coord(cls, coord: Sequence[float]) -> "ReferencePoint":
        if len(coord) == 2:
            coord = (coord[0], coord[1], 0.0)
        return cls(coord=coord)

    @property
    def is_indexed(self) -> bool:
        return self.track_index is not None and self.sample_index is not None

    def __repr__(self) -> str:
        if self.is_indexed:
            return f"ReferencePoint(track={self.track_index}, sample={self.sample_index})"
        return f"ReferencePoint(coord={self.coord})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, ReferencePoint):
            return NotImplemented
        return (self.track_index, self.sample_index, self.coord) == (
            other.track_index, other.sample_index, other.coord
        )

    def position(self, tracks: Sequence[Track]) -> Tuple[float, float, float]:
        """
        Geographic position of the reference.

        Raises:
            ReferenceResolutionError: If an indexed reference points outside
                the tracks or their samples.
        """
        if not self.is_indexed:
            return self.coord
        track_index, sample_index = resolve_reference(tracks, self)
        return tracks[track_index].samples[sample_index].coord

    def to_dict(self, tracks: Optional[Sequence[Track]] = None) -> Dict:
        data = {
            "trackIndex": self.track_index,
            "sampleIndex": self.sample_index,
            "coord": list(self.coord) if self.coord else None,
        }
        if tracks is not None and self.is_indexed:
            try:
                data["coord"] = list(self.position(tracks))
            except ReferenceResolutionError:
                data["coord"] = None
        return data


def closest_sample_across(tracks: Sequence[Track], coord: Sequence[float],
                          max_distance_m: Optional[float] = None) -> Optional[Tuple[int, int, float]]:
    """
    Find the sample nearest to a coordinate over all visible tracks.

    Args:
        tracks: Tracks to search.
        coord: Coordinate (lon, lat, alt).
        max_distance_m: Ignore matches farther than this. None means no limit.

    Returns:
        Tuple of (track_index, sample_index, distance_m), or None if no
        visible track has a sample (within the limit).
    """
    best = None
    for track_index, track in enumerate(tracks):
        if not track.visible or not track.samples:
            continue
        sample_index = track.find_closest_sample(coord)
        if sample_index == NOT_FOUND:
            continue
        distance = geo_math.flat_distance_m(coord, track.samples[sample_index].coord)
        if max_distance_m is not None and distance > max_distance_m:
            continue
        if best is None or distance < best[2]:
            best = (track_index, sample_index, distance)
    return best


def resolve_reference(tracks: Sequence[Track], ref: ReferencePoint) -> Tuple[int, int]:
    """
    Resolve a reference point to a (track_index, sample_index) pair.

    Indexed references are validated as-is. Free coordinates resolve to the
    globally closest sample across visible tracks.

    Raises:
        ReferenceResolutionError: If the reference cannot be resolved.
    """
    if ref.is_indexed:
        if not 0 <= ref.track_index < len(tracks):
            raise ReferenceResolutionError(f"No track at index {ref.track_index}")
        track = tracks[ref.track_index]
        if not 0 <= ref.sample_index < len(track.samples):
            raise ReferenceResolutionError(
                f"Track '{track.name}' has no sample at index {ref.sample_index}"
            )
        return ref.track_index, ref.sample_index

    match = closest_sample_across(tracks, ref.coord)
    if match is None:
        raise ReferenceResolutionError("No visible track to resolve reference point against")
    return match[0], match[1]


class FlagState:
    """The placed start and finish reference points."""

    def __init__(self):
        self.start: Optional[ReferencePoint] = None
        self.finish: Optional[ReferencePoint] = None

    def get(self, kind: FlagKind) -> Optional[ReferencePoint]:
        return self.start if FlagKind(kind) == FlagKind.START else self.finish

    def set(self, kind: FlagKind, ref: Optional[ReferencePoint]) -> None:
        if FlagKind(kind) == FlagKind.START:
            self.start = ref
        else:
            self.finish = ref

    def reset(self) -> None:
        self.start = None
        self.finish = None

    def forget_track(self, track_index: int) -> None:
        """Drop flags placed on a removed track and shift later indices down."""
        for kind in FlagKind:
            ref = self.get(kind)
            if ref is None or not ref.is_indexed:
                continue
            if ref.track_index == track_index:
                self.set(kind, None)
            elif ref.track_index > track_index:
                self.set(kind, ReferencePoint.at_sample(ref.track_index - 1, ref.sample_index))

    def to_dict(self, tracks: Optional[Sequence[Track]] = None) -> Dict:
        return {
            kind.value: (ref.to_dict(tracks) if ref is not None else None)
            for kind, ref in ((FlagKind.START, self.start), (FlagKind.FINISH, self.finish))
        }


class PlacementResult(NamedTuple):
    kind: FlagKind
    reference: ReferencePoint
    initial_index: int


class FlagPlacement:
    """
    Pointer-driven flag placement.

    A placement is armed for one flag kind, follows pointer moves with a
    snapped preview, and places the flag when the pointer is released. A drop
    snaps to the nearest sample of the nearest visible track within the snap
    radius, then moves to that track's best animation point. Cancellation is
    explicit.

    Args:
        tracks: Track list shared with the session (read only).
        flags: FlagState updated on successful placement.
        snap_radius_m: Maximum distance from the pointer to a track sample.
        on_placed: Optional callback invoked with each PlacementResult.
    """

    def __init__(self, tracks: List[Track], flags: FlagState,
                 snap_radius_m: float = constants.FLAG_SNAP_RADIUS_M,
                 on_placed: Optional[Callable[[PlacementResult], None]] = None):
        self.tracks = tracks
        self.flags = flags
        self.snap_radius_m = snap_radius_m
        self.on_placed = on_placed
        self.armed: Optional[FlagKind] = None
        self.pressed = False
        self.preview: Optional[Tuple[int, int, float]] = None

    def arm(self, kind: FlagKind) -> None:
        self.armed = FlagKind(kind)
        self.pressed = False
        self.preview = None

    def cancel(self) -> bool:
        """Abandon the armed placement. Returns False if nothing was armed."""
        was_armed = self.armed is not None
        self.armed = None
        self.pressed = False
        self.preview = None
        if was_armed:
            logger.info("Flag placement cancelled")
        return was_armed

    def snap(self, coord: Sequence[float]) -> Optional[Tuple[int, int, float]]:
        return closest_sample_across(self.tracks, coord, max_distance_m=self.snap_radius_m)

    def on_pointer_move(self, coord: Sequence[float]) -> Optional[Tuple[int, int, float]]:
        if self.armed is None:
            return None
        self.preview = self.snap(coord)
        return self.preview

    def on_pointer_down(self, coord: Sequence[float]) -> None:
        if self.armed is not None:
            self.pressed = True
            self.preview = self.snap(coord)

    def on_pointer_up(self, coord: Sequence[float]) -> Optional[PlacementResult]:
        """
        Drop the armed flag at a coordinate.

        Returns:
            PlacementResult if a flag was placed, None if nothing was armed
            or no track was within the snap radius. The placement is disarmed
            either way.
        """
        if self.armed is None or not self.pressed:
            return None
        kind = self.armed
        self.armed = None
        self.pressed = False
        self.preview = None
        return self.place(kind, coord)

    def place(self, kind: FlagKind, coord: Sequence[float]) -> Optional[PlacementResult]:
        """Snap a flag of the given kind to the tracks near a coordinate."""
        kind = FlagKind(kind)
        match = self.snap(coord)
        if match is None:
            logger.info("No track found near %s for %s flag", tuple(coord), kind.value)
            return None

        track_index, initial_index, _ = match
        optimal_index = self.tracks[track_index].find_optimal_animation_point(initial_index)
        ref = ReferencePoint.at_sample(track_index, optimal_index)
        self.flags.set(kind, ref)
        logger.info("Placed %s flag on track %d at sample %d", kind.value, track_index, optimal_index)

        result = PlacementResult(kind, ref, initial_index)
        if self.on_placed is not None:
            self.on_placed(result)
        return result
