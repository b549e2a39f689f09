"""
Track Synchronization for Track Replay

This module puts independently recorded tracks on one shared clock. A global
time window is chosen from the start and finish reference points, then every
visible track is shifted by a constant offset so that the moment it passes
the start point lines up with the window start.

Tracks are shifted, never time-scaled: each keeps its own internal pacing, so
speed differences between tracks remain physically meaningful.
"""

import logging
import pandas as pd
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple
from . import constants
from .errors import ReferenceResolutionError, StateError
from .references import ReferencePoint, resolve_reference
from .track import SyncedSample, Track

logger = logging.getLogger(__name__)


class GlobalWindow(NamedTuple):
    start: pd.Timestamp
    end: pd.Timestamp

    @property
    def duration(self) -> pd.Timedelta:
        return self.end - self.start


class SyncResult(NamedTuple):
    window: GlobalWindow
    start_track: int
    start_index: int
    finish_track: Optional[int]
    finish_index: Optional[int]
    start_position: Tuple[float, float, float]
    offsets: Dict[int, pd.Timedelta]


def most_samples_track(tracks: Sequence[Track]) -> Optional[int]:
    """Index of the visible track with the most samples (first on ties)."""
    best_index, best_count = None, 0
    for idx, track in enumerate(tracks):
        if track.visible and len(track.samples) > best_count:
            best_index, best_count = idx, len(track.samples)
    return best_index


def shortest_track_end(tracks: Sequence[Track]) -> Optional[pd.Timestamp]:
    """End time of the visible track with the shortest total duration."""
    shortest = None
    for track in tracks:
        if not track.visible or len(track.samples) < 2:
            continue
        if shortest is None or track.duration < shortest.duration:
            shortest = track
    return shortest.end_time if shortest is not None else None


def shifted_series(track: Track, offset: pd.Timedelta) -> List[SyncedSample]:
    """A track's samples moved along the time axis by a constant offset."""
    return [SyncedSample(s.time + offset, s.coord) for s in track.samples]


class Synchronizer:
    """
    Computes the global window and per-track synced series.

    Args:
        clock: Optional AnimationClock whose start/end times are updated
            after a successful pass.
    """

    def __init__(self, clock=None):
        self.clock = clock
        self.last_result: Optional[SyncResult] = None

    def resolve_start(self, tracks: Sequence[Track],
                      start_ref: Optional[ReferencePoint]) -> Tuple[int, int]:
        """
        Resolve the reference track and sample for the window start.

        Without a start reference, the visible track with the most samples
        is used from its first sample.

        Raises:
            ReferenceResolutionError: If a given reference cannot be resolved
                or no visible track is available.
        """
        if start_ref is not None:
            return resolve_reference(tracks, start_ref)

        ref_track = most_samples_track(tracks)
        if ref_track is None:
            raise ReferenceResolutionError("No valid reference track for synchronization")
        return ref_track, 0

    def resolve_finish(self, tracks: Sequence[Track], finish_ref: Optional[ReferencePoint],
                       start: Tuple[int, int]) -> Optional[Tuple[int, int]]:
        """
        Resolve the finish track and sample.

        Without a finish reference the reference track's last sample is used.
        An unresolvable finish returns None so the window can fall back.
        """
        if finish_ref is None:
            ref_track = start[0]
            return ref_track, len(tracks[ref_track].samples) - 1
        try:
            return resolve_reference(tracks, finish_ref)
        except ReferenceResolutionError as exc:
            logger.warning("Finish reference ignored: %s", exc)
            return None

    def compute_window(self, tracks: Sequence[Track], start: Tuple[int, int],
                       finish: Optional[Tuple[int, int]]) -> GlobalWindow:
        """
        Build the global window from resolved start and finish samples.

        Falls back to the shortest visible track's end, then to ten minutes
        after the start, when the finish is unavailable. The window is always
        extended to at least the minimum duration.
        """
        window_start = tracks[start[0]].samples[start[1]].time

        if finish is not None:
            window_end = tracks[finish[0]].samples[finish[1]].time
        else:
            window_end = shortest_track_end(tracks)
            if window_end is None:
                window_end = window_start + constants.FALLBACK_WINDOW_DURATION

        if window_end - window_start < constants.MIN_WINDOW_DURATION:
            logger.info("Start and finish are very close; extending the window")
            window_end = window_start + constants.MIN_WINDOW_DURATION

        return GlobalWindow(window_start, window_end)

    def synchronize(self, tracks: Sequence[Track], start_ref: Optional[ReferencePoint] = None,
                    finish_ref: Optional[ReferencePoint] = None) -> SyncResult:
        """
        Align every visible track to the shared clock.

        Each visible track finds its own sample closest to the start
        position; the offset that moves that sample onto the window start is
        applied to all of its samples.

        Args:
            tracks: All loaded tracks.
            start_ref: Optional start reference point.
            finish_ref: Optional finish reference point.

        Returns:
            SyncResult describing the window, references and offsets.

        Raises:
            StateError: If no track is visible.
            ReferenceResolutionError: If the start reference cannot be
                resolved. Tracks and clock are left untouched.
        """
        if not any(track.visible and track.samples for track in tracks):
            raise StateError("No visible tracks to synchronize")

        start = self.resolve_start(tracks, start_ref)
        finish = self.resolve_finish(tracks, finish_ref, start)
        window = self.compute_window(tracks, start, finish)

        ref_track = tracks[start[0]]
        if start_ref is not None and not start_ref.is_indexed:
            start_position = start_ref.coord
        else:
            start_position = ref_track.samples[start[1]].coord

        offsets = {}
        for idx, track in enumerate(tracks):
            if not track.visible or not track.samples:
                continue
            if idx == start[0]:
                local_index = start[1]
            else:
                local_index = track.find_closest_sample(start_position)
            offset = window.start - track.samples[local_index].time
            track.set_synced_series(shifted_series(track, offset))
            offsets[idx] = offset

        if self.clock is not None:
            self.clock.start_time = window.start
            self.clock.end_time = window.end
            if self.clock.current_time is None:
                self.clock.current_time = window.start

        logger.info(
            "Synchronized %d track(s) to window %s - %s (reference track %d, sample %d)",
            len(offsets), window.start, window.end, start[0], start[1],
        )

        result = SyncResult(
            window=window,
            start_track=start[0],
            start_index=start[1],
            finish_track=finish[0] if finish else None,
            finish_index=finish[1] if finish else None,
            start_position=start_position,
            offsets=offsets,
        )
        self.last_result = result
        return result
