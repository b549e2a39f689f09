"""
Playback Scheduler for Track Replay

This module advances the shared animation clock frame by frame over the
synced series and decides when playback ends: at the window end, when a
track reaches the finish point, or (without a finish point) when any track
runs out of data.

Playback is single-threaded and cooperative. Each tick runs to completion and
asks an optional frame requester to schedule the next one.
"""

import logging
import time
import pandas as pd
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from . import constants
from . import geo_math
from .errors import StateError
from .track import NOT_FOUND, Track

logger = logging.getLogger(__name__)


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPED = "stopped"
    COMPLETED_END_TIME = "completed_end_time"
    COMPLETED_FINISH = "completed_finish"
    COMPLETED_OUT_OF_DATA = "completed_out_of_data"

    @property
    def completed(self) -> bool:
        return self in (
            PlaybackStatus.COMPLETED_END_TIME,
            PlaybackStatus.COMPLETED_FINISH,
            PlaybackStatus.COMPLETED_OUT_OF_DATA,
        )


class AnimationClock:
    """
    Shared playback clock.

    Attributes:
        current_time: Position of the playhead on the global axis.
        start_time, end_time: Global window set by synchronization.
        speed: Playback speed multiplier.
        playing: Whether ticks advance the clock.
        last_tick: Wall-clock milliseconds of the previous tick.
    """

    def __init__(self):
        self.current_time: Optional[pd.Timestamp] = None
        self.start_time: Optional[pd.Timestamp] = None
        self.end_time: Optional[pd.Timestamp] = None
        self.speed = 1.0
        self.playing = False
        self.last_tick: Optional[float] = None

    def has_window(self) -> bool:
        return (
            self.start_time is not None
            and self.end_time is not None
            and self.end_time > self.start_time
        )

    def to_dict(self) -> Dict:
        def iso(ts):
            return ts.isoformat() if ts is not None else None

        return {
            "currentTime": iso(self.current_time),
            "startTime": iso(self.start_time),
            "endTime": iso(self.end_time),
            "speed": self.speed,
            "playing": self.playing,
        }


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class PlaybackScheduler:
    """
    Drives the animation clock and evaluates stop conditions.

    Args:
        tracks: Track list shared with the session (read only).
        clock: AnimationClock to drive; a new one is created if omitted.
        frame_requester: Optional callable that schedules the next tick; it
            is given the tick function.
        status_listener: Optional callable notified of status changes.
        time_source: Callable returning wall-clock milliseconds.
    """

    def __init__(self, tracks: List[Track], clock: Optional[AnimationClock] = None,
                 frame_requester: Optional[Callable[[Callable], None]] = None,
                 status_listener: Optional[Callable[[PlaybackStatus], None]] = None,
                 time_source: Callable[[], float] = _monotonic_ms):
        self.tracks = tracks
        self.clock = clock if clock is not None else AnimationClock()
        self.frame_requester = frame_requester
        self.status_listener = status_listener
        self.time_source = time_source
        self.finish_position: Optional[Tuple[float, float, float]] = None
        self.status = PlaybackStatus.IDLE

    def _set_status(self, status: PlaybackStatus) -> None:
        self.status = status
        if self.status_listener is not None:
            self.status_listener(status)

    def _request_frame(self) -> None:
        if self.frame_requester is not None:
            self.frame_requester(self.tick)

    def _synced_tracks(self):
        return [t for t in self.tracks if t.visible and t.synced_series]

    # ------------------------------------------------------------------
    # Transport controls
    # ------------------------------------------------------------------

    def start(self, now: Optional[float] = None) -> PlaybackStatus:
        """
        Start playback from the window start.

        Synchronization must have run first; the scheduler only reads the
        synced series.

        Raises:
            StateError: If no visible track is synchronized or the clock has
                no valid window.
        """
        if self.clock.playing:
            return self.status
        if not self._synced_tracks():
            raise StateError("No data to animate")
        if not self.clock.has_window():
            raise StateError("No valid time window for animation")

        self.clock.current_time = self.clock.start_time
        self.clock.playing = True
        self.clock.last_tick = self.time_source() if now is None else now
        logger.info("Playback started at %s (speed %.2fx)", self.clock.start_time, self.clock.speed)
        self._set_status(PlaybackStatus.PLAYING)
        self._request_frame()
        return self.status

    def _halt(self, status: PlaybackStatus) -> None:
        self.clock.playing = False
        logger.info("Playback ended: %s at %s", status.value, self.clock.current_time)
        self._set_status(status)

    def stop(self) -> PlaybackStatus:
        """Pause playback. Calling it while idle changes nothing."""
        if self.clock.playing:
            self._halt(PlaybackStatus.STOPPED)
        self.clock.playing = False
        return self.status

    def reset(self) -> PlaybackStatus:
        self.stop()
        self.clock.current_time = self.clock.start_time
        return self.status

    def seek(self, position: float) -> bool:
        """
        Move the playhead to a percentage of the window.

        Playing state is unchanged. Positions outside 0..100 are clamped.

        Returns:
            False if there is no window to seek in.
        """
        if self.clock.start_time is None or self.clock.end_time is None:
            return False
        position = max(0.0, min(100.0, float(position)))
        span = self.clock.end_time - self.clock.start_time
        self.clock.current_time = self.clock.start_time + span * (position / 100.0)
        return True

    def set_speed(self, multiplier: float) -> None:
        multiplier = float(multiplier)
        if multiplier <= 0:
            raise ValueError("Playback speed must be positive")
        self.clock.speed = multiplier

    # ------------------------------------------------------------------
    # Frame tick
    # ------------------------------------------------------------------

    def _finish_reached(self, candidate: pd.Timestamp) -> bool:
        for track in self._synced_tracks():
            idx = track.nearest_synced_index(candidate)
            if idx == NOT_FOUND:
                continue
            distance = geo_math.flat_distance_m(track.synced_series[idx].coord, self.finish_position)
            if distance < constants.FINISH_PROXIMITY_M:
                return True
        return False

    def _out_of_data(self, candidate: pd.Timestamp) -> bool:
        return any(t.synced_series[-1].time <= candidate for t in self._synced_tracks())

    def tick(self, now: Optional[float] = None) -> PlaybackStatus:
        """
        Advance the clock by one frame.

        The wall-clock delta since the last tick is capped at 100 ms and
        scaled by the speed multiplier. Stop conditions are checked in order:
        window end, finish point reached, a track out of data (only without a
        finish point).

        Args:
            now: Wall-clock milliseconds; read from the time source if omitted.

        Returns:
            The playback status after this tick.
        """
        clock = self.clock
        if not clock.playing:
            return self.status

        now = self.time_source() if now is None else now
        if clock.current_time is None or clock.end_time is None:
            self._halt(PlaybackStatus.STOPPED)
            return self.status

        delta = max(0.0, min(now - clock.last_tick, constants.MAX_FRAME_ELAPSED_MS))
        elapsed = delta * clock.speed
        clock.last_tick = now
        candidate = clock.current_time + pd.Timedelta(milliseconds=elapsed)

        if candidate >= clock.end_time:
            clock.current_time = clock.end_time
            self._halt(PlaybackStatus.COMPLETED_END_TIME)
            return self.status

        if self.finish_position is not None:
            if self._finish_reached(candidate):
                clock.current_time = candidate
                self._halt(PlaybackStatus.COMPLETED_FINISH)
                return self.status
        elif self._out_of_data(candidate):
            clock.current_time = candidate
            self._halt(PlaybackStatus.COMPLETED_OUT_OF_DATA)
            return self.status

        clock.current_time = candidate
        logger.debug("Tick: %s", candidate)
        self._request_frame()
        return self.status

    def run_until_complete(self, sleep_fn: Callable[[float], None] = time.sleep,
                           frame_interval: float = constants.DEFAULT_FRAME_INTERVAL_S,
                           max_ticks: Optional[int] = None) -> PlaybackStatus:
        """
        Tick in a loop until playback stops (headless replay).

        Intended for use without a frame requester.

        Args:
            sleep_fn: Sleeps for a number of seconds between frames.
            frame_interval: Seconds between frames.
            max_ticks: Optional safety limit on the number of ticks.
        """
        ticks = 0
        while self.clock.playing:
            if max_ticks is not None and ticks >= max_ticks:
                self.stop()
                break
            sleep_fn(frame_interval)
            self.tick()
            ticks += 1
        return self.status

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def position_fraction(self) -> Optional[float]:
        """Playhead position as a percentage of the window (timeline slider)."""
        clock = self.clock
        if not clock.has_window() or clock.current_time is None:
            return None
        span = (clock.end_time - clock.start_time).total_seconds()
        return (clock.current_time - clock.start_time).total_seconds() / span * 100.0

    def marker_positions(self) -> Dict[int, Tuple[float, float, float]]:
        """Per-track synced coordinate nearest in time to the playhead."""
        if self.clock.current_time is None:
            return {}
        markers = {}
        for idx, track in enumerate(self.tracks):
            if not track.visible or not track.synced_series:
                continue
            markers[idx] = track.position_at(self.clock.current_time)
        return markers
