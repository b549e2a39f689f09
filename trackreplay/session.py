"""
Replay Session for Track Replay

This module ties the replay core together. A ReplaySession owns the loaded
tracks, the settings, the start/finish flags, the synchronizer, the metric
pipeline and the playback scheduler, and exposes every user-facing operation
as a call that returns an OperationResult (status code plus message) instead
of raising.

Ordering is the session's job: any change that invalidates the synced series
(interpolation, elevation change, flag move, visibility change) marks the
session for re-synchronization, which always happens before metrics are
recomputed or playback starts.
"""

import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence
from . import color_scale
from . import constants
from . import ingest
from . import utils
from .config import MetricMode, ReplaySettings, load_settings
from .errors import (
    InsufficientDataError,
    ParseError,
    ReferenceResolutionError,
    StateError,
)
from .metric_pipeline import MetricPipeline
from .playback import AnimationClock, PlaybackScheduler, PlaybackStatus
from .references import FlagKind, FlagPlacement, FlagState, PlacementResult, ReferencePoint
from .sync import SyncResult, Synchronizer
from .track import Track

logger = logging.getLogger(__name__)


class StatusCode(str, Enum):
    TRACK_LOADED = "track_loaded"
    PARSE_ERROR = "parse_error"
    TRACK_REMOVED = "track_removed"
    UNKNOWN_TRACK = "unknown_track"
    VISIBILITY_CHANGED = "visibility_changed"
    INTERPOLATED = "interpolated"
    ALREADY_INTERPOLATED = "already_interpolated"
    NO_TRACKS = "no_tracks"
    ELEVATION_ADJUSTED = "elevation_adjusted"
    SYNCHRONIZED = "synchronized"
    NO_VISIBLE_TRACKS = "no_visible_tracks"
    REFERENCE_ERROR = "reference_error"
    FLAG_PLACED = "flag_placed"
    NO_TRACK_AT_POSITION = "no_track_at_position"
    PLACEMENT_ARMED = "placement_armed"
    PLACEMENT_CANCELLED = "placement_cancelled"
    FLAGS_RESET = "flags_reset"
    METRICS_UPDATED = "metrics_updated"
    INSUFFICIENT_DATA = "insufficient_data"
    INVALID_SETTING = "invalid_setting"
    NO_DATA_TO_ANIMATE = "no_data_to_animate"
    ANIMATION_STARTED = "animation_started"
    ANIMATION_STOPPED = "animation_stopped"
    ANIMATION_RESET = "animation_reset"
    ANIMATION_POSITION = "animation_position"
    ANIMATION_SPEED = "animation_speed"
    COMPLETE_END_TIME = "complete_end_time"
    COMPLETE_FINISH = "complete_finish"
    COMPLETE_OUT_OF_DATA = "complete_out_of_data"


STATUS_MESSAGES: Dict[StatusCode, str] = {
    StatusCode.TRACK_LOADED: "Track loaded",
    StatusCode.PARSE_ERROR: "Could not read track",
    StatusCode.TRACK_REMOVED: "Track removed",
    StatusCode.UNKNOWN_TRACK: "No such track",
    StatusCode.VISIBILITY_CHANGED: "Track visibility changed",
    StatusCode.INTERPOLATED: "Interpolated track(s)",
    StatusCode.ALREADY_INTERPOLATED: "All tracks already interpolated",
    StatusCode.NO_TRACKS: "No track data loaded",
    StatusCode.ELEVATION_ADJUSTED: "Track elevation adjusted",
    StatusCode.SYNCHRONIZED: "Tracks synchronized to start point",
    StatusCode.NO_VISIBLE_TRACKS: "No visible tracks to synchronize",
    StatusCode.REFERENCE_ERROR: "No valid reference track for sync",
    StatusCode.FLAG_PLACED: "Flag placed",
    StatusCode.NO_TRACK_AT_POSITION: "No track found at click position",
    StatusCode.PLACEMENT_ARMED: "Click on a track to place the flag",
    StatusCode.PLACEMENT_CANCELLED: "Flag placement cancelled",
    StatusCode.FLAGS_RESET: "Flags reset",
    StatusCode.METRICS_UPDATED: "Colors updated",
    StatusCode.INSUFFICIENT_DATA: "Not enough data for this color mode",
    StatusCode.INVALID_SETTING: "Invalid setting",
    StatusCode.NO_DATA_TO_ANIMATE: "No data to animate",
    StatusCode.ANIMATION_STARTED: "Animation started",
    StatusCode.ANIMATION_STOPPED: "Animation stopped",
    StatusCode.ANIMATION_RESET: "Animation reset to start",
    StatusCode.ANIMATION_POSITION: "Animation position set",
    StatusCode.ANIMATION_SPEED: "Animation speed changed",
    StatusCode.COMPLETE_END_TIME: "Animation complete: reached end time",
    StatusCode.COMPLETE_FINISH: "Animation complete: reached finish",
    StatusCode.COMPLETE_OUT_OF_DATA: "Animation complete: ran out of data",
}

FAILURE_CODES = frozenset({
    StatusCode.PARSE_ERROR,
    StatusCode.UNKNOWN_TRACK,
    StatusCode.ALREADY_INTERPOLATED,
    StatusCode.NO_TRACKS,
    StatusCode.NO_VISIBLE_TRACKS,
    StatusCode.REFERENCE_ERROR,
    StatusCode.NO_TRACK_AT_POSITION,
    StatusCode.INSUFFICIENT_DATA,
    StatusCode.INVALID_SETTING,
    StatusCode.NO_DATA_TO_ANIMATE,
})

PLAYBACK_CODES = {
    PlaybackStatus.STOPPED: StatusCode.ANIMATION_STOPPED,
    PlaybackStatus.COMPLETED_END_TIME: StatusCode.COMPLETE_END_TIME,
    PlaybackStatus.COMPLETED_FINISH: StatusCode.COMPLETE_FINISH,
    PlaybackStatus.COMPLETED_OUT_OF_DATA: StatusCode.COMPLETE_OUT_OF_DATA,
}


class OperationResult(NamedTuple):
    code: StatusCode
    message: str
    data: Optional[Dict] = None

    @property
    def ok(self) -> bool:
        return self.code not in FAILURE_CODES


def _result(code: StatusCode, detail: Optional[str] = None, data: Optional[Dict] = None) -> OperationResult:
    message = STATUS_MESSAGES[code]
    if detail:
        message = f"{message}: {detail}"
    return OperationResult(code, message, data)


class ReplaySession:
    """
    Explicit context for one replay: tracks, settings, flags and playback.

    Args:
        settings: Replay settings; read from the environment if omitted.
        frame_requester: Optional strategy that schedules the next playback
            tick (e.g. a UI frame callback).
        time_source: Optional wall-clock source in milliseconds.
        snap_radius_m: Flag snapping radius for pointer placement.
    """

    def __init__(self, settings: Optional[ReplaySettings] = None,
                 frame_requester: Optional[Callable] = None,
                 time_source: Optional[Callable[[], float]] = None,
                 snap_radius_m: float = constants.FLAG_SNAP_RADIUS_M):
        self.settings = settings if settings is not None else load_settings()
        self.tracks: List[Track] = []
        self.flags = FlagState()
        self.clock = AnimationClock()
        self.synchronizer = Synchronizer(self.clock)
        self.pipeline = MetricPipeline(self.settings)

        scheduler_kwargs = {"time_source": time_source} if time_source is not None else {}
        self.scheduler = PlaybackScheduler(
            self.tracks,
            self.clock,
            frame_requester=frame_requester,
            status_listener=self._on_playback_status,
            **scheduler_kwargs,
        )
        self.placement = FlagPlacement(
            self.tracks, self.flags, snap_radius_m=snap_radius_m, on_placed=self._on_flag_placed
        )
        self.sync_result: Optional[SyncResult] = None
        self.last_status: Optional[OperationResult] = None
        self._needs_sync = True

    def _report(self, result: OperationResult) -> OperationResult:
        self.last_status = result
        if result.ok:
            logger.info(result.message)
        else:
            logger.warning(result.message)
        return result

    def _track(self, index: int) -> Optional[Track]:
        if 0 <= index < len(self.tracks):
            return self.tracks[index]
        return None

    def _invalidate(self) -> None:
        self._needs_sync = True

    # ========================================================================
    # TRACK MANAGEMENT
    # ========================================================================

    def load_track(self, records: Iterable[Dict], name: Optional[str] = None) -> OperationResult:
        """
        Ingest one decoded track. A failure leaves other tracks unaffected.
        """
        index = len(self.tracks)
        name = name or f"Track {index + 1}"
        try:
            track = ingest.build_track(records, name=name, index=index)
        except ParseError as exc:
            return self._report(_result(StatusCode.PARSE_ERROR, str(exc)))

        self.tracks.append(track)
        self._invalidate()
        self.refresh()
        return self._report(
            _result(StatusCode.TRACK_LOADED, name, {"trackIndex": index, "samples": len(track)})
        )

    def remove_track(self, index: int) -> OperationResult:
        if self._track(index) is None:
            return self._report(_result(StatusCode.UNKNOWN_TRACK, str(index)))
        self.scheduler.stop()
        removed = self.tracks.pop(index)
        self.flags.forget_track(index)
        self._invalidate()
        self.refresh()
        return self._report(_result(StatusCode.TRACK_REMOVED, removed.name))

    def set_visibility(self, index: int, visible: Optional[bool] = None) -> OperationResult:
        """Show, hide, or (with visible=None) toggle a track."""
        track = self._track(index)
        if track is None:
            return self._report(_result(StatusCode.UNKNOWN_TRACK, str(index)))
        if visible is None:
            track.toggle_visibility()
        else:
            track.visible = bool(visible)
        if not track.visible:
            track.invalidate_synced()
        self._invalidate()
        self.refresh()
        return self._report(
            _result(StatusCode.VISIBILITY_CHANGED, track.name, {"visible": track.visible})
        )

    def densify_all(self) -> OperationResult:
        """
        Interpolate every track that has not been interpolated yet.

        Playback is stopped and flags are reset first, since flag sample
        indices do not survive a change in sample density.
        """
        if not self.tracks:
            return self._report(_result(StatusCode.NO_TRACKS))

        self.scheduler.stop()
        self.flags.reset()
        self.placement.cancel()
        self.scheduler.finish_position = None

        count = sum(1 for track in self.tracks if track.densify())
        if not count:
            return self._report(_result(StatusCode.ALREADY_INTERPOLATED))

        self._invalidate()
        self.refresh()
        return self._report(_result(StatusCode.INTERPOLATED, str(count), {"count": count}))

    def set_elevation_offset(self, index: int, meters: float) -> OperationResult:
        track = self._track(index)
        if track is None:
            return self._report(_result(StatusCode.UNKNOWN_TRACK, str(index)))
        track.set_elevation_offset(meters)
        self._invalidate()
        self.refresh()
        return self._report(
            _result(StatusCode.ELEVATION_ADJUSTED, f"{track.name} {meters:+.1f} m")
        )

    # ========================================================================
    # FLAGS & SYNCHRONIZATION
    # ========================================================================

    def arm_flag(self, kind: FlagKind) -> OperationResult:
        self.placement.arm(kind)
        return self._report(_result(StatusCode.PLACEMENT_ARMED, FlagKind(kind).value))

    def cancel_placement(self) -> OperationResult:
        self.placement.cancel()
        return self._report(_result(StatusCode.PLACEMENT_CANCELLED))

    def drop_flag(self, kind: FlagKind, coord: Sequence[float]) -> OperationResult:
        """Place a flag at a coordinate, snapping to the nearest track."""
        placed = self.placement.place(kind, coord)
        if placed is None:
            return self._report(_result(StatusCode.NO_TRACK_AT_POSITION))
        return self.last_status

    def place_flag(self, kind: FlagKind, track_index: int, sample_index: int) -> OperationResult:
        """Place a flag directly on a known track sample."""
        ref = ReferencePoint.at_sample(track_index, sample_index)
        track = self._track(track_index)
        if track is None or not 0 <= sample_index < len(track):
            return self._report(_result(StatusCode.REFERENCE_ERROR, repr(ref)))
        self.flags.set(kind, ref)
        self._on_flag_placed(PlacementResult(FlagKind(kind), ref, sample_index))
        return self.last_status

    def _on_flag_placed(self, placed: PlacementResult) -> None:
        self._invalidate()
        self.refresh()
        self._report(
            _result(
                StatusCode.FLAG_PLACED,
                f"{placed.kind.value} on track {placed.reference.track_index}",
                placed.reference.to_dict(self.tracks),
            )
        )

    def reset_flags(self) -> OperationResult:
        self.scheduler.stop()
        self.placement.cancel()
        self.flags.reset()
        self.scheduler.finish_position = None
        self._invalidate()
        self.refresh()
        if self.clock.start_time is not None:
            self.clock.current_time = self.clock.start_time
        return self._report(_result(StatusCode.FLAGS_RESET))

    def synchronize(self) -> OperationResult:
        """
        Re-run synchronization with the current flags.

        On failure the previous clock window is kept.
        """
        try:
            result = self.synchronizer.synchronize(self.tracks, self.flags.start, self.flags.finish)
        except StateError as exc:
            return self._report(_result(StatusCode.NO_VISIBLE_TRACKS, str(exc)))
        except ReferenceResolutionError as exc:
            return self._report(_result(StatusCode.REFERENCE_ERROR, str(exc)))

        self.sync_result = result
        self._needs_sync = False
        self.scheduler.finish_position = self._finish_position()
        return self._report(
            _result(
                StatusCode.SYNCHRONIZED,
                data={
                    "start": result.window.start.isoformat(),
                    "end": result.window.end.isoformat(),
                    "referenceTrack": result.start_track,
                },
            )
        )

    def _finish_position(self):
        if self.flags.finish is None:
            return None
        try:
            return self.flags.finish.position(self.tracks)
        except ReferenceResolutionError:
            logger.warning("Finish flag no longer resolves; ignoring it for playback")
            return None

    def ensure_synchronized(self) -> Optional[OperationResult]:
        """Synchronize if anything invalidated the synced series."""
        stale = any(t.visible and not t.synced_series for t in self.tracks)
        if self._needs_sync or stale:
            return self.synchronize()
        return None

    # ========================================================================
    # SETTINGS & METRICS
    # ========================================================================

    def update_settings(self, metric_mode=None, continuous_colors: Optional[bool] = None,
                        speed_units: Optional[str] = None, legend_min: Optional[float] = None,
                        legend_max: Optional[float] = None) -> OperationResult:
        try:
            if speed_units is not None:
                self.settings.set_speed_units(speed_units)
            if metric_mode is not None:
                self.settings.set_metric_mode(metric_mode)
            if continuous_colors is not None:
                self.settings.continuous_colors = bool(continuous_colors)
            self.settings.set_legend_bounds(legend_min, legend_max)
        except ValueError as exc:
            return self._report(_result(StatusCode.INVALID_SETTING, str(exc)))
        return self.recompute_metrics()

    def recompute_metrics(self) -> OperationResult:
        """
        Recompute the active metric for every visible track.

        Comparative modes synchronize first if needed.
        """
        if self.settings.metric_mode.comparative:
            self.ensure_synchronized()
        try:
            result = self.pipeline.compute(self.tracks, start_ref=self.flags.start)
        except (InsufficientDataError, StateError) as exc:
            return self._report(_result(StatusCode.INSUFFICIENT_DATA, str(exc)))
        return self._report(
            _result(
                StatusCode.METRICS_UPDATED,
                self.settings.metric_mode.value,
                {"referenceTrack": result.reference_index},
            )
        )

    def refresh(self) -> None:
        """Re-synchronize and recompute after a change, like a UI redraw."""
        if not self.tracks:
            self.pipeline.last_result = None
            return
        self.ensure_synchronized()
        self.recompute_metrics()

    def colored_segments(self) -> List[Dict]:
        """
        Segment features for every track, ready for a renderer.

        Tracks with a metric series are colored through the active scale;
        the reference track of a comparative mode is drawn plain white, and
        everything else in its own color.
        """
        mode = self.settings.metric_mode
        scale = color_scale.COLOR_SCALES.get(mode.value)
        result = self.pipeline.last_result
        reference_index = result.reference_index if result is not None else None
        layers = []

        for idx, track in enumerate(self.tracks):
            features = []
            if track.visible:
                coords = track.coords
                if mode != MetricMode.NONE and track.metric_values is not None and scale is not None:
                    features = color_scale.colored_segments(
                        coords,
                        track.metric_values,
                        self.settings.legend_min,
                        self.settings.legend_max,
                        scale,
                        continuous=self.settings.continuous_colors,
                    )
                elif mode.comparative and idx == reference_index:
                    features = color_scale.solid_line(coords, constants.REFERENCE_TRACK_COLOR)
                else:
                    features = color_scale.solid_line(coords, track.color)
            layers.append({
                "trackIndex": idx,
                "name": track.name,
                "visible": track.visible,
                "features": {"type": "FeatureCollection", "features": features},
            })
        return layers

    def legend(self) -> Optional[Dict]:
        mode = self.settings.metric_mode
        scale = color_scale.COLOR_SCALES.get(mode.value)
        if scale is None:
            return None
        return {
            "mode": mode.value,
            "continuous": self.settings.continuous_colors,
            "stops": color_scale.legend_stops(scale, self.settings.continuous_colors),
            "labels": color_scale.legend_labels(
                self.settings.legend_min,
                self.settings.legend_max,
                mode.value,
                self.settings.speed_units,
            ),
        }

    def probe(self, coord: Sequence[float]) -> List[Dict]:
        """Tooltip values for every visible track near a coordinate."""
        if len(coord) == 2:
            coord = (coord[0], coord[1], 0.0)
        return self.pipeline.probe(self.tracks, coord)

    # ========================================================================
    # PLAYBACK
    # ========================================================================

    def _on_playback_status(self, status: PlaybackStatus) -> None:
        code = PLAYBACK_CODES.get(status)
        if code is not None:
            self._report(_result(code))

    def play(self, now: Optional[float] = None) -> OperationResult:
        """Re-synchronize, then start playback from the window start."""
        if self.clock.playing:
            return self._report(_result(StatusCode.ANIMATION_STARTED))
        synced = self.synchronize()
        if not synced.ok:
            return synced
        try:
            self.scheduler.start(now)
        except StateError as exc:
            return self._report(_result(StatusCode.NO_DATA_TO_ANIMATE, str(exc)))
        return self._report(_result(StatusCode.ANIMATION_STARTED))

    def stop(self) -> OperationResult:
        self.scheduler.stop()
        return self._report(_result(StatusCode.ANIMATION_STOPPED))

    def reset(self) -> OperationResult:
        self.scheduler.reset()
        return self._report(_result(StatusCode.ANIMATION_RESET))

    def seek(self, position: float) -> OperationResult:
        if not self.scheduler.seek(position):
            return self._report(_result(StatusCode.NO_DATA_TO_ANIMATE, "no time window"))
        return self._report(
            _result(StatusCode.ANIMATION_POSITION, utils.format_time(self.clock.current_time))
        )

    def set_speed(self, multiplier: float) -> OperationResult:
        try:
            self.scheduler.set_speed(multiplier)
        except ValueError as exc:
            return self._report(_result(StatusCode.INVALID_SETTING, str(exc)))
        return self._report(_result(StatusCode.ANIMATION_SPEED, f"{self.clock.speed}x"))

    def tick(self, now: Optional[float] = None) -> PlaybackStatus:
        return self.scheduler.tick(now)

    # ========================================================================
    # PAYLOAD
    # ========================================================================

    def track_summary(self, index: int) -> Dict:
        track = self.tracks[index]
        speed_min, speed_max = track.speed_range(self.settings.speed_units)
        accel_min, accel_max = track.acceleration_range()
        return {
            "trackIndex": index,
            "name": track.name,
            "color": track.color,
            "visible": track.visible,
            "samples": len(track),
            "originalSamples": track.original_sample_count,
            "isInterpolated": track.is_interpolated,
            "elevationOffset": track.elevation_offset,
            "startTime": track.start_time.isoformat() if track.start_time is not None else None,
            "endTime": track.end_time.isoformat() if track.end_time is not None else None,
            "duration_s": utils.round_float(track.duration.total_seconds()) if track.duration is not None else None,
            "distance_m": utils.round_float(track.total_distance_m, 2),
            "synced": track.has_synced_series(),
            "speedRange": [utils.round_float(speed_min), utils.round_float(speed_max)],
            "accelerationRange": [utils.round_float(accel_min), utils.round_float(accel_max)],
        }

    def build_payload(self) -> Dict:
        """
        Snapshot of the whole session, JSON-ready.

        Returns:
            Dictionary containing:
            - settings: legend/config values
            - tracks: one summary per track
            - flags: start and finish references
            - clock: animation clock fields and position percentage
            - segments: colored segment layers per track
            - legend: legend stops and labels (None in plain mode)
            - markers: current marker position per synced track
            - status: last operation status
        """
        position = self.scheduler.position_fraction()
        return {
            "settings": self.settings.to_dict(),
            "tracks": [self.track_summary(i) for i in range(len(self.tracks))],
            "flags": self.flags.to_dict(self.tracks),
            "clock": {
                **self.clock.to_dict(),
                "position": utils.round_float(position) if position is not None else None,
                "status": self.scheduler.status.value,
            },
            "segments": self.colored_segments(),
            "legend": self.legend(),
            "markers": {str(k): list(v) for k, v in self.scheduler.marker_positions().items()},
            "status": {
                "code": self.last_status.code.value,
                "message": self.last_status.message,
            } if self.last_status is not None else None,
        }
