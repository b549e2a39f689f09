from __future__ import annotations

import pandas as pd

from trackreplay.config import ReplaySettings
from trackreplay.playback import PlaybackStatus
from trackreplay.references import FlagKind
from trackreplay.session import ReplaySession, StatusCode


def _records(offset_s: float, n: int = 30, pace_s: float = 1.0) -> list[dict]:
    start = pd.Timestamp("2024-05-01T10:00:00Z") + pd.Timedelta(seconds=offset_s)
    return [
        {
            "time": (start + pd.Timedelta(seconds=i * pace_s)).isoformat(),
            "lon": 8.0,
            "lat": 47.0 + i * 0.0001,
            "alt": 400.0,
        }
        for i in range(n)
    ]


def _session(time_source=None) -> ReplaySession:
    return ReplaySession(settings=ReplaySettings(), time_source=time_source)


def _loaded(time_source=None) -> ReplaySession:
    session = _session(time_source)
    session.load_track(_records(0), name="first")
    session.load_track(_records(60, pace_s=1.2), name="second")
    return session


def test_load_track_synchronizes_and_colors() -> None:
    session = _session()
    result = session.load_track(_records(0), name="first")

    assert result.ok
    assert result.code is StatusCode.TRACK_LOADED
    assert result.data == {"trackIndex": 0, "samples": 30}
    assert session.tracks[0].has_synced_series()
    assert session.tracks[0].metric_values is not None


def test_parse_failure_leaves_other_tracks() -> None:
    session = _loaded()
    result = session.load_track([], name="broken")

    assert not result.ok
    assert result.code is StatusCode.PARSE_ERROR
    assert len(session.tracks) == 2
    assert session.last_status is result


def test_second_track_is_aligned_to_first() -> None:
    session = _loaded()
    first, second = session.tracks

    assert second.synced_series[0].time == first.synced_series[0].time
    assert session.sync_result.offsets[1] == pd.Timedelta(seconds=-60)


def test_remove_and_toggle_tracks() -> None:
    session = _loaded()

    assert session.remove_track(5).code is StatusCode.UNKNOWN_TRACK
    toggled = session.set_visibility(1)
    assert toggled.data == {"visible": False}
    assert not session.tracks[1].has_synced_series()

    assert session.remove_track(0).code is StatusCode.TRACK_REMOVED
    assert [t.name for t in session.tracks] == ["second"]


def test_densify_resets_flags_and_refuses_twice() -> None:
    session = _loaded()
    session.place_flag(FlagKind.START, 0, 5)

    result = session.densify_all()
    assert result.code is StatusCode.INTERPOLATED
    assert result.data == {"count": 2}
    assert session.flags.start is None
    assert len(session.tracks[0]) == 30 + 29 * 5
    assert session.tracks[0].has_synced_series()

    assert session.densify_all().code is StatusCode.ALREADY_INTERPOLATED
    assert _session().densify_all().code is StatusCode.NO_TRACKS


def test_flag_placement_resynchronizes() -> None:
    session = _loaded()

    result = session.place_flag(FlagKind.START, 0, 10)
    assert result.code is StatusCode.FLAG_PLACED
    assert session.sync_result.start_track == 0
    assert session.sync_result.start_index == 10

    assert session.place_flag(FlagKind.FINISH, 0, 99).code is StatusCode.REFERENCE_ERROR

    dropped = session.drop_flag(FlagKind.FINISH, (8.0, 47.0020, 400.0))
    assert dropped.code is StatusCode.FLAG_PLACED
    assert session.flags.finish is not None
    assert session.scheduler.finish_position is not None

    missed = session.drop_flag(FlagKind.FINISH, (9.0, 48.0, 0.0))
    assert missed.code is StatusCode.NO_TRACK_AT_POSITION


def test_reset_flags() -> None:
    session = _loaded()
    session.place_flag(FlagKind.START, 0, 10)

    assert session.reset_flags().code is StatusCode.FLAGS_RESET
    assert session.flags.start is None
    assert session.scheduler.finish_position is None
    assert session.clock.current_time == session.clock.start_time
    assert session.sync_result.start_index == 0


def test_comparative_mode_colors_reference_white() -> None:
    session = _loaded()

    result = session.update_settings(metric_mode="lostTime")
    assert result.code is StatusCode.METRICS_UPDATED
    assert session.settings.legend_min == -3.0

    layers = session.colored_segments()
    reference = layers[0]["features"]["features"]
    assert len(reference) == 1
    assert reference[0]["properties"]["stroke"] == "#ffffff"
    assert len(layers[1]["features"]["features"]) == 29

    legend = session.legend()
    assert legend["mode"] == "lostTime"
    assert legend["labels"][0]["text"] == "3.0s"


def test_comparative_mode_with_one_track() -> None:
    session = _session()
    session.load_track(_records(0), name="only")

    result = session.update_settings(metric_mode="timeDifference")
    assert result.code is StatusCode.INSUFFICIENT_DATA
    assert not result.ok


def test_invalid_settings_are_reported() -> None:
    session = _loaded()
    assert session.update_settings(metric_mode="jerk").code is StatusCode.INVALID_SETTING
    assert session.update_settings(speed_units="knots").code is StatusCode.INVALID_SETTING
    assert session.set_speed(0).code is StatusCode.INVALID_SETTING


def test_stepped_segments_and_units() -> None:
    session = _loaded()
    session.update_settings(continuous_colors=False, speed_units="kph", legend_min=0, legend_max=100)

    layers = session.colored_segments()
    assert session.settings.speed_units == "kph"
    assert all(f["properties"].get("band") is not None for f in layers[0]["features"]["features"])


def test_probe_returns_tooltip_rows() -> None:
    session = _loaded()
    rows = session.probe((8.0, 47.0005))
    assert [r["name"] for r in rows] == ["first", "second"]
    assert rows[0]["unit"] == "mph"


def test_play_and_tick_until_complete() -> None:
    now = [0.0]
    session = _loaded(time_source=lambda: now[0])
    session.place_flag(FlagKind.START, 0, 0)
    session.place_flag(FlagKind.FINISH, 0, 3)

    assert session.play().code is StatusCode.ANIMATION_STARTED
    assert session.clock.playing

    status = PlaybackStatus.PLAYING
    for _ in range(200):
        now[0] += 100.0
        status = session.tick()
        if status is not PlaybackStatus.PLAYING:
            break

    assert status.completed
    assert session.last_status.code in (
        StatusCode.COMPLETE_FINISH,
        StatusCode.COMPLETE_END_TIME,
    )


def test_play_without_tracks() -> None:
    session = _session()
    assert session.play().code is StatusCode.NO_VISIBLE_TRACKS
    assert session.seek(10).code is StatusCode.NO_DATA_TO_ANIMATE


def test_transport_controls() -> None:
    session = _loaded()
    session.play()

    assert session.stop().code is StatusCode.ANIMATION_STOPPED
    assert session.seek(50).code is StatusCode.ANIMATION_POSITION
    assert session.reset().code is StatusCode.ANIMATION_RESET
    assert session.clock.current_time == session.clock.start_time
    assert session.set_speed(4).code is StatusCode.ANIMATION_SPEED
    assert session.clock.speed == 4.0


def test_elevation_offset() -> None:
    session = _loaded()
    result = session.set_elevation_offset(1, -12.5)
    assert result.code is StatusCode.ELEVATION_ADJUSTED
    assert session.tracks[1].samples[0].coord[2] == 387.5
    assert session.tracks[1].has_synced_series()
    assert session.set_elevation_offset(4, 1.0).code is StatusCode.UNKNOWN_TRACK


def test_build_payload() -> None:
    session = _loaded()
    payload = session.build_payload()

    assert set(payload) == {
        "settings", "tracks", "flags", "clock", "segments", "legend", "markers", "status",
    }
    assert payload["tracks"][1]["name"] == "second"
    assert payload["tracks"][0]["synced"]
    assert payload["clock"]["position"] == 0.0
    assert payload["clock"]["status"] == "idle"
    assert set(payload["markers"]) == {"0", "1"}
    assert payload["status"]["code"] == "track_loaded"
