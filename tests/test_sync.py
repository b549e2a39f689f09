from __future__ import annotations

import pandas as pd
import pytest

from trackreplay.errors import ReferenceResolutionError, StateError
from trackreplay.playback import AnimationClock
from trackreplay.references import ReferencePoint
from trackreplay.sync import Synchronizer, most_samples_track, shortest_track_end
from trackreplay.track import Sample, Track

T0 = pd.Timestamp("2024-05-01T10:00:00Z")
PATH = [(0.0, 0.0, 0.0), (0.0, 0.0001, 0.0), (0.0, 0.0002, 0.0)]


def _track(seconds: list[float], name: str, coords=PATH) -> Track:
    return Track(
        [Sample(T0 + pd.Timedelta(seconds=s), c) for s, c in zip(seconds, coords)],
        name=name,
    )


def _synced_seconds(track: Track) -> list[float]:
    return [(s.time - T0).total_seconds() for s in track.synced_series]


def test_tracks_shift_onto_reference_clock() -> None:
    a = _track([0, 10, 20], "A")
    b = _track([5, 15, 25], "B")
    clock = AnimationClock()

    result = Synchronizer(clock).synchronize([a, b])

    assert result.start_track == 0
    assert result.window.start == T0
    assert result.window.end == T0 + pd.Timedelta(seconds=20)
    assert _synced_seconds(a) == [0, 10, 20]
    assert _synced_seconds(b) == [0, 10, 20]
    assert [s.coord for s in b.synced_series] == [s.coord for s in b.samples]
    assert result.offsets[1] == pd.Timedelta(seconds=-5)
    assert clock.start_time == T0
    assert clock.end_time == T0 + pd.Timedelta(seconds=20)
    assert clock.current_time == T0


def test_tracks_keep_their_own_pacing() -> None:
    a = _track([0, 10, 20], "A")
    b = _track([3, 8, 30], "B")
    Synchronizer().synchronize([a, b])

    assert _synced_seconds(b) == [0, 5, 27]


def test_start_reference_on_second_track() -> None:
    a = _track([0, 10, 20], "A")
    b = _track([5, 15, 25], "B")

    result = Synchronizer().synchronize([a, b], start_ref=ReferencePoint.at_sample(1, 1))

    assert result.window.start == T0 + pd.Timedelta(seconds=15)
    assert _synced_seconds(b) == [5, 15, 25]
    assert _synced_seconds(a) == [5, 15, 25]
    # finish defaults to the reference track's last sample
    assert result.window.end == T0 + pd.Timedelta(seconds=25)


def test_free_coordinate_start_uses_each_tracks_closest_sample() -> None:
    beside = _track([0, 10, 20], "beside", [(0.0001, 0.0, 0.0), (0.0001, 0.0001, 0.0), (0.0001, 0.0002, 0.0)])
    on_line = _track([100, 110, 120], "on line")
    reversed_run = _track([0, 50, 60], "reversed", [(0.0, 0.0003, 0.0), (0.0, 0.00012, 0.0), (0.0, -0.0001, 0.0)])

    result = Synchronizer().synchronize(
        [beside, on_line, reversed_run], start_ref=ReferencePoint.at_coord((0.0, 0.0001, 0.0))
    )

    assert (result.start_track, result.start_index) == (1, 1)
    assert result.start_position == (0.0, 0.0001, 0.0)
    assert result.window.start == T0 + pd.Timedelta(seconds=110)
    assert result.window.end == T0 + pd.Timedelta(seconds=120)
    assert _synced_seconds(on_line) == [100, 110, 120]
    # each track lands on the window start at its own nearest sample
    assert _synced_seconds(beside) == [100, 110, 120]
    assert _synced_seconds(reversed_run) == [60, 110, 120]
    assert result.offsets == {
        0: pd.Timedelta(seconds=100),
        1: pd.Timedelta(0),
        2: pd.Timedelta(seconds=60),
    }


def test_window_is_at_least_five_seconds() -> None:
    a = _track([0, 1, 2], "A")
    ref = ReferencePoint.at_sample(0, 1)

    result = Synchronizer().synchronize([a], start_ref=ref, finish_ref=ref)

    assert result.window.duration == pd.Timedelta(seconds=5)


def test_unresolvable_finish_falls_back_to_shortest_track() -> None:
    a = _track([0, 10, 20], "A")
    b = _track([0, 4, 8], "B")

    result = Synchronizer().synchronize([a, b], finish_ref=ReferencePoint.at_sample(7, 0))

    assert result.finish_track is None
    assert result.window.end == T0 + pd.Timedelta(seconds=8)
    assert shortest_track_end([a, b]) == T0 + pd.Timedelta(seconds=8)


def test_fallback_window_without_any_duration() -> None:
    a = _track([0], "A", coords=PATH[:1])

    result = Synchronizer().synchronize([a], finish_ref=ReferencePoint.at_sample(3, 3))

    assert result.window.duration == pd.Timedelta(minutes=10)


def test_no_visible_tracks() -> None:
    a = _track([0, 10, 20], "A")
    a.visible = False
    with pytest.raises(StateError):
        Synchronizer().synchronize([a])
    with pytest.raises(StateError):
        Synchronizer().synchronize([])


def test_unresolvable_start_leaves_tracks_untouched() -> None:
    a = _track([0, 10, 20], "A")
    clock = AnimationClock()

    with pytest.raises(ReferenceResolutionError):
        Synchronizer(clock).synchronize([a], start_ref=ReferencePoint.at_sample(0, 99))

    assert a.synced_series == []
    assert clock.start_time is None


def test_hidden_tracks_are_not_synced() -> None:
    a = _track([0, 10, 20], "A")
    b = _track([5, 15, 25], "B")
    b.visible = False

    result = Synchronizer().synchronize([a, b])
    assert 1 not in result.offsets
    assert b.synced_series == []
    assert most_samples_track([a, b]) == 0


def test_existing_playhead_is_kept() -> None:
    a = _track([0, 10, 20], "A")
    clock = AnimationClock()
    clock.current_time = T0 + pd.Timedelta(seconds=7)

    Synchronizer(clock).synchronize([a])
    assert clock.current_time == T0 + pd.Timedelta(seconds=7)
