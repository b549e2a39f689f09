from __future__ import annotations

import argparse
from pathlib import Path

import pandas as pd
import pytest

import compare_tracks


def _write_track(path: Path, offset_s: float, pace_s: float = 1.0, n: int = 25) -> Path:
    start = pd.Timestamp("2024-05-01T10:00:00Z") + pd.Timedelta(seconds=offset_s)
    pd.DataFrame({
        "Time": [(start + pd.Timedelta(seconds=i * pace_s)).isoformat() for i in range(n)],
        "Lon": [8.0] * n,
        "Lat": [47.0 + i * 0.0001 for i in range(n)],
        "Alt": [400.0] * n,
    }).to_csv(path, index=False)
    return path


def test_parse_flag() -> None:
    assert compare_tracks.parse_flag(None) is None
    assert compare_tracks.parse_flag("1:12") == (1, 12)
    with pytest.raises(argparse.ArgumentTypeError):
        compare_tracks.parse_flag("start")


def test_load_track_table_requires_columns(tmp_path: Path) -> None:
    bad = tmp_path / "bad.csv"
    pd.DataFrame({"time": [0], "lat": [1.0]}).to_csv(bad, index=False)
    with pytest.raises(ValueError):
        compare_tracks.load_track_table(bad)

    good = _write_track(tmp_path / "good.csv", 0)
    records = compare_tracks.load_track_table(good)
    assert len(records) == 25
    assert set(records[0]) == {"time", "lon", "lat", "alt"}


def test_build_session_and_summary(tmp_path: Path) -> None:
    paths = [
        _write_track(tmp_path / "fast.csv", 0),
        _write_track(tmp_path / "slow.csv", 120, pace_s=1.1),
        tmp_path / "missing.csv",
    ]
    session = compare_tracks.build_session(paths, "lostTime", "kph", densify=True)

    assert [t.name for t in session.tracks] == ["fast", "slow"]
    assert all(t.is_interpolated for t in session.tracks)

    session.synchronize()
    session.recompute_metrics()
    summary = compare_tracks.summarize(session)

    assert list(summary["track"]) == ["fast", "slow"]
    assert summary.loc[1, "offset_s"] == pytest.approx(-120.0)
    assert summary.loc[1, "final_lost_time_s"] == pytest.approx(2.4)
    assert pd.isna(summary.loc[0, "final_lost_time_s"])

    compare_tracks.print_summary_table(summary, session)


def test_metric_plot_is_written(tmp_path: Path) -> None:
    paths = [_write_track(tmp_path / "a.csv", 0), _write_track(tmp_path / "b.csv", 10, pace_s=0.9)]
    session = compare_tracks.build_session(paths, "speed", "mph")
    assert all(len(t.cumulative_distances) == len(t.samples) for t in session.tracks)

    output = tmp_path / "plot.png"
    assert compare_tracks.create_metric_plot(session, output)
    assert output.exists()


def test_plot_skipped_without_metric(tmp_path: Path) -> None:
    paths = [_write_track(tmp_path / "a.csv", 0)]
    session = compare_tracks.build_session(paths, "none", "mph")
    assert not compare_tracks.create_metric_plot(session, tmp_path / "none.png")
