"""
Compare recorded tracks on a shared clock.

This script loads decoded track tables (CSV with time, lon, lat and optional
alt columns), synchronizes them at a start point, computes a comparison
metric and prints a side-by-side summary. Optionally plots the metric along
each track and replays the synchronized tracks headlessly.

Usage:
    python3 compare_tracks.py run_a.csv run_b.csv
    python3 compare_tracks.py run_a.csv run_b.csv --metric lostTime --start 0:12
    python3 compare_tracks.py run_a.csv run_b.csv --densify --plot-dir comparison
    python3 compare_tracks.py run_a.csv run_b.csv --replay --speed 20
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from trackreplay.config import MetricMode, load_settings
from trackreplay.export import export_track_csv
from trackreplay.ingest import REQUIRED_COLUMNS
from trackreplay.metric_pipeline import value_unit
from trackreplay.references import FlagKind
from trackreplay.session import ReplaySession


def load_track_table(csv_path: Path) -> List[Dict]:
    """
    Load a decoded track table from CSV.

    Args:
        csv_path: Path to a CSV file with time, lon, lat and optional alt.

    Returns:
        List of sample records.

    Raises:
        ValueError: If a required column is missing.
    """
    df = pd.read_csv(csv_path)
    df.columns = [col.strip().lower() for col in df.columns]
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"{csv_path.name}: missing columns {missing}")
    return df.to_dict("records")


def parse_flag(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse a 'track:sample' flag argument."""
    if value is None:
        return None
    try:
        track_index, sample_index = (int(part) for part in value.split(":", 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected TRACK:SAMPLE, got {value!r}") from None
    return track_index, sample_index


def build_session(csv_paths: List[Path], metric: str, units: str,
                  continuous: bool = True, densify: bool = False) -> ReplaySession:
    """
    Load every table into a new replay session.

    Tables that fail to load are reported and skipped.

    Args:
        csv_paths: Track tables to load, in order.
        metric: Metric mode name.
        units: Speed units ("mph" or "kph").
        continuous: Continuous rather than stepped segment colors.
        densify: Interpolate the tracks after loading.

    Returns:
        ReplaySession with the loaded tracks.
    """
    settings = load_settings(metric_mode=metric, speed_units=units, continuous_colors=continuous)
    session = ReplaySession(settings=settings)

    for csv_path in csv_paths:
        try:
            records = load_track_table(csv_path)
        except (OSError, ValueError, pd.errors.ParserError) as e:
            print(f"Warning: Could not read {csv_path}: {e}")
            continue
        result = session.load_track(records, name=csv_path.stem)
        if not result.ok:
            print(f"Warning: {result.message}")

    if densify and session.tracks:
        print(session.densify_all().message)
    return session


def summarize(session: ReplaySession) -> pd.DataFrame:
    """
    Build a per-track summary of the synchronized comparison.

    Returns:
        DataFrame with one row per track.
    """
    result = session.sync_result
    mode = session.settings.metric_mode
    rows = []
    for idx, track in enumerate(session.tracks):
        offset = result.offsets.get(idx) if result is not None else None
        metric = track.metric_values
        speed = track.speed_in_units(session.settings.speed_units)
        rows.append({
            "track": track.name,
            "samples": len(track),
            "duration_s": track.duration.total_seconds(),
            "distance_m": track.total_distance_m,
            "offset_s": offset.total_seconds() if offset is not None else np.nan,
            "max_speed": float(speed.max()) if len(speed) else np.nan,
            "mean_speed": float(speed.mean()) if len(speed) else np.nan,
            f"mean_{mode.value}": float(np.mean(metric)) if metric is not None and len(metric) else np.nan,
            "final_lost_time_s": (
                float(track.absolute_lost_time[-1])
                if track.absolute_lost_time is not None and len(track.absolute_lost_time)
                else np.nan
            ),
        })
    return pd.DataFrame(rows)


def print_summary_table(summary: pd.DataFrame, session: ReplaySession) -> None:
    """Print the per-track summary as a formatted table."""
    if summary.empty:
        print("No tracks to display!")
        return

    units = session.settings.speed_units
    result = session.sync_result

    print(f"\n{'='*90}")
    print(f"TRACK COMPARISON ({session.settings.metric_mode.value})")
    print(f"{'='*90}")
    if result is not None:
        print(f"Window: {result.window.start} -> {result.window.end} "
              f"({result.window.duration.total_seconds():.1f} s)")
        print(f"Reference: {session.tracks[result.start_track].name} (sample {result.start_index})")

    labels = {
        "samples": "Samples",
        "duration_s": "Duration [s]",
        "distance_m": "Distance [m]",
        "offset_s": "Sync offset [s]",
        "max_speed": f"Max speed [{units}]",
        "mean_speed": f"Mean speed [{units}]",
    }
    for column in summary.columns:
        if column.startswith("mean_") and column not in labels:
            labels[column] = f"Mean {column[5:]}"
    labels["final_lost_time_s"] = "Lost time [s]"

    header = f"{'Metric':<22}"
    for name in summary["track"]:
        header += f"{str(name)[:14]:>15}"
    print(header)
    print("-" * len(header))

    for column, label in labels.items():
        row = f"{label:<22}"
        for value in summary[column]:
            if pd.isna(value):
                row += f"{'N/A':>15}"
            else:
                row += f"{value:>15.2f}"
        print(row)

    print(f"{'='*90}\n")


def create_metric_plot(session: ReplaySession, output_path: Path) -> bool:
    """
    Plot the active metric against distance for every colored track.

    Args:
        session: Session with computed metrics.
        output_path: Path to save the plot.

    Returns:
        True if a plot was written.
    """
    mode = session.settings.metric_mode
    plotted = [
        (track, np.asarray(track.metric_values))
        for track in session.tracks
        if track.visible and track.metric_values is not None
    ]
    if mode == MetricMode.NONE or not plotted:
        print("No metric values to plot!")
        return False

    fig, ax = plt.subplots(figsize=(12, 5))
    for track, values in plotted:
        distance = track.cumulative_distances
        count = min(len(distance), len(values))
        ax.plot(distance[:count], values[:count], label=track.name, color=track.color, linewidth=1.5)

    unit = value_unit(mode, session.settings.speed_units)
    ax.set_xlabel("Distance [m]", fontsize=11, fontweight='bold')
    ax.set_ylabel(f"{mode.value} [{unit}]", fontsize=11, fontweight='bold')
    ax.axhspan(session.settings.legend_min, session.settings.legend_max, color='grey', alpha=0.08)
    ax.grid(True, alpha=0.3, linestyle='--')
    ax.legend()

    plt.suptitle(f'Track Comparison: {mode.value}', fontsize=14, fontweight='bold')
    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    print(f"Saved metric plot to: {output_path}")
    plt.close(fig)
    return True


def replay_headless(session: ReplaySession, speed: float, max_ticks: Optional[int] = None) -> str:
    """
    Play the synchronized tracks in real time without a renderer.

    Returns:
        Final status message.
    """
    result = session.set_speed(speed)
    if not result.ok:
        return result.message
    result = session.play()
    if not result.ok:
        return result.message
    session.scheduler.run_until_complete(max_ticks=max_ticks)
    return session.last_status.message


def main():
    parser = argparse.ArgumentParser(
        description="Synchronize recorded tracks and compare them"
    )
    parser.add_argument(
        "tracks",
        type=str,
        nargs="+",
        help="Decoded track tables (CSV with time, lon, lat[, alt])"
    )
    parser.add_argument(
        "--metric",
        type=str,
        default="timeDifference",
        choices=[mode.value for mode in MetricMode],
        help="Metric to compare (default: timeDifference)"
    )
    parser.add_argument(
        "--units",
        type=str,
        default="mph",
        choices=["mph", "kph"],
        help="Speed units (default: mph)"
    )
    parser.add_argument(
        "--start",
        type=str,
        default=None,
        help="Start flag as TRACK:SAMPLE (default: first sample of the longest track)"
    )
    parser.add_argument(
        "--finish",
        type=str,
        default=None,
        help="Finish flag as TRACK:SAMPLE (default: end of the reference track)"
    )
    parser.add_argument(
        "--densify",
        action="store_true",
        help="Interpolate 5 extra samples between each recorded pair"
    )
    parser.add_argument(
        "--stepped",
        action="store_true",
        help="Use stepped (banded) segment colors"
    )
    parser.add_argument(
        "--plot-dir",
        type=str,
        default=None,
        help="Output directory for the metric plot, summary and track CSVs"
    )
    parser.add_argument(
        "--replay",
        action="store_true",
        help="Replay the synchronized tracks headlessly after comparing"
    )
    parser.add_argument(
        "--speed",
        type=float,
        default=10.0,
        help="Replay speed multiplier (default: 10)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show log output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    csv_paths = [Path(p) for p in args.tracks]
    for csv_path in csv_paths:
        if not csv_path.exists():
            print(f"Error: Track file not found: {csv_path}")
            sys.exit(1)

    try:
        start = parse_flag(args.start)
        finish = parse_flag(args.finish)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    print(f"\n{'='*70}")
    print("Comparing Tracks")
    print(f"{'='*70}")
    print(f"Tracks: {', '.join(p.name for p in csv_paths)}")
    print(f"Metric: {args.metric}")
    print(f"Units: {args.units}")
    print(f"Densify: {args.densify}")
    print(f"{'='*70}")

    session = build_session(
        csv_paths, args.metric, args.units, continuous=not args.stepped, densify=args.densify
    )
    if not session.tracks:
        print("\nError: No tracks loaded.")
        sys.exit(1)

    for kind, flag in ((FlagKind.START, start), (FlagKind.FINISH, finish)):
        if flag is not None:
            print(session.place_flag(kind, *flag).message)

    sync = session.synchronize()
    print(sync.message)
    if not sync.ok:
        sys.exit(1)
    metrics = session.recompute_metrics()
    print(metrics.message)

    summary = summarize(session)
    print_summary_table(summary, session)

    if args.plot_dir:
        plot_dir = Path(args.plot_dir)
        plot_dir.mkdir(exist_ok=True)
        create_metric_plot(session, plot_dir / f"comparison_{args.metric}.png")
        summary_path = plot_dir / f"comparison_{args.metric}.csv"
        summary.to_csv(summary_path, index=False)
        print(f"Saved comparison CSV to: {summary_path}")
        for idx, track in enumerate(session.tracks):
            track_path = plot_dir / f"track_{idx}_{track.name}.csv"
            track_path.write_text(export_track_csv(track, args.units))
            print(f"Saved track CSV to: {track_path}")

    if args.replay:
        print(f"\nReplaying at {args.speed}x...")
        print(replay_headless(session, args.speed))

    print(f"\n{'='*70}")
    print("Comparison Complete!")
    print(f"{'='*70}\n")


if __name__ == "__main__":
    main()
