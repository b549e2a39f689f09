"""
Replay Settings for Track Replay

This module holds the legend/config surface consumed by the replay core:
the active metric mode, legend range, speed units, and segment style.
Settings can be seeded from TRACK_REPLAY_* environment variables.
"""

import os
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple


class MetricMode(str, Enum):
    NONE = "none"
    SPEED = "speed"
    ACCELERATION = "acceleration"
    TIME_DIFFERENCE = "timeDifference"
    LOST_TIME = "lostTime"

    @classmethod
    def parse(cls, value) -> "MetricMode":
        if isinstance(value, cls):
            return value
        if value == "noColor":
            return cls.NONE
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown metric mode: {value!r}") from None

    @property
    def comparative(self) -> bool:
        return self in (MetricMode.TIME_DIFFERENCE, MetricMode.LOST_TIME)


SPEED_UNITS = ("mph", "kph")

# Legend range used until the user sets a bound explicitly
DEFAULT_LEGEND_RANGES: Dict[MetricMode, Tuple[float, float]] = {
    MetricMode.SPEED: (0.0, 25.0),
    MetricMode.ACCELERATION: (-15.0, 15.0),
    MetricMode.TIME_DIFFERENCE: (0.0, 10.0),
    MetricMode.LOST_TIME: (-3.0, 3.0),
}

ENV_PREFIX = "TRACK_REPLAY_"


class ReplaySettings:
    """
    Legend and display settings shared by the metric pipeline.

    Attributes:
        metric_mode: Active MetricMode.
        continuous_colors: Continuous (per-edge) or stepped (banded) segments.
        speed_units: "mph" or "kph".
        legend_min, legend_max: Range values are clamped into before coloring.
        user_set_legend_min, user_set_legend_max: Whether a bound was set
            explicitly; explicit bounds survive metric mode changes.
    """

    def __init__(self, metric_mode=MetricMode.SPEED, continuous_colors: bool = True,
                 speed_units: str = "mph", legend_min: float = 0.0, legend_max: float = 100.0):
        self.metric_mode = MetricMode.parse(metric_mode)
        self.continuous_colors = bool(continuous_colors)
        self.speed_units = _check_units(speed_units)
        self.legend_min = float(legend_min)
        self.legend_max = float(legend_max)
        self.user_set_legend_min = False
        self.user_set_legend_max = False

    def __repr__(self) -> str:
        return (
            f"ReplaySettings(mode={self.metric_mode.value}, units={self.speed_units}, "
            f"legend=[{self.legend_min}, {self.legend_max}], continuous={self.continuous_colors})"
        )

    def apply_default_legend(self) -> None:
        """Restore the mode's default legend range unless a bound was set by the user."""
        if self.user_set_legend_min or self.user_set_legend_max:
            return
        default = DEFAULT_LEGEND_RANGES.get(self.metric_mode)
        if default:
            self.legend_min, self.legend_max = default

    def set_metric_mode(self, mode) -> None:
        self.metric_mode = MetricMode.parse(mode)
        self.apply_default_legend()

    def set_legend_bounds(self, legend_min: Optional[float] = None,
                          legend_max: Optional[float] = None) -> None:
        if legend_min is not None:
            self.legend_min = float(legend_min)
            self.user_set_legend_min = True
        if legend_max is not None:
            self.legend_max = float(legend_max)
            self.user_set_legend_max = True

    def clear_user_legend(self) -> None:
        self.user_set_legend_min = False
        self.user_set_legend_max = False
        self.apply_default_legend()

    def set_speed_units(self, units: str) -> None:
        # Bounds picked in the old unit are meaningless in the new one
        self.speed_units = _check_units(units)
        if self.metric_mode == MetricMode.SPEED:
            self.clear_user_legend()

    def to_dict(self) -> Dict:
        return {
            "metricMode": self.metric_mode.value,
            "continuousColors": self.continuous_colors,
            "speedUnits": self.speed_units,
            "legendMin": self.legend_min,
            "legendMax": self.legend_max,
            "userSetLegendMin": self.user_set_legend_min,
            "userSetLegendMax": self.user_set_legend_max,
        }


def _check_units(units: str) -> str:
    if units not in SPEED_UNITS:
        raise ValueError(f"Unknown speed units: {units!r}")
    return units


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[Mapping[str, str]] = None, **overrides) -> ReplaySettings:
    """
    Build settings from environment variables and keyword overrides.

    Recognized variables: TRACK_REPLAY_METRIC_MODE, TRACK_REPLAY_SPEED_UNITS,
    TRACK_REPLAY_CONTINUOUS_COLORS, TRACK_REPLAY_LEGEND_MIN,
    TRACK_REPLAY_LEGEND_MAX. When a mode is given, its default legend range
    applies unless a bound is given explicitly; otherwise the initial 0..100
    range is kept.

    Args:
        env: Mapping to read from. Defaults to os.environ.
        **overrides: metric_mode, speed_units, continuous_colors, legend_min,
            legend_max; these win over the environment.

    Returns:
        ReplaySettings instance.
    """
    env = os.environ if env is None else env
    values = {}

    if f"{ENV_PREFIX}METRIC_MODE" in env:
        values["metric_mode"] = env[f"{ENV_PREFIX}METRIC_MODE"]
    if f"{ENV_PREFIX}SPEED_UNITS" in env:
        values["speed_units"] = env[f"{ENV_PREFIX}SPEED_UNITS"]
    if f"{ENV_PREFIX}CONTINUOUS_COLORS" in env:
        values["continuous_colors"] = _env_bool(env[f"{ENV_PREFIX}CONTINUOUS_COLORS"])
    if f"{ENV_PREFIX}LEGEND_MIN" in env:
        values["legend_min"] = float(env[f"{ENV_PREFIX}LEGEND_MIN"])
    if f"{ENV_PREFIX}LEGEND_MAX" in env:
        values["legend_max"] = float(env[f"{ENV_PREFIX}LEGEND_MAX"])

    values.update({k: v for k, v in overrides.items() if v is not None})

    settings = ReplaySettings(
        metric_mode=values.get("metric_mode", MetricMode.SPEED),
        continuous_colors=values.get("continuous_colors", True),
        speed_units=values.get("speed_units", "mph"),
    )
    if "metric_mode" in values:
        settings.apply_default_legend()
    settings.set_legend_bounds(values.get("legend_min"), values.get("legend_max"))
    return settings
