"""Engine configuration loaded from the environment / .env"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

PRIOR_DAY = "prior_day"


def _parse_lookback(raw: str) -> Optional[float]:
    """Hours as a float; empty or 'prior_day' means the full prior day."""
    value = raw.strip().lower()
    if not value or value == PRIOR_DAY:
        return None
    hours = float(value)
    if hours <= 0:
        raise ValueError(f"lookback must be positive, got {raw!r}")
    return hours


@dataclass(frozen=True)
class EngineConfig:
    flare_severity_threshold: float = 7.0
    min_flare_days: int = 3
    min_logged_days: int = 7
    min_occurrences: int = 3
    significance_threshold: float = 0.25
    # None = full prior day
    food_lookback_hours: Optional[float] = 6.0
    exercise_lookback_hours: Optional[float] = None
    activity_lookback_hours: Optional[float] = None
    sleep_lookback_hours: Optional[float] = None
    default_window_days: int = 30
    worker_threads: int = 2

    def __post_init__(self):
        if not 1 <= self.flare_severity_threshold <= 10:
            raise ValueError("flare_severity_threshold must be within 1-10")
        if self.min_flare_days < 1 or self.min_logged_days < 1:
            raise ValueError("minimum day counts must be >= 1")
        if self.min_occurrences < 1:
            raise ValueError("min_occurrences must be >= 1")
        if self.significance_threshold < 0:
            raise ValueError("significance_threshold must be >= 0")
        if self.default_window_days < 1 or self.worker_threads < 1:
            raise ValueError("window days and worker threads must be >= 1")

    def lookback_for(self, category: str) -> Optional[float]:
        return getattr(self, f"{category}_lookback_hours")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from FLARE_* variables, falling back to defaults."""
        load_dotenv()
        kwargs = {}
        for f in fields(cls):
            raw = os.getenv(ENV_VARS[f.name])
            if raw is None:
                continue
            if f.name.endswith("_lookback_hours"):
                kwargs[f.name] = _parse_lookback(raw)
            elif f.type == "int":
                kwargs[f.name] = int(raw)
            else:
                kwargs[f.name] = float(raw)
        return cls(**kwargs)


ENV_VARS = {
    "flare_severity_threshold": "FLARE_SEVERITY_THRESHOLD",
    "min_flare_days": "FLARE_MIN_FLARE_DAYS",
    "min_logged_days": "FLARE_MIN_LOGGED_DAYS",
    "min_occurrences": "FLARE_MIN_OCCURRENCES",
    "significance_threshold": "FLARE_SIGNIFICANCE_THRESHOLD",
    "food_lookback_hours": "FLARE_FOOD_LOOKBACK_HOURS",
    "exercise_lookback_hours": "FLARE_EXERCISE_LOOKBACK_HOURS",
    "activity_lookback_hours": "FLARE_ACTIVITY_LOOKBACK_HOURS",
    "sleep_lookback_hours": "FLARE_SLEEP_LOOKBACK_HOURS",
    "default_window_days": "FLARE_DEFAULT_WINDOW_DAYS",
    "worker_threads": "FLARE_WORKER_THREADS",
}
