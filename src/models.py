"""
Domain types for the flare pattern engine.

Log records arrive from the log store as DailyRecord aggregates owning four
kinds of child entries.  Analysis-time types (Factor, CorrelationResult,
RiskScore) are produced by the engine and never persisted by it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Tuple

from constants import CONFIDENCE_LEVELS, EXERCISE_TYPES, OTHER_EXERCISE


# ─── Log entries ────────────────────────────────────────────


@dataclass
class LogEntry:
    """Shared projection over every entry variant: a timestamp plus an
    optional severity-like scalar."""

    timestamp: datetime

    kind = "entry"
    # Name of the 1-10 scalar, and whether an entry must carry one
    scalar_name = "scalar"
    scalar_required = False

    @property
    def intensity_scalar(self) -> Optional[int]:
        return None


@dataclass
class SymptomEntry(LogEntry):
    severity: int = 1
    symptom: str = ""
    location: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None

    kind = "symptom"
    scalar_name = "severity"
    scalar_required = True

    @property
    def intensity_scalar(self) -> Optional[int]:
        return self.severity


@dataclass
class FoodEntry(LogEntry):
    name: str = ""
    meal: str = "snack"
    quantity: Optional[float] = None
    notes: Optional[str] = None

    kind = "food"

    @property
    def normalized_name(self) -> str:
        if not isinstance(self.name, str):
            return ""
        return " ".join(self.name.split()).casefold()


@dataclass
class ExerciseEntry(LogEntry):
    exercise_type: str = "other"
    duration_minutes: int = 0
    intensity: int = 1
    custom_type: Optional[str] = None

    kind = "exercise"
    scalar_name = "intensity"
    scalar_required = True

    def __post_init__(self):
        # Free text outside the enumerated types is kept as custom_type under "other"
        if not isinstance(self.exercise_type, str):
            return
        logged = self.exercise_type.strip().casefold()
        if logged and logged not in EXERCISE_TYPES and logged != OTHER_EXERCISE:
            if not (isinstance(self.custom_type, str) and self.custom_type.strip()):
                self.custom_type = self.exercise_type
            logged = OTHER_EXERCISE
        self.exercise_type = logged

    @property
    def intensity_scalar(self) -> Optional[int]:
        return self.intensity

    @property
    def category(self) -> str:
        """Enumerated type, or the case-folded free text for 'other'."""
        if not isinstance(self.exercise_type, str):
            return ""
        if (
            self.exercise_type == OTHER_EXERCISE
            and isinstance(self.custom_type, str)
            and self.custom_type.strip()
        ):
            return " ".join(self.custom_type.split()).casefold()
        return self.exercise_type


@dataclass
class ActivityEntry(LogEntry):
    activity_type: str = ""
    duration_minutes: Optional[int] = None
    stress_level: Optional[int] = None

    kind = "activity"
    scalar_name = "stress level"

    @property
    def intensity_scalar(self) -> Optional[int]:
        return self.stress_level

    @property
    def category(self) -> str:
        if not isinstance(self.activity_type, str):
            return ""
        return self.activity_type.strip().casefold()


@dataclass
class DailyRecord:
    """One calendar day of logging for one user."""

    date: date
    sleep_hours: Optional[float] = None
    symptoms: List[SymptomEntry] = field(default_factory=list)
    foods: List[FoodEntry] = field(default_factory=list)
    exercises: List[ExerciseEntry] = field(default_factory=list)
    activities: List[ActivityEntry] = field(default_factory=list)

    @property
    def aggregate_severity(self) -> Optional[float]:
        if not self.symptoms:
            return None
        return sum(s.severity for s in self.symptoms) / len(self.symptoms)

    def entries(self) -> List[LogEntry]:
        """All child entries in timestamp order."""
        out: List[LogEntry] = [*self.symptoms, *self.foods, *self.exercises, *self.activities]
        out.sort(key=lambda e: e.timestamp)
        return out


# ─── Analysis types ─────────────────────────────────────────


FACTOR_LABELS = {
    "high_intensity_exercise": "High-intensity exercise",
    "poor_sleep": "Poor sleep (<6h)",
    "excessive_sleep": "Excessive sleep (>10h)",
    "high_stress": "High stress",
}


@dataclass(frozen=True, order=True)
class Factor:
    """A derived, analysis-time category tested against flares."""

    kind: str
    value: str = ""

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.value}" if self.value else self.kind

    @property
    def name(self) -> str:
        if self.kind in FACTOR_LABELS:
            return FACTOR_LABELS[self.kind]
        return self.value.replace("_", " ").capitalize()

    @property
    def category(self) -> str:
        """Lookback category this factor is windowed with."""
        if self.kind == "food":
            return "food"
        if self.kind in ("exercise_type", "high_intensity_exercise"):
            return "exercise"
        if self.kind in ("activity_type", "high_stress"):
            return "activity"
        return "sleep"


@dataclass(frozen=True)
class CorrelationResult:
    factor: Factor
    strength: float
    is_protective: bool
    confidence: str
    flare_occurrences: int
    baseline_occurrences: int
    raw_correlation: float
    p_value: float
    window: str
    calculated_at: datetime
    description: str

    @property
    def occurrence_count(self) -> int:
        return self.flare_occurrences + self.baseline_occurrences

    @property
    def signed_strength(self) -> float:
        return -self.strength if self.is_protective else self.strength


@dataclass(frozen=True)
class CorrelationResultSet:
    user_id: str
    window_days: int
    window_start: date
    window_end: date
    results: Tuple[CorrelationResult, ...]
    warning_count: int
    flare_days: int
    baseline_days: int
    calculated_at: datetime
    from_cache: bool = False

    def triggers(self, min_confidence: str = "medium") -> List[CorrelationResult]:
        floor = CONFIDENCE_LEVELS.index(min_confidence)
        return [
            r for r in self.results
            if not r.is_protective and CONFIDENCE_LEVELS.index(r.confidence) >= floor
        ]


@dataclass
class TodaySnapshot:
    """The current, possibly partial, day of logging fed to the risk model."""

    date: date
    sleep_hours: Optional[float] = None
    foods: List[FoodEntry] = field(default_factory=list)
    exercises: List[ExerciseEntry] = field(default_factory=list)
    activities: List[ActivityEntry] = field(default_factory=list)


@dataclass(frozen=True)
class RiskScore:
    value: int
    band: str
    target_date: date
    sub_scores: Tuple[Tuple[str, float], ...] = ()
    elevated_count: int = 0


# ─── Errors ─────────────────────────────────────────────────


class FlareEngineError(Exception):
    """Base class for every error the engine raises."""


class InsufficientDataError(FlareEngineError):
    """Too few flare days or logged days in the analysis window."""

    def __init__(self, reason: str, flare_days: int = 0, logged_days: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.flare_days = flare_days
        self.logged_days = logged_days


class MalformedEntryError(FlareEngineError):
    """An entry violates its value-range invariant."""

    def __init__(self, reason: str, entry: object = None):
        super().__init__(reason)
        self.reason = reason
        self.entry = entry


class LogStoreError(FlareEngineError):
    """The log store is unreachable or a query against it failed.

    Reported to engine callers as MalformedEntryError.
    """


class CacheConsistencyError(FlareEngineError):
    """A cache write lost a version race. Internal only."""


class RecomputeCancelled(FlareEngineError):
    """A superseded recomputation stopped early. Internal only."""
