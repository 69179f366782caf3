"""
Temporal window extraction.

For every flare day, collects the factors whose entries precede a
flare-triggering symptom within the lookback window of their category.
Only the day's own record and the immediately preceding day's record are
scanned.  Presence is boolean per day: one entry is enough, a second adds
nothing.

Baseline days have no symptom anchor; they are anchored at the end of
their own day.  The whole day counts for every category, plus the prior
day for full-prior-day categories.

Entry validation lives here too: malformed entries are dropped with a
warning and counted, never fatal.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from analytics.flare_classifier import flare_symptoms
from constants import (
    ACTIVITY_TYPES,
    EXCESSIVE_SLEEP_ABOVE_HOURS,
    EXERCISE_MAX_MINUTES,
    EXERCISE_MIN_MINUTES,
    EXERCISE_TYPES,
    HIGH_INTENSITY_MIN,
    HIGH_STRESS_MIN,
    MEAL_CATEGORIES,
    OTHER_EXERCISE,
    POOR_SLEEP_BELOW_HOURS,
    SCALE_MAX,
    SCALE_MIN,
    SLEEP_MAX_HOURS,
    SLEEP_MIN_HOURS,
)
from engine_config import EngineConfig
from models import (
    ActivityEntry,
    DailyRecord,
    ExerciseEntry,
    Factor,
    FoodEntry,
    LogEntry,
    MalformedEntryError,
    SymptomEntry,
)

log = logging.getLogger("analytics.window_extractor")

CATEGORIES = ("food", "exercise", "activity", "sleep")


# ─── Validation ─────────────────────────────────────────────


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _in_scale(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and SCALE_MIN <= value <= SCALE_MAX


def _non_negative_or_none(value) -> bool:
    return value is None or (_is_number(value) and value >= 0)


def validate_entry(entry: LogEntry) -> None:
    """Raise MalformedEntryError if *entry* has a wrongly typed field or
    violates a value-range invariant."""
    if not isinstance(entry, LogEntry):
        raise MalformedEntryError(f"not a log entry: {type(entry).__name__}", entry)
    if not isinstance(entry.timestamp, datetime):
        raise MalformedEntryError("timestamp is missing or not a datetime", entry)

    scalar = entry.intensity_scalar
    if (entry.scalar_required or scalar is not None) and not _in_scale(scalar):
        raise MalformedEntryError(
            f"{entry.kind} {entry.scalar_name} {scalar!r} outside {SCALE_MIN}-{SCALE_MAX}", entry
        )

    if isinstance(entry, SymptomEntry):
        if not isinstance(entry.symptom, str):
            raise MalformedEntryError(f"symptom name {entry.symptom!r} is not text", entry)
        if not _non_negative_or_none(entry.duration_minutes):
            raise MalformedEntryError(f"symptom duration {entry.duration_minutes!r} invalid", entry)
    elif isinstance(entry, FoodEntry):
        if not entry.normalized_name:
            raise MalformedEntryError(f"food name {entry.name!r} is missing or empty", entry)
        if not isinstance(entry.meal, str) or entry.meal not in MEAL_CATEGORIES:
            raise MalformedEntryError(f"unknown meal category {entry.meal!r}", entry)
        if not _non_negative_or_none(entry.quantity):
            raise MalformedEntryError(f"food quantity {entry.quantity!r} invalid", entry)
    elif isinstance(entry, ExerciseEntry):
        if not isinstance(entry.exercise_type, str) or (
            entry.exercise_type not in EXERCISE_TYPES and entry.exercise_type != OTHER_EXERCISE
        ):
            raise MalformedEntryError(f"exercise type {entry.exercise_type!r} invalid", entry)
        if entry.custom_type is not None and not isinstance(entry.custom_type, str):
            raise MalformedEntryError(f"custom exercise type {entry.custom_type!r} is not text", entry)
        if not (
            _is_number(entry.duration_minutes)
            and EXERCISE_MIN_MINUTES <= entry.duration_minutes <= EXERCISE_MAX_MINUTES
        ):
            raise MalformedEntryError(
                f"exercise duration {entry.duration_minutes!r} outside 1-480 minutes", entry
            )
    elif isinstance(entry, ActivityEntry):
        if entry.category not in ACTIVITY_TYPES:
            raise MalformedEntryError(f"unknown activity type {entry.activity_type!r}", entry)
        if not _non_negative_or_none(entry.duration_minutes):
            raise MalformedEntryError(f"activity duration {entry.duration_minutes!r} invalid", entry)


def entry_kind(entry) -> str:
    return getattr(entry, "kind", type(entry).__name__)


def _valid_entries(entries: Iterable[LogEntry], day: date) -> Tuple[list, int]:
    kept, skipped = [], 0
    for entry in entries:
        try:
            validate_entry(entry)
        except MalformedEntryError as e:
            skipped += 1
            log.warning("   Skipping malformed %s entry on %s: %s", entry_kind(entry), day, e.reason)
            continue
        kept.append(entry)
    return kept, skipped


def sanitize_record(record: DailyRecord) -> Tuple[DailyRecord, int]:
    """Return a copy of *record* without malformed entries, plus the skip count."""
    symptoms, n_sym = _valid_entries(record.symptoms, record.date)
    foods, n_food = _valid_entries(record.foods, record.date)
    exercises, n_ex = _valid_entries(record.exercises, record.date)
    activities, n_act = _valid_entries(record.activities, record.date)
    warnings = n_sym + n_food + n_ex + n_act

    sleep = record.sleep_hours
    if sleep is not None and not (
        _is_number(sleep) and SLEEP_MIN_HOURS <= sleep <= SLEEP_MAX_HOURS
    ):
        log.warning("   Ignoring sleep hours %r on %s (outside 0-24)", sleep, record.date)
        sleep = None
        warnings += 1

    clean = replace(
        record,
        sleep_hours=sleep,
        symptoms=symptoms,
        foods=foods,
        exercises=exercises,
        activities=activities,
    )
    return clean, warnings


# ─── Factor derivation ──────────────────────────────────────


# Derived factor raised when an entry's 1-10 scalar reaches the threshold
SCALAR_FACTORS = {
    "exercise": (HIGH_INTENSITY_MIN, Factor("high_intensity_exercise")),
    "activity": (HIGH_STRESS_MIN, Factor("high_stress")),
}


def entry_factors(entry: LogEntry) -> Set[Factor]:
    """Factors a single entry contributes to."""
    if isinstance(entry, FoodEntry):
        return {Factor("food", entry.normalized_name)}
    if not isinstance(entry, (ExerciseEntry, ActivityEntry)):
        return set()
    out = {Factor(f"{entry.kind}_type", entry.category)}
    threshold, derived = SCALAR_FACTORS[entry.kind]
    scalar = entry.intensity_scalar
    if scalar is not None and scalar >= threshold:
        out.add(derived)
    return out


def sleep_factors(hours: Optional[float]) -> Set[Factor]:
    if hours is None:
        return set()
    if hours < POOR_SLEEP_BELOW_HOURS:
        return {Factor("poor_sleep")}
    if hours > EXCESSIVE_SLEEP_ABOVE_HOURS:
        return {Factor("excessive_sleep")}
    return set()


def _timed_factors(record: DailyRecord) -> List[Tuple[datetime, str, Set[Factor]]]:
    """(timestamp, category, factors) for every factor-bearing entry of the record.

    Sleep is placed at midnight of the record's date.
    """
    out: List[Tuple[datetime, str, Set[Factor]]] = []
    sleep = sleep_factors(record.sleep_hours)
    if sleep:
        out.append((datetime.combine(record.date, time.min), "sleep", sleep))
    for entry in record.entries():
        factors = entry_factors(entry)
        if factors:
            out.append((entry.timestamp, entry.kind, factors))
    return out


# ─── Windows ────────────────────────────────────────────────


def window_start(anchor: datetime, lookback_hours: Optional[float]) -> datetime:
    """Opening instant of a lookback window ending at *anchor*.

    ``None`` means the full prior day: the window opens at midnight of the
    calendar day before the anchor.
    """
    if lookback_hours is None:
        return datetime.combine(anchor.date() - timedelta(days=1), time.min)
    return anchor - timedelta(hours=lookback_hours)


def window_label(lookback_hours: Optional[float]) -> str:
    if lookback_hours is None:
        return "prior day"
    return f"{lookback_hours:g}h"


def _scanned(record: DailyRecord, previous: Optional[DailyRecord]) -> List[Tuple[datetime, str, Set[Factor]]]:
    items = _timed_factors(record)
    if previous is not None and previous.date == record.date - timedelta(days=1):
        items.extend(_timed_factors(previous))
    return items


def flare_day_factors(
    record: DailyRecord,
    previous: Optional[DailyRecord],
    config: EngineConfig,
) -> Set[Factor]:
    """Union of factors inside any flare-triggering symptom's windows."""
    anchors = [s.timestamp for s in flare_symptoms(record, config.flare_severity_threshold)]
    present: Set[Factor] = set()
    if not anchors:
        return present
    items = _scanned(record, previous)
    for anchor in anchors:
        for ts, category, factors in items:
            start = window_start(anchor, config.lookback_for(category))
            if start <= ts < anchor:
                present |= factors
    return present


def baseline_day_factors(
    record: DailyRecord,
    previous: Optional[DailyRecord],
    config: EngineConfig,
) -> Set[Factor]:
    """Factors present on a baseline day, anchored at the end of that day.

    Hour-based windows are widened to cover the whole day; full-prior-day
    windows open at midnight of the day before.
    """
    day_start = datetime.combine(record.date, time.min)
    anchor = day_start + timedelta(days=1)
    present: Set[Factor] = set()
    for ts, category, factors in _scanned(record, previous):
        lookback = config.lookback_for(category)
        if lookback is None:
            start = window_start(day_start, None)
        else:
            start = min(window_start(anchor, lookback), day_start)
        if start <= ts < anchor:
            present |= factors
    return present


def extract_presence(
    records: Sequence[DailyRecord],
    labels: Dict[date, bool],
    config: EngineConfig,
) -> Dict[date, Set[Factor]]:
    """Factor presence for every labelled day.

    *records* must already be sanitized; they may include one extra day
    before the analysis window so the first day can look back.
    """
    by_date = {r.date: r for r in records}
    presence: Dict[date, Set[Factor]] = {}
    for day, is_flare in labels.items():
        record = by_date[day]
        previous = by_date.get(day - timedelta(days=1))
        if is_flare:
            presence[day] = flare_day_factors(record, previous, config)
        else:
            presence[day] = baseline_day_factors(record, previous, config)
    return presence


def candidate_factors(records: Iterable[DailyRecord]) -> Set[Factor]:
    """The full candidate universe observed in *records* plus the fixed derived factors."""
    universe = {
        Factor("high_intensity_exercise"),
        Factor("poor_sleep"),
        Factor("excessive_sleep"),
        Factor("high_stress"),
    }
    for record in records:
        for entry in record.entries():
            universe |= entry_factors(entry)
    return universe
