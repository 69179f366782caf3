"""
Next-day flare risk from the current (possibly partial) day.

Fixed weighted model, each sub-score on 0-100:

    risk = 0.35·sleep + 0.30·exercise + 0.25·food + 0.10·stress

With two or more elevated sub-scores (>= ELEVATED_SUBSCORE) the sum is
compounded: risk × (1 + 0.1·(n_elevated − 1)).  Result clamped to 0-100.

Weights are static constants; accuracy tracking never adjusts them.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from analytics.window_extractor import entry_kind, validate_entry
from constants import (
    BASELINE_SUBSCORE,
    COMPOUND_STEP,
    ELEVATED_SUBSCORE,
    GREEN_MAX,
    HIGH_INTENSITY_MIN,
    HIGH_STRESS_MIN,
    RISK_WEIGHTS,
    SLEEP_CURVE_HOURS,
    SLEEP_CURVE_SCORES,
    YELLOW_MAX,
)
from models import (
    ActivityEntry,
    CorrelationResult,
    ExerciseEntry,
    FoodEntry,
    MalformedEntryError,
    RiskScore,
    TodaySnapshot,
)

log = logging.getLogger("analytics.predictive_scorer")

BACK_TO_BACK_HARD_SCORE = 85.0
HARD_AFTER_REST_SCORE = 60.0
MODERATE_EXERCISE_SCORE = 0.0
MODERATE_INTENSITY = (3, 6)
MODERATE_MIN_MINUTES = 20


def _valid(entries: Iterable) -> List:
    kept = []
    for entry in entries:
        try:
            validate_entry(entry)
        except MalformedEntryError as e:
            log.warning("   Ignoring malformed %s entry in today's data: %s", entry_kind(entry), e.reason)
            continue
        kept.append(entry)
    return kept


def sleep_subscore(hours: Optional[float]) -> float:
    """Monotone non-increasing in hours; interpolated between curve knots."""
    if not isinstance(hours, (int, float)) or isinstance(hours, bool) or not 0 <= hours <= 24:
        return BASELINE_SUBSCORE
    return float(np.interp(hours, SLEEP_CURVE_HOURS, SLEEP_CURVE_SCORES))


def exercise_subscore(today: Sequence[ExerciseEntry],
                      previous_day: Optional[Sequence[ExerciseEntry]] = None) -> float:
    """A hard session without a rest day before it is elevated; moderate regular exercise is protective."""
    if any(e.intensity_scalar >= HIGH_INTENSITY_MIN for e in today):
        if previous_day:
            return BACK_TO_BACK_HARD_SCORE
        return HARD_AFTER_REST_SCORE
    lo, hi = MODERATE_INTENSITY
    if any(lo <= e.intensity_scalar <= hi and e.duration_minutes >= MODERATE_MIN_MINUTES for e in today):
        return MODERATE_EXERCISE_SCORE
    return BASELINE_SUBSCORE


def food_subscore(foods: Sequence[FoodEntry], triggers: Sequence[CorrelationResult]) -> float:
    """Baseline plus the headroom scaled by the strongest trigger eaten today."""
    strengths: Dict[str, float] = {
        t.factor.value: t.strength for t in triggers if t.factor.kind == "food"
    }
    eaten = {f.normalized_name for f in foods}
    hits = [strengths[name] for name in eaten if name in strengths]
    if not hits:
        return BASELINE_SUBSCORE
    return BASELINE_SUBSCORE + (100.0 - BASELINE_SUBSCORE) * max(hits)


def stress_subscore(activities: Sequence[ActivityEntry]) -> float:
    levels = [a.intensity_scalar for a in activities if a.intensity_scalar is not None]
    if not levels:
        return BASELINE_SUBSCORE
    peak = max(levels)
    if peak >= HIGH_STRESS_MIN:
        return peak * 10.0
    return peak * 5.0


def risk_band(value: float) -> str:
    if value <= GREEN_MAX:
        return "green"
    if value <= YELLOW_MAX:
        return "yellow"
    return "red"


def combine_subscores(sub_scores: Dict[str, float]) -> tuple:
    """Weighted sum with multiplicative compounding. Returns (value, n_elevated)."""
    base = sum(RISK_WEIGHTS[name] * score for name, score in sub_scores.items())
    n_elevated = sum(1 for score in sub_scores.values() if score >= ELEVATED_SUBSCORE)
    if n_elevated >= 2:
        base *= 1 + COMPOUND_STEP * (n_elevated - 1)
    return min(100.0, max(0.0, base)), n_elevated


def score_risk(
    today: TodaySnapshot,
    triggers: Sequence[CorrelationResult] = (),
    previous_exercises: Optional[Sequence[ExerciseEntry]] = None,
) -> RiskScore:
    """Risk of a flare on the day after ``today.date``."""
    exercises = _valid(today.exercises)
    foods = _valid(today.foods)
    activities = _valid(today.activities)
    previous = _valid(previous_exercises or [])

    sub_scores = {
        "sleep": sleep_subscore(today.sleep_hours),
        "exercise": exercise_subscore(exercises, previous),
        "food": food_subscore(foods, triggers),
        "stress": stress_subscore(activities),
    }
    value, n_elevated = combine_subscores(sub_scores)
    rounded = int(round(value))
    score = RiskScore(
        value=rounded,
        band=risk_band(rounded),
        target_date=today.date + timedelta(days=1),
        sub_scores=tuple(sub_scores.items()),
        elevated_count=n_elevated,
    )
    log.info(
        "   Risk for %s: %d (%s), sleep=%.0f exercise=%.0f food=%.0f stress=%.0f",
        score.target_date, score.value, score.band,
        sub_scores["sleep"], sub_scores["exercise"], sub_scores["food"], sub_scores["stress"],
    )
    return score
