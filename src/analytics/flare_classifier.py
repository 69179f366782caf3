"""Flare / baseline day labelling."""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Sequence

from models import DailyRecord, InsufficientDataError, SymptomEntry

log = logging.getLogger("analytics.flare_classifier")


def is_flare_day(record: DailyRecord, threshold: float = 7.0) -> bool:
    """A day is a flare iff it has symptoms and their mean severity >= threshold."""
    severity = record.aggregate_severity
    return severity is not None and severity >= threshold


def flare_symptoms(record: DailyRecord, threshold: float = 7.0) -> List[SymptomEntry]:
    """Symptoms that anchor lookback windows on a flare day.

    Empty for baseline days.  On a flare day the mean is >= threshold,
    so at least one individual severity is too.
    """
    if not is_flare_day(record, threshold):
        return []
    return sorted(
        (s for s in record.symptoms if s.severity >= threshold),
        key=lambda s: s.timestamp,
    )


def classify_days(records: Sequence[DailyRecord], threshold: float = 7.0) -> Dict[date, bool]:
    """Map every logged day to its flare label. Days without a record are absent."""
    return {r.date: is_flare_day(r, threshold) for r in records}


def check_sufficiency(labels: Dict[date, bool], min_flare_days: int, min_logged_days: int) -> None:
    """Raise InsufficientDataError when the window cannot support analysis."""
    n_logged = len(labels)
    n_flare = sum(1 for v in labels.values() if v)
    if n_logged < min_logged_days:
        log.info("   Only %d logged days (need >= %d)", n_logged, min_logged_days)
        raise InsufficientDataError(
            f"Need at least {min_logged_days} logged days, found {n_logged}",
            flare_days=n_flare,
            logged_days=n_logged,
        )
    if n_flare < min_flare_days:
        log.info("   Only %d flare days (need >= %d)", n_flare, min_flare_days)
        raise InsufficientDataError(
            f"Need at least {min_flare_days} flare days, found {n_flare}",
            flare_days=n_flare,
            logged_days=n_logged,
        )
