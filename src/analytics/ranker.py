"""Turn filtered factor frequencies into ranked, confidence-graded results."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from analytics.frequency_analyzer import FactorFrequency
from analytics.significance import assess_significance
from models import CorrelationResult, Factor

log = logging.getLogger("analytics.ranker")

MAX_STRENGTH = 1.0


def clamp_strength(raw: float) -> float:
    """|raw| capped at 1.0. The smoothed ratio is unbounded above."""
    return min(abs(raw), MAX_STRENGTH)


def describe(factor: Factor, strength: float, is_protective: bool) -> str:
    direction = "appears on better days" if is_protective else "appears before flares"
    return f"{factor.name} {direction} ({round(strength * 100)}% association)"


def sort_key(result: CorrelationResult):
    return (-result.strength, -result.occurrence_count, result.factor.name, result.factor.key)


def rank_correlations(
    frequencies: Iterable[FactorFrequency],
    calculated_at: datetime,
    window_labels: Optional[Dict[str, str]] = None,
    checkpoint: Optional[Callable[[], None]] = None,
) -> List[CorrelationResult]:
    """Build CorrelationResults and order them: strength desc, occurrences desc, name asc."""
    window_labels = window_labels or {}
    results: List[CorrelationResult] = []
    for freq in frequencies:
        if checkpoint is not None:
            checkpoint()
        is_protective = freq.raw_correlation < 0
        strength = clamp_strength(freq.raw_correlation)
        confidence, p_value = assess_significance(
            freq.flare_occurrences,
            freq.baseline_occurrences,
            freq.flare_days,
            freq.baseline_days,
        )
        results.append(
            CorrelationResult(
                factor=freq.factor,
                strength=strength,
                is_protective=is_protective,
                confidence=confidence,
                flare_occurrences=freq.flare_occurrences,
                baseline_occurrences=freq.baseline_occurrences,
                raw_correlation=freq.raw_correlation,
                p_value=p_value,
                window=window_labels.get(freq.factor.category, ""),
                calculated_at=calculated_at,
                description=describe(freq.factor, strength, is_protective),
            )
        )
    results.sort(key=sort_key)
    if results:
        top = results[0]
        log.info("   Top factor: %s (strength %.2f, %s)", top.factor.key, top.strength, top.confidence)
    return results
