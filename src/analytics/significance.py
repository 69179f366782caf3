"""
Significance testing for factor/flare associations.

Confidence grades come from one deterministic rule applied to every
factor: combined occurrences (flare + baseline) >= 10 → high, >= 5 →
medium, else low.  The grade is monotone in the combined count.

Each result also carries a descriptive p-value from a chi-square test on
the 2×2 contingency table

                 factor present   factor absent
    flare           a                 b
    baseline        c                 d

with Yates' continuity correction.  The p-value is reported alongside the
grade and never changes it.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from scipy import stats as sp_stats

from constants import CONFIDENCE_HIGH_MIN, CONFIDENCE_MEDIUM_MIN


def grade_confidence(flare_occurrences: int, baseline_occurrences: int) -> str:
    combined = flare_occurrences + baseline_occurrences
    if combined >= CONFIDENCE_HIGH_MIN:
        return "high"
    if combined >= CONFIDENCE_MEDIUM_MIN:
        return "medium"
    return "low"


def contingency_table(flare_occurrences: int, baseline_occurrences: int,
                      flare_days: int, baseline_days: int) -> np.ndarray:
    return np.array(
        [
            [flare_occurrences, flare_days - flare_occurrences],
            [baseline_occurrences, baseline_days - baseline_occurrences],
        ],
        dtype=np.float64,
    )


def chi_square_p_value(flare_occurrences: int, baseline_occurrences: int,
                       flare_days: int, baseline_days: int) -> float:
    """p-value of the chi-square independence test; 1.0 for degenerate tables.

    A table with an all-zero row or column has a zero expected frequency
    and no defined statistic.
    """
    table = contingency_table(flare_occurrences, baseline_occurrences, flare_days, baseline_days)
    if (table < 0).any():
        raise ValueError(f"occurrences exceed day counts: {table.tolist()}")
    if (table.sum(axis=0) == 0).any() or (table.sum(axis=1) == 0).any():
        return 1.0
    _, p, _, _ = sp_stats.chi2_contingency(table, correction=True)
    p = float(p)
    return 1.0 if math.isnan(p) else p


def assess_significance(flare_occurrences: int, baseline_occurrences: int,
                        flare_days: int, baseline_days: int) -> Tuple[str, float]:
    """Return (confidence grade, p-value) for one factor."""
    return (
        grade_confidence(flare_occurrences, baseline_occurrences),
        chi_square_p_value(flare_occurrences, baseline_occurrences, flare_days, baseline_days),
    )

