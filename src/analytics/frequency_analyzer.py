"""
Factor frequency analysis: flare-day vs baseline-day occurrence.

    flare_freq    = flare_occ / n_flare
    baseline_freq = baseline_occ / max(n_baseline, 1)
    raw           = (flare_freq − baseline_freq) / max(baseline_freq, SMOOTHING_FLOOR)

The floor keeps a factor that never appears on baseline days from
dividing by zero.  It is a smoothing heuristic, not an estimator, so raw
can exceed 1.0; the ranker clamps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from constants import SMOOTHING_FLOOR
from models import Factor

log = logging.getLogger("analytics.frequency_analyzer")


@dataclass(frozen=True)
class FactorFrequency:
    factor: Factor
    flare_occurrences: int
    baseline_occurrences: int
    flare_days: int
    baseline_days: int
    flare_frequency: float
    baseline_frequency: float
    raw_correlation: float


def raw_correlation(flare_freq: float, baseline_freq: float,
                    floor: float = SMOOTHING_FLOOR) -> float:
    return (flare_freq - baseline_freq) / max(baseline_freq, floor)


def build_presence_frame(
    presence: Dict[date, Set[Factor]],
    labels: Dict[date, bool],
    universe: Iterable[Factor],
) -> Tuple[pd.DataFrame, pd.Series]:
    """Boolean day × factor matrix plus the flare mask, both indexed by date."""
    days = sorted(labels)
    factors = sorted(universe)
    keys = [f.key for f in factors]
    matrix = np.zeros((len(days), len(factors)), dtype=bool)
    col = {f: j for j, f in enumerate(factors)}
    for i, day in enumerate(days):
        for f in presence.get(day, ()):
            if f in col:
                matrix[i, col[f]] = True
    frame = pd.DataFrame(matrix, index=pd.Index(days, name="date"), columns=keys)
    frame.attrs["factors"] = {f.key: f for f in factors}
    mask = pd.Series([labels[d] for d in days], index=frame.index, name="is_flare", dtype=bool)
    return frame, mask


def factor_frequency(column: pd.Series, flare_mask: pd.Series, factor: Factor) -> FactorFrequency:
    n_flare = int(flare_mask.sum())
    n_base = int((~flare_mask).sum())
    flare_occ = int(column[flare_mask].sum())
    base_occ = int(column[~flare_mask].sum())
    flare_freq = flare_occ / n_flare if n_flare else 0.0
    base_freq = base_occ / max(n_base, 1)
    return FactorFrequency(
        factor=factor,
        flare_occurrences=flare_occ,
        baseline_occurrences=base_occ,
        flare_days=n_flare,
        baseline_days=n_base,
        flare_frequency=flare_freq,
        baseline_frequency=base_freq,
        raw_correlation=raw_correlation(flare_freq, base_freq),
    )


def passes_filter(freq: FactorFrequency, min_occurrences: int, threshold: float) -> bool:
    return freq.flare_occurrences >= min_occurrences and abs(freq.raw_correlation) > threshold


def analyze_frequencies(
    frame: pd.DataFrame,
    flare_mask: pd.Series,
    min_occurrences: int = 3,
    significance_threshold: float = 0.25,
    checkpoint: Optional[Callable[[], None]] = None,
) -> List[FactorFrequency]:
    """Frequencies for every factor that passes the occurrence and strength filters.

    *checkpoint* runs before each factor; it raises to abandon the run.
    """
    factors: Dict[str, Factor] = frame.attrs.get("factors", {})
    kept: List[FactorFrequency] = []
    for key in frame.columns:
        if checkpoint is not None:
            checkpoint()
        freq = factor_frequency(frame[key], flare_mask, factors[key])
        if passes_filter(freq, min_occurrences, significance_threshold):
            kept.append(freq)
    log.info("   %d/%d factors pass the frequency filter", len(kept), len(frame.columns))
    return kept
