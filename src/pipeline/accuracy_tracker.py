"""Running accuracy of next-day risk predictions.

A prediction counts as a flare forecast when its band is red.  It is
correct when that matches the realized flare label of its target day.
Tracking is observational only; the model weights stay fixed.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Dict, Optional, Tuple

from models import RiskScore

log = logging.getLogger("pipeline.accuracy_tracker")

FLARE_FORECAST_BANDS = {"red"}


class AccuracyTracker:
    def __init__(self):
        self._pending: Dict[Tuple[str, date], RiskScore] = {}
        self._totals: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()

    def record_prediction(self, user_id: str, score: RiskScore) -> None:
        """Remember the latest prediction for its target day (re-predictions overwrite)."""
        with self._lock:
            self._pending[(str(user_id), score.target_date)] = score

    def pending_prediction(self, user_id: str, day: date) -> Optional[RiskScore]:
        return self._pending.get((str(user_id), day))

    def record_outcome(self, user_id: str, day: date, was_flare: bool) -> Optional[bool]:
        """Score the prediction for *day* against the realized label.

        Returns whether it was correct, or None if no prediction targeted *day*.
        """
        user_id = str(user_id)
        with self._lock:
            score = self._pending.pop((user_id, day), None)
            if score is None:
                return None
            correct = (score.band in FLARE_FORECAST_BANDS) == was_flare
            hits, total = self._totals.get(user_id, (0, 0))
            self._totals[user_id] = (hits + int(correct), total + 1)
        log.info(
            "   Prediction for %s: band=%s flare=%s -> %s",
            day, score.band, was_flare, "correct" if correct else "missed",
        )
        return correct

    def accuracy(self, user_id: str) -> Optional[float]:
        """Percentage of correct band classifications, or None before any outcome."""
        hits, total = self._totals.get(str(user_id), (0, 0))
        if total == 0:
            return None
        return 100.0 * hits / total

    def evaluated_count(self, user_id: str) -> int:
        return self._totals.get(str(user_id), (0, 0))[1]
