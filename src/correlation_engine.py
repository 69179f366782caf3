"""
Flare Correlation Engine
========================
Finds statistical associations between logged factors (foods, exercise,
activities, sleep, stress) and symptom flares, and scores next-day flare
risk from the current day's partial logs.

Architecture (4 layers, one direction):
  Layer 0 - Load + clean:  fetch DailyRecords for the window (+1 lookback
            day), drop malformed entries and count them as warnings.
  Layer 1 - Classify:  flare vs baseline per logged day; refuse to analyse
            windows with too few flare or logged days.
  Layer 2 - Windows + frequencies:  factor presence per day from lookback
            windows, flare vs baseline frequency, smoothed ratio filter.
  Layer 3 - Rank:  confidence grade (occurrence count) + chi-square p-value,
            strength clamp, deterministic ordering.

Results are cached per (user, window_days, window_end).  Recomputation runs
on a background pool; the cache swap is version-guarded so a superseded
run never overwrites a newer result.

This is association only.  No causal claim, no learned weights.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from analytics.flare_classifier import check_sufficiency, classify_days, is_flare_day
from analytics.frequency_analyzer import analyze_frequencies, build_presence_frame
from analytics.predictive_scorer import score_risk
from analytics.ranker import rank_correlations
from analytics.window_extractor import (
    CATEGORIES,
    candidate_factors,
    extract_presence,
    sanitize_record,
    window_label,
)
from engine_config import EngineConfig
from log_store import LogStore
from models import (
    CacheConsistencyError,
    CorrelationResult,
    CorrelationResultSet,
    DailyRecord,
    ExerciseEntry,
    InsufficientDataError,
    LogStoreError,
    MalformedEntryError,
    RecomputeCancelled,
    RiskScore,
    TodaySnapshot,
)
from pipeline.accuracy_tracker import AccuracyTracker
from pipeline.recompute_worker import CancellationToken, RecomputeWorker
from pipeline.result_cache import CacheEntry, CacheKey, ResultCache

log = logging.getLogger("correlation_engine")

# Faults from the log store or malformed record shapes that are reported
# to callers as MalformedEntryError.
DATA_SHAPE_ERRORS = (ValueError, TypeError, KeyError, AttributeError)

# Attempts to obtain a result when a sync caller's run keeps being superseded
MAX_SUPERSEDED_WAITS = 5


class FlareCorrelationEngine:
    """
    Orchestrates the four analysis layers, the result cache and the risk model.
    The log store is injected; the engine holds no global state.
    """

    def __init__(
        self,
        log_store: LogStore,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        worker: Optional[RecomputeWorker] = None,
        auto_invalidate: bool = True,
    ):
        self.store = log_store
        self.config = config or EngineConfig()
        self._clock = clock or datetime.now
        self._worker = worker or RecomputeWorker(max_workers=self.config.worker_threads)
        self.cache = ResultCache()
        self.accuracy = AccuracyTracker()
        if auto_invalidate and hasattr(log_store, "subscribe"):
            log_store.subscribe(self.notify_entry_written)

    # ─── Outbound interface ─────────────────────────────────

    def compute_correlations(
        self,
        user_id: str,
        window_days: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> CorrelationResultSet:
        """Ranked correlations for the *window_days* ending at *as_of* (default today).

        Served from cache when possible.  Otherwise recomputed on the
        background pool while this call waits.
        Raises InsufficientDataError or MalformedEntryError.
        """
        key = self._key(user_id, window_days, as_of)
        cached = self.cache.get(key)
        if cached is not None:
            log.info("   Cache hit for %s (calculated %s)", key, cached.calculated_at)
            return replace(cached.result_set, from_cache=True)

        future = self._submit(key)
        for _ in range(MAX_SUPERSEDED_WAITS):
            try:
                return self._translate(future.result)
            except RecomputeCancelled:
                cached = self.cache.get(key)
                if cached is not None:
                    return replace(cached.result_set, from_cache=True)
                newer = self._worker.latest(key)
                future = newer if newer is not None and newer is not future else self._submit(key)
        return self._translate(future.result)

    def compute_correlations_async(
        self,
        user_id: str,
        window_days: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> Future:
        """Future resolving to a CorrelationResultSet; cache hits resolve immediately."""
        key = self._key(user_id, window_days, as_of)
        cached = self.cache.get(key)
        if cached is not None:
            done: Future = Future()
            done.set_result(replace(cached.result_set, from_cache=True))
            return done
        return self._submit(key)

    def predict_risk_for_today(self, user_id: str, partial_today: TodaySnapshot) -> RiskScore:
        """Risk of a flare on the day after *partial_today*, from its logs so far."""
        triggers = self._known_triggers(user_id, partial_today.date)
        previous = self._translate(
            self.store.fetch_daily_records,
            user_id,
            partial_today.date - timedelta(days=1),
            partial_today.date - timedelta(days=1),
        )
        previous_exercises: List[ExerciseEntry] = [e for r in previous for e in r.exercises]
        score = self._translate(score_risk, partial_today, triggers, previous_exercises)
        self.accuracy.record_prediction(user_id, score)
        return score

    def evaluate_prediction(self, user_id: str, day: date) -> Optional[bool]:
        """Compare the prediction targeting *day* with the flare label logged for it."""
        if self.accuracy.pending_prediction(user_id, day) is None:
            return None
        records = self._translate(self.store.fetch_daily_records, user_id, day, day)
        if not records:
            return None
        record, _ = self._translate(sanitize_record, records[0])
        correct = self.accuracy.record_outcome(
            user_id, day, is_flare_day(record, self.config.flare_severity_threshold)
        )
        log.info(
            "   Accuracy for user %s: %s over %d evaluated prediction(s)",
            user_id, self.accuracy.accuracy(user_id), self.accuracy.evaluated_count(user_id),
        )
        return correct

    def get_prediction_accuracy(self, user_id: str) -> Optional[float]:
        return self.accuracy.accuracy(user_id)

    def invalidate(self, user_id: str) -> None:
        """Force the next compute_correlations for *user_id* to bypass the cache."""
        self.cache.invalidate(user_id)

    def notify_entry_written(self, user_id: str, day: date) -> None:
        """Invalidate when a write lands inside a cached or in-flight window."""
        user_id = str(user_id)
        if self.cache.covers(user_id, day) or self._worker.has_inflight(lambda k: k[0] == user_id):
            self.cache.invalidate(user_id)

    def get_last_calculated(self, user_id: str) -> Optional[datetime]:
        return self.cache.last_calculated(user_id)

    def shutdown(self) -> None:
        self._worker.shutdown(wait=True)

    # ─── Scheduling ─────────────────────────────────────────

    def _key(self, user_id: str, window_days: Optional[int], as_of: Optional[date]) -> CacheKey:
        days = self.config.default_window_days if window_days is None else window_days
        if days < 1:
            raise ValueError(f"window_days must be >= 1, got {days}")
        end = as_of or self._clock().date()
        return ResultCache.make_key(user_id, days, end)

    def _submit(self, key: CacheKey) -> Future:
        version = self.cache.next_version()

        def job(token: CancellationToken) -> CorrelationResultSet:
            return self._translate(self._recompute, key, token)

        return self._worker.submit(key, version, job)

    def _recompute(self, key: CacheKey, token: CancellationToken) -> CorrelationResultSet:
        user_id, window_days, window_end = key
        result_set = self._compute_raw(user_id, window_days, window_end, token.checkpoint)
        token.checkpoint()
        entry = CacheEntry(
            result_set=result_set,
            version=token.version,
            window_start=result_set.window_start,
        )
        try:
            self.cache.store(key, entry)
        except CacheConsistencyError as e:
            log.info("   Discarding stale cache write for %s: %s", key, e)
        return result_set

    @staticmethod
    def _translate(fn, *args):
        """Run *fn*, reporting data-shape faults as MalformedEntryError."""
        try:
            return fn(*args)
        except (InsufficientDataError, MalformedEntryError, RecomputeCancelled):
            raise
        except LogStoreError as e:
            log.exception("Log store failure: %s", e)
            raise MalformedEntryError(f"log store failure: {e}") from e
        except DATA_SHAPE_ERRORS as e:
            log.exception("Correlation analysis failed on malformed data: %s", e)
            raise MalformedEntryError(f"malformed log data: {e}") from e

    def _known_triggers(self, user_id: str, day: date) -> List[CorrelationResult]:
        try:
            result_set = self.compute_correlations(user_id, as_of=day)
        except InsufficientDataError as e:
            log.info("   No trigger history for user %s: %s", user_id, e.reason)
            return []
        return result_set.triggers("medium")

    # ─── Raw computation (no cache) ─────────────────────────

    def _compute_raw(
        self,
        user_id: str,
        window_days: int,
        window_end: date,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> CorrelationResultSet:
        """Run layers 0-3 for one window and return the result set."""
        window_start = window_end - timedelta(days=window_days - 1)
        log.info("\nCorrelation Engine - user %s, %s -> %s", user_id, window_start, window_end)

        records, warnings = self._layer0_load_and_clean(user_id, window_start, window_end)
        in_window = [r for r in records if window_start <= r.date <= window_end]

        labels = self._layer1_classify(in_window)
        presence, frame, mask = self._layer2_presence(records, labels)
        frequencies = analyze_frequencies(
            frame,
            mask,
            min_occurrences=self.config.min_occurrences,
            significance_threshold=self.config.significance_threshold,
            checkpoint=checkpoint,
        )

        calculated_at = self._clock()
        windows = {c: window_label(self.config.lookback_for(c)) for c in CATEGORIES}
        ranked = rank_correlations(frequencies, calculated_at, windows, checkpoint=checkpoint)

        n_flare = int(mask.sum())
        log.info(
            "\n   COMPUTATION DIGEST (%s -> %s)\n"
            "   Layer 0 Load & Clean : %d days, %d warnings\n"
            "   Layer 1 Classify     : %d flare, %d baseline\n"
            "   Layer 2 Frequencies  : %d candidates, %d pass filter\n"
            "   Layer 3 Rank         : %d results",
            window_start, window_end,
            len(in_window), warnings,
            n_flare, len(labels) - n_flare,
            frame.shape[1], len(frequencies),
            len(ranked),
        )

        return CorrelationResultSet(
            user_id=str(user_id),
            window_days=window_days,
            window_start=window_start,
            window_end=window_end,
            results=tuple(ranked),
            warning_count=warnings,
            flare_days=n_flare,
            baseline_days=len(labels) - n_flare,
            calculated_at=calculated_at,
        )

    # ─── LAYER 0: Load + Clean ──────────────────────────────

    def _layer0_load_and_clean(
        self, user_id: str, window_start: date, window_end: date
    ) -> Tuple[List[DailyRecord], int]:
        """Fetch the window plus one lookback day; sanitize every record.

        Warnings are counted for in-window days only.
        """
        raw = self.store.fetch_daily_records(user_id, window_start - timedelta(days=1), window_end)
        records: Dict[date, DailyRecord] = {}
        warnings = 0
        for record in raw:
            in_window = window_start <= record.date <= window_end
            if record.date in records:
                log.warning("   Duplicate daily record for %s ignored", record.date)
                warnings += int(in_window)
                continue
            clean, n_bad = sanitize_record(record)
            records[record.date] = clean
            if in_window:
                warnings += n_bad
        ordered = [records[d] for d in sorted(records)]
        if warnings:
            log.warning("   Skipped %d malformed value(s) in window", warnings)
        return ordered, warnings

    # ─── LAYER 1: Classify ──────────────────────────────────

    def _layer1_classify(self, records: Sequence[DailyRecord]) -> Dict[date, bool]:
        labels = classify_days(records, self.config.flare_severity_threshold)
        check_sufficiency(labels, self.config.min_flare_days, self.config.min_logged_days)
        return labels

    # ─── LAYER 2: Windows + presence matrix ─────────────────

    def _layer2_presence(self, records: Sequence[DailyRecord], labels: Dict[date, bool]):
        presence = extract_presence(records, labels, self.config)
        universe = candidate_factors(records)
        frame, mask = build_presence_frame(presence, labels, universe)
        return presence, frame, mask
