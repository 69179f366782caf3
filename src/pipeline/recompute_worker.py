"""Background recomputation with per-key supersession and cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Hashable, Optional, Tuple

from models import RecomputeCancelled

log = logging.getLogger("pipeline.recompute_worker")


class CancellationToken:
    """Checked between factor iterations; never mid-statistic."""

    def __init__(self, version: int):
        self.version = version
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def checkpoint(self) -> None:
        if self._event.is_set():
            raise RecomputeCancelled(f"recompute v{self.version} superseded")


class RecomputeWorker:
    """Runs recompute jobs off the caller's thread.

    Submitting a job for a key cancels the previous in-flight job for the
    same key, so a superseded run stops at its next checkpoint.
    """

    def __init__(self, max_workers: int = 2):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="flare-recompute")
        self._inflight: Dict[Hashable, Tuple[CancellationToken, Future]] = {}
        self._lock = threading.Lock()

    def submit(self, key: Hashable, version: int,
               job: Callable[[CancellationToken], object]) -> Future:
        token = CancellationToken(version)
        with self._lock:
            previous = self._inflight.get(key)
            if previous is not None and not previous[1].done():
                previous[0].cancel()
                log.info("   Superseding recompute v%d for %s", previous[0].version, key)
            future = self._pool.submit(job, token)
            self._inflight[key] = (token, future)
        future.add_done_callback(lambda f, k=key: self._release(k, f))
        return future

    def _release(self, key: Hashable, future: Future) -> None:
        with self._lock:
            current = self._inflight.get(key)
            if current is not None and current[1] is future:
                del self._inflight[key]

    def latest(self, key: Hashable) -> Optional[Future]:
        with self._lock:
            current = self._inflight.get(key)
        return current[1] if current is not None else None

    def has_inflight(self, predicate: Callable[[Hashable], bool]) -> bool:
        with self._lock:
            return any(predicate(k) for k in self._inflight)

    def cancel_where(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            tokens = [tok for k, (tok, _) in self._inflight.items() if predicate(k)]
        for tok in tokens:
            tok.cancel()
        return len(tokens)

    def shutdown(self, wait: bool = True) -> None:
        self.cancel_where(lambda _k: True)
        self._pool.shutdown(wait=wait)
