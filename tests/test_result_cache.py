"""
Tests for the versioned result cache and the recompute worker.
"""
import threading
from datetime import date, datetime

import pytest

from models import CacheConsistencyError, CorrelationResultSet, RecomputeCancelled
from pipeline.recompute_worker import CancellationToken, RecomputeWorker
from pipeline.result_cache import CacheEntry, ResultCache

END = date(2026, 3, 30)


def _entry(version, user="u1", stamp=None, start=date(2026, 3, 1)):
    rs = CorrelationResultSet(
        user_id=user,
        window_days=30,
        window_start=start,
        window_end=END,
        results=(),
        warning_count=0,
        flare_days=3,
        baseline_days=27,
        calculated_at=stamp or datetime(2026, 3, 30, 8, version % 60),
    )
    return CacheEntry(result_set=rs, version=version, window_start=start)


@pytest.fixture
def cache():
    return ResultCache()


# ─── Versioned swap ───────────────────────────────────────────


class TestVersionedStore:

    def test_store_and_get(self, cache):
        key = cache.make_key("u1", 30, END)
        cache.store(key, _entry(cache.next_version()))
        assert cache.get(key).version == 1

    def test_key_slides_with_window_end(self, cache):
        cache.store(cache.make_key("u1", 30, END), _entry(cache.next_version()))
        assert cache.get(cache.make_key("u1", 30, date(2026, 3, 31))) is None

    def test_older_version_rejected(self, cache):
        key = cache.make_key("u1", 30, END)
        v_old, v_new = cache.next_version(), cache.next_version()
        cache.store(key, _entry(v_new))
        with pytest.raises(CacheConsistencyError):
            cache.store(key, _entry(v_old))
        assert cache.get(key).version == v_new

    def test_write_fenced_by_invalidation(self, cache):
        key = cache.make_key("u1", 30, END)
        v = cache.next_version()
        cache.invalidate("u1")
        with pytest.raises(CacheConsistencyError):
            cache.store(key, _entry(v))
        assert cache.get(key) is None

    def test_invalidation_scoped_to_user(self, cache):
        k1 = cache.make_key("u1", 30, END)
        k2 = cache.make_key("u2", 30, END)
        cache.store(k1, _entry(cache.next_version()))
        cache.store(k2, _entry(cache.next_version(), user="u2"))
        assert cache.invalidate("u1") == 1
        assert cache.get(k1) is None
        assert cache.get(k2) is not None

    def test_concurrent_writers_keep_newest(self, cache):
        key = cache.make_key("u1", 30, END)
        versions = [cache.next_version() for _ in range(20)]
        barrier = threading.Barrier(len(versions))

        def write(v):
            barrier.wait()
            try:
                cache.store(key, _entry(v))
            except CacheConsistencyError:
                pass

        threads = [threading.Thread(target=write, args=(v,)) for v in versions]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.get(key).version == max(versions)


class TestCoverage:

    def test_covers_window_days(self, cache):
        cache.store(cache.make_key("u1", 30, END), _entry(cache.next_version()))
        assert cache.covers("u1", date(2026, 3, 15))
        assert cache.covers("u1", END)
        assert not cache.covers("u1", date(2026, 2, 27))
        assert not cache.covers("u2", date(2026, 3, 15))

    def test_covers_lookback_day_before_window(self, cache):
        cache.store(cache.make_key("u1", 30, END), _entry(cache.next_version()))
        # the first window day looks back into the day before it
        assert cache.covers("u1", date(2026, 2, 28))
        assert not cache.covers("u1", date(2026, 3, 31))

    def test_last_calculated_is_newest(self, cache):
        cache.store(cache.make_key("u1", 30, END), _entry(cache.next_version()))
        cache.store(cache.make_key("u1", 7, END), _entry(cache.next_version()))
        assert cache.last_calculated("u1") == datetime(2026, 3, 30, 8, 2)
        assert cache.last_calculated("nobody") is None


# ─── Worker ───────────────────────────────────────────────────


class TestCancellationToken:

    def test_checkpoint_raises_after_cancel(self):
        token = CancellationToken(3)
        token.checkpoint()
        token.cancel()
        assert token.cancelled
        with pytest.raises(RecomputeCancelled):
            token.checkpoint()


class TestRecomputeWorker:

    def test_runs_job_off_thread(self):
        worker = RecomputeWorker(max_workers=1)
        try:
            caller = threading.get_ident()
            fut = worker.submit("k", 1, lambda tok: threading.get_ident())
            assert fut.result(timeout=5) != caller
        finally:
            worker.shutdown()

    def test_newer_submission_supersedes_older(self):
        worker = RecomputeWorker(max_workers=2)
        started = threading.Event()
        release = threading.Event()

        def slow(tok):
            started.set()
            release.wait(timeout=5)
            tok.checkpoint()
            return "old"

        try:
            old = worker.submit("k", 1, slow)
            assert started.wait(timeout=5)
            new = worker.submit("k", 2, lambda tok: "new")
            assert new.result(timeout=5) == "new"
            release.set()
            with pytest.raises(RecomputeCancelled):
                old.result(timeout=5)
        finally:
            release.set()
            worker.shutdown()

    def test_other_keys_not_cancelled(self):
        worker = RecomputeWorker(max_workers=2)
        release = threading.Event()

        def slow(tok):
            release.wait(timeout=5)
            tok.checkpoint()
            return "done"

        try:
            a = worker.submit("a", 1, slow)
            b = worker.submit("b", 2, lambda tok: "b")
            assert b.result(timeout=5) == "b"
            release.set()
            assert a.result(timeout=5) == "done"
        finally:
            release.set()
            worker.shutdown()

    def test_inflight_tracking(self):
        worker = RecomputeWorker(max_workers=1)
        release = threading.Event()
        try:
            fut = worker.submit(("u1", 30, END), 1, lambda tok: release.wait(timeout=5))
            assert worker.has_inflight(lambda k: k[0] == "u1")
            assert worker.latest(("u1", 30, END)) is fut
            release.set()
            fut.result(timeout=5)
        finally:
            release.set()
            worker.shutdown()
