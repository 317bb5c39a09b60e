"""Unit tests for auth/ratelimit.py.

Covers:
- Lockout after max_retries consecutive failures, with remaining seconds
- Success resets the counter and unlocks
- Lock expiry via the injected clock
- Disabled limiter (non-positive threshold or window) is a no-op
- Concurrent failures cannot skip the lock
- purge_stale eviction
"""

import threading

import pytest

from auth.ratelimit import RateLimiter


class TestLockout:
    def test_locks_after_max_retries(self, clock) -> None:
        limiter = RateLimiter(max_retries=3, lockout_window=60, clock=clock)
        for _ in range(3):
            limiter.record_attempt("alice", success=False)
        locked, remaining = limiter.is_locked("alice")
        assert locked is True
        assert remaining == 60

    def test_not_locked_before_threshold(self, clock) -> None:
        limiter = RateLimiter(max_retries=3, lockout_window=60, clock=clock)
        limiter.record_attempt("alice", success=False)
        limiter.record_attempt("alice", success=False)
        assert limiter.is_locked("alice") == (False, 0)

    def test_remaining_seconds_counts_down(self, clock) -> None:
        limiter = RateLimiter(max_retries=1, lockout_window=60, clock=clock)
        limiter.record_attempt("alice", success=False)
        clock.advance(15)
        assert limiter.is_locked("alice") == (True, 45)

    def test_remaining_seconds_rounds_up(self, clock) -> None:
        limiter = RateLimiter(max_retries=1, lockout_window=60, clock=clock)
        limiter.record_attempt("alice", success=False)
        clock.advance(59.5)
        assert limiter.is_locked("alice") == (True, 1)

    def test_lock_expires(self, clock) -> None:
        limiter = RateLimiter(max_retries=1, lockout_window=60, clock=clock)
        limiter.record_attempt("alice", success=False)
        clock.advance(60)
        assert limiter.is_locked("alice") == (False, 0)

    def test_success_resets_and_unlocks(self, clock) -> None:
        limiter = RateLimiter(max_retries=3, lockout_window=60, clock=clock)
        for _ in range(3):
            limiter.record_attempt("alice", success=False)
        limiter.record_attempt("alice", success=True)
        assert limiter.is_locked("alice") == (False, 0)
        assert limiter.failed_count("alice") == 0

    def test_identifiers_are_independent(self, clock) -> None:
        limiter = RateLimiter(max_retries=1, lockout_window=60, clock=clock)
        limiter.record_attempt("alice", success=False)
        assert limiter.is_locked("alice")[0] is True
        assert limiter.is_locked("bob") == (False, 0)
        assert limiter.is_locked("203.0.113.7") == (False, 0)

    def test_unknown_identifier_is_open(self, clock) -> None:
        assert RateLimiter(3, 60, clock=clock).is_locked("nobody") == (False, 0)

    def test_lockout_is_logged(self, clock, caplog) -> None:
        limiter = RateLimiter(max_retries=1, lockout_window=60, clock=clock)
        with caplog.at_level("WARNING", logger="portcullis.auth.ratelimit"):
            limiter.record_attempt("alice", success=False)
        assert "locked" in caplog.text


class TestDisabled:
    @pytest.mark.parametrize("max_retries,window", [(0, 60), (3, 0), (-1, 60), (3, -5)])
    def test_disabled_limiter_never_locks(self, clock, max_retries: int, window: int) -> None:
        limiter = RateLimiter(max_retries=max_retries, lockout_window=window, clock=clock)
        for _ in range(10):
            limiter.record_attempt("alice", success=False)
        assert limiter.enabled is False
        assert limiter.is_locked("alice") == (False, 0)
        assert limiter.failed_count("alice") == 0


class TestConcurrency:
    def test_concurrent_failures_all_counted(self) -> None:
        limiter = RateLimiter(max_retries=50, lockout_window=60)
        barrier = threading.Barrier(10)

        def worker() -> None:
            barrier.wait()
            for _ in range(5):
                limiter.record_attempt("alice", success=False)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert limiter.failed_count("alice") == 50
        assert limiter.is_locked("alice")[0] is True


class TestPurgeStale:
    def test_purges_old_unlocked_records(self, clock) -> None:
        limiter = RateLimiter(max_retries=5, lockout_window=60, clock=clock)
        limiter.record_attempt("old", success=False)
        clock.advance(1000)
        limiter.record_attempt("fresh", success=False)
        assert limiter.purge_stale(max_age=600) == 1
        assert limiter.failed_count("old") == 0
        assert limiter.failed_count("fresh") == 1

    def test_keeps_locked_records(self, clock) -> None:
        limiter = RateLimiter(max_retries=1, lockout_window=5000, clock=clock)
        limiter.record_attempt("alice", success=False)
        clock.advance(1000)
        assert limiter.purge_stale(max_age=600) == 0
        assert limiter.is_locked("alice")[0] is True
