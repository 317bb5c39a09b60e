"""
auth/ratelimit.py -- Failed-login counters and account lockout.

Each identifier (a username, a client IP, whatever the caller keys on) moves
through Open -> Locked -> Open. After `max_retries` consecutive failures the
identifier is locked for `lockout_window` seconds; any success resets it.

Concurrency:
  The attempt table is the only shared mutable state in the engine. One
  threading.Lock guards every read and every read-modify-write, so two
  concurrent failures for the same identifier can never both observe the
  pre-increment count.

Nothing outside this module touches the table.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable

from auth.models import LoginAttempt

logger = logging.getLogger("portcullis.auth.ratelimit")


class RateLimiter:
    """Per-identifier lockout tracker.

    Usage:
        limiter = RateLimiter(max_retries=5, lockout_window=300)
        locked, remaining = limiter.is_locked("alice")
        limiter.record_attempt("alice", success=False)

    A non-positive max_retries or lockout_window disables the limiter: every
    identifier reports Open and record_attempt() does nothing.
    """

    def __init__(
        self,
        max_retries: int,
        lockout_window: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_retries = max_retries
        self.lockout_window = lockout_window
        self._clock = clock
        self._attempts: dict[str, LoginAttempt] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_retries > 0 and self.lockout_window > 0

    def is_locked(self, identifier: str) -> tuple[bool, int]:
        """Return (locked, remaining_seconds) for identifier."""
        if not self.enabled:
            return False, 0

        with self._lock:
            attempt = self._attempts.get(identifier)
            if attempt is None:
                return False, 0
            now = self._clock()
            if attempt.locked_until > now:
                return True, math.ceil(attempt.locked_until - now)
        return False, 0

    def record_attempt(self, identifier: str, success: bool) -> None:
        """Record the outcome of one login attempt for identifier."""
        if not self.enabled:
            return

        with self._lock:
            attempt = self._attempts.get(identifier)
            if attempt is None:
                attempt = LoginAttempt()
                self._attempts[identifier] = attempt

            now = self._clock()
            attempt.last_attempt_at = now

            if success:
                attempt.failed_count = 0
                attempt.locked_until = 0.0
                return

            attempt.failed_count += 1
            if attempt.failed_count >= self.max_retries:
                attempt.locked_until = now + self.lockout_window
                logger.warning(
                    "Identifier %r locked for %ds after %d failed login attempts",
                    identifier,
                    self.lockout_window,
                    attempt.failed_count,
                )

    def failed_count(self, identifier: str) -> int:
        with self._lock:
            attempt = self._attempts.get(identifier)
            return attempt.failed_count if attempt is not None else 0

    def purge_stale(self, max_age: float) -> int:
        """Drop unlocked records whose last attempt is older than max_age seconds.

        The table otherwise grows for the life of the process. Returns the
        number of records removed.
        """
        with self._lock:
            now = self._clock()
            stale = [
                key
                for key, attempt in self._attempts.items()
                if attempt.locked_until <= now and now - attempt.last_attempt_at > max_age
            ]
            for key in stale:
                del self._attempts[key]
        return len(stale)
