"""
auth/ratelimit.py -- Per-identifier login attempt tracking and sliding-window lockout.

Policy (defaults from Settings):
  An identifier is blocked iff it has >= MAX_LOGIN_ATTEMPTS (5) failed
  attempts inside the trailing LOCKOUT_DURATION_MINUTES (15) window.

  The lockout is a sliding window, not a counter plus a fixed timer. It ends
  when the oldest of the N most recent failures leaves the window, so one
  retry after the ban lifts cannot restart a full ban, while sustained
  guessing stays blocked.

  Keys are lower-cased identifiers exactly as submitted (email or username).
  One attacker hammering one account does not lock any other account.

  Attempts older than ATTEMPT_RETENTION_HOURS (24) are pruned on every write
  to that identifier. At most once per SWEEP_INTERVAL, record_attempt() also
  runs purge_expired() over every identifier, so keys that are never written
  again do not accumulate.

Concurrency: a threading.Lock guards the attempt map. Check-then-act across
is_blocked() and record_attempt() is not atomic -- two concurrent logins for
one identifier may both pass the check. The limiter is defence in depth and
accepts that race. A multi-process deployment needs a shared store that keeps
the same increment-and-check contract.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

from auth.models import Clock, LoginAttempt, utcnow
from core.config import Settings, get_settings

logger = logging.getLogger("salonauth.ratelimit")

SWEEP_INTERVAL = timedelta(hours=1)


class RateLimiter:
    """In-process login attempt history with sliding-window lockout.

    Usage:
        limiter = RateLimiter(settings)
        if limiter.is_blocked("ana@salon.com"):
            wait = limiter.remaining_lockout("ana@salon.com")
        limiter.record_attempt("ana@salon.com", success=False, origin_address="10.0.0.7")
    """

    def __init__(self, settings: Settings | None = None, clock: Clock = utcnow) -> None:
        settings = settings or get_settings()
        self.max_attempts = settings.max_login_attempts
        self.lockout_duration = timedelta(minutes=settings.lockout_duration_minutes)
        self.retention = timedelta(hours=settings.attempt_retention_hours)
        self.clock = clock
        self._lock = threading.Lock()
        self._attempts: dict[str, list[LoginAttempt]] = {}
        self._last_sweep = clock()

    @staticmethod
    def _key(identifier: str) -> str:
        return identifier.strip().lower()

    def _recent_failures(self, key: str) -> list[LoginAttempt]:
        """Failed attempts inside the lockout window, oldest first. Caller holds the lock."""
        cutoff = self.clock() - self.lockout_duration
        return [a for a in self._attempts.get(key, []) if not a.success and a.timestamp > cutoff]

    def is_blocked(self, identifier: str) -> bool:
        with self._lock:
            return len(self._recent_failures(self._key(identifier))) >= self.max_attempts

    def record_attempt(self, identifier: str, success: bool, origin_address: str | None = None) -> None:
        """Append an attempt and prune this identifier's history past retention.

        Every SWEEP_INTERVAL the write also sweeps all other identifiers.
        """
        key = self._key(identifier)
        now = self.clock()
        attempt = LoginAttempt(identifier=identifier, timestamp=now, success=success, origin_address=origin_address)
        cutoff = now - self.retention
        with self._lock:
            history = [a for a in self._attempts.get(key, []) if a.timestamp > cutoff]
            history.append(attempt)
            self._attempts[key] = history
            failures = len(self._recent_failures(key))
            sweep_due = now - self._last_sweep >= SWEEP_INTERVAL
            if sweep_due:
                self._last_sweep = now
        if sweep_due:
            self.purge_expired()
        if not success and failures == self.max_attempts:
            logger.warning("Login locked for %r after %d failed attempts (origin=%s)", key, failures, origin_address)

    def remaining_lockout(self, identifier: str) -> timedelta:
        """Time until identifier is unblocked; zero when not blocked.

        Anchored to the oldest of the N most recent failures: once that one
        leaves the window, fewer than N failures remain inside it.
        """
        with self._lock:
            failures = self._recent_failures(self._key(identifier))
            if len(failures) < self.max_attempts:
                return timedelta(0)
            anchor = failures[-self.max_attempts]
            remaining = anchor.timestamp + self.lockout_duration - self.clock()
        return max(remaining, timedelta(0))

    def reset(self, identifier: str) -> None:
        """Forget all history for identifier (after a successful login)."""
        with self._lock:
            self._attempts.pop(self._key(identifier), None)

    def attempts(self, identifier: str) -> list[LoginAttempt]:
        """Return a copy of the retained history for identifier, oldest first."""
        with self._lock:
            return list(self._attempts.get(self._key(identifier), []))

    def purge_expired(self) -> int:
        """Drop attempts past retention for every identifier.

        Returns the number of attempts removed. Called from record_attempt()
        once per SWEEP_INTERVAL; hosts may also call it from their own timer.
        """
        cutoff = self.clock() - self.retention
        removed = 0
        with self._lock:
            for key in list(self._attempts):
                kept = [a for a in self._attempts[key] if a.timestamp > cutoff]
                removed += len(self._attempts[key]) - len(kept)
                if kept:
                    self._attempts[key] = kept
                else:
                    del self._attempts[key]
        return removed
