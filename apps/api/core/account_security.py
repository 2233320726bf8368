"""
Login lockout.

Failed logins are tracked per email in process memory. After
LOGIN_MAX_FAILED_ATTEMPTS failures inside the attempt window the account is
locked for LOGIN_LOCKOUT_MINUTES. A successful login clears the history.
"""
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
import threading

from core.config import settings

ATTEMPT_WINDOW_MINUTES = 30  # Count attempts in last 30 minutes


class LoginAttemptTracker:
    def __init__(self, max_failed: int, lockout_minutes: int, window_minutes: int = ATTEMPT_WINDOW_MINUTES):
        self.max_failed = max_failed
        self.lockout = timedelta(minutes=lockout_minutes)
        self.window = timedelta(minutes=window_minutes)
        self._failures: dict = defaultdict(list)
        self._lock = threading.Lock()

    def _recent_failures(self, email: str, now: datetime) -> List[datetime]:
        cutoff = now - self.window
        recent = [ts for ts in self._failures.get(email, []) if ts > cutoff]
        if recent:
            self._failures[email] = recent
        else:
            self._failures.pop(email, None)
        return recent

    def record(self, email: str, success: bool, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            if success:
                self._failures.pop(email, None)
                return
            self._recent_failures(email, now)
            self._failures[email].append(now)

    def is_locked(self, email: str, now: Optional[datetime] = None) -> Tuple[bool, Optional[int]]:
        """Returns (is_locked, seconds_until_unlock or None)."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            failures = self._recent_failures(email, now)
            if len(failures) < self.max_failed:
                return False, None
            lockout_end = max(failures) + self.lockout
            if now < lockout_end:
                return True, int((lockout_end - now).total_seconds())
            return False, None

    def remaining_attempts(self, email: str, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            return max(0, self.max_failed - len(self._recent_failures(email, now)))

    def clear(self, email: Optional[str] = None) -> None:
        with self._lock:
            if email is None:
                self._failures.clear()
            else:
                self._failures.pop(email, None)


login_attempts = LoginAttemptTracker(
    max_failed=settings.LOGIN_MAX_FAILED_ATTEMPTS,
    lockout_minutes=settings.LOGIN_LOCKOUT_MINUTES,
)
