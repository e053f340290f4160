"""Failure record entity and lockout rules.

Pure functions only: the threshold and TTL are always passed in by the caller,
which reads them from the live configuration snapshot on every call.
"""
import math
from datetime import datetime, timedelta, timezone

# Reported as "remaining attempts" when lockout is disabled (max <= 0).
UNLIMITED_ATTEMPTS = 99


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FailureRecord:
    """Failed recognition attempts for one user since the last reset/expiry."""

    def __init__(
        self,
        user_id: str,
        failure_count: int = 0,
        last_failure: datetime | None = None,
        locked_until: datetime | None = None,
    ):
        self._user_id = user_id
        self._failure_count = failure_count
        self._last_failure = last_failure or _utcnow()
        self._locked_until = locked_until

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure(self) -> datetime:
        return self._last_failure

    @property
    def locked_until(self) -> datetime | None:
        return self._locked_until

    def register_failure(self, at: datetime) -> int:
        """Count one more failure at instant *at*. Returns the new count."""
        self._failure_count += 1
        self._last_failure = at
        return self._failure_count

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self._last_failure > ttl

    def expires_at(self, ttl: timedelta) -> datetime:
        return self._last_failure + ttl

    def to_dict(self) -> dict:
        return {
            "user_id": self._user_id,
            "failure_count": self._failure_count,
            "last_failure": self._last_failure.isoformat(),
            "locked_until": self._locked_until.isoformat() if self._locked_until else None,
        }


def lockout_enabled(max_attempts: int) -> bool:
    return max_attempts > 0


def is_locked(failure_count: int, max_attempts: int) -> bool:
    """A user is locked once the count reaches a positive threshold."""
    return lockout_enabled(max_attempts) and failure_count >= max_attempts


def remaining_attempts(failure_count: int, max_attempts: int) -> int:
    if not lockout_enabled(max_attempts):
        return UNLIMITED_ATTEMPTS
    return max(0, max_attempts - failure_count)


def minutes_until(deadline: datetime | None, now: datetime) -> int:
    """Whole minutes (rounded up) until *deadline*; 0 if absent or past."""
    if deadline is None:
        return 0
    seconds = (deadline - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)
