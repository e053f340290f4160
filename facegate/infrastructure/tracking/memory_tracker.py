"""Process-local failure tracker.

Volatile across restarts. Records live in a dict guarded by a single lock so
every read-modify-write is atomic under the FastAPI thread pool. Lockout
parameters are read from the ConfigurationService on every call.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone

from facegate.domain.failure import (
    FailureRecord,
    is_locked,
    lockout_enabled,
    minutes_until,
    remaining_attempts,
)
from facegate.infrastructure.scheduler import PeriodicTask

log = logging.getLogger("facegate.tracking")

SWEEP_INTERVAL_SECONDS = 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryFailureTracker:
    """Failure counts keyed by user id, expired by TTL."""

    backend = "memory"

    def __init__(self, config, sweep_interval: float = SWEEP_INTERVAL_SECONDS, clock=None, start_sweep: bool = True):
        self._config = config
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._records: dict[str, FailureRecord] = {}
        self._sweep_interval = sweep_interval
        self._sweeper = PeriodicTask(self.sweep_expired, sweep_interval, name="failure-sweep")
        if start_sweep:
            self.start()

    def start(self) -> None:
        """Start the background expiry sweep (no-op if already running)."""
        if not self._sweeper.is_running():
            self._sweeper.start()
            log.info("Failure sweep started (every %ss)", self._sweep_interval)

    def _ttl(self) -> timedelta:
        return timedelta(minutes=self._config.get_failure_record_ttl_minutes())

    def _live_record(self, user_id: str, now: datetime) -> FailureRecord | None:
        """Return the record unless it has outlived the TTL. Caller holds the lock."""
        record = self._records.get(user_id)
        if record is not None and record.is_expired(now, self._ttl()):
            del self._records[user_id]
            return None
        return record

    # ------------------------------------------------------------------
    # Tracker contract
    # ------------------------------------------------------------------

    def record_failure(self, user_id: str) -> None:
        max_attempts = self._config.get_max_failure_attempts()
        if not lockout_enabled(max_attempts):
            return
        now = self._clock()
        with self._lock:
            record = self._live_record(user_id, now)
            if record is None:
                record = FailureRecord(user_id, last_failure=now)
                self._records[user_id] = record
            count = record.register_failure(now)
        if count == max_attempts:
            log.info("User locked after %d failures: %s", count, user_id)

    def is_user_locked(self, user_id: str) -> bool:
        max_attempts = self._config.get_max_failure_attempts()
        if not lockout_enabled(max_attempts):
            return False
        with self._lock:
            record = self._live_record(user_id, self._clock())
            count = record.failure_count if record else 0
        return is_locked(count, max_attempts)

    def get_remaining_attempts(self, user_id: str) -> int:
        max_attempts = self._config.get_max_failure_attempts()
        with self._lock:
            record = self._live_record(user_id, self._clock())
            count = record.failure_count if record else 0
        return remaining_attempts(count, max_attempts)

    def reset_failures(self, user_id: str) -> None:
        with self._lock:
            self._records.pop(user_id, None)

    def get_minutes_until_expiry(self, user_id: str) -> int:
        now = self._clock()
        with self._lock:
            record = self._live_record(user_id, now)
            if record is None:
                return 0
            deadline = record.expires_at(self._ttl())
        return minutes_until(deadline, now)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def get_record(self, user_id: str) -> FailureRecord | None:
        with self._lock:
            return self._records.get(user_id)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def sweep_expired(self) -> int:
        """Delete every record older than the TTL. Returns how many were removed."""
        now = self._clock()
        ttl = self._ttl()
        with self._lock:
            expired = [uid for uid, rec in self._records.items() if rec.is_expired(now, ttl)]
            for uid in expired:
                del self._records[uid]
            remaining = len(self._records)
        if expired:
            log.info("Swept %d expired failure records (%d remaining)", len(expired), remaining)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def close(self) -> None:
        self._sweeper.stop()
