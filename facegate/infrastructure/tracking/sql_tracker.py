"""SQLAlchemy-backed failure tracker.

Durable across restarts. Reaching the threshold stamps an explicit
``locked_until = now + TTL``; rows stay for RETENTION after the last failure
for post-mortem inspection and are then deleted by the sweep.

Storage errors: record_failure raises FailureStoreError; every read degrades
to the permissive default (not locked, full attempts) and logs.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from facegate.domain.errors import FailureStoreError
from facegate.domain.failure import (
    FailureRecord,
    is_locked,
    lockout_enabled,
    minutes_until,
    remaining_attempts,
)
from facegate.infrastructure.database.models import UserFailureModel
from facegate.infrastructure.scheduler import PeriodicTask

log = logging.getLogger("facegate.tracking.sql")

SWEEP_INTERVAL_SECONDS = 3600
RETENTION = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlFailureTracker:
    """Failure counts persisted in the ``user_failures`` table."""

    backend = "sql"

    def __init__(self, session_factory, config, sweep_interval: float = SWEEP_INTERVAL_SECONDS, clock=None, start_sweep: bool = True):
        self._sf = session_factory
        self._config = config
        self._clock = clock or _utcnow
        # Serialises the increment + conditional lock stamp within this process.
        self._write_lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._sweeper = PeriodicTask(self.sweep_expired, sweep_interval, name="failure-sweep-sql", run_immediately=True)
        if start_sweep:
            self.start()

    def start(self) -> None:
        """Start the retention sweep; the first pass runs immediately."""
        if not self._sweeper.is_running():
            self._sweeper.start()
            log.info("Failure sweep started (every %ss, retention %s)", self._sweep_interval, RETENTION)

    def _ttl(self) -> timedelta:
        return timedelta(minutes=self._config.get_failure_record_ttl_minutes())

    def _load(self, user_id: str) -> FailureRecord | None:
        with self._sf() as session:
            row = session.get(UserFailureModel, user_id)
            if row is None:
                return None
            return FailureRecord(
                user_id=row.user_id,
                failure_count=row.failure_count,
                last_failure=_as_utc(row.last_failure),
                locked_until=_as_utc(row.locked_until),
            )

    def _lock_release(self, record: FailureRecord) -> datetime:
        # Rows that crossed a threshold lowered after their last failure carry
        # no stamp; their lock runs one TTL from the last failure.
        return record.locked_until or record.expires_at(self._ttl())

    def _is_locked(self, record: FailureRecord | None, max_attempts: int, now: datetime) -> bool:
        if record is None or not is_locked(record.failure_count, max_attempts):
            return False
        return now < self._lock_release(record)

    # ------------------------------------------------------------------
    # Tracker contract
    # ------------------------------------------------------------------

    def record_failure(self, user_id: str) -> None:
        max_attempts = self._config.get_max_failure_attempts()
        if not lockout_enabled(max_attempts):
            return
        now = self._clock()
        try:
            with self._write_lock, self._sf() as session:
                updated = session.execute(
                    update(UserFailureModel)
                    .where(UserFailureModel.user_id == user_id)
                    .values(failure_count=UserFailureModel.failure_count + 1, last_failure=now)
                ).rowcount
                if updated:
                    count = session.execute(
                        select(UserFailureModel.failure_count).where(UserFailureModel.user_id == user_id)
                    ).scalar_one()
                else:
                    session.add(UserFailureModel(user_id=user_id, failure_count=1, last_failure=now, created_at=now))
                    count = 1

                if count >= max_attempts:
                    locked_until = now + self._ttl()
                    session.execute(
                        update(UserFailureModel)
                        .where(UserFailureModel.user_id == user_id)
                        .values(locked_until=locked_until)
                    )
                session.commit()
        except SQLAlchemyError as exc:
            log.error("Could not record failure for %s: %s", user_id, exc)
            raise FailureStoreError(user_id, exc) from exc

        if count >= max_attempts:
            log.info("User locked after %d failures until %s: %s", count, locked_until.isoformat(), user_id)

    def is_user_locked(self, user_id: str) -> bool:
        max_attempts = self._config.get_max_failure_attempts()
        if not lockout_enabled(max_attempts):
            return False
        try:
            record = self._load(user_id)
        except SQLAlchemyError as exc:
            log.warning("Lock check failed for %s, allowing attempt: %s", user_id, exc)
            return False
        return self._is_locked(record, max_attempts, self._clock())

    def get_remaining_attempts(self, user_id: str) -> int:
        max_attempts = self._config.get_max_failure_attempts()
        if not lockout_enabled(max_attempts):
            return remaining_attempts(0, max_attempts)
        try:
            record = self._load(user_id)
        except SQLAlchemyError as exc:
            log.warning("Remaining-attempts lookup failed for %s: %s", user_id, exc)
            return max_attempts
        return remaining_attempts(record.failure_count if record else 0, max_attempts)

    def reset_failures(self, user_id: str) -> None:
        try:
            with self._sf() as session:
                session.execute(delete(UserFailureModel).where(UserFailureModel.user_id == user_id))
                session.commit()
        except SQLAlchemyError as exc:
            log.error("Could not reset failures for %s: %s", user_id, exc)

    def get_minutes_until_expiry(self, user_id: str) -> int:
        max_attempts = self._config.get_max_failure_attempts()
        try:
            record = self._load(user_id)
        except SQLAlchemyError as exc:
            log.warning("Expiry lookup failed for %s: %s", user_id, exc)
            return 0
        now = self._clock()
        if not self._is_locked(record, max_attempts, now):
            return 0
        return minutes_until(self._lock_release(record), now)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def get_record(self, user_id: str) -> FailureRecord | None:
        return self._load(user_id)

    def count(self) -> int:
        with self._sf() as session:
            return session.execute(select(func.count()).select_from(UserFailureModel)).scalar_one()

    def sweep_expired(self) -> int:
        """Delete rows past retention whose lock has expired or was never set."""
        now = self._clock()
        with self._sf() as session:
            removed = session.execute(
                delete(UserFailureModel).where(
                    UserFailureModel.last_failure < now - RETENTION,
                    or_(UserFailureModel.locked_until.is_(None), UserFailureModel.locked_until < now),
                )
            ).rowcount
            session.commit()
        if removed:
            log.info("Swept %d old failure records", removed)
        return removed

    def clear(self) -> None:
        with self._sf() as session:
            session.execute(delete(UserFailureModel))
            session.commit()

    def close(self) -> None:
        """Stop the sweep and release the engine's connection pool."""
        self._sweeper.stop()
        self._sf.dispose()
