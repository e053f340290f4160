"""Tests for the SQLAlchemy failure tracker on a SQLite file."""
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from facegate.domain.errors import FailureStoreError
from facegate.infrastructure.tracking.sql_tracker import SqlFailureTracker
from tests.conftest import make_sql_tracker


class BrokenSessionFactory:
    """Every session request fails the way an unreachable database does."""

    disposed = False

    def __call__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def dispose(self):
        self.disposed = True


def fail(tracker, user_id, times):
    for _ in range(times):
        tracker.record_failure(user_id)


class TestLockStamp:
    def test_locked_until_stamped_at_threshold(self, sql_tracker, clock):
        fail(sql_tracker, "u1", 4)
        assert sql_tracker.get_record("u1").locked_until is None
        sql_tracker.record_failure("u1")
        assert sql_tracker.get_record("u1").locked_until == clock.now + timedelta(minutes=2)

    def test_lock_releases_after_ttl(self, sql_tracker, clock):
        fail(sql_tracker, "u1", 5)
        clock.advance(minutes=2, seconds=1)
        assert not sql_tracker.is_user_locked("u1")
        assert sql_tracker.get_minutes_until_expiry("u1") == 0

    def test_count_persists_after_release(self, sql_tracker, clock):
        fail(sql_tracker, "u1", 5)
        clock.advance(minutes=3)
        assert sql_tracker.get_remaining_attempts("u1") == 0
        # One more failure relocks immediately
        sql_tracker.record_failure("u1")
        assert sql_tracker.is_user_locked("u1")
        assert sql_tracker.get_minutes_until_expiry("u1") == 2

    def test_minutes_zero_when_not_locked(self, sql_tracker):
        sql_tracker.record_failure("u1")
        assert sql_tracker.get_minutes_until_expiry("u1") == 0


class TestRetentionSweep:
    def test_old_rows_are_deleted(self, sql_tracker, clock):
        fail(sql_tracker, "u1", 2)
        clock.advance(hours=25)
        assert sql_tracker.sweep_expired() == 1
        assert sql_tracker.count() == 0
        assert sql_tracker.get_remaining_attempts("u1") == 5

    def test_recent_rows_are_kept(self, sql_tracker, clock):
        sql_tracker.record_failure("u1")
        clock.advance(hours=1)
        assert sql_tracker.sweep_expired() == 0
        assert sql_tracker.count() == 1

    def test_active_lock_is_kept(self, sql_tracker, clock, config_env, config):
        config_env["FAILURE_RECORD_TTL"] = "2000"
        config.reload()
        fail(sql_tracker, "u1", 5)
        clock.advance(hours=25)
        assert sql_tracker.sweep_expired() == 0
        assert sql_tracker.is_user_locked("u1")


class TestPersistence:
    def test_records_survive_a_new_tracker(self, tmp_path, config, clock):
        first = make_sql_tracker(tmp_path, config, clock)
        fail(first, "u1", 3)
        first.close()

        second = make_sql_tracker(tmp_path, config, clock)
        try:
            assert second.get_remaining_attempts("u1") == 2
        finally:
            second.close()


class TestStorageErrors:
    @pytest.fixture
    def broken(self, config, clock):
        return SqlFailureTracker(BrokenSessionFactory(), config, clock=clock, start_sweep=False)

    def test_record_failure_raises_store_error(self, broken):
        with pytest.raises(FailureStoreError) as exc_info:
            broken.record_failure("u1")
        assert exc_info.value.user_id == "u1"
        assert isinstance(exc_info.value.cause, OperationalError)

    def test_reads_fail_open(self, broken):
        assert broken.is_user_locked("u1") is False
        assert broken.get_remaining_attempts("u1") == 5
        assert broken.get_minutes_until_expiry("u1") == 0

    def test_reset_swallows_errors(self, broken):
        broken.reset_failures("u1")  # should not raise

    def test_backend_name(self, broken):
        assert broken.backend == "sql"


class TestClose:
    def test_close_releases_engine(self, config, clock):
        sf = BrokenSessionFactory()
        tracker = SqlFailureTracker(sf, config, clock=clock, start_sweep=False)
        tracker.close()
        assert sf.disposed

    def test_close_stops_sweep(self, tmp_path, config, clock):
        tracker = make_sql_tracker(tmp_path, config, clock)
        tracker.start()
        tracker.close()
        assert not tracker._sweeper.is_running()
