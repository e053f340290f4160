"""
Contract tests run against both tracker variants (in-memory and SQL).

The `tracker` fixture in conftest.py is parametrized over both backends.
"""
import threading

import pytest


def fail(tracker, user_id, times):
    for _ in range(times):
        tracker.record_failure(user_id)


class TestRemainingAttempts:
    def test_unknown_user_has_full_maximum(self, tracker):
        assert tracker.get_remaining_attempts("nobody") == 5
        assert not tracker.is_user_locked("nobody")

    @pytest.mark.parametrize("n", [0, 1, 3, 5, 8])
    def test_remaining_is_max_minus_failures(self, tracker, n):
        fail(tracker, "u1", n)
        assert tracker.get_remaining_attempts("u1") == max(0, 5 - n)

    def test_users_are_independent(self, tracker):
        fail(tracker, "a", 5)
        assert tracker.is_user_locked("a")
        assert not tracker.is_user_locked("b")
        assert tracker.get_remaining_attempts("b") == 5


class TestLockout:
    def test_concrete_scenario_max_five(self, tracker):
        fail(tracker, "u1", 3)
        assert tracker.get_remaining_attempts("u1") == 2
        assert not tracker.is_user_locked("u1")

        fail(tracker, "u1", 2)
        assert tracker.get_remaining_attempts("u1") == 0
        assert tracker.is_user_locked("u1")

        tracker.reset_failures("u1")
        assert tracker.get_remaining_attempts("u1") == 5
        assert not tracker.is_user_locked("u1")

    def test_stays_locked_on_further_failures(self, tracker):
        fail(tracker, "u1", 5)
        for _ in range(3):
            tracker.record_failure("u1")
            assert tracker.is_user_locked("u1")
            assert tracker.get_remaining_attempts("u1") == 0

    def test_minutes_until_release_while_locked(self, tracker):
        fail(tracker, "u1", 5)
        assert tracker.get_minutes_until_expiry("u1") == 2

    def test_minutes_zero_without_record(self, tracker):
        assert tracker.get_minutes_until_expiry("ghost") == 0


class TestLockoutDisabled:
    def test_concrete_scenario_max_zero(self, tracker, config_env, config):
        config_env["MAX_FAILURE_ATTEMPTS"] = "0"
        config.reload()
        for _ in range(20):
            tracker.record_failure("u2")
            assert not tracker.is_user_locked("u2")
        assert tracker.get_remaining_attempts("u2") == 99

    def test_record_failure_is_noop_when_disabled(self, tracker, config_env, config):
        config_env["MAX_FAILURE_ATTEMPTS"] = "0"
        config.reload()
        fail(tracker, "u2", 3)
        assert tracker.get_record("u2") is None


class TestReset:
    def test_reset_unknown_user_is_noop(self, tracker):
        tracker.reset_failures("ghost")  # should not raise
        assert tracker.get_remaining_attempts("ghost") == 5

    def test_reset_is_idempotent(self, tracker):
        fail(tracker, "u1", 2)
        tracker.reset_failures("u1")
        tracker.reset_failures("u1")
        assert tracker.get_record("u1") is None


class TestLiveThreshold:
    def test_lowering_threshold_locks_existing_record(self, tracker, config_env, config):
        fail(tracker, "u1", 3)
        assert not tracker.is_user_locked("u1")
        config_env["MAX_FAILURE_ATTEMPTS"] = "3"
        config.reload()
        assert tracker.is_user_locked("u1")
        assert tracker.get_remaining_attempts("u1") == 0

    def test_raising_threshold_unlocks(self, tracker, config_env, config):
        fail(tracker, "u1", 5)
        assert tracker.is_user_locked("u1")
        config_env["MAX_FAILURE_ATTEMPTS"] = "10"
        config.reload()
        assert not tracker.is_user_locked("u1")
        assert tracker.get_remaining_attempts("u1") == 5


class TestOutOfRangeTtl:
    def test_oversized_ttl_uses_default(self, tracker, config_env, config):
        config_env["FAILURE_RECORD_TTL"] = "5000000000"
        config.reload()
        fail(tracker, "u1", 5)
        assert tracker.is_user_locked("u1")
        assert tracker.get_minutes_until_expiry("u1") == 2


class TestConcurrency:
    def test_concurrent_failures_are_all_counted(self, tracker, config_env, config):
        config_env["MAX_FAILURE_ATTEMPTS"] = "100"
        config.reload()
        errors = []

        def worker():
            try:
                tracker.record_failure("shared")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == [], f"Concurrent write errors: {errors}"
        assert tracker.get_record("shared").failure_count == 20
        assert tracker.get_remaining_attempts("shared") == 80
