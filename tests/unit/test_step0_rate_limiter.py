"""
Unit tests for Step 0: Rate limiting.
"""

import threading
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from lookbook.config import RateLimitConfig
from lookbook.steps.step0_rate_limiter import RateLimiter


def record_spaced(limiter, clock, user, count, gap=60):
    for _ in range(count):
        limiter.record_generation(user)
        clock.advance(gap)


class TestCooldown:
    """Minimum gap between generations."""

    def test_new_user_is_allowed(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        decision = limiter.can_generate("u1")
        assert decision.allowed is True
        assert decision.reason is None

    def test_cooldown_blocks_with_seconds_remaining(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        clock.advance(10.2)

        decision = limiter.can_generate("u1")
        assert decision.allowed is False
        assert decision.reason == "cooldown"
        assert decision.retry_after == 20

    def test_cooldown_expires(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        clock.advance(30)
        assert limiter.can_generate("u1").allowed is True


class TestWindows:
    """Hourly and daily caps."""

    def test_hourly_limit_after_per_hour_generations(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        record_spaced(limiter, clock, "u1", rate_config.per_hour)

        decision = limiter.can_generate("u1")
        assert decision.allowed is False
        assert decision.reason == "hourly_limit"
        assert decision.current == rate_config.per_hour
        assert decision.limit == rate_config.per_hour
        # oldest at t0, now t0+180 -> 3420 s left -> 57 minutes
        assert decision.retry_after == 57

    def test_sliding_window_recovers_without_reset(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        record_spaced(limiter, clock, "u1", rate_config.per_hour)
        assert limiter.can_generate("u1").reason == "hourly_limit"

        # t0 + 3600 + 1: the first timestamp has aged out
        clock.advance(3600 - 180 + 1)
        assert limiter.can_generate("u1").allowed is True

    def test_daily_limit(self, clock):
        config = RateLimitConfig(per_hour=100, per_day=4, cooldown_seconds=0)
        limiter = RateLimiter(config, clock=clock)
        record_spaced(limiter, clock, "u1", 4, gap=1800)

        decision = limiter.can_generate("u1")
        assert decision.allowed is False
        assert decision.reason == "daily_limit"
        assert decision.retry_after == "tomorrow"

    def test_cooldown_checked_before_hourly(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        record_spaced(limiter, clock, "u1", rate_config.per_hour, gap=0)
        assert limiter.can_generate("u1").reason == "cooldown"

    def test_users_are_independent(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        assert limiter.can_generate("u1").allowed is False
        assert limiter.can_generate("u2").allowed is True


class TestUsageAndAdmin:
    """Usage reporting, resets and stats."""

    def test_get_usage(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        record_spaced(limiter, clock, "u1", 2)

        usage = limiter.get_usage("u1")
        assert usage["hourly"] == {"used": 2, "limit": 3, "remaining": 1}
        assert usage["daily"]["used"] == 2
        assert usage["last_generation"] is not None

    def test_usage_for_unknown_user(self, rate_config, clock):
        usage = RateLimiter(rate_config, clock=clock).get_usage("ghost")
        assert usage["hourly"]["used"] == 0
        assert usage["last_generation"] is None

    def test_reset_user(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        limiter.reset_user("u1")
        assert limiter.can_generate("u1").allowed is True

    def test_all_users_sorted_by_daily_use(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        record_spaced(limiter, clock, "light", 1)
        record_spaced(limiter, clock, "heavy", 3)

        users = limiter.get_all_users()
        assert [u["user_id"] for u in users] == ["heavy", "light"]

    def test_stats(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        record_spaced(limiter, clock, "a", 2)
        record_spaced(limiter, clock, "b", 1)

        stats = limiter.get_stats()
        assert stats["active_users"] == 2
        assert stats["total_generations_last_day"] == 3
        assert stats["limits"]["per_hour"] == rate_config.per_hour


class TestCleanup:
    """Sweeping idle users."""

    def test_cleanup_removes_idle_users(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("old")
        clock.advance(86400 + 1)
        limiter.record_generation("fresh")

        assert limiter.cleanup() == 1
        assert [u["user_id"] for u in limiter.get_all_users()] == ["fresh"]

    def test_user_usable_after_cleanup(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        clock.advance(86400 + 1)
        limiter.cleanup()

        limiter.record_generation("u1")
        assert limiter.get_usage("u1")["daily"]["used"] == 1

    def test_cleanup_drops_locks_of_users_that_never_generated(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        for i in range(1000):
            limiter.can_generate(f"visitor-{i}")
        assert len(limiter._locks) == 1000

        assert limiter.cleanup() == 0
        assert len(limiter._locks) == 0

    def test_cleanup_keeps_locks_of_active_users(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        limiter.get_usage("ghost")

        limiter.cleanup()
        assert set(limiter._locks) == {"u1"}

    def test_sweeper_start_stop(self, rate_config):
        limiter = RateLimiter(rate_config)
        limiter.start_sweeper(interval_seconds=60)
        assert limiter._sweeper is not None and limiter._sweeper.is_alive()
        limiter.stop_sweeper()
        assert limiter._sweeper is None


class TestConcurrency:
    """Same-user races serialize; no lost updates."""

    def test_parallel_records_for_one_user(self, clock):
        config = RateLimitConfig(per_hour=1000, per_day=1000, cooldown_seconds=0)
        limiter = RateLimiter(config, clock=clock)

        def worker():
            for _ in range(50):
                limiter.record_generation("shared")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert limiter.get_usage("shared")["daily"]["used"] == 400


class TestTryAcquire:
    """Check and record as one step."""

    def test_allowed_slot_is_recorded(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        decision = limiter.try_acquire("u1")
        assert decision.allowed is True
        assert decision.recorded_at == clock()
        assert limiter.get_usage("u1")["daily"]["used"] == 1
        assert limiter.try_acquire("u1").reason == "cooldown"

    def test_denied_slot_records_nothing(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        decision = limiter.try_acquire("u1")
        assert decision.allowed is False
        assert decision.recorded_at is None
        assert limiter.get_usage("u1")["daily"]["used"] == 1

    def test_release_restores_previous_state(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.record_generation("u1")
        first_at = clock()
        clock.advance(60)

        decision = limiter.try_acquire("u1")
        limiter.release("u1", decision.recorded_at)

        usage = limiter.get_usage("u1")
        assert usage["daily"]["used"] == 1
        assert usage["last_generation"].timestamp() == first_at
        assert limiter.can_generate("u1").allowed is True

    def test_release_of_new_user_clears_cooldown(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        decision = limiter.try_acquire("u1")
        limiter.release("u1", decision.recorded_at)
        assert limiter.can_generate("u1").allowed is True
        assert limiter.get_usage("u1")["last_generation"] is None

    def test_release_unknown_is_noop(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        limiter.release("nobody", clock())
        assert limiter.get_all_users() == []

    def test_concurrent_acquire_admits_one(self, rate_config, clock):
        limiter = RateLimiter(rate_config, clock=clock)
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(limiter.try_acquire("shared"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for d in results if d.allowed) == 1
        assert sorted(d.reason for d in results if not d.allowed) == ["cooldown"] * 7
        assert limiter.get_usage("shared")["daily"]["used"] == 1
