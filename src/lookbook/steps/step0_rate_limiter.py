#!/usr/bin/env python3
"""
step0_rate_limiter.py - Step 0: Sliding-window rate limiting
============================================================

Per-user abuse guard evaluated before any credit is spent.

Policy (first failing rule wins):
1. Cooldown   - minimum gap between two generations (default 30 s)
2. Hourly cap - generations in the trailing 3600 s (default 10)
3. Daily cap  - generations in the trailing 86400 s (default 50)

The limiter is a plain object constructed once per process and handed to
whoever needs it. Each user key has its own lock so two requests for the
same user serialize while different users never wait on each other.
try_acquire() checks and records under that lock in one step. A
background sweeper drops users idle for 24 h, and the locks of users
that never generated, to bound memory.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from ..config import RateLimitConfig

logger = logging.getLogger("lookbook.rate_limiter")

HOUR_SECONDS = 3600
DAY_SECONDS = 86400

# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------

@dataclass
class RateWindowEntry:
    """Generation timestamps (epoch seconds, ascending) for one user."""
    timestamps: List[float] = field(default_factory=list)
    last_request_at: float = 0.0

    def count_since(self, cutoff: float) -> int:
        return sum(1 for ts in self.timestamps if ts > cutoff)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    reason: Optional[str] = None
    # seconds for cooldown, minutes for hourly_limit, "tomorrow" for daily_limit
    retry_after: Optional[Union[int, str]] = None
    current: Optional[int] = None
    limit: Optional[int] = None
    recorded_at: Optional[float] = None


# ---------------------------------------------------------------------------
# Rate Limiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """In-memory sliding-window limiter with per-user locking."""

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._store: Dict[Any, RateWindowEntry] = {}
        self._locks: Dict[Any, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_stop = threading.Event()

        logger.info(
            f"RateLimiter initialized (per_hour={self.config.per_hour}, "
            f"per_day={self.config.per_day}, cooldown={self.config.cooldown_seconds}s)"
        )

    @contextmanager
    def _user_lock(self, user_id: Any) -> Iterator[None]:
        # Re-check after acquiring: cleanup() may have retired the lock we waited on.
        while True:
            with self._registry_lock:
                lock = self._locks.setdefault(user_id, threading.Lock())
            lock.acquire()
            with self._registry_lock:
                current = self._locks.get(user_id)
            if current is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _entry(self, user_id: Any) -> Optional[RateWindowEntry]:
        with self._registry_lock:
            return self._store.get(user_id)

    # -------------------------------------------------------------------
    # Policy
    # -------------------------------------------------------------------

    def _decide(self, entry: RateWindowEntry, now: float) -> RateDecision:
        cfg = self.config

        since_last = now - entry.last_request_at
        if entry.last_request_at and since_last < cfg.cooldown_seconds:
            return RateDecision(
                allowed=False,
                reason="cooldown",
                retry_after=math.ceil(cfg.cooldown_seconds - since_last),
            )

        recent_hour = [ts for ts in entry.timestamps if ts > now - HOUR_SECONDS]
        if len(recent_hour) >= cfg.per_hour:
            oldest = min(recent_hour)
            return RateDecision(
                allowed=False,
                reason="hourly_limit",
                retry_after=max(1, math.ceil((oldest + HOUR_SECONDS - now) / 60.0)),
                current=len(recent_hour),
                limit=cfg.per_hour,
            )

        recent_day = entry.count_since(now - DAY_SECONDS)
        if recent_day >= cfg.per_day:
            return RateDecision(
                allowed=False,
                reason="daily_limit",
                retry_after="tomorrow",
                current=recent_day,
                limit=cfg.per_day,
            )

        return RateDecision(allowed=True)

    def _append(self, user_id: Any, now: float) -> None:
        # caller holds the user lock
        with self._registry_lock:
            entry = self._store.setdefault(user_id, RateWindowEntry())
        entry.timestamps.append(now)
        entry.last_request_at = now
        entry.timestamps = [ts for ts in entry.timestamps if ts > now - DAY_SECONDS]

    def can_generate(self, user_id: Any) -> RateDecision:
        """Decide whether ``user_id`` may start a generation right now."""
        with self._user_lock(user_id):
            return self._decide(self._entry(user_id) or RateWindowEntry(), self._clock())

    def record_generation(self, user_id: Any) -> None:
        """Record a generation. Call after the credit has been deducted."""
        with self._user_lock(user_id):
            self._append(user_id, self._clock())

    def try_acquire(self, user_id: Any) -> RateDecision:
        """
        Check and record in one step under the user's lock.

        Two concurrent callers for the same user can never both be
        admitted. An allowed decision carries ``recorded_at``; hand it to
        release() if the generation does not go ahead.
        """
        with self._user_lock(user_id):
            now = self._clock()
            decision = self._decide(self._entry(user_id) or RateWindowEntry(), now)
            if not decision.allowed:
                return decision
            self._append(user_id, now)
        return RateDecision(allowed=True, recorded_at=now)

    def release(self, user_id: Any, recorded_at: float) -> None:
        """Undo the slot taken by try_acquire()."""
        with self._user_lock(user_id):
            entry = self._entry(user_id)
            if entry is None or recorded_at not in entry.timestamps:
                return
            entry.timestamps.remove(recorded_at)
            entry.last_request_at = max(entry.timestamps, default=0.0)
        logger.debug(f"Released rate-limit slot for user {user_id}")

    def get_usage(self, user_id: Any) -> Dict[str, Any]:
        with self._user_lock(user_id):
            now = self._clock()
            entry = self._entry(user_id) or RateWindowEntry()
            hourly = entry.count_since(now - HOUR_SECONDS)
            daily = entry.count_since(now - DAY_SECONDS)
            last = (
                datetime.fromtimestamp(entry.last_request_at, tz=timezone.utc)
                if entry.last_request_at else None
            )
        return {
            "hourly": {"used": hourly, "limit": self.config.per_hour, "remaining": self.config.per_hour - hourly},
            "daily": {"used": daily, "limit": self.config.per_day, "remaining": self.config.per_day - daily},
            "last_generation": last,
        }

    # -------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------

    def reset_user(self, user_id: Any) -> None:
        with self._user_lock(user_id):
            with self._registry_lock:
                self._store.pop(user_id, None)
        logger.info(f"Rate limits reset for user {user_id}")

    def get_all_users(self) -> List[Dict[str, Any]]:
        """Users with any activity in the last 24 h, busiest first."""
        now = self._clock()
        with self._registry_lock:
            snapshot = list(self._store.items())
        users = []
        for user_id, entry in snapshot:
            hourly = entry.count_since(now - HOUR_SECONDS)
            daily = entry.count_since(now - DAY_SECONDS)
            if hourly or daily:
                users.append({
                    "user_id": user_id,
                    "hourly": hourly,
                    "daily": daily,
                    "last_generation": datetime.fromtimestamp(entry.last_request_at, tz=timezone.utc),
                })
        return sorted(users, key=lambda u: u["daily"], reverse=True)

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._registry_lock:
            entries = list(self._store.values())
        total_hourly = sum(e.count_since(now - HOUR_SECONDS) for e in entries)
        daily_counts = [e.count_since(now - DAY_SECONDS) for e in entries]
        return {
            "active_users": sum(1 for d in daily_counts if d > 0),
            "total_generations_last_hour": total_hourly,
            "total_generations_last_day": sum(daily_counts),
            "limits": {
                "per_hour": self.config.per_hour,
                "per_day": self.config.per_day,
                "cooldown_seconds": self.config.cooldown_seconds,
            },
        }

    # -------------------------------------------------------------------
    # Sweeping
    # -------------------------------------------------------------------

    def cleanup(self) -> int:
        """Drop users with no generation in the last 24 h; prune the rest."""
        with self._registry_lock:
            user_ids = list(self._store.keys())

        removed = 0
        for user_id in user_ids:
            with self._user_lock(user_id):
                now = self._clock()
                with self._registry_lock:
                    entry = self._store.get(user_id)
                    if entry is None:
                        continue
                    recent = [ts for ts in entry.timestamps if ts > now - DAY_SECONDS]
                    if recent:
                        entry.timestamps = recent
                        continue
                    del self._store[user_id]
                    # Waiters on this lock will notice and take a fresh one.
                    self._locks.pop(user_id, None)
                    removed += 1

        # Locks created by read-only calls (can_generate, get_usage) for
        # users that never recorded anything.
        with self._registry_lock:
            idle = [uid for uid, lock in self._locks.items() if uid not in self._store and not lock.locked()]
            for uid in idle:
                del self._locks[uid]

        if removed or idle:
            logger.info(
                f"Rate limiter cleanup completed: {removed} users removed, {len(idle)} idle locks dropped, "
                f"{len(self._store)} active"
            )
        return removed

    def start_sweeper(self, interval_seconds: Optional[float] = None) -> None:
        """Run cleanup() periodically on a daemon thread."""
        if self._sweeper and self._sweeper.is_alive():
            return
        interval = interval_seconds or self.config.sweep_interval_seconds
        self._sweeper_stop.clear()

        def _loop() -> None:
            while not self._sweeper_stop.wait(interval):
                try:
                    self.cleanup()
                except Exception:
                    logger.exception("Rate limiter sweep failed")

        self._sweeper = threading.Thread(target=_loop, name="rate-limiter-sweeper", daemon=True)
        self._sweeper.start()
        logger.debug(f"Rate limiter sweeper started (every {interval}s)")

    def stop_sweeper(self) -> None:
        self._sweeper_stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=5)
            self._sweeper = None
