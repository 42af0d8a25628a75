"""Tests for small utilities: call quota, durations, keyed locks and periodic tasks."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from modguard.moderation.account_locks import KeyedLocks
from modguard.scheduler.periodic_task import PeriodicTask
from modguard.util.quota import CallQuota
from modguard.util.time_utils import format_duration, from_db, parse_duration, to_db


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCallQuota:
    async def test_per_minute_window(self):
        clock = FakeClock()
        quota = CallQuota(per_minute=2, per_day=100, clock=clock)

        assert (await quota.try_acquire())[0]
        assert (await quota.try_acquire())[0]
        allowed, reason = await quota.try_acquire()
        assert not allowed
        assert "per-minute" in reason

        clock.now += 61
        assert (await quota.try_acquire())[0]

    async def test_daily_limit(self):
        clock = FakeClock()
        quota = CallQuota(per_minute=10, per_day=2, clock=clock)
        await quota.try_acquire()
        clock.now += 61
        await quota.try_acquire()
        clock.now += 61

        allowed, reason = await quota.try_acquire()
        assert not allowed
        assert "daily" in reason

        usage = await quota.usage()
        assert usage["day_used"] == 2
        assert usage["day_limit"] == 2


class TestDurations:
    @pytest.mark.parametrize("text, expected", [
        ("30m", timedelta(minutes=30)),
        ("2h", timedelta(hours=2)),
        ("1d 12h", timedelta(days=1, hours=12)),
        ("15", timedelta(minutes=15)),
        ("1w", timedelta(weeks=1)),
    ])
    def test_parse(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "soon", "5x", "m"])
    def test_parse_rejects(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_format(self):
        assert format_duration(timedelta(days=1, hours=2, minutes=5)) == "1d 2h 5m"
        assert format_duration(timedelta(0)) == "0s"

    def test_db_timestamps_keep_utc(self):
        value = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert from_db(to_db(value)) == value
        assert to_db(None) is None


class TestKeyedLocks:
    async def test_same_key_serialises_and_cleans_up(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("user"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0


class TestPeriodicTask:
    async def test_failed_run_does_not_stop_the_loop(self):
        runs = []

        async def job():
            runs.append(len(runs))
            if len(runs) == 1:
                raise RuntimeError("first run fails")

        task = PeriodicTask("TEST", job, lambda: 0.01)
        task.start()
        await asyncio.sleep(0.08)
        await task.shutdown()

        assert len(runs) >= 2
        assert not task.running

    async def test_start_twice_keeps_one_task(self):
        async def job():
            return None

        task = PeriodicTask("TEST", job, lambda: 10)
        task.start()
        first = task._task
        task.start()
        assert task._task is first
        await task.shutdown()
