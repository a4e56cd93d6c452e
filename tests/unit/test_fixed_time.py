"""
tests/unit/test_fixed_time.py — Fixed-time-point strategy

Covers:
  - next_fixed_time(): today's remaining points, wrap to tomorrow, strict '>'
  - next_fixed_time() is strictly after now and minimal, across the whole day
  - FixedTimeStrategy fires at the configured points and re-arms
  - Empty time set stays idle and rechecks on the fixed backoff
  - Delays are computed in epoch time, so DST transitions keep the local point
"""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from chime.config.settings import FixedTimePoint
from chime.scheduler.coordinator import SchedulerCoordinator
from chime.scheduler.strategies import StrategyState, next_fixed_time

_POINTS = [FixedTimePoint(hour=8, minute=30), FixedTimePoint(hour=18, minute=0)]


def _at(hour: int, minute: int = 0, second: int = 0, day: int = 5) -> datetime:
    return datetime(2026, 1, day, hour, minute, second)


# ─────────────────────────────────────────────────────────────────────────────
# next_fixed_time
# ─────────────────────────────────────────────────────────────────────────────

class TestNextFixedTime:
    def test_later_today(self):
        assert next_fixed_time(_at(9, 0), _POINTS) == _at(18, 0)

    def test_wraps_to_tomorrow(self):
        assert next_fixed_time(_at(19, 0), _POINTS) == _at(8, 30, day=6)

    def test_before_first_point(self):
        assert next_fixed_time(_at(6, 15), _POINTS) == _at(8, 30)

    def test_exact_point_counts_as_passed(self):
        assert next_fixed_time(_at(18, 0), _POINTS) == _at(8, 30, day=6)

    def test_same_minute_with_seconds_counts_as_passed(self):
        assert next_fixed_time(_at(8, 30, 45), _POINTS) == _at(18, 0)

    def test_unsorted_input(self):
        assert next_fixed_time(_at(9, 0), list(reversed(_POINTS))) == _at(18, 0)

    def test_single_point(self):
        assert next_fixed_time(_at(12, 0), [FixedTimePoint(hour=12, minute=0)]) == _at(12, 0, day=6)

    def test_month_rollover(self):
        now = datetime(2026, 1, 31, 23, 0)
        assert next_fixed_time(now, _POINTS) == datetime(2026, 2, 1, 8, 30)

    def test_empty_set(self):
        assert next_fixed_time(_at(9, 0), []) is None

    @pytest.mark.parametrize(
        "points",
        [
            _POINTS,
            [FixedTimePoint(hour=0, minute=0)],
            [FixedTimePoint(hour=23, minute=59), FixedTimePoint(hour=0, minute=1)],
            [FixedTimePoint(hour=h, minute=15) for h in range(0, 24, 5)],
        ],
    )
    def test_strictly_after_and_minimal(self, points):
        start = _at(0, 0)
        for step in range(0, 24 * 60, 7):
            now = start + timedelta(minutes=step, seconds=step % 60)
            result = next_fixed_time(now, points)
            assert result > now
            # every candidate over today and tomorrow that is after now
            candidates = [
                (start + timedelta(days=d)).replace(hour=p.hour, minute=p.minute)
                for d in (0, 1)
                for p in points
            ]
            later = [c for c in candidates if c > now.replace(second=0, microsecond=0)]
            assert result == min(later)


# ─────────────────────────────────────────────────────────────────────────────
# FixedTimeStrategy (virtual time)
# ─────────────────────────────────────────────────────────────────────────────

class TestFixedTimeStrategy:
    def _coordinator(self, quiet_config, host, timers, **fixed):
        config = quiet_config.merged({"fixed": {"enabled": True, **fixed}})
        return SchedulerCoordinator(config, host, timers=timers)

    @pytest.mark.asyncio
    async def test_arms_for_next_point(self, quiet_config, host, timers):
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()
        [handle] = timers.pending()
        assert handle.name == "chime:fixed"
        # clock starts at 09:00, next point 18:00
        assert handle.due - timers.clock.time() == 9 * 3600

    @pytest.mark.asyncio
    async def test_fires_and_rearms_for_tomorrow(self, quiet_config, host, timers, conversations):
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()

        await timers.advance(9 * 3600)

        messages = conversations.get_current_conversation().messages
        assert len(messages) == 2
        assert messages[-1].proactive is True
        [handle] = timers.pending()
        # 18:00 → 08:30 tomorrow
        assert handle.due - timers.clock.time() == 14.5 * 3600
        assert coord.strategy("fixed").fire_count == 1

    @pytest.mark.asyncio
    async def test_nothing_fires_between_points(self, quiet_config, host, timers, generator):
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()
        await timers.advance(9 * 3600 - 1)
        assert generator.requests == []

    @pytest.mark.asyncio
    async def test_empty_set_rechecks_without_sending(self, quiet_config, host, timers, generator):
        coord = self._coordinator(quiet_config, host, timers, times=[])
        coord.start()

        [handle] = timers.pending()
        assert handle.due - timers.clock.time() == quiet_config.fixed_retry_seconds

        await timers.advance(35)

        assert generator.requests == []
        assert coord.gate.stats.attempts == 0
        strategy = coord.strategy("fixed")
        assert strategy.state == StrategyState.ARMED
        assert strategy.fire_count == 0
        assert len(timers.pending()) == 1

    @pytest.mark.asyncio
    async def test_full_day_sends_twice(self, quiet_config, host, timers, conversations):
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()
        await timers.advance(24 * 3600)
        # 18:00 today and 08:30 tomorrow
        proactive = [m for m in conversations.get_current_conversation().messages if m.proactive]
        assert len(proactive) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Daylight-saving transitions
# ─────────────────────────────────────────────────────────────────────────────

_NEW_YORK = ZoneInfo("America/New_York")


class TestDaylightSaving:
    def _coordinator(self, quiet_config, host, timers):
        config = quiet_config.merged({"fixed": {"enabled": True, "times": ["08:30"]}})
        return SchedulerCoordinator(config, host, timers=timers)

    @pytest.mark.asyncio
    async def test_spring_forward_keeps_wall_clock_point(self, quiet_config, host, timers_at):
        # 2026-03-08: clocks jump from 02:00 EST to 03:00 EDT
        timers = timers_at(datetime(2026, 3, 8, 1, 0, tzinfo=_NEW_YORK))
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()

        due = coord.strategy("fixed").next_fire_at
        local = datetime.fromtimestamp(due, tz=_NEW_YORK)
        assert (local.hour, local.minute) == (8, 30)
        assert due - timers.clock.time() == 6.5 * 3600

    @pytest.mark.asyncio
    async def test_fall_back_keeps_wall_clock_point(self, quiet_config, host, timers_at):
        # 2026-11-01: clocks fall from 02:00 EDT back to 01:00 EST
        timers = timers_at(datetime(2026, 11, 1, 0, 30, tzinfo=_NEW_YORK))
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()

        due = coord.strategy("fixed").next_fire_at
        local = datetime.fromtimestamp(due, tz=_NEW_YORK)
        assert (local.hour, local.minute) == (8, 30)
        assert due - timers.clock.time() == 9 * 3600

    @pytest.mark.asyncio
    async def test_fires_once_at_local_point(self, quiet_config, host, timers_at, conversations):
        timers = timers_at(datetime(2026, 3, 8, 1, 0, tzinfo=_NEW_YORK))
        coord = self._coordinator(quiet_config, host, timers)
        coord.start()

        await timers.advance(6.5 * 3600 - 1)
        assert not any(m.proactive for m in conversations.get_current_conversation().messages)

        await timers.advance(1)
        assert timers.clock.now() == datetime(2026, 3, 8, 8, 30, tzinfo=_NEW_YORK)
        proactive = [m for m in conversations.get_current_conversation().messages if m.proactive]
        assert len(proactive) == 1
