"""
scheduler/strategies.py — Trigger Strategies

Each strategy decides when it should next fire and hands the fire to the
gate. All three share one state machine:

    IDLE ──start()──▶ ARMED ──timer──▶ FIRED ──reschedule──▶ ARMED ...
      ▲                 │                 │
      └─────────────────┴──── stop() ─────┴──▶ STOPPED

  FixedTimeStrategy     next daily {hour, minute} point strictly after now
  RandomIntervalStrategy  uniform whole-second delay in [min, max]
  InactivityStrategy    timeout_seconds after the last user input (debounced)

A strategy owns at most one live TimerHandle. Arming while one is live
raises TimerError. Every start()/stop() bumps an epoch; a callback that
was already running when the epoch changed finishes its send but does
not reschedule, so no stale chain survives a restart.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from chime.config.settings import FixedTimePoint
from chime.exceptions import StrategyError, TimerError
from chime.observability.logger import get_logger
from chime.scheduler.clock import TimerHandle
from chime.scheduler.context import SchedulerContext
from chime.types import TriggerMode

log = get_logger(__name__)

MIN_DELAY_SECONDS = 1.0

Dispatch = Callable[[TriggerMode], Awaitable[object]]


# ─────────────────────────────────────────────────────────────────────────────
# Delay computations
# ─────────────────────────────────────────────────────────────────────────────

def next_fixed_time(now: datetime, points: Iterable[FixedTimePoint]) -> Optional[datetime]:
    """
    Return the earliest configured point strictly after `now`.

    Points are compared at minute resolution: a point equal to the current
    minute counts as passed. If no point remains today, the earliest point
    tomorrow is returned. None when `points` is empty.
    """
    ordered = sorted(points, key=lambda p: p.minutes_since_midnight)
    if not ordered:
        return None

    current = now.hour * 60 + now.minute
    for point in ordered:
        if point.minutes_since_midnight > current:
            return now.replace(hour=point.hour, minute=point.minute, second=0, microsecond=0)

    first = ordered[0]
    tomorrow = now + timedelta(days=1)
    return tomorrow.replace(hour=first.hour, minute=first.minute, second=0, microsecond=0)


def draw_random_delay(rng: random.Random, min_seconds: int, max_seconds: int) -> int:
    """Uniform whole-second delay in [min_seconds, max_seconds], never below 1."""
    if max_seconds < min_seconds:
        raise StrategyError(
            TriggerMode.RANDOM.value,
            f"max interval {max_seconds}s is below min interval {min_seconds}s",
        )
    return max(int(MIN_DELAY_SECONDS), rng.randint(min_seconds, max_seconds))


# ─────────────────────────────────────────────────────────────────────────────
# Base strategy
# ─────────────────────────────────────────────────────────────────────────────

class StrategyState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"
    STOPPED = "stopped"


class TriggerStrategy(ABC):
    mode: TriggerMode

    def __init__(self, ctx: SchedulerContext, dispatch: Dispatch) -> None:
        self._ctx = ctx
        self._dispatch = dispatch
        self._handle: Optional[TimerHandle] = None
        self._epoch = 0
        self._dispatch_on_fire = True
        self.state = StrategyState.IDLE
        self.fire_count = 0

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Arm from scratch. Any live timer is cancelled first."""
        self._cancel()
        self._epoch += 1
        self.state = StrategyState.IDLE
        log.debug("strategy.start", mode=self.mode.value)
        self._schedule_next(after_fire=False)

    def stop(self) -> None:
        self._cancel()
        self._epoch += 1
        if self.state != StrategyState.STOPPED:
            log.debug("strategy.stop", mode=self.mode.value)
        self.state = StrategyState.STOPPED

    @property
    def armed(self) -> bool:
        return self.state == StrategyState.ARMED and self._handle is not None and self._handle.pending

    @property
    def next_fire_at(self) -> Optional[float]:
        return self._handle.due if self.armed else None

    def describe(self) -> dict:
        return {
            "mode": self.mode.value,
            "state": self.state.value,
            "next_fire_at": self.next_fire_at,
            "fires": self.fire_count,
            "sends_on_fire": self._dispatch_on_fire,
        }

    # ── Timer plumbing ────────────────────────────────────────────────────────

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self, delay: float, dispatch: bool = True) -> None:
        if self._handle is not None and self._handle.pending:
            raise TimerError(f"{self.mode.value} strategy is already armed ({self._handle!r})")
        delay = max(float(delay), MIN_DELAY_SECONDS)
        epoch = self._epoch
        self._dispatch_on_fire = dispatch
        self._handle = self._ctx.timers.call_later(
            delay,
            lambda: self._on_timer(epoch),
            name=f"chime:{self.mode.value}",
        )
        self.state = StrategyState.ARMED
        log.debug(
            "strategy.armed",
            mode=self.mode.value,
            delay_s=round(delay, 1),
            dispatch=dispatch,
        )

    async def _on_timer(self, epoch: int) -> None:
        if epoch != self._epoch:
            return
        self._handle = None
        self.state = StrategyState.FIRED
        try:
            if self._dispatch_on_fire:
                self.fire_count += 1
                await self._fire()
        except Exception as e:
            log.error(
                "strategy.fire_error",
                mode=self.mode.value,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
        finally:
            if epoch == self._epoch and self.state == StrategyState.FIRED:
                self._schedule_next(after_fire=True)

    async def _fire(self) -> None:
        await self._dispatch(self.mode)

    @abstractmethod
    def _schedule_next(self, after_fire: bool) -> None:
        """Arm the next timer, or settle in IDLE/STOPPED."""
        ...


# ─────────────────────────────────────────────────────────────────────────────
# Fixed time points
# ─────────────────────────────────────────────────────────────────────────────

class FixedTimeStrategy(TriggerStrategy):
    mode = TriggerMode.FIXED

    def _schedule_next(self, after_fire: bool) -> None:
        cfg = self._ctx.config
        now = self._ctx.clock.now()
        try:
            target = next_fixed_time(now, cfg.fixed.times)
        except Exception as e:
            log.warning(
                "strategy.fixed.compute_failed",
                error=str(e),
                retry_s=cfg.fixed_retry_seconds,
            )
            self._arm(cfg.fixed_retry_seconds, dispatch=False)
            return

        if target is None:
            log.debug("strategy.fixed.no_points", retry_s=cfg.fixed_retry_seconds)
            self._arm(cfg.fixed_retry_seconds, dispatch=False)
            return

        delay = target.timestamp() - self._ctx.clock.time()
        log.info("strategy.fixed.next", at=target.isoformat(), delay_s=round(delay, 1))
        self._arm(delay)


# ─────────────────────────────────────────────────────────────────────────────
# Random interval
# ─────────────────────────────────────────────────────────────────────────────

class RandomIntervalStrategy(TriggerStrategy):
    mode = TriggerMode.RANDOM

    def _still_enabled(self) -> bool:
        cfg = self._ctx.config
        return cfg.enabled and cfg.random.enabled

    async def _fire(self) -> None:
        if not self._still_enabled():
            log.info("strategy.random.disabled_mid_flight")
            return
        await self._dispatch(self.mode)

    def _schedule_next(self, after_fire: bool) -> None:
        if not self._still_enabled():
            self.state = StrategyState.STOPPED
            log.info("strategy.random.chain_ended")
            return
        cfg = self._ctx.config.random
        delay = draw_random_delay(self._ctx.rng, cfg.min_interval_seconds, cfg.max_interval_seconds)
        self._arm(delay)


# ─────────────────────────────────────────────────────────────────────────────
# Inactivity timeout
# ─────────────────────────────────────────────────────────────────────────────

class InactivityStrategy(TriggerStrategy):
    mode = TriggerMode.INACTIVITY

    def on_input(self) -> None:
        """Debounce: drop the pending fire and restart the countdown from now."""
        if self.state == StrategyState.STOPPED:
            return
        self._cancel()
        self._epoch += 1
        self._arm(self._ctx.config.inactivity.timeout_seconds)

    def _schedule_next(self, after_fire: bool) -> None:
        cfg = self._ctx.config.inactivity
        if after_fire:
            if not cfg.recurring:
                self.state = StrategyState.IDLE
                log.debug("strategy.inactivity.waiting_for_input")
                return
            self._arm(cfg.timeout_seconds)
            return

        idle = self._ctx.activity.idle_seconds(self._ctx.clock.time())
        self._arm(cfg.timeout_seconds - idle)


STRATEGY_TYPES: dict[TriggerMode, type[TriggerStrategy]] = {
    TriggerMode.FIXED: FixedTimeStrategy,
    TriggerMode.RANDOM: RandomIntervalStrategy,
    TriggerMode.INACTIVITY: InactivityStrategy,
}
