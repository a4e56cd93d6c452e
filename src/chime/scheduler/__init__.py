"""
scheduler/ — Proactive message scheduler.

Usage:
    from chime.scheduler import SchedulerCoordinator

    coordinator = SchedulerCoordinator(settings.proactive, host)
    coordinator.start()
"""

from chime.scheduler.clock import AsyncioTimerService, Clock, SystemClock, TimerHandle, TimerService
from chime.scheduler.coordinator import SchedulerCoordinator
from chime.scheduler.gate import Gate, SendReason, SendResult
from chime.scheduler.strategies import (
    FixedTimeStrategy,
    InactivityStrategy,
    RandomIntervalStrategy,
    StrategyState,
    draw_random_delay,
    next_fixed_time,
)

__all__ = [
    "AsyncioTimerService",
    "Clock",
    "SystemClock",
    "TimerHandle",
    "TimerService",
    "SchedulerCoordinator",
    "Gate",
    "SendReason",
    "SendResult",
    "FixedTimeStrategy",
    "InactivityStrategy",
    "RandomIntervalStrategy",
    "StrategyState",
    "draw_random_delay",
    "next_fixed_time",
]
