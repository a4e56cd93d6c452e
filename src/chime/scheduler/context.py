"""
scheduler/context.py — Scheduler Context

One SchedulerContext is built per coordinator and handed to every strategy
and to the gate. It is the only shared state: the current configuration
snapshot, the runtime state, the timer service and the host collaborators.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from chime.config.settings import ProactiveConfig
from chime.host.base import HostAdapter
from chime.scheduler.clock import Clock, TimerService
from chime.scheduler.state import ActivityTracker, RuntimeState


@dataclass
class SchedulerContext:
    config: ProactiveConfig             # replaced wholesale on update, never mutated
    host: HostAdapter
    timers: TimerService
    state: RuntimeState
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        self.activity = ActivityTracker(self.state)

    @property
    def clock(self) -> Clock:
        return self.timers.clock

    @classmethod
    def create(
        cls,
        config: ProactiveConfig,
        host: HostAdapter,
        timers: TimerService,
        rng: random.Random | None = None,
    ) -> "SchedulerContext":
        state = RuntimeState(last_user_input_time=timers.clock.time())
        return cls(
            config=config,
            host=host,
            timers=timers,
            state=state,
            rng=rng or random.Random(),
        )
