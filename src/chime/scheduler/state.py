"""
scheduler/state.py — Runtime State and Activity Tracker

RuntimeState is never persisted; it starts fresh with the process.
Only the Gate (sends) and the ActivityTracker (user input) mutate it, and
each mutation happens in one synchronous segment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from chime.observability.logger import get_logger

log = get_logger(__name__)


@dataclass
class RuntimeState:
    last_user_input_time: float
    last_auto_message_time: Optional[float] = None
    use_count: int = 0

    def seconds_since_input(self, now: float) -> float:
        return now - self.last_user_input_time

    def seconds_since_auto(self, now: float) -> Optional[float]:
        if self.last_auto_message_time is None:
            return None
        return now - self.last_auto_message_time

    def record_send(self, now: float) -> None:
        self.use_count += 1
        self.last_auto_message_time = now

    def reset_uses(self) -> None:
        self.use_count = 0


class ActivityTracker:
    """Records when the user last did anything."""

    def __init__(self, state: RuntimeState) -> None:
        self._state = state
        self.events = 0

    @property
    def last_input(self) -> float:
        return self._state.last_user_input_time

    def record(self, now: float) -> None:
        """A user input happened at `now`. Starts a new use-cap cycle."""
        self._state.last_user_input_time = now
        self.events += 1
        if self._state.use_count:
            log.debug("activity.use_count_reset", previous=self._state.use_count)
        self._state.reset_uses()

    def idle_seconds(self, now: float) -> float:
        return max(self._state.seconds_since_input(now), 0.0)

    def is_idle(self, now: float, threshold: float) -> bool:
        return self.idle_seconds(now) >= threshold
