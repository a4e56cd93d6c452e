"""
Test conftest — isolate environment variables and provide a virtual clock.

  - Every test runs with OPENAI_API_KEY / CHIME_* removed from the
    environment and .env loading disabled, so Settings() behaves the same
    on a developer machine and in CI.
  - ManualTimerService runs the scheduler on virtual time: advance(s)
    moves the clock forward and runs every timer that falls due, in due
    order, each callback to completion before the next.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone, tzinfo
from typing import Optional

import pytest

from chime.config.settings import ProactiveConfig
from chime.host.base import GenerationService, HostAdapter
from chime.host.memory_store import InMemoryConversationStore
from chime.scheduler.clock import Clock, TimerCallback, TimerHandle, TimerService
from chime.types import ChatMessage, GenerationRequest, GenerationResult

_API_KEY_ENV_VARS = ["OPENAI_API_KEY", "CHIME_CONFIG"]

# Monday 2026-01-05 09:00:00 UTC
_START_EPOCH = 1_767_603_600.0


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Remove API keys and CHIME_* overrides, and disable .env file loading."""
    for var in _API_KEY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.upper().startswith("CHIME_"):
            monkeypatch.delenv(var, raising=False)

    import chime.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_prefix="CHIME_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)


# ─────────────────────────────────────────────────────────────────────────────
# Virtual time
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock(Clock):
    """Epoch-driven clock; now() is derived from time() in the given zone."""

    def __init__(self, epoch: float = _START_EPOCH, tz: Optional[tzinfo] = timezone.utc) -> None:
        self._epoch = epoch
        self.tz = tz
        self.offset = 0.0

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.time(), tz=self.tz)

    def time(self) -> float:
        return self._epoch + self.offset

    def set_offset(self, seconds: float) -> None:
        self.offset = seconds


class ManualTimerService(TimerService):
    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        super().__init__(clock or FakeClock())
        self._queue: list[tuple[float, int, TimerHandle, TimerCallback]] = []
        self._seq = 0
        self.created = 0

    def call_later(self, delay: float, callback: TimerCallback, name: str = "timer") -> TimerHandle:
        handle = TimerHandle(name=name, due=self.clock.time() + max(float(delay), 0.0))
        self._seq += 1
        self.created += 1
        self._queue.append((handle.due, self._seq, handle, callback))
        return handle

    def pending(self) -> list[TimerHandle]:
        return sorted(
            (h for _, _, h, _ in self._queue if h.pending),
            key=lambda h: h.due,
        )

    def pending_names(self) -> list[str]:
        return sorted(h.name for h in self.pending())

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing every timer that falls due on the way."""
        target = self.clock.time() + seconds
        while True:
            due = [e for e in self._queue if e[2].pending and e[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._queue.remove(entry)
            when, _, handle, callback = entry
            self.clock.set_offset(when - self.clock._epoch)
            if handle.mark_fired():
                await callback()
        self._queue = [e for e in self._queue if e[2].pending]
        self.clock.set_offset(target - self.clock._epoch)


# ─────────────────────────────────────────────────────────────────────────────
# Host fakes
# ─────────────────────────────────────────────────────────────────────────────

class ScriptedGenerator(GenerationService):
    """Returns queued replies in order, then a default; records every request."""

    def __init__(self, default: str = "Hello again!") -> None:
        self.default = default
        self.replies: list = []
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        return GenerationResult(text=reply)


@pytest.fixture
def timers() -> ManualTimerService:
    return ManualTimerService()


@pytest.fixture
def timers_at():
    """Build a ManualTimerService whose clock starts at an aware datetime."""
    def _make(start: datetime) -> ManualTimerService:
        return ManualTimerService(FakeClock(epoch=start.timestamp(), tz=start.tzinfo))
    return _make


@pytest.fixture
def conversations() -> InMemoryConversationStore:
    store = InMemoryConversationStore(model="test-model")
    store.create("c1")
    store.append_message(store.get("c1"), ChatMessage.user("hi there"))
    return store


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def host(conversations, generator) -> HostAdapter:
    return HostAdapter(conversations=conversations, generator=generator)


@pytest.fixture
def quiet_config() -> ProactiveConfig:
    """Every trigger off; tests switch on what they need."""
    return ProactiveConfig(
        fixed={"enabled": False},
        random={"enabled": False},
        inactivity={"enabled": False},
        min_message_gap_seconds=5,
        only_when_idle=False,
        max_uses=0,
        prompts=("Say something.",),
    )
