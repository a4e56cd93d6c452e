"""
scheduler/coordinator.py — SchedulerCoordinator

Owns the lifecycle of every trigger strategy and the gate they share.

    coordinator = SchedulerCoordinator(config, host)
    coordinator.start()                  # arm every enabled strategy
    coordinator.on_user_input()          # host's input signal
    coordinator.on_conversation_changed()
    coordinator.update_config({"max_uses": 3})
    await coordinator.close()            # stop + wait for in-flight sends

start(), stop() and restart() are synchronous: every live timer is
cancelled before any new one is created, so no callback from a previous
configuration can start after restart() returns. A callback that had
already started is left to finish; the gate re-checks cooldown and idle
at send time, which makes such a late fire reject itself in the common
case.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Optional, Union

from chime.config.settings import ProactiveConfig
from chime.exceptions import ConfigStoreError
from chime.host.base import HostAdapter
from chime.observability.logger import get_logger
from chime.scheduler.clock import AsyncioTimerService, TimerService
from chime.scheduler.context import SchedulerContext
from chime.scheduler.gate import Gate, SendResult
from chime.scheduler.strategies import STRATEGY_TYPES, InactivityStrategy, TriggerStrategy
from chime.types import TriggerMode

log = get_logger(__name__)


class SchedulerCoordinator:
    """
    Starts and stops the fixed, random and inactivity strategies together.

    Introspection::

        coordinator.running       # True between start() and stop()
        coordinator.armed()       # {"fixed", ...} strategies with a live timer
        coordinator.status()      # dict for /status display
        coordinator.gate.stats    # GateStats counters
    """

    def __init__(
        self,
        config: ProactiveConfig,
        host: HostAdapter,
        timers: Optional[TimerService] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._timers = timers or AsyncioTimerService()
        self._ctx = SchedulerContext.create(config, host, self._timers, rng=rng)
        self.gate = Gate(self._ctx)
        self._strategies: dict[TriggerMode, TriggerStrategy] = {}
        self._running = False
        self._restarts = 0
        self._unsaved: Optional[ProactiveConfig] = None
        self._save_task: Optional[asyncio.Task] = None

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings, host: HostAdapter, **kwargs: Any) -> "SchedulerCoordinator":
        return cls(config=settings.proactive, host=host, **kwargs)

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def config(self) -> ProactiveConfig:
        return self._ctx.config

    @property
    def context(self) -> SchedulerContext:
        return self._ctx

    @property
    def running(self) -> bool:
        return self._running

    def strategy(self, mode: TriggerMode | str) -> Optional[TriggerStrategy]:
        return self._strategies.get(TriggerMode(mode))

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Arm every enabled strategy. Calling it while running restarts cleanly."""
        self.stop()
        cfg = self._ctx.config

        for problem in cfg.problems():
            log.warning("coordinator.config_problem", problem=problem)

        if not cfg.enabled:
            log.info("coordinator.disabled")
            return

        self._running = True
        for mode, strategy_cls in STRATEGY_TYPES.items():
            if not cfg.mode_enabled(mode):
                log.debug("coordinator.mode_disabled", mode=mode.value)
                continue
            strategy = strategy_cls(self._ctx, self._dispatch)
            self._strategies[mode] = strategy
            try:
                strategy.start()
            except Exception as e:
                log.error(
                    "coordinator.strategy_start_failed",
                    mode=mode.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                strategy.stop()
        log.info("coordinator.started", armed=sorted(self.armed()))

    def stop(self) -> None:
        """Cancel every live timer. No strategy keeps a handle afterwards."""
        if not self._strategies and not self._running:
            return
        for strategy in self._strategies.values():
            strategy.stop()
        self._strategies.clear()
        self._running = False
        log.info("coordinator.stopped")

    def restart(self) -> None:
        self._restarts += 1
        log.info("coordinator.restart", count=self._restarts)
        self.start()

    async def close(self) -> None:
        """Stop, then wait for any in-flight send and pending persistence."""
        self.stop()
        await self._timers.drain()

    # ── Host signals ──────────────────────────────────────────────────────────

    def on_user_input(self) -> None:
        """Activity happened now."""
        self._ctx.activity.record(self._ctx.clock.time())
        inactivity = self._strategies.get(TriggerMode.INACTIVITY)
        if isinstance(inactivity, InactivityStrategy):
            inactivity.on_input()

    def on_conversation_changed(self) -> None:
        self._ctx.state.reset_uses()
        log.info("coordinator.conversation_changed")
        if self._running:
            self.restart()

    # ── Configuration ─────────────────────────────────────────────────────────

    def update_config(self, update: Union[ProactiveConfig, dict[str, Any]]) -> ProactiveConfig:
        """
        Replace the configuration snapshot, persist it and restart.

        `update` is either a complete ProactiveConfig or a partial nested
        dict of overrides applied on top of the current snapshot. Invalid
        overrides raise pydantic.ValidationError and leave the running
        configuration untouched.
        """
        if isinstance(update, ProactiveConfig):
            new = update
        else:
            new = self._ctx.config.merged(update)

        self._ctx.config = new
        log.info("coordinator.config_updated", enabled=new.enabled)
        self._persist(new)
        self.restart()
        return new

    def set_enabled(self, enabled: bool) -> ProactiveConfig:
        return self.update_config({"enabled": bool(enabled)})

    async def restore_config(self) -> Optional[ProactiveConfig]:
        """Load the persisted snapshot, if any, and make it current. Does not restart."""
        store = self._ctx.host.config_store
        if store is None:
            return None
        try:
            loaded = await store.load()
        except ConfigStoreError as e:
            log.warning("coordinator.config_load_failed", error=str(e))
            return None
        if loaded is not None:
            self._ctx.config = loaded
            log.info("coordinator.config_restored")
        return loaded

    def _persist(self, config: ProactiveConfig) -> None:
        if self._ctx.host.config_store is None:
            return
        self._unsaved = config
        if self._save_task is None or self._save_task.done():
            self._save_task = self._timers.spawn(self._save_pending(), name="chime:persist")

    async def _save_pending(self) -> None:
        """Write snapshots one at a time until none is waiting; the newest wins."""
        store = self._ctx.host.config_store
        while self._unsaved is not None:
            config, self._unsaved = self._unsaved, None
            try:
                await store.save(config)
            except ConfigStoreError as e:
                log.warning("coordinator.config_save_failed", error=str(e))

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def _dispatch(self, mode: TriggerMode) -> SendResult:
        return await self.gate.try_send(mode)

    async def trigger(self, mode: TriggerMode | str) -> SendResult:
        """Run the gate for `mode` now, bypassing its timer."""
        return await self.gate.try_send(mode)

    # ── Introspection ─────────────────────────────────────────────────────────

    def armed(self) -> set[str]:
        return {mode.value for mode, s in self._strategies.items() if s.armed}

    def status(self) -> dict:
        cfg = self._ctx.config
        state = self._ctx.state
        now = self._ctx.clock.time()
        return {
            "enabled": cfg.enabled,
            "running": self._running,
            "strategies": [s.describe() for s in self._strategies.values()],
            "armed": sorted(self.armed()),
            "use_count": state.use_count,
            "max_uses": cfg.max_uses,
            "idle_seconds": round(self._ctx.activity.idle_seconds(now), 1),
            "seconds_since_auto": (
                round(state.seconds_since_auto(now), 1)
                if state.last_auto_message_time is not None
                else None
            ),
            "gate": self.gate.stats.as_dict(),
            "restarts": self._restarts,
        }
