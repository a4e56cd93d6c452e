"""
scheduler/gate.py — Send Gate

The single choke point for every proactive message, whichever strategy
fired. try_send(mode) runs the checks in order:

    1. cooldown      now - last_auto_message_time < min_message_gap_seconds
    2. idle          only_when_idle and user active within the mode's window
    3. use cap       max_uses > 0 and use_count >= max_uses
    4. conversation  none active, or it has zero messages

then picks a seed prompt at random, asks the generation service for text
and appends it to the conversation as an assistant message.

Two fires can overlap while a generation call is awaited. Only one send
may be in flight, and after generation the cooldown, use cap and
conversation identity are checked again in the same synchronous segment
that appends and records the send.

try_send() never raises. A failed send leaves the runtime state untouched;
the owning strategy simply tries again on its next cycle.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from chime.observability.logger import get_logger
from chime.scheduler.context import SchedulerContext
from chime.types import ChatMessage, Conversation, GenerationRequest, Sender, TriggerMode

log = get_logger(__name__)

_SPEAKER_LABELS = {
    Sender.USER: "User",
    Sender.ASSISTANT: "Assistant",
    Sender.SYSTEM: "System",
}


class SendReason(str, Enum):
    SENT = "sent"
    DISABLED = "disabled"
    COOLDOWN = "cooldown"
    NOT_IDLE = "not_idle"
    USE_CAP = "use_cap"
    NO_CONVERSATION = "no_conversation"
    EMPTY_CONVERSATION = "empty_conversation"
    NO_PROMPTS = "no_prompts"
    IN_FLIGHT = "in_flight"
    CONVERSATION_CHANGED = "conversation_changed"
    GENERATION_FAILED = "generation_failed"
    EMPTY_RESPONSE = "empty_response"
    CONVERSATION_ERROR = "conversation_error"
    APPEND_FAILED = "append_failed"


@dataclass(frozen=True)
class SendResult:
    sent: bool
    reason: SendReason
    mode: TriggerMode
    text: Optional[str] = None


@dataclass
class GateStats:
    attempts: int = 0
    sends: int = 0
    failures: int = 0
    rejections: Counter = field(default_factory=Counter)
    last_sent_at: Optional[str] = None
    last_error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "sends": self.sends,
            "failures": self.failures,
            "rejections": dict(self.rejections),
            "last_sent_at": self.last_sent_at,
            "last_error": self.last_error,
        }


def build_prompt(seed: str, messages: list[ChatMessage], count: int, width: int) -> str:
    """Seed prompt followed by a one-line-per-message recap of the tail of the chat."""
    recent = messages[-count:] if count else []
    if not recent:
        return seed
    lines = []
    for msg in recent:
        text = " ".join(msg.text.split())
        if len(text) > width:
            text = text[:width].rstrip() + "…"
        lines.append(f"{_SPEAKER_LABELS.get(msg.sender, msg.sender.value)}: {text}")
    return seed + "\n\nRecent conversation:\n" + "\n".join(lines)


class Gate:
    """Validates a fired trigger against shared state and performs the send."""

    def __init__(self, ctx: SchedulerContext) -> None:
        self._ctx = ctx
        self._in_flight = False
        self.stats = GateStats()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # ── Checks ────────────────────────────────────────────────────────────────

    def _check_limits(self, mode: TriggerMode, now: float) -> Optional[SendReason]:
        cfg = self._ctx.config
        state = self._ctx.state

        since = state.seconds_since_auto(now)
        if since is not None and since < cfg.min_message_gap_seconds:
            return SendReason.COOLDOWN

        if cfg.only_when_idle:
            threshold = cfg.idle_threshold_for(mode)
            if not self._ctx.activity.is_idle(now, threshold):
                return SendReason.NOT_IDLE

        if cfg.max_uses > 0 and state.use_count >= cfg.max_uses:
            return SendReason.USE_CAP

        return None

    @staticmethod
    def _check_conversation(conversation: Optional[Conversation]) -> Optional[SendReason]:
        if conversation is None:
            return SendReason.NO_CONVERSATION
        if conversation.is_empty:
            return SendReason.EMPTY_CONVERSATION
        return None

    def check(self, mode: TriggerMode | str) -> Optional[SendReason]:
        """Dry-run the pre-send checks. None means a send would be attempted."""
        mode = TriggerMode(mode)
        cfg = self._ctx.config
        if not (cfg.enabled and cfg.mode_enabled(mode)):
            return SendReason.DISABLED
        if self._in_flight:
            return SendReason.IN_FLIGHT
        reason = self._check_limits(mode, self._ctx.clock.time())
        if reason:
            return reason
        reason = self._check_conversation(self._ctx.host.conversations.get_current_conversation())
        if reason:
            return reason
        if not cfg.prompts:
            return SendReason.NO_PROMPTS
        return None

    # ── Send ──────────────────────────────────────────────────────────────────

    async def try_send(self, mode: TriggerMode | str) -> SendResult:
        mode = TriggerMode(mode)
        self.stats.attempts += 1
        try:
            reason = self.check(mode)
            conversation = self._ctx.host.conversations.get_current_conversation()
        except Exception as e:
            return self._fail(mode, SendReason.CONVERSATION_ERROR, e)
        if reason:
            return self._reject(mode, reason)

        cfg = self._ctx.config
        seed = self._ctx.rng.choice(cfg.prompts)
        request = GenerationRequest(
            prompt=build_prompt(seed, conversation.messages, cfg.context_messages, cfg.context_chars),
            context=list(conversation.messages),
            model=conversation.model,
            parameters=dict(conversation.parameters),
        )

        log.info("gate.generating", mode=mode.value, conversation_id=conversation.id)
        self._in_flight = True
        try:
            result = await self._ctx.host.generator.generate(request)
        except Exception as e:
            return self._fail(mode, SendReason.GENERATION_FAILED, e)
        finally:
            self._in_flight = False

        text = (result.text if result is not None else "").strip()
        if not text:
            return self._reject(mode, SendReason.EMPTY_RESPONSE)

        # ── From here to record_send there is no await ────────────────────────
        now = self._ctx.clock.time()
        try:
            current = self._ctx.host.conversations.get_current_conversation()
        except Exception as e:
            return self._fail(mode, SendReason.CONVERSATION_ERROR, e)
        if current is None or current.id != conversation.id:
            return self._reject(mode, SendReason.CONVERSATION_CHANGED)

        # the user may have typed, or another send landed, while we awaited
        reason = self._check_limits(mode, now)
        if reason:
            return self._reject(mode, reason)

        message = ChatMessage(
            sender=Sender.ASSISTANT,
            text=text,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
            proactive=True,
        )
        try:
            self._ctx.host.conversations.append_message(current, message)
        except Exception as e:
            return self._fail(mode, SendReason.APPEND_FAILED, e)

        self._ctx.state.record_send(now)
        self.stats.sends += 1
        self.stats.last_sent_at = message.timestamp.isoformat()
        log.info(
            "gate.sent",
            mode=mode.value,
            conversation_id=current.id,
            use_count=self._ctx.state.use_count,
            chars=len(text),
        )
        return SendResult(sent=True, reason=SendReason.SENT, mode=mode, text=text)

    # ── Outcomes ──────────────────────────────────────────────────────────────

    def _reject(self, mode: TriggerMode, reason: SendReason) -> SendResult:
        self.stats.rejections[reason.value] += 1
        log.debug("gate.rejected", mode=mode.value, reason=reason.value)
        return SendResult(sent=False, reason=reason, mode=mode)

    def _fail(self, mode: TriggerMode, reason: SendReason, error: Exception) -> SendResult:
        self.stats.failures += 1
        self.stats.last_error = f"{type(error).__name__}: {error}"
        log.warning(
            "gate.send_failed",
            mode=mode.value,
            reason=reason.value,
            error=str(error),
            error_type=type(error).__name__,
            exc_info=True,
        )
        return SendResult(sent=False, reason=reason, mode=mode)
