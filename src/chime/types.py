"""
types.py — Chime Shared Data Models

Types shared between the scheduler core and the host adapters: trigger
modes, conversation messages, and the request/response shapes of the
text-generation service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class TriggerMode(str, Enum):
    FIXED = "fixed"             # daily wall-clock time points
    RANDOM = "random"           # uniformly drawn intervals
    INACTIVITY = "inactivity"   # user silent for timeout_seconds


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# ─────────────────────────────────────────────────────────────────────────────
# Conversation
# ─────────────────────────────────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """One message in a conversation, as the host stores it."""
    sender: Sender
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)
    proactive: bool = False     # True when emitted by the scheduler

    @classmethod
    def user(cls, text: str) -> "ChatMessage":
        return cls(sender=Sender.USER, text=text)

    @classmethod
    def assistant(cls, text: str, proactive: bool = False) -> "ChatMessage":
        return cls(sender=Sender.ASSISTANT, text=text, proactive=proactive)


class Conversation(BaseModel):
    """The active conversation handed to the scheduler by the host."""
    id: str
    messages: list[ChatMessage] = Field(default_factory=list)
    model: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.messages


# ─────────────────────────────────────────────────────────────────────────────
# Text generation
# ─────────────────────────────────────────────────────────────────────────────


class GenerationRequest(BaseModel):
    """Everything the generation service needs for one proactive message."""
    prompt: str
    context: list[ChatMessage] = Field(default_factory=list)
    model: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class GenerationResult(BaseModel):
    text: str
    model: str = ""
