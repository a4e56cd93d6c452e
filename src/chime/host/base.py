"""
host/base.py — Host Adapter Contracts

The scheduler core never talks to a chat UI, a storage backend or a model
provider directly. Everything it needs from the surrounding application
goes through these three collaborators, bundled in a HostAdapter:

  - ConversationStore  — the active conversation, and appending to it
  - GenerationService  — prompt + context in, text out
  - ConfigStore        — load/save the proactive configuration (optional)

The two host signals (user input, conversation change) are plain method
calls on SchedulerCoordinator: on_user_input() / on_conversation_changed().

ConversationStore methods are synchronous on purpose: the gate re-checks
its limits, appends and records the send in one segment with no await in
between.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from chime.config.settings import ProactiveConfig
from chime.types import ChatMessage, Conversation, GenerationRequest, GenerationResult


class ConversationStore(ABC):

    @abstractmethod
    def get_current_conversation(self) -> Optional[Conversation]:
        """Return the active conversation, or None if there is none."""
        ...

    @abstractmethod
    def append_message(self, conversation: Conversation, message: ChatMessage) -> None:
        """Append `message` to `conversation`. Raises ConversationError on failure."""
        ...


class GenerationService(ABC):

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate text for `request`. Raises GenerationError on failure."""
        ...


class ConfigStore(ABC):

    @abstractmethod
    async def load(self) -> Optional[ProactiveConfig]:
        """Return the persisted configuration, or None if nothing was saved."""
        ...

    @abstractmethod
    async def save(self, config: ProactiveConfig) -> None:
        """Persist `config`. Raises ConfigStoreError on failure."""
        ...


@dataclass
class HostAdapter:
    conversations: ConversationStore
    generator: GenerationService
    config_store: Optional[ConfigStore] = None
