"""
host/memory_store.py — In-process Conversation Store

Owns all Conversation objects. Maps conversation_id → Conversation, with
exactly one of them active at a time. Switching or creating a conversation
fires the registered change listeners; the app wires those to
SchedulerCoordinator.on_conversation_changed().

Everything is synchronous: the store lives on the event loop thread and
is never awaited.
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Optional

from chime.exceptions import ConversationError
from chime.host.base import ConversationStore
from chime.observability.logger import bind_conversation, get_logger
from chime.types import ChatMessage, Conversation

log = get_logger(__name__)

ChangeListener = Callable[[str], None]
MessageListener = Callable[[str, ChatMessage], None]


class InMemoryConversationStore(ConversationStore):
    """
    Conversation store for a single local user.

    Conversations are created on demand via create(); the most recently
    created or switched-to one is the current conversation.
    """

    def __init__(self, model: Optional[str] = None, parameters: Optional[dict[str, Any]] = None):
        self._conversations: dict[str, Conversation] = {}
        self._current_id: Optional[str] = None
        self._listeners: list[ChangeListener] = []
        self._message_listeners: list[MessageListener] = []
        self._model = model
        self._parameters = dict(parameters or {})

    # ── ConversationStore ─────────────────────────────────────────────────────

    def get_current_conversation(self) -> Optional[Conversation]:
        if self._current_id is None:
            return None
        return self._conversations.get(self._current_id)

    def append_message(self, conversation: Conversation, message: ChatMessage) -> None:
        stored = self._conversations.get(conversation.id)
        if stored is None:
            raise ConversationError(f"Conversation '{conversation.id}' does not exist.")
        stored.messages.append(message)
        log.debug(
            "conversation.appended",
            conversation_id=stored.id,
            sender=message.sender.value,
            proactive=message.proactive,
        )
        for listener in list(self._message_listeners):
            # already stored; listener errors are logged only
            try:
                listener(stored.id, message)
            except Exception as e:
                log.error("conversation.listener_error", error=str(e), exc_info=True)

    # ── Conversation management ───────────────────────────────────────────────

    def create(self, conversation_id: Optional[str] = None) -> Conversation:
        """Create a new conversation, make it current and notify listeners."""
        cid = conversation_id or uuid.uuid4().hex[:8]
        if cid in self._conversations:
            raise ConversationError(f"Conversation '{cid}' already exists.")
        conversation = Conversation(id=cid, model=self._model, parameters=dict(self._parameters))
        self._conversations[cid] = conversation
        log.info("conversation.created", conversation_id=cid)
        self._set_current(cid)
        return conversation

    def switch(self, conversation_id: str) -> Conversation:
        """Make an existing conversation current. Listeners fire only on an actual change."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationError(f"Conversation '{conversation_id}' does not exist.")
        if conversation_id != self._current_id:
            self._set_current(conversation_id)
        return conversation

    def add_user_message(self, text: str) -> ChatMessage:
        """Append a user message to the current conversation, creating one if needed."""
        conversation = self.get_current_conversation() or self.create()
        message = ChatMessage.user(text)
        self.append_message(conversation, message)
        return message

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def list_conversations(self) -> list[str]:
        return list(self._conversations.keys())

    @property
    def current_id(self) -> Optional[str]:
        return self._current_id

    @property
    def count(self) -> int:
        return len(self._conversations)

    # ── Change signal ─────────────────────────────────────────────────────────

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def _set_current(self, conversation_id: str) -> None:
        previous = self._current_id
        self._current_id = conversation_id
        bind_conversation(conversation_id)
        log.info("conversation.switched", previous=previous, current=conversation_id)
        for listener in list(self._listeners):
            listener(conversation_id)
