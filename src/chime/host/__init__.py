"""
host/ — Host adapter contracts and the bundled local implementations.

Usage:
    from chime.host import HostAdapter, InMemoryConversationStore, YamlConfigStore
"""

from chime.host.base import ConfigStore, ConversationStore, GenerationService, HostAdapter
from chime.host.memory_store import InMemoryConversationStore
from chime.host.yaml_store import YamlConfigStore

__all__ = [
    "ConfigStore",
    "ConversationStore",
    "GenerationService",
    "HostAdapter",
    "InMemoryConversationStore",
    "YamlConfigStore",
]
