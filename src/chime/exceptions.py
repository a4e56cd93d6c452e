"""
exceptions.py — Chime Unified Error Hierarchy

All Chime-specific exceptions live here. Import from here, not from
individual modules:
    from chime.exceptions import GenerationError, ConfigError

Hierarchy:
    ChimeError
    ├── ConfigError
    ├── SchedulerError
    │   ├── StrategyError
    │   └── TimerError
    ├── HostError
    │   ├── ConversationError
    │   └── ConfigStoreError
    └── GenerationError
        ├── GenerationConnectionError
        ├── GenerationRateLimitError
        └── EmptyGenerationError

None of these ever reach the user of a conversation. The gate and the
strategies catch and log them; a failed proactive message is simply absent.
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class ChimeError(Exception):
    """Base class for all Chime exceptions."""


class ConfigError(ChimeError):
    """Raised by Settings.validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler layer
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerError(ChimeError):
    """Base for scheduler errors."""


class StrategyError(SchedulerError):
    """A trigger strategy could not compute its next fire time."""

    def __init__(self, strategy: str, message: str = "") -> None:
        self.strategy = strategy
        super().__init__(message or f"Strategy '{strategy}' could not compute a delay.")


class TimerError(SchedulerError):
    """A timer was armed twice or a stale handle was used. Programming error."""


# ─────────────────────────────────────────────────────────────────────────────
# Host collaborators
# ─────────────────────────────────────────────────────────────────────────────

class HostError(ChimeError):
    """Base for failures in host-provided collaborators."""


class ConversationError(HostError):
    """The conversation store could not read or append."""


class ConfigStoreError(HostError):
    """Persisting or loading the proactive configuration failed."""


# ─────────────────────────────────────────────────────────────────────────────
# Text generation
# ─────────────────────────────────────────────────────────────────────────────

class GenerationError(ChimeError):
    """Base exception for text-generation failures."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class GenerationConnectionError(GenerationError):
    """Provider unreachable or authentication failed."""


class GenerationRateLimitError(GenerationError):
    """Provider rate limit hit."""


class EmptyGenerationError(GenerationError):
    """Provider answered with no usable text."""


__all__ = [
    "ChimeError",
    "ConfigError",
    "SchedulerError",
    "StrategyError",
    "TimerError",
    "HostError",
    "ConversationError",
    "ConfigStoreError",
    "GenerationError",
    "GenerationConnectionError",
    "GenerationRateLimitError",
    "EmptyGenerationError",
]
