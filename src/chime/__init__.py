"""Chime — a proactive-message scheduler for chat assistants."""

__version__ = "1.0.0"
