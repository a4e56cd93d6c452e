"""brain/ — Text generation backends."""

from chime.brain.openai_client import OpenAIGenerationService

__all__ = ["OpenAIGenerationService"]
