"""
brain/openai_client.py — OpenAI-compatible Generation Service

Works against the official OpenAI API and any OpenAI-compatible endpoint
(Ollama's /v1, LiteLLM proxy, local vLLM, ...). Handles message
translation and error normalisation into the GenerationError family.
"""

from __future__ import annotations

from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from chime.config.settings import GenerationConfig
from chime.exceptions import (
    EmptyGenerationError,
    GenerationConnectionError,
    GenerationError,
    GenerationRateLimitError,
)
from chime.host.base import GenerationService
from chime.observability.logger import get_logger
from chime.types import ChatMessage, GenerationRequest, GenerationResult, Sender

log = get_logger(__name__)

_ROLES = {
    Sender.USER: "user",
    Sender.ASSISTANT: "assistant",
    Sender.SYSTEM: "system",
}

# request.parameters keys forwarded to chat.completions.create()
_PASSTHROUGH_PARAMS = ("temperature", "max_tokens", "top_p", "presence_penalty", "frequency_penalty")


class OpenAIGenerationService(GenerationService):
    """
    Text generation over chat completions.

    generate() is what the scheduler calls for a proactive message: the
    conversation goes in as chat history and the seed prompt is appended
    as a final system instruction. reply() answers the user's own turn.
    """

    def __init__(
        self,
        config: GenerationConfig,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._config = config
        self._client = client or AsyncOpenAI(
            api_key=api_key or "ollama",    # local endpoints accept any key
            base_url=config.base_url,
        )

    @classmethod
    def from_settings(cls, settings) -> "OpenAIGenerationService":
        return cls(config=settings.generation, api_key=settings.openai_api_key)

    @property
    def model(self) -> str:
        return self._config.model

    # ── Public API ────────────────────────────────────────────────────────────

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        messages = self._to_provider_messages(request.context)
        messages.append({"role": "system", "content": request.prompt})
        return await self._complete(messages, request.model, request.parameters)

    async def reply(self, history: list[ChatMessage], model: Optional[str] = None) -> GenerationResult:
        return await self._complete(self._to_provider_messages(history), model, {})

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except (openai.APIError, OSError) as e:
            log.warning("openai.health_check.failed", error=str(e), error_type=type(e).__name__)
            return False

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _complete(
        self,
        messages: list[dict],
        model: Optional[str],
        parameters: dict[str, Any],
    ) -> GenerationResult:
        kwargs: dict[str, Any] = {
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }
        kwargs.update({k: parameters[k] for k in _PASSTHROUGH_PARAMS if k in parameters})
        model = model or self._config.model

        log.debug("openai.generate.start", model=model, message_count=len(messages))

        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                timeout=self._config.timeout_seconds,
                **kwargs,
            )
        except openai.AuthenticationError as e:
            raise GenerationConnectionError(str(e), provider="openai", status_code=401) from e
        except openai.RateLimitError as e:
            raise GenerationRateLimitError(str(e), provider="openai", status_code=429) from e
        except openai.APIConnectionError as e:
            raise GenerationConnectionError(str(e), provider="openai") from e
        except openai.APIError as e:
            raise GenerationError(str(e), provider="openai", status_code=getattr(e, "status_code", None)) from e

        result = self._from_provider_response(response)
        log.debug(
            "openai.generate.complete",
            model=result.model,
            chars=len(result.text),
        )
        return result

    def _to_provider_messages(self, messages: list[ChatMessage]) -> list[dict]:
        """Translate ChatMessage list → OpenAI chat message format."""
        return [
            {"role": _ROLES[msg.sender], "content": msg.text}
            for msg in messages
            if msg.text
        ]

    def _from_provider_response(self, response) -> GenerationResult:
        """Translate ChatCompletion → GenerationResult. Blank output is an error."""
        if not response.choices:
            raise EmptyGenerationError("Response contained no choices.", provider="openai")
        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise EmptyGenerationError("Model returned an empty message.", provider="openai")
        return GenerationResult(text=text, model=response.model or "")
