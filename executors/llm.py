"""Shared chat-model and speech client access."""

from __future__ import annotations

import json
import logging
from typing import Any

from anthropic import Anthropic
from openai import OpenAI

from core.cache import RedisCache, create_cache
from core.config import settings
from pipeline.models import Usage
from pipeline.stages import StageError

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY = "llm:ratelimit:openai"
ANTHROPIC_RATE_LIMIT_KEY = "llm:ratelimit:anthropic"


class ChatGateway:
    """JSON-returning chat completions plus optional Redis-backed rate limiting."""

    service = ""
    rate_limit_key = ""

    def __init__(self, cache: RedisCache | None = None) -> None:
        self._cache = cache if cache is not None else create_cache()

    def throttle(self) -> None:
        if self._cache:
            self._cache.wait_for_rate_limit(self.rate_limit_key, int(settings.llm_rate_limit_requests))

    def complete_json(
        self, model: str, system: str, user: str, max_tokens: int
    ) -> tuple[dict[str, Any], int, int]:
        """Run one chat call. Returns the decoded object and token counts."""
        raise NotImplementedError

    def _decode(
        self, text: str, model: str, input_tokens: int, output_tokens: int
    ) -> tuple[dict[str, Any], int, int]:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise StageError(
                f"Model returned invalid JSON: {e}",
                "INVALID_RESPONSE",
                Usage(self.service, model, input_tokens, output_tokens),
            ) from e
        if not isinstance(data, dict):
            raise StageError(
                "Model returned a non-object JSON reply",
                "INVALID_RESPONSE",
                Usage(self.service, model, input_tokens, output_tokens),
            )
        return data, input_tokens, output_tokens


class OpenAIGateway(ChatGateway):
    """OpenAI chat in JSON mode and AAC speech synthesis."""

    service = "openai_chat"
    rate_limit_key = RATE_LIMIT_KEY

    def __init__(self, client: OpenAI | None = None, cache: RedisCache | None = None) -> None:
        super().__init__(cache)
        self.client = client or OpenAI(api_key=settings.openai_api_key)

    def complete_json(
        self, model: str, system: str, user: str, max_tokens: int
    ) -> tuple[dict[str, Any], int, int]:
        self.throttle()
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        return self._decode(content, model, input_tokens, output_tokens)

    def speech(self, model: str, voice: str, text: str, instructions: str) -> bytes:
        self.throttle()
        response = self.client.audio.speech.create(
            model=model,
            voice=voice,
            input=text,
            instructions=instructions,
            response_format="aac",
        )
        return response.content


class AnthropicGateway(ChatGateway):
    """Anthropic messages API. The JSON object is cut out of the text reply."""

    service = "anthropic_chat"
    rate_limit_key = ANTHROPIC_RATE_LIMIT_KEY

    def __init__(self, client: Anthropic | None = None, cache: RedisCache | None = None) -> None:
        super().__init__(cache)
        self.client = client or Anthropic(api_key=settings.anthropic_api_key)

    def complete_json(
        self, model: str, system: str, user: str, max_tokens: int
    ) -> tuple[dict[str, Any], int, int]:
        self.throttle()
        response = self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )

        text = ""
        for block in response.content:
            if getattr(block, "type", None) == "text":
                text = block.text
                break

        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0

        # Replies may wrap the object in prose or a code fence
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]
        return self._decode(text, model, input_tokens, output_tokens)


def create_chat_gateway(openai_gateway: OpenAIGateway | None = None) -> ChatGateway:
    """Chat gateway for the configured llm_provider."""
    provider = str(settings.llm_provider).lower()
    if provider == "anthropic":
        logger.info("Using Anthropic for script generation and extraction")
        return AnthropicGateway()
    if provider == "openai":
        return openai_gateway or OpenAIGateway()
    raise ValueError(f"Unknown llm_provider: {settings.llm_provider}")
