"""OpenAI provider using openai SDK with native async.

Also serves every OpenAI-compatible API (xAI, OpenRouter, DeepSeek, Groq,
Mistral, ...) through ``base_url``.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from agentchat.messages import CoreMessage, FilePart, ImagePart, TextPart
from agentchat.providers.base import (
    FinishEvent,
    GenerationRequest,
    ModelEndpoint,
    ReasoningDelta,
    StreamEvent,
    TextDelta,
    UsageEvent,
    normalize_stop_reason,
)

logger = logging.getLogger(__name__)

_STOP_REASONS = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


def _content_to_openai(content: str | list) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    parts: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            parts.append({"type": "image_url", "image_url": {"url": part.image}})
        elif isinstance(part, FilePart):
            file_payload: dict[str, Any] = {"file_data": f"data:{part.media_type};base64,{part.data}"}
            if part.filename:
                file_payload["filename"] = part.filename
            parts.append({"type": "file", "file": file_payload})
    return parts


def to_openai_messages(system_prompt: str | None, messages: list[CoreMessage]) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})
    for msg in messages:
        result.append({"role": msg.role, "content": _content_to_openai(msg.content)})
    return result


class OpenAIEndpoint(ModelEndpoint):
    """OpenAI chat completions (or a compatible API) via openai SDK."""

    def _create_client(self, credential: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=credential,
            base_url=self._base_url,
            timeout=self._settings.timeout_sec,
        )

    def _request_kwargs(self, request: GenerationRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._config.model_id,
            "messages": to_openai_messages(request.system_prompt, request.messages),
            "max_tokens": self._settings.max_tokens,
            "stream": True,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.reasoning is not None and request.reasoning.effort:
            kwargs["reasoning_effort"] = request.reasoning.effort
        kwargs.update(request.provider_options)
        return kwargs

    async def _stream_events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        stream = await self._client.chat.completions.create(**self._request_kwargs(request))
        finish_reason: str | None = None
        try:
            async for chunk in stream:
                if request.cancellation.cancelled:
                    finish_reason = "abort"
                    break
                usage = getattr(chunk, "usage", None)
                if usage:
                    yield UsageEvent(input_tokens=usage.prompt_tokens, output_tokens=usage.completion_tokens)
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                # DeepSeek / OpenRouter style reasoning field
                reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                if reasoning:
                    yield ReasoningDelta(reasoning)
                if delta.content:
                    yield TextDelta(delta.content)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        finally:
            await stream.close()

        logger.debug("%s stream finished: %s", self.name(), finish_reason)
        yield FinishEvent(normalize_stop_reason(finish_reason, _STOP_REASONS) or "unknown")
