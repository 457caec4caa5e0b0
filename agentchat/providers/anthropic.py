"""Anthropic Claude provider using anthropic SDK with native async."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import anthropic as anthropic_sdk

from agentchat.messages import CoreMessage, FilePart, ImagePart, TextPart, message_text, split_data_uri
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
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
    "refusal": "content-filter",
}


def _content_to_anthropic(content: str | list) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    blocks: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            blocks.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            media_type, data = split_data_uri(part.image)
            blocks.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type or part.media_type, "data": data},
            })
        elif isinstance(part, FilePart):
            blocks.append({
                "type": "document",
                "source": {"type": "base64", "media_type": part.media_type, "data": part.data},
            })
    return blocks


def to_anthropic_messages(
    system_prompt: str | None,
    messages: list[CoreMessage],
) -> tuple[str | None, list[dict[str, Any]]]:
    """Split system messages out into the top-level system prompt.

    Returns:
        (system, messages) ready for ``messages.create``.
    """
    system_parts = [system_prompt] if system_prompt else []
    converted: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(message_text(msg))
            continue
        converted.append({"role": msg.role, "content": _content_to_anthropic(msg.content)})
    system = "\n\n".join(p for p in system_parts if p) or None
    return system, converted


class AnthropicEndpoint(ModelEndpoint):
    """Anthropic Claude provider via anthropic SDK."""

    def _create_client(self, credential: str) -> anthropic_sdk.AsyncAnthropic:
        kwargs: dict[str, Any] = {"api_key": credential, "timeout": self._settings.timeout_sec}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return anthropic_sdk.AsyncAnthropic(**kwargs)

    def _request_kwargs(self, request: GenerationRequest) -> dict[str, Any]:
        system, messages = to_anthropic_messages(request.system_prompt, request.messages)
        kwargs: dict[str, Any] = {
            "model": self._config.model_id,
            "messages": messages,
            "max_tokens": self._settings.max_tokens,
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        budget = request.reasoning.budget_tokens if request.reasoning else None
        if budget:
            # max_tokens must exceed the thinking budget; temperature is fixed while thinking
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            kwargs["max_tokens"] = self._settings.max_tokens + budget
        elif request.temperature is not None:
            kwargs["temperature"] = request.temperature
        kwargs.update(request.provider_options)
        return kwargs

    async def _stream_events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        stream = await self._client.messages.create(**self._request_kwargs(request))
        stop_reason: str | None = None
        try:
            async for event in stream:
                if request.cancellation.cancelled:
                    stop_reason = "abort"
                    break
                if event.type == "message_start":
                    yield UsageEvent(input_tokens=event.message.usage.input_tokens)
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield TextDelta(event.delta.text)
                    elif event.delta.type == "thinking_delta":
                        yield ReasoningDelta(event.delta.thinking)
                elif event.type == "message_delta":
                    if event.delta.stop_reason:
                        stop_reason = event.delta.stop_reason
                    if event.usage:
                        yield UsageEvent(output_tokens=event.usage.output_tokens)
        finally:
            await stream.close()

        logger.debug("anthropic stream finished: %s", stop_reason)
        yield FinishEvent(normalize_stop_reason(stop_reason, _STOP_REASONS) or "unknown")
