"""Gemini provider using google-genai SDK with native async."""

import base64
import logging
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types as genai_types

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
    "stop": "stop",
    "max_tokens": "length",
    "safety": "content-filter",
    "recitation": "content-filter",
    "prohibited_content": "content-filter",
    "blocklist": "content-filter",
}


def _part_to_gemini(part: Any) -> genai_types.Part:
    if isinstance(part, TextPart):
        return genai_types.Part.from_text(text=part.text)
    if isinstance(part, ImagePart):
        media_type, data = split_data_uri(part.image)
        return genai_types.Part.from_bytes(data=base64.b64decode(data), mime_type=media_type or part.media_type)
    if isinstance(part, FilePart):
        return genai_types.Part.from_bytes(data=base64.b64decode(part.data), mime_type=part.media_type)
    raise TypeError(f"Unsupported content part: {part!r}")


def to_gemini_contents(
    system_prompt: str | None,
    messages: list[CoreMessage],
) -> tuple[str | None, list[genai_types.Content]]:
    """Map messages to Gemini contents; system messages join the system instruction."""
    system_parts = [system_prompt] if system_prompt else []
    contents: list[genai_types.Content] = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(message_text(msg))
            continue
        role = "model" if msg.role == "assistant" else "user"
        if isinstance(msg.content, str):
            parts = [genai_types.Part.from_text(text=msg.content)]
        else:
            parts = [_part_to_gemini(p) for p in msg.content]
        contents.append(genai_types.Content(role=role, parts=parts))
    system = "\n\n".join(p for p in system_parts if p) or None
    return system, contents


class GeminiEndpoint(ModelEndpoint):
    """Google Gemini provider via google-genai SDK."""

    def _create_client(self, credential: str) -> genai.Client:
        http_options = genai_types.HttpOptions(
            timeout=self._settings.timeout_sec * 1000,
            base_url=self._base_url,
        )
        return genai.Client(api_key=credential, http_options=http_options)

    def _generate_config(self, request: GenerationRequest, system: str | None) -> genai_types.GenerateContentConfig:
        options: dict[str, Any] = {"max_output_tokens": self._settings.max_tokens}
        if system:
            options["system_instruction"] = system
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.reasoning is not None and request.reasoning.include_thoughts:
            options["thinking_config"] = genai_types.ThinkingConfig(include_thoughts=True)
        options.update(request.provider_options)
        return genai_types.GenerateContentConfig(**options)

    async def _stream_events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        system, contents = to_gemini_contents(request.system_prompt, request.messages)
        stream = await self._client.aio.models.generate_content_stream(
            model=self._config.model_id,
            contents=contents,
            config=self._generate_config(request, system),
        )
        finish_reason: str | None = None
        try:
            async for chunk in stream:
                if request.cancellation.cancelled:
                    finish_reason = "abort"
                    break
                if chunk.usage_metadata:
                    yield UsageEvent(
                        input_tokens=chunk.usage_metadata.prompt_token_count,
                        output_tokens=chunk.usage_metadata.candidates_token_count,
                    )
                if not chunk.candidates:
                    continue
                candidate = chunk.candidates[0]
                if candidate.content and candidate.content.parts:
                    for part in candidate.content.parts:
                        if not part.text:
                            continue
                        yield ReasoningDelta(part.text) if part.thought else TextDelta(part.text)
                if candidate.finish_reason:
                    finish_reason = str(getattr(candidate.finish_reason, "name", candidate.finish_reason)).lower()
        finally:
            await stream.aclose()

        logger.debug("google stream finished: %s", finish_reason)
        yield FinishEvent(normalize_stop_reason(finish_reason, _STOP_REASONS) or "unknown")
