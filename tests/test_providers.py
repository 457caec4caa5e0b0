"""Vendor endpoint tests with mocked SDK clients. No real API calls."""

import asyncio
from types import SimpleNamespace as NS
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentchat.messages import CoreMessage, FilePart, ImagePart, TextPart
from agentchat.models import ProviderKind
from agentchat.providers.anthropic import AnthropicEndpoint, to_anthropic_messages
from agentchat.providers.base import (
    FinishEvent,
    GenerationRequest,
    ProviderError,
    ReasoningDelta,
    TextDelta,
    normalize_stop_reason,
)
from agentchat.providers.gemini import GeminiEndpoint, to_gemini_contents
from agentchat.providers.openai_provider import OpenAIEndpoint, to_openai_messages
from agentchat.reasoning import ReasoningDirective
from agentchat.runs import CancellationToken
from config.config_loader import ProviderSettings
from tests.conftest import FakeEndpoint, make_config

SETTINGS = ProviderSettings("test", "TEST_KEY", timeout_sec=5, max_tokens=1000)


class FakeStream:
    """Async-iterable SDK stream with a close() hook."""

    def __init__(self, items):
        self._items = list(items)
        self.close = AsyncMock()

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for item in self._items:
            yield item


def _request(**kwargs) -> GenerationRequest:
    return GenerationRequest(
        system_prompt=kwargs.pop("system_prompt", "Be brief."),
        messages=kwargs.pop("messages", [CoreMessage("user", "Hi")]),
        **kwargs,
    )


async def _drain(result) -> list:
    return [event async for event in result]


# -- OpenAI


def _openai_chunk(content=None, finish=None, reasoning=None, usage=None):
    delta = NS(content=content, reasoning_content=reasoning)
    choices = [NS(delta=delta, finish_reason=finish)] if (content or finish or reasoning) else []
    return NS(choices=choices, usage=usage)


@pytest.fixture
def openai_endpoint() -> OpenAIEndpoint:
    endpoint = OpenAIEndpoint(make_config(ProviderKind.OPENAI, "gpt-4o"), "sk-test", SETTINGS)
    endpoint._client = MagicMock()
    return endpoint


def test_to_openai_messages_parts():
    messages = [CoreMessage("user", [
        TextPart("see"),
        ImagePart("data:image/png;base64,AAA", "image/png"),
        FilePart("PDF", "application/pdf", "a.pdf"),
    ])]
    out = to_openai_messages("sys", messages)
    assert out[0] == {"role": "system", "content": "sys"}
    parts = out[1]["content"]
    assert parts[0] == {"type": "text", "text": "see"}
    assert parts[1]["image_url"]["url"] == "data:image/png;base64,AAA"
    assert parts[2]["file"] == {"file_data": "data:application/pdf;base64,PDF", "filename": "a.pdf"}


async def test_openai_stream_maps_events(openai_endpoint):
    stream = FakeStream([
        _openai_chunk(reasoning="thinking"),
        _openai_chunk(content="Hel"),
        _openai_chunk(content="lo", finish="stop"),
        _openai_chunk(usage=NS(prompt_tokens=7, completion_tokens=2)),
    ])
    openai_endpoint._client.chat.completions.create = AsyncMock(return_value=stream)

    result = openai_endpoint.stream(_request())
    events = await _drain(result)

    assert events == [ReasoningDelta("thinking"), TextDelta("Hel"), TextDelta("lo")]
    assert await result.stop_reason() == "stop"
    assert result.token_count == 9
    stream.close.assert_awaited_once()


async def test_openai_request_kwargs(openai_endpoint):
    openai_endpoint._client.chat.completions.create = AsyncMock(return_value=FakeStream([]))
    request = _request(temperature=0.3, reasoning=ReasoningDirective(effort="low"),
                       provider_options={"seed": 1})
    await _drain(openai_endpoint.stream(request))

    kwargs = openai_endpoint._client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["stream"] is True
    assert kwargs["temperature"] == 0.3
    assert kwargs["reasoning_effort"] == "low"
    assert kwargs["max_tokens"] == 1000
    assert kwargs["seed"] == 1


async def test_openai_tool_calls_finish_reason(openai_endpoint):
    openai_endpoint._client.chat.completions.create = AsyncMock(
        return_value=FakeStream([_openai_chunk(finish="tool_calls")])
    )
    result = openai_endpoint.stream(_request())
    await _drain(result)
    assert await result.stop_reason() == "tool-calls"


async def test_sdk_failure_is_wrapped(openai_endpoint):
    openai_endpoint._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("HTTP 500"))
    with pytest.raises(ProviderError, match="API call failed: HTTP 500"):
        await _drain(openai_endpoint.stream(_request()))


async def test_cancelled_stream_stops_early(openai_endpoint):
    token = CancellationToken()
    stream = FakeStream([_openai_chunk(content="a"), _openai_chunk(content="b")])
    openai_endpoint._client.chat.completions.create = AsyncMock(return_value=stream)

    seen = []
    async for event in openai_endpoint.stream(_request(cancellation=token)):
        seen.append(event)
        token.cancel()
    assert seen == [TextDelta("a")]


# -- Anthropic


def test_to_anthropic_messages_lifts_system():
    system, messages = to_anthropic_messages("base", [
        CoreMessage("system", "extra"),
        CoreMessage("user", [TextPart("hi"), ImagePart("data:image/jpeg;base64,QQ==", "image/jpeg")]),
    ])
    assert system == "base\n\nextra"
    assert messages[0]["role"] == "user"
    image = messages[0]["content"][1]
    assert image["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "QQ=="}


async def test_anthropic_stream_maps_events():
    endpoint = AnthropicEndpoint(make_config(ProviderKind.ANTHROPIC, "claude-sonnet-4"), "sk-test", SETTINGS)
    stream = FakeStream([
        NS(type="message_start", message=NS(usage=NS(input_tokens=11))),
        NS(type="content_block_delta", delta=NS(type="thinking_delta", thinking="hmm")),
        NS(type="content_block_delta", delta=NS(type="text_delta", text="Answer")),
        NS(type="message_delta", delta=NS(stop_reason="max_tokens"), usage=NS(output_tokens=4)),
    ])
    endpoint._client = MagicMock()
    endpoint._client.messages.create = AsyncMock(return_value=stream)

    request = _request(temperature=0.5, reasoning=ReasoningDirective(budget_tokens=10_000))
    result = endpoint.stream(request)
    events = await _drain(result)

    assert events == [ReasoningDelta("hmm"), TextDelta("Answer")]
    assert await result.stop_reason() == "length"
    assert result.token_count == 15
    kwargs = endpoint._client.messages.create.call_args.kwargs
    assert kwargs["thinking"] == {"type": "enabled", "budget_tokens": 10_000}
    assert kwargs["max_tokens"] == 11_000
    assert "temperature" not in kwargs
    assert kwargs["system"] == "Be brief."


# -- Gemini


def _gemini_chunk(text=None, thought=None, finish=None, usage=None):
    parts = [NS(text=text, thought=thought)] if text else []
    candidate = NS(content=NS(parts=parts), finish_reason=NS(name=finish) if finish else None)
    return NS(candidates=[candidate], usage_metadata=usage)


def test_to_gemini_contents_roles():
    system, contents = to_gemini_contents("sys", [
        CoreMessage("user", "q"),
        CoreMessage("assistant", "a"),
        CoreMessage("system", "more"),
    ])
    assert system == "sys\n\nmore"
    assert [c.role for c in contents] == ["user", "model"]


async def test_gemini_stream_maps_events():
    endpoint = GeminiEndpoint(make_config(ProviderKind.GOOGLE, "gemini-2.5-flash"), "sk-test", SETTINGS)

    async def chunks():
        yield _gemini_chunk(text="plan", thought=True)
        yield _gemini_chunk(text="Result", finish="STOP",
                            usage=NS(prompt_token_count=3, candidates_token_count=2))

    endpoint._client = MagicMock()
    endpoint._client.aio.models.generate_content_stream = AsyncMock(return_value=chunks())

    result = endpoint.stream(_request(reasoning=ReasoningDirective(include_thoughts=True)))
    events = await _drain(result)

    assert events == [ReasoningDelta("plan"), TextDelta("Result")]
    assert await result.stop_reason() == "stop"
    assert result.token_count == 5
    config = endpoint._client.aio.models.generate_content_stream.call_args.kwargs["config"]
    assert config.thinking_config.include_thoughts is True
    assert config.system_instruction == "Be brief."


async def test_gemini_stream_closed_on_cancel():
    endpoint = GeminiEndpoint(make_config(ProviderKind.GOOGLE, "gemini-2.5-flash"), "sk-test", SETTINGS)
    closed = []

    async def chunks():
        try:
            yield _gemini_chunk(text="a")
            yield _gemini_chunk(text="b")
        finally:
            closed.append(True)

    endpoint._client = MagicMock()
    endpoint._client.aio.models.generate_content_stream = AsyncMock(return_value=chunks())

    token = CancellationToken()
    seen = []
    async for event in endpoint.stream(_request(cancellation=token)):
        seen.append(event)
        token.cancel()
    assert seen == [TextDelta("a")]
    assert closed == [True]


# -- generate()


async def test_generate_collects_text():
    endpoint = FakeEndpoint(make_config(), script=[TextDelta("O"), TextDelta("K"), FinishEvent("stop")])
    response = await endpoint.generate(_request())
    assert response.content == "OK"
    assert response.stop_reason == "stop"
    assert response.provider == "openai"


async def test_generate_empty_response_raises():
    endpoint = FakeEndpoint(make_config(), script=[FinishEvent("stop")])
    with pytest.raises(ProviderError, match="Empty response"):
        await endpoint.generate(_request())


async def test_generate_timeout_raises_provider_error():
    class SlowEndpoint(FakeEndpoint):
        async def _stream_events(self, request):
            await asyncio.sleep(10)
            yield TextDelta("late")

    endpoint = SlowEndpoint(make_config(), settings=ProviderSettings("slow", "K", timeout_sec=0.05))
    with pytest.raises(ProviderError, match="timed out"):
        await endpoint.generate(_request())


def test_normalize_stop_reason_passthrough():
    assert normalize_stop_reason("weird", {"stop": "stop"}) == "weird"
    assert normalize_stop_reason(None, {}) is None
