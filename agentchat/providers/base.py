"""Vendor-neutral generation contract shared by every provider endpoint."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from agentchat.errors import AgentChatError
from agentchat.messages import CoreMessage
from agentchat.models import ModelResponse, ProviderConfig
from agentchat.reasoning import ReasoningDirective
from agentchat.runs import CancellationToken
from config.config_loader import ProviderSettings

logger = logging.getLogger(__name__)


class ProviderError(AgentChatError):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


@dataclass
class GenerationRequest:
    system_prompt: str | None
    messages: list[CoreMessage]
    temperature: float | None = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    reasoning: ReasoningDirective | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str


@dataclass
class ToolCallEvent:
    tool_name: str
    arguments: Any


@dataclass
class ToolResultEvent:
    tool_name: str
    output: Any


@dataclass
class UsageEvent:
    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass
class FinishEvent:
    reason: str


StreamEvent = TextDelta | ReasoningDelta | ToolCallEvent | ToolResultEvent | UsageEvent | FinishEvent


class StreamResult:
    """Async iterator over stream events; keeps finish reason and usage aside.

    Iterate once, then ``await stop_reason()``.
    """

    def __init__(self, events: AsyncIterator[StreamEvent]) -> None:
        self._events = events
        self._finish_reason: str | None = None
        self.input_tokens: int | None = None
        self.output_tokens: int | None = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        async for event in self._events:
            if isinstance(event, FinishEvent):
                self._finish_reason = event.reason
            elif isinstance(event, UsageEvent):
                self.input_tokens = event.input_tokens if event.input_tokens is not None else self.input_tokens
                self.output_tokens = event.output_tokens if event.output_tokens is not None else self.output_tokens
            else:
                yield event

    @property
    def token_count(self) -> int | None:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    async def stop_reason(self) -> str | None:
        return self._finish_reason

    async def aclose(self) -> None:
        aclose = getattr(self._events, "aclose", None)
        if aclose is not None:
            await aclose()


class ModelEndpoint(ABC):
    """A resolved, callable generation target bound to one model and credential."""

    def __init__(
        self,
        config: ProviderConfig,
        credential: str,
        settings: ProviderSettings,
        base_url: str | None = None,
    ) -> None:
        self._config = config
        self._settings = settings
        self._base_url = base_url
        self._client = self._create_client(credential)

    def name(self) -> str:
        """Return the provider kind value (e.g. 'openai', 'anthropic')."""
        return self._config.provider_kind.value

    def model_string(self) -> str:
        """Return the actual model identifier string."""
        return self._config.model_id

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @abstractmethod
    def _create_client(self, credential: str) -> Any:
        """Build the vendor SDK client. Must not perform network I/O."""
        ...

    @abstractmethod
    def _stream_events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        """Yield normalized events for one request, ending with a FinishEvent."""
        ...

    def stream(self, request: GenerationRequest) -> StreamResult:
        return StreamResult(self._wrapped_events(request))

    async def _wrapped_events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        try:
            async for event in self._stream_events(request):
                yield event
                if request.cancellation.cancelled:
                    return
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

    async def generate(self, request: GenerationRequest) -> ModelResponse:
        """Run a request to completion and return the collected text.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        start = time.monotonic()
        try:
            text, result = await asyncio.wait_for(
                self._collect(request),
                timeout=self._settings.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self.name(), f"Request timed out after {self._settings.timeout_sec}s") from exc

        latency = time.monotonic() - start
        if not text:
            raise ProviderError(self.name(), "Empty response content")

        logger.info(
            "%s (%s): %.2fs, %s tokens",
            self.name(),
            self.model_string(),
            latency,
            result.token_count,
        )

        return ModelResponse(
            provider=self.name(),
            model=self.model_string(),
            content=text,
            latency_sec=latency,
            token_count=result.token_count,
            stop_reason=await result.stop_reason() or "unknown",
        )

    async def _collect(self, request: GenerationRequest) -> tuple[str, StreamResult]:
        result = self.stream(request)
        chunks: list[str] = []
        async for event in result:
            if isinstance(event, TextDelta):
                chunks.append(event.text)
        return "".join(chunks), result


def normalize_stop_reason(raw: str | None, mapping: dict[str, str]) -> str | None:
    if raw is None:
        return None
    return mapping.get(raw, raw)
