"""Shared pytest fixtures."""

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from agentchat.models import ChatMessage, ConsensusDetails, ProviderConfig, ProviderKind
from agentchat.providers.base import (
    FinishEvent,
    GenerationRequest,
    ModelEndpoint,
    StreamEvent,
    TextDelta,
)
from agentchat.providers.registry import ProviderRegistry
from agentchat.runs import StreamObserver
from config.config_loader import AgentSettings, ConsensusSettings, PromptsConfig, ProviderSettings


class FakeEndpoint(ModelEndpoint):
    """Test double endpoint replaying scripted events.

    ``script`` is a list of events, or a callable taking the request and
    returning one. An Exception in the script is raised at that point.
    """

    def __init__(
        self,
        config: ProviderConfig,
        credential: str = "sk-test",
        settings: ProviderSettings | None = None,
        base_url: str | None = None,
        script: Any = None,
    ) -> None:
        super().__init__(config, credential, settings or ProviderSettings("fake", "FAKE_KEY", timeout_sec=5), base_url)
        self.script = script if script is not None else [TextDelta("Hello"), FinishEvent("stop")]
        self.requests: list[GenerationRequest] = []

    def _create_client(self, credential: str) -> Any:
        self.credential = credential
        return None

    async def _stream_events(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        script = self.script(request) if callable(self.script) else self.script
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


def make_config(kind: ProviderKind = ProviderKind.OPENAI, model: str = "gpt-4o", **kwargs: Any) -> ProviderConfig:
    return ProviderConfig(provider_kind=kind, model_id=model, credential_ref="TEST_KEY", **kwargs)


def fake_registry(script: Any = None, endpoints: dict[str, FakeEndpoint] | None = None) -> ProviderRegistry:
    """Registry whose every kind resolves to a FakeEndpoint.

    Resolved endpoints are recorded in ``endpoints`` keyed by model id.
    """
    registry = ProviderRegistry()
    created = endpoints if endpoints is not None else {}

    def factory(config: ProviderConfig, credential: str, settings: ProviderSettings, base_url: str | None = None):
        endpoint = FakeEndpoint(config, credential, settings, base_url, script=script)
        created[config.model_id] = endpoint
        return endpoint

    for kind in ProviderKind:
        registry.register(kind, factory)
    registry.created = created  # type: ignore[attr-defined]
    return registry


class RecordingObserver(StreamObserver):
    """Records every callback in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.details: list[ConsensusDetails] = []

    def on_text(self, text: str) -> None:
        self.events.append(("text", text))

    def on_reasoning(self, text: str) -> None:
        self.events.append(("reasoning", text))

    def on_tool_call(self, tool_name: str, arguments: str) -> None:
        self.events.append(("tool_call", (tool_name, arguments)))

    def on_tool_result(self, tool_name: str, result: str) -> None:
        self.events.append(("tool_result", (tool_name, result)))

    def on_consensus_update(self, details: ConsensusDetails) -> None:
        self.details.append(details)

    def on_complete(self, stop_reason: str) -> None:
        self.events.append(("complete", stop_reason))

    def on_error(self, error: Exception) -> None:
        self.events.append(("error", error))

    def of(self, kind: str) -> list[Any]:
        return [value for k, value in self.events if k == kind]

    @property
    def text(self) -> str:
        return "".join(self.of("text"))

    @property
    def terminals(self) -> list[tuple[str, Any]]:
        return [e for e in self.events if e[0] in ("complete", "error")]


class ScriptedGraph:
    """Stands in for the graph builder and the built graph; replays fixed events."""

    def __init__(self, events):
        self.events = events

    def __call__(self, config):
        return self

    def fork(self, *args):
        return self

    def consensus(self, *args):
        return self

    def node(self, *args):
        return self

    def edge(self, *args):
        return self

    def build(self):
        return self

    async def stream(self, prompt):
        for event in self.events:
            yield event


@pytest.fixture
def openai_config() -> ProviderConfig:
    return make_config()


@pytest.fixture
def user_messages() -> list[ChatMessage]:
    return [ChatMessage(role="user", content="Should we use YAML or JSON for config?")]


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def agent_settings(tmp_path: Path) -> AgentSettings:
    return AgentSettings(memory_db=tmp_path / "memory.db")


@pytest.fixture
def consensus_settings() -> ConsensusSettings:
    return ConsensusSettings(timeout_sec=5, max_concurrency=3)


@pytest.fixture
def prompts() -> PromptsConfig:
    return PromptsConfig()
