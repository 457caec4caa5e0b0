"""Dataclasses shared by the chat, consensus and storage layers."""

import copy
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class ProviderKind(str, Enum):
    """Every vendor / API family a ProviderConfig can point at."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    XAI = "xai"
    OPENROUTER = "openrouter"
    # OpenAI-compatible REST family
    KIMI = "kimi"
    MINIMAX = "minimax"
    GLM = "glm"
    DEEPSEEK = "deepseek"
    GROQ = "groq"
    TOGETHER = "together"
    MISTRAL = "mistral"
    PERPLEXITY = "perplexity"
    CUSTOM = "custom"


class AgentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"


class ConsensusStatus(str, Enum):
    AGENTS_RUNNING = "agents_running"
    CONSENSUS_RUNNING = "consensus_running"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProviderConfig:
    provider_kind: ProviderKind
    model_id: str
    credential_ref: str            # opaque key for the credential store
    base_url: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    reasoning_enabled: bool = False
    reasoning_effort: str | None = None   # none, minimal, low, medium, high, xhigh
    web_search_enabled: bool = True

    def with_model(self, model_id: str) -> "ProviderConfig":
        return replace(self, model_id=model_id)


@dataclass
class Attachment:
    media_type: str
    base64: str
    name: str | None = None


@dataclass
class ChatMessage:
    role: str                      # "user", "assistant" or "system"
    content: str
    attachments: list[Attachment] = field(default_factory=list)
    reasoning: str | None = None
    is_streaming: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now().astimezone().isoformat(timespec="seconds"))

    def __post_init__(self) -> None:
        if self.attachments and self.role != "user":
            raise ValueError(f"Only user messages may carry attachments, got role={self.role!r}")


@dataclass
class AgentRole:
    id: str
    role: str                      # display label, e.g. "Critical Analyst"
    instructions: str
    model: str | None = None       # None = use the caller's model
    provider: ProviderConfig | None = None   # cross-provider override


@dataclass
class ConsensusConfig:
    agents: list[AgentRole]
    reviewer_model: str | None = None
    reviewer_provider: ProviderConfig | None = None
    use_shared_model: bool = True


DEFAULT_CONSENSUS_AGENTS: list[AgentRole] = [
    AgentRole("optimistic", "Optimistic Analyst",
              "Focus on positive aspects, opportunities, and creative solutions."),
    AgentRole("critical", "Critical Analyst",
              "Focus on risks, edge cases, potential failures, and constraints."),
    AgentRole("pragmatic", "Pragmatic Analyst",
              "Focus on facts, straightforward implementations, and step-by-step reasoning."),
]


@dataclass
class AgentResult:
    agent_id: str
    role: str
    model_ref: str
    output: str = ""
    status: AgentStatus = AgentStatus.PENDING


@dataclass
class ConsensusDetails:
    agent_results: list[AgentResult]
    status: ConsensusStatus = ConsensusStatus.AGENTS_RUNNING
    reviewer_model_ref: str | None = None
    reviewer_verdict: str | None = None

    def snapshot(self) -> "ConsensusDetails":
        return copy.deepcopy(self)


@dataclass
class ModelResponse:
    provider: str                  # provider kind value
    model: str                     # actual model string used
    content: str
    latency_sec: float
    token_count: int | None
    stop_reason: str = "unknown"


@dataclass
class Todo:
    content: str
    status: str = "pending"        # pending, in_progress, done
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "content": self.content, "status": self.status}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Todo":
        return cls(content=data["content"], status=data.get("status", "pending"), id=data["id"])


@dataclass
class Checkpoint:
    step: int
    state: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "step": self.step, "state": self.state, "created_at": self.created_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        return cls(step=data["step"], state=data.get("state", {}), id=data["id"], created_at=data["created_at"])
