"""Seam to the external deep-agent runtime (planning, tool loop, sub-agents).

The orchestrator describes what a run needs in an ``AgentRuntimeSpec``; an
injected factory turns it into something that streams like an endpoint.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from agentchat.filesystem import VirtualFilesystem
from agentchat.memory import MemoryStore
from agentchat.messages import CoreMessage, message_text
from agentchat.providers.base import GenerationRequest, ModelEndpoint, StreamResult
from agentchat.tools import ApprovalPolicy, SubagentPolicy, Tool


class ApproximateTokenCounter:
    """Roughly four characters per token."""

    chars_per_token = 4

    def count(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)

    def count_messages(self, messages: list[CoreMessage]) -> int:
        return sum(self.count(message_text(m)) for m in messages)


@dataclass
class AgentRuntimeSpec:
    endpoint: ModelEndpoint
    instructions: str
    filesystem: VirtualFilesystem
    memory: MemoryStore | None
    session_id: str
    max_steps: int = 15
    token_counter: ApproximateTokenCounter = field(default_factory=ApproximateTokenCounter)
    tools: dict[str, Tool] = field(default_factory=dict)
    planning: bool = True
    subagents: SubagentPolicy = field(default_factory=SubagentPolicy)
    approval: ApprovalPolicy | None = None


class AgentRuntime(Protocol):
    def stream(self, request: GenerationRequest) -> StreamResult: ...

    async def dispose(self) -> None: ...


AgentRuntimeFactory = Callable[[AgentRuntimeSpec], AgentRuntime]
