"""Consensus orchestration: analysts fork, reviewer judges, synthesizer answers.

The orchestrator configures a graph (analysts -> judge -> final), streams its
lifecycle events and folds them into one ConsensusDetails object that the
observer receives as snapshots.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from agentchat.credentials import CredentialStore
from agentchat.errors import ConfigurationError, ConsensusError
from agentchat.filesystem import VirtualFilesystem
from agentchat.graph import AgentGraph, GraphBuilder, GraphConfig, GraphEvent, Judge, LlmJudgeConsensus, NodeConfig
from agentchat.messages import message_text, to_core_messages
from agentchat.models import (
    AgentResult,
    AgentRole,
    AgentStatus,
    ChatMessage,
    ConsensusConfig,
    ConsensusDetails,
    ConsensusStatus,
    ProviderConfig,
)
from agentchat.providers.base import ModelEndpoint
from agentchat.providers.registry import ProviderRegistry
from agentchat.runs import CancellationToken, RunHandle, StreamObserver, TerminalGuard, bind_task_cancellation
from config.config_loader import ConsensusSettings, PromptsConfig

logger = logging.getLogger(__name__)

FORK_ID = "analysts"
FINAL_NODE_ID = "final"
VERDICT_FALLBACK_CHARS = 500

GraphFactory = Callable[[GraphConfig], GraphBuilder]
JudgeFactory = Callable[[ModelEndpoint, str], Judge]

_TRAILING_INDEX = re.compile(r"(\d+)$")


@dataclass(frozen=True)
class AgentHandle:
    """Stable identity of one analyst, fixed before the graph is built."""

    index: int
    agent_id: str
    role: str
    node_id: str
    model_ref: str


class ConsensusTracker:
    """Applies graph events to ConsensusDetails. Complete agents never regress."""

    def __init__(self, handles: list[AgentHandle]) -> None:
        self.handles = handles
        self.details = ConsensusDetails(
            agent_results=[AgentResult(h.agent_id, h.role, h.model_ref) for h in handles],
        )

    def handle_for(self, node_id: str | None, agent_id: str | None = None) -> AgentHandle | None:
        """Map an event to an analyst: agent id first, then node id, then numeric suffix."""
        if agent_id:
            for handle in self.handles:
                if handle.agent_id == agent_id:
                    return handle
        if not node_id:
            return None
        for handle in self.handles:
            if handle.node_id == node_id:
                return handle
        match = _TRAILING_INDEX.search(node_id)
        if match and int(match.group(1)) < len(self.handles):
            return self.handles[int(match.group(1))]
        return None

    def role_for(self, node_id: str) -> str:
        handle = self.handle_for(node_id)
        return handle.role if handle else node_id

    def fork_started(self) -> None:
        for result in self.details.agent_results:
            if result.status == AgentStatus.PENDING:
                result.status = AgentStatus.RUNNING
        self.details.status = ConsensusStatus.AGENTS_RUNNING

    def agent_completed(self, node_id: str | None, output: str, agent_id: str | None = None) -> AgentHandle | None:
        handle = self.handle_for(node_id, agent_id)
        if handle is None:
            logger.debug("No analyst matches node %s", node_id)
            return None
        result = self.details.agent_results[handle.index]
        result.output = output
        result.status = AgentStatus.COMPLETE
        return handle

    def fork_completed(self, results: list[dict[str, Any]]) -> None:
        """Reconcile reported results; analysts missing from ``results`` keep their status."""
        for item in results:
            self.agent_completed(item.get("node_id"), str(item.get("output", "")), item.get("agent_id"))

    def consensus_started(self, reviewer_ref: str) -> None:
        self.details.status = ConsensusStatus.CONSENSUS_RUNNING
        self.details.reviewer_model_ref = reviewer_ref

    def consensus_result(
        self,
        reasoning: str,
        scores: dict[str, float],
        winner: str | None,
        output: str,
    ) -> str:
        parts: list[str] = []
        if reasoning:
            parts.append(reasoning)
        if scores:
            lines = "\n".join(f"- **{self.role_for(node_id)}**: {score:g}/10" for node_id, score in scores.items())
            parts.append(f"\n**Scores:**\n{lines}")
        if winner:
            parts.append(f"\n**Winner:** {self.role_for(winner)}")
        verdict = "\n".join(parts) if parts else output[:VERDICT_FALLBACK_CHARS]
        self.details.reviewer_verdict = verdict
        self.details.status = ConsensusStatus.COMPLETE
        return verdict

    @property
    def completed_count(self) -> int:
        return sum(1 for r in self.details.agent_results if r.status == AgentStatus.COMPLETE)


def _event_error(event: GraphEvent) -> str:
    return str(event.data.get("error") or "unknown error")


class ConsensusOrchestrator:
    """Starts cancellable consensus runs."""

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: ConsensusSettings | None = None,
        prompts: PromptsConfig | None = None,
        graph_factory: GraphFactory = AgentGraph.create,
        judge_factory: JudgeFactory = LlmJudgeConsensus,
        credentials: CredentialStore | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or ConsensusSettings()
        self._prompts = prompts or PromptsConfig()
        self._graph_factory = graph_factory
        self._judge_factory = judge_factory
        self._credentials = credentials

    def start(
        self,
        messages: list[ChatMessage],
        config: ProviderConfig,
        credential: str | None,
        observer: StreamObserver,
        consensus_config: ConsensusConfig | None = None,
    ) -> RunHandle:
        token = CancellationToken()
        consensus_config = consensus_config or ConsensusConfig(
            agents=list(self._settings.agents),
            use_shared_model=self._settings.use_shared_model,
        )
        task = asyncio.create_task(self._run(list(messages), config, credential, observer, consensus_config, token))
        return RunHandle(token, task)

    # -- model plan

    def _resolve_override(self, provider: ProviderConfig) -> ModelEndpoint:
        if self._credentials is None:
            raise ConfigurationError(f"No credential store for provider \"{provider.provider_kind.value}\".")
        return self._registry.resolve(provider, self._credentials.get_secret(provider.credential_ref))

    def _agent_endpoint(
        self,
        agent: AgentRole,
        config: ProviderConfig,
        credential: str | None,
        default: ModelEndpoint,
        shared: bool,
        cache: dict[str, ModelEndpoint],
    ) -> ModelEndpoint:
        if shared:
            return default
        if agent.id in cache:
            return cache[agent.id]
        if agent.provider is not None:
            endpoint = self._resolve_override(agent.provider)
        elif agent.model and agent.model != config.model_id:
            endpoint = self._registry.resolve(config.with_model(agent.model), credential)
        else:
            return default
        cache[agent.id] = endpoint
        return endpoint

    def _reviewer_endpoint(
        self,
        consensus_config: ConsensusConfig,
        config: ProviderConfig,
        credential: str | None,
        default: ModelEndpoint,
    ) -> ModelEndpoint:
        if consensus_config.use_shared_model:
            return default
        if consensus_config.reviewer_provider is not None:
            return self._resolve_override(consensus_config.reviewer_provider)
        reviewer_model = consensus_config.reviewer_model
        if reviewer_model and reviewer_model != config.model_id:
            return self._registry.resolve(config.with_model(reviewer_model), credential)
        return default

    @staticmethod
    def _model_ref(agent: AgentRole, config: ProviderConfig, shared: bool) -> str:
        if shared:
            return config.model_id
        if agent.provider is not None:
            return agent.provider.model_id
        return agent.model or config.model_id

    # -- run

    def _build_graph(
        self,
        handles: list[AgentHandle],
        agents: list[AgentRole],
        endpoints: list[ModelEndpoint],
        reviewer: ModelEndpoint,
        default: ModelEndpoint,
        fs: VirtualFilesystem,
    ) -> Any:
        analysts = [
            NodeConfig(
                endpoint=endpoint,
                instructions=self._prompts.analyst.format(role=agent.role, instructions=agent.instructions),
                max_steps=self._settings.analyst_max_steps,
                agent_id=handle.agent_id,
            )
            for handle, agent, endpoint in zip(handles, agents, endpoints)
        ]
        graph_config = GraphConfig(
            timeout_sec=self._settings.timeout_sec,
            max_concurrency=self._settings.max_concurrency,
            filesystem=fs,
        )
        return (
            self._graph_factory(graph_config)
            .fork(FORK_ID, analysts)
            .consensus(FORK_ID, self._judge_factory(reviewer, self._prompts.judge))
            .node(FINAL_NODE_ID, NodeConfig(endpoint=default, instructions=self._prompts.synthesizer))
            .edge(FORK_ID, FINAL_NODE_ID)
            .build()
        )

    async def _run(
        self,
        messages: list[ChatMessage],
        config: ProviderConfig,
        credential: str | None,
        observer: StreamObserver,
        consensus_config: ConsensusConfig,
        token: CancellationToken,
    ) -> None:
        guard = TerminalGuard(observer)
        unbind = bind_task_cancellation(token)
        fs = VirtualFilesystem()
        try:
            if token.cancelled:
                guard.complete("abort")
                return

            prompt = "\n".join(
                message_text(m) for m in to_core_messages(messages) if m.role == "user"
            ).strip()
            if not prompt:
                raise ConfigurationError("No user prompt provided for Consensus Mode.")

            agents = list(consensus_config.agents)
            if not agents:
                raise ConfigurationError("Consensus Mode needs at least one agent.")
            shared = consensus_config.use_shared_model

            default = self._registry.resolve(config, credential)
            cache: dict[str, ModelEndpoint] = {}
            endpoints = [self._agent_endpoint(a, config, credential, default, shared, cache) for a in agents]
            reviewer = self._reviewer_endpoint(consensus_config, config, credential, default)

            handles = [
                AgentHandle(i, a.id, a.role, f"{FORK_ID}-{i}", self._model_ref(a, config, shared))
                for i, a in enumerate(agents)
            ]
            tracker = ConsensusTracker(handles)
            graph = self._build_graph(handles, agents, endpoints, reviewer, default, fs)
            logger.info("Consensus run started: %d analysts, reviewer %s", len(agents), reviewer.model_string())
            observer.on_consensus_update(tracker.details.snapshot())

            final_output = ""
            async with aclosing(graph.stream(prompt)) as events:
                async for event in events:
                    if token.cancelled:
                        break
                    final_output = self._apply(event, tracker, reviewer, observer) or final_output

            if token.cancelled:
                guard.complete("abort")
                return

            details = tracker.details
            if not final_output and details.status == ConsensusStatus.COMPLETE and details.reviewer_verdict:
                observer.on_text(details.reviewer_verdict)
            logger.info("Consensus run finished")
            guard.complete("stop")
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            guard.complete("abort")
        except Exception as exc:
            if token.cancelled:
                guard.complete("abort")
            else:
                logger.error("Consensus run failed: %s", exc)
                guard.error(exc)
        finally:
            unbind()
            await fs.clear_transient()

    def _apply(
        self,
        event: GraphEvent,
        tracker: ConsensusTracker,
        reviewer: ModelEndpoint,
        observer: StreamObserver,
    ) -> str | None:
        """Fold one event into the tracker. Returns the synthesis output when it arrives."""
        kind = event.type
        data = event.data

        if kind == "graph:start":
            observer.on_reasoning(f"Consensus graph started ({len(data.get('steps', []))} steps)\n")
        elif kind == "node:start":
            handle = tracker.handle_for(event.node_id, data.get("agent_id"))
            label = handle.role if handle else event.node_id
            observer.on_reasoning(f"Node \"{label}\" started...\n")
        elif kind == "fork:start":
            tracker.fork_started()
            observer.on_consensus_update(tracker.details.snapshot())
            observer.on_reasoning(f"{len(tracker.handles)} analysts started...\n")
        elif kind == "fork:partial":
            tracker.agent_completed(event.node_id, str(data.get("output", "")), data.get("agent_id"))
            observer.on_consensus_update(tracker.details.snapshot())
            observer.on_reasoning(f"{tracker.completed_count}/{len(tracker.handles)} analysts complete\n")
        elif kind == "fork:complete":
            tracker.fork_completed(list(data.get("results", [])))
            observer.on_consensus_update(tracker.details.snapshot())
            for result in tracker.details.agent_results:
                if result.status == AgentStatus.COMPLETE:
                    observer.on_reasoning(f"\n-- {result.role} --\n{result.output}\n")
        elif kind == "consensus:start":
            tracker.consensus_started(reviewer.model_string())
            observer.on_consensus_update(tracker.details.snapshot())
            observer.on_reasoning("\nReviewer evaluating...\n")
        elif kind == "consensus:result":
            verdict = tracker.consensus_result(
                reasoning=str(data.get("reasoning") or ""),
                scores=dict(data.get("scores") or {}),
                winner=data.get("winner"),
                output=str(data.get("output") or ""),
            )
            observer.on_consensus_update(tracker.details.snapshot())
            if verdict:
                observer.on_reasoning(f"Verdict: {verdict[:VERDICT_FALLBACK_CHARS]}\n")
        elif kind == "node:complete":
            output = str(data.get("output") or "")
            if event.node_id == FINAL_NODE_ID and output:
                observer.on_text(output)
                return output
        elif kind == "node:error":
            if event.node_id == FINAL_NODE_ID:
                raise ConsensusError(f"Synthesis failed: {_event_error(event)}")
            logger.warning("Consensus node %s failed: %s", event.node_id, _event_error(event))
            observer.on_reasoning(f"Node \"{event.node_id}\" error: {_event_error(event)}\n")
        elif kind == "graph:error":
            raise ConsensusError(f"Consensus graph failed: {_event_error(event)}")
        return None
