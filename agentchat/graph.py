"""In-process graph executor: fork, judge, plain nodes and edges.

Build a graph with ``AgentGraph.create(config).fork(...).consensus(...)
.node(...).edge(...).build()`` and iterate ``graph.stream(prompt)`` for
lifecycle events. Fork members run concurrently under a semaphore; a failing
member is reported and left out of the fork's results.
"""

import asyncio
import json
import logging
import random
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from agentchat.filesystem import VirtualFilesystem
from agentchat.messages import CoreMessage
from agentchat.providers.base import GenerationRequest, ModelEndpoint

logger = logging.getLogger(__name__)

CONTINUE_PROMPT = "Continue exactly where you stopped. Do not repeat anything."


@dataclass
class GraphConfig:
    timeout_sec: float = 120
    max_concurrency: int = 3
    filesystem: VirtualFilesystem | None = None


@dataclass
class NodeConfig:
    endpoint: ModelEndpoint
    instructions: str
    max_steps: int = 5
    agent_id: str | None = None


@dataclass
class NodeOutput:
    node_id: str
    output: str
    agent_id: str | None = None


@dataclass
class ConsensusResult:
    output: str
    reasoning: str
    scores: dict[str, float] = field(default_factory=dict)    # node id -> score
    winner: str | None = None                                  # node id


@dataclass
class GraphEvent:
    type: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class Judge(Protocol):
    model_ref: str

    async def judge(self, question: str, outputs: list[NodeOutput]) -> ConsensusResult: ...


def parse_json_response(response: str) -> dict[str, Any] | None:
    """Parse a JSON object out of an LLM reply, tolerating markdown fences.

    Returns None when the reply is not a JSON object.
    """
    text = response.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def _label_key(raw: Any) -> str:
    return str(raw).strip().removeprefix("Proposal").strip().upper()


class LlmJudgeConsensus:
    """Anonymize proposals, ask one model to score them, map labels back."""

    def __init__(self, endpoint: ModelEndpoint, template: str, rng: random.Random | None = None) -> None:
        self._endpoint = endpoint
        self._template = template
        self._rng = rng or random.Random()
        self.model_ref = endpoint.model_string()

    def _anonymize(self, outputs: list[NodeOutput]) -> tuple[str, dict[str, NodeOutput]]:
        shuffled = list(outputs)
        self._rng.shuffle(shuffled)
        labels = [chr(ord("A") + i) for i in range(len(shuffled))]
        block = "\n\n".join(f"--- Proposal {label} ---\n{o.output}" for label, o in zip(labels, shuffled))
        return block, dict(zip(labels, shuffled))

    async def judge(self, question: str, outputs: list[NodeOutput]) -> ConsensusResult:
        proposals, mapping = self._anonymize(outputs)
        logger.debug("Judge anonymization map: %s", {k: v.node_id for k, v in mapping.items()})
        prompt = self._template.format(question=question, proposals=proposals)
        response = await self._endpoint.generate(GenerationRequest(
            system_prompt=None,
            messages=[CoreMessage(role="user", content=prompt)],
        ))

        data = parse_json_response(response.content)
        if data is None:
            logger.warning("Judge reply was not JSON; using free text")
            return ConsensusResult(output=response.content, reasoning=response.content)

        scores: dict[str, float] = {}
        for label, value in (data.get("scores") or {}).items():
            proposal = mapping.get(_label_key(label))
            if proposal is None:
                continue
            try:
                scores[proposal.node_id] = float(value)
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric score %r for %s", value, label)

        winner = mapping.get(_label_key(data.get("winner", "")))
        reasoning = str(data.get("reasoning", ""))
        return ConsensusResult(
            output=winner.output if winner else reasoning,
            reasoning=reasoning,
            scores=scores,
            winner=winner.node_id if winner else None,
        )


@dataclass
class _Fork:
    step_id: str
    nodes: list[tuple[str, NodeConfig]]
    judge: Judge | None = None


@dataclass
class _Node:
    step_id: str
    config: NodeConfig


_Step = _Fork | _Node
Emit = Callable[[GraphEvent], None]


class GraphBuilder:
    def __init__(self, config: GraphConfig) -> None:
        self._config = config
        self._steps: dict[str, _Step] = {}
        self._edges: list[tuple[str, str]] = []

    def _add(self, step: _Step) -> None:
        if step.step_id in self._steps:
            raise ValueError(f"Duplicate graph step: {step.step_id}")
        self._steps[step.step_id] = step

    def fork(self, step_id: str, nodes: list[NodeConfig]) -> "GraphBuilder":
        if not nodes:
            raise ValueError(f"Fork {step_id} needs at least one node")
        self._add(_Fork(step_id, [(f"{step_id}-{i}", cfg) for i, cfg in enumerate(nodes)]))
        return self

    def consensus(self, fork_id: str, judge: Judge) -> "GraphBuilder":
        step = self._steps.get(fork_id)
        if not isinstance(step, _Fork):
            raise ValueError(f"Consensus target is not a fork: {fork_id}")
        step.judge = judge
        return self

    def node(self, node_id: str, config: NodeConfig) -> "GraphBuilder":
        self._add(_Node(node_id, config))
        return self

    def edge(self, source: str, target: str) -> "GraphBuilder":
        self._edges.append((source, target))
        return self

    def build(self) -> "AgentGraph":
        for source, target in self._edges:
            for step_id in (source, target):
                if step_id not in self._steps:
                    raise ValueError(f"Edge references unknown step: {step_id}")
        return AgentGraph(self._config, dict(self._steps), list(self._edges))


class AgentGraph:
    def __init__(self, config: GraphConfig, steps: dict[str, _Step], edges: list[tuple[str, str]]) -> None:
        self._config = config
        self._steps = steps
        self._edges = edges
        self._order = self._topological_order()
        self._fs = config.filesystem or VirtualFilesystem()

    @classmethod
    def create(cls, config: GraphConfig) -> GraphBuilder:
        return GraphBuilder(config)

    def _topological_order(self) -> list[str]:
        incoming = {step_id: 0 for step_id in self._steps}
        for _, target in self._edges:
            incoming[target] += 1
        ready = [s for s in self._steps if incoming[s] == 0]
        order: list[str] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            for source, target in self._edges:
                if source == current:
                    incoming[target] -= 1
                    if incoming[target] == 0:
                        ready.append(target)
        if len(order) != len(self._steps):
            raise ValueError("Graph contains a cycle")
        return order

    def _upstream(self, step_id: str) -> list[str]:
        return [source for source, target in self._edges if target == step_id]

    async def stream(self, prompt: str) -> AsyncIterator[GraphEvent]:
        """Run the graph, yielding lifecycle events until graph:complete or graph:error."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[GraphEvent | None] = asyncio.Queue()
        worker = asyncio.create_task(self._execute(prompt, queue.put_nowait))
        deadline = loop.time() + self._config.timeout_sec
        try:
            while True:
                remaining = max(deadline - loop.time(), 0)
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=remaining)
                except TimeoutError:
                    worker.cancel()
                    logger.warning("Graph timed out after %ss", self._config.timeout_sec)
                    yield GraphEvent("graph:error", data={"error": f"Graph timed out after {self._config.timeout_sec}s"})
                    return
                if event is None:
                    return
                yield event
        finally:
            if not worker.done():
                worker.cancel()

    async def _execute(self, prompt: str, emit: Emit) -> None:
        try:
            emit(GraphEvent("graph:start", data={"steps": list(self._order)}))
            outputs: dict[str, str] = {}
            failed: set[str] = set()
            for step_id in self._order:
                upstream = self._upstream(step_id)
                blocked = [u for u in upstream if u in failed]
                if blocked:
                    failed.add(step_id)
                    emit(GraphEvent("node:error", step_id, {"error": f"Upstream step failed: {', '.join(blocked)}"}))
                    continue
                step_input = self._compose_input(prompt, [(u, outputs[u]) for u in upstream])
                step = self._steps[step_id]
                if isinstance(step, _Fork):
                    result = await self._run_fork(step, prompt, step_input, emit)
                else:
                    result = await self._run_node(step, step_input, emit)
                if result is None:
                    failed.add(step_id)
                else:
                    outputs[step_id] = result
            emit(GraphEvent("graph:complete", data={"outputs": outputs}))
        except Exception as exc:
            logger.error("Graph execution failed: %s", exc)
            emit(GraphEvent("graph:error", data={"error": str(exc)}))
        finally:
            emit(None)

    @staticmethod
    def _compose_input(prompt: str, upstream: list[tuple[str, str]]) -> str:
        if not upstream:
            return prompt
        sections = [f"Original request:\n{prompt}"]
        sections += [f"Output of {step_id}:\n{text}" for step_id, text in upstream]
        return "\n\n".join(sections)

    async def _generate(self, config: NodeConfig, step_input: str) -> str:
        """Generate a node's output.

        A reply cut off at the length limit is continued in further turns,
        at most ``max_steps`` turns in total.
        """
        messages = [CoreMessage(role="user", content=step_input)]
        chunks: list[str] = []
        for _ in range(max(1, config.max_steps)):
            response = await config.endpoint.generate(GenerationRequest(
                system_prompt=config.instructions,
                messages=list(messages),
            ))
            chunks.append(response.content)
            if response.stop_reason != "length":
                break
            messages += [
                CoreMessage(role="assistant", content=response.content),
                CoreMessage(role="user", content=CONTINUE_PROMPT),
            ]
        return "".join(chunks)

    async def _record(self, node_id: str, output: str) -> None:
        await self._fs.write(f"graph/{node_id}.md", output)

    async def _run_node(self, step: _Node, step_input: str, emit: Emit) -> str | None:
        agent_id = step.config.agent_id
        emit(GraphEvent("node:start", step.step_id, {"agent_id": agent_id}))
        try:
            output = await self._generate(step.config, step_input)
        except Exception as exc:
            logger.warning("Node %s failed: %s", step.step_id, exc)
            emit(GraphEvent("node:error", step.step_id, {"error": str(exc), "agent_id": agent_id}))
            return None
        await self._record(step.step_id, output)
        emit(GraphEvent("node:complete", step.step_id, {"output": output, "agent_id": agent_id}))
        return output

    async def _run_fork(self, fork: _Fork, prompt: str, step_input: str, emit: Emit) -> str:
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrency))
        emit(GraphEvent("fork:start", fork.step_id, {
            "nodes": [node_id for node_id, _ in fork.nodes],
            "agent_ids": [cfg.agent_id for _, cfg in fork.nodes],
        }))

        async def run_member(index: int, node_id: str, cfg: NodeConfig) -> tuple[int, str, NodeConfig, str | Exception]:
            async with semaphore:
                emit(GraphEvent("node:start", node_id, {"agent_id": cfg.agent_id, "index": index}))
                try:
                    return index, node_id, cfg, await self._generate(cfg, step_input)
                except Exception as exc:
                    return index, node_id, cfg, exc

        tasks = [asyncio.create_task(run_member(i, node_id, cfg)) for i, (node_id, cfg) in enumerate(fork.nodes)]
        results: list[tuple[int, NodeOutput]] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                index, node_id, cfg, outcome = await next_done
                if isinstance(outcome, Exception):
                    logger.warning("Fork member %s failed: %s", node_id, outcome)
                    emit(GraphEvent("node:error", node_id, {"error": str(outcome), "agent_id": cfg.agent_id}))
                    continue
                await self._record(node_id, outcome)
                results.append((index, NodeOutput(node_id, outcome, cfg.agent_id)))
                emit(GraphEvent("fork:partial", node_id, {"output": outcome, "agent_id": cfg.agent_id, "index": index}))
        finally:
            for task in tasks:
                task.cancel()

        ordered = [output for _, output in sorted(results, key=lambda r: r[0])]
        emit(GraphEvent("fork:complete", fork.step_id, {
            "results": [{"node_id": o.node_id, "agent_id": o.agent_id, "output": o.output} for o in ordered],
        }))
        if not ordered or fork.judge is None:
            return self._raw_outputs(ordered)
        return await self._run_judge(fork, prompt, ordered, emit)

    @staticmethod
    def _raw_outputs(outputs: list[NodeOutput]) -> str:
        if not outputs:
            return "No analyst produced an answer."
        return "\n\n".join(f"--- {o.node_id} ---\n{o.output}" for o in outputs)

    async def _run_judge(self, fork: _Fork, prompt: str, outputs: list[NodeOutput], emit: Emit) -> str:
        judge_id = f"{fork.step_id}:judge"
        emit(GraphEvent("consensus:start", fork.step_id, {"model": fork.judge.model_ref, "candidates": len(outputs)}))
        try:
            result = await fork.judge.judge(prompt, outputs)
        except Exception as exc:
            logger.warning("Judge for %s failed: %s", fork.step_id, exc)
            emit(GraphEvent("node:error", judge_id, {"error": str(exc)}))
            return self._raw_outputs(outputs)
        emit(GraphEvent("consensus:result", fork.step_id, {
            "output": result.output,
            "reasoning": result.reasoning,
            "scores": dict(result.scores),
            "winner": result.winner,
        }))
        await self._record(judge_id.replace(":", "-"), result.output)
        return result.output
