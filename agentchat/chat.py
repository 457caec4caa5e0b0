"""Single-agent stream orchestrator.

One run: resolve the endpoint, build the request, optionally hand it to the
deep-agent runtime, and forward the normalized stream to a StreamObserver.
Every run ends in exactly one ``on_complete`` or ``on_error``; a cancelled
run always ends in ``on_complete("abort")``.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Callable

from agentchat.agent import AgentRuntime, AgentRuntimeFactory, AgentRuntimeSpec, ApproximateTokenCounter
from agentchat.errors import UnsupportedInputError
from agentchat.filesystem import VirtualFilesystem
from agentchat.memory import MemoryStore
from agentchat.messages import to_core_messages
from agentchat.models import ChatMessage, ProviderConfig
from agentchat.prompts import build_system_prompt
from agentchat.providers.base import (
    GenerationRequest,
    ReasoningDelta,
    StreamEvent,
    StreamResult,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
)
from agentchat.providers.registry import ProviderRegistry
from agentchat.reasoning import derive_reasoning
from agentchat.runs import CancellationToken, RunHandle, StreamObserver, TerminalGuard, bind_task_cancellation
from agentchat.tools import ApprovalHandler, ApprovalPolicy, SubagentPolicy, ToolProvider, build_tool_set
from config.config_loader import AgentSettings

logger = logging.getLogger(__name__)

_IMAGE_INPUT_SIGNATURES = ("image input", "does not support image", "doesn't support image")

VISION_MODEL_HINT = (
    "This model doesn't support image input. "
    "Try a vision model (e.g. gpt-4o, gemini-2.5-flash, claude-sonnet-4)."
)


def translate_error(exc: Exception) -> Exception:
    """Rewrite known unsupported-input failures; pass everything else through."""
    message = str(exc).lower()
    if any(sig in message for sig in _IMAGE_INPUT_SIGNATURES):
        err = UnsupportedInputError(VISION_MODEL_HINT)
        err.__cause__ = exc
        return err
    return exc


def serialize_tool_output(output: object) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


def dispatch_event(event: StreamEvent, observer: StreamObserver) -> str:
    """Forward one event to the observer. Returns any assistant text it carried."""
    if isinstance(event, TextDelta):
        observer.on_text(event.text)
        return event.text
    if isinstance(event, ReasoningDelta):
        observer.on_reasoning(event.text)
    elif isinstance(event, ToolCallEvent):
        observer.on_tool_call(event.tool_name, json.dumps(event.arguments, indent=2, default=str))
    elif isinstance(event, ToolResultEvent):
        observer.on_tool_result(event.tool_name, serialize_tool_output(event.output))
    return ""


class ChatOrchestrator:
    """Starts cancellable single-agent runs."""

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: AgentSettings | None = None,
        runtime_factory: AgentRuntimeFactory | None = None,
        tool_provider: ToolProvider | None = None,
        memory_factory: Callable[[], MemoryStore] | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or AgentSettings()
        self._runtime_factory = runtime_factory
        self._tool_provider = tool_provider
        self._memory_factory = memory_factory or (lambda: MemoryStore(self._settings.memory_db))

    def start(
        self,
        messages: list[ChatMessage],
        config: ProviderConfig,
        credential: str | None,
        observer: StreamObserver,
        *,
        session_id: str | None = None,
        force_agent_mode: bool = False,
        approval_handler: ApprovalHandler | None = None,
    ) -> RunHandle:
        """Start a run on the running event loop and return its handle."""
        token = CancellationToken()
        task = asyncio.create_task(self._run(
            list(messages), config, credential, observer, token,
            session_id=session_id,
            force_agent_mode=force_agent_mode,
            approval_handler=approval_handler,
        ))
        return RunHandle(token, task)

    async def _run(
        self,
        messages: list[ChatMessage],
        config: ProviderConfig,
        credential: str | None,
        observer: StreamObserver,
        token: CancellationToken,
        *,
        session_id: str | None,
        force_agent_mode: bool,
        approval_handler: ApprovalHandler | None,
    ) -> None:
        guard = TerminalGuard(observer)
        unbind = bind_task_cancellation(token)
        runtime: AgentRuntime | None = None
        logger.info("Chat run started: %s/%s", config.provider_kind.value, config.model_id)
        try:
            if token.cancelled:
                guard.complete("abort")
                return

            endpoint = self._registry.resolve(config, credential)
            memory = self._memory_factory() if (self._runtime_factory or session_id) else None
            request = GenerationRequest(
                system_prompt=None,
                messages=to_core_messages(messages),
                temperature=config.temperature,
                cancellation=token,
                reasoning=derive_reasoning(config),
            )

            if self._runtime_factory is not None:
                approval = None
                if approval_handler is not None:
                    approval = ApprovalPolicy(approval_handler, list(self._settings.approval_tools))
                run_session = session_id or uuid.uuid4().hex
                fs = VirtualFilesystem()
                tools = build_tool_set(
                    fs, memory, run_session, self._tool_provider,
                    web_search=config.web_search_enabled, approval=approval,
                )
                request.system_prompt = build_system_prompt(config, tools, force_agent_mode)
                spec = AgentRuntimeSpec(
                    endpoint=endpoint,
                    instructions=request.system_prompt,
                    filesystem=fs,
                    memory=memory,
                    session_id=run_session,
                    max_steps=self._settings.max_steps,
                    token_counter=ApproximateTokenCounter(),
                    tools=tools,
                    subagents=SubagentPolicy(self._settings.subagent_max_depth, self._settings.subagent_timeout_sec),
                    approval=approval,
                )
                runtime = self._runtime_factory(spec)
                result: StreamResult = runtime.stream(request)
            else:
                request.system_prompt = build_system_prompt(config, {}, force_agent_mode)
                result = endpoint.stream(request)

            reply: list[str] = []
            async for event in result:
                if token.cancelled:
                    break
                reply.append(dispatch_event(event, observer))

            if token.cancelled:
                await result.aclose()
                guard.complete("abort")
                return

            stop_reason = await result.stop_reason() or "unknown"
            if runtime is not None:
                await runtime.dispose()
                runtime = None
            if session_id and memory is not None:
                await self._persist(memory, session_id, messages, "".join(reply))
            logger.info("Chat run finished: %s", stop_reason)
            guard.complete(stop_reason)
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            guard.complete("abort")
        except Exception as exc:
            if token.cancelled:
                guard.complete("abort")
            else:
                logger.error("Chat run failed: %s", exc)
                guard.error(translate_error(exc))
        finally:
            unbind()
            if runtime is not None:
                await self._dispose_quietly(runtime)

    @staticmethod
    async def _persist(memory: MemoryStore, session_id: str, messages: list[ChatMessage], reply: str) -> None:
        snapshot = list(messages)
        if reply:
            snapshot.append(ChatMessage(role="assistant", content=reply))
        try:
            await memory.save_conversation(session_id, snapshot)
        except Exception as exc:
            logger.warning("Could not persist conversation %s: %s", session_id, exc)

    @staticmethod
    async def _dispose_quietly(runtime: AgentRuntime) -> None:
        try:
            await runtime.dispose()
        except Exception as exc:
            logger.warning("Agent runtime dispose failed: %s", exc)
