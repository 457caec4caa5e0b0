"""Run plumbing: cancellation tokens, observer interface and run handles."""

import asyncio
import logging
from collections.abc import Callable

from agentchat.models import ConsensusDetails

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag shared by everything a run awaits on.

    ``cancel()`` is idempotent and may be called after the run finished.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for callback in list(self._callbacks):
            callback()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` on cancellation. Returns an unregister function."""
        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister


class StreamObserver:
    """Receives run events. Override the methods you care about.

    Exactly one of ``on_complete`` / ``on_error`` is called per run.
    """

    def on_text(self, text: str) -> None:
        pass

    def on_reasoning(self, text: str) -> None:
        pass

    def on_tool_call(self, tool_name: str, arguments: str) -> None:
        pass

    def on_tool_result(self, tool_name: str, result: str) -> None:
        pass

    def on_consensus_update(self, details: ConsensusDetails) -> None:
        pass

    def on_complete(self, stop_reason: str) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass


class TerminalGuard:
    """Forwards the terminal callback once and drops any later one."""

    def __init__(self, observer: StreamObserver) -> None:
        self._observer = observer
        self.finished = False

    def complete(self, stop_reason: str) -> None:
        if self.finished:
            logger.debug("Dropping late completion (%s)", stop_reason)
            return
        self.finished = True
        self._observer.on_complete(stop_reason)

    def error(self, error: Exception) -> None:
        if self.finished:
            logger.debug("Dropping late error: %s", error)
            return
        self.finished = True
        self._observer.on_error(error)


class RunHandle:
    """Caller-side handle of a started run."""

    def __init__(self, token: CancellationToken, task: "asyncio.Task[None]") -> None:
        self.token = token
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self.token.cancel()

    async def wait(self) -> None:
        """Wait for the run to finish. A run ended by ``cancel()`` returns normally."""
        await asyncio.wait([self._task])
        if self._task.cancelled():
            if self.token.cancelled:
                return
            raise asyncio.CancelledError
        self._task.result()


def bind_task_cancellation(token: CancellationToken) -> Callable[[], None]:
    """Make ``token.cancel()`` also interrupt the current task's pending await."""
    task = asyncio.current_task()
    if task is None:
        return lambda: None
    return token.register(task.cancel)
