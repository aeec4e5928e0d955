"""Live conversation runtime: serialized per conversation, delays as scheduled resumptions."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

from .executor import Effect, ExecutionResult, RunState, StepExecutor
from .graph import AutomationGraph
from .trigger import TriggerMatcher
from .variables import VariableContext

logger = logging.getLogger(__name__)

ConversationKey = tuple[str, str]  # (automation_id, recipient)


class OutboundTransport(Protocol):
    async def deliver(self, key: ConversationKey, effect: Effect) -> None: ...


class DelayScheduler:
    """Runs delayed resumptions as asyncio tasks, cancellable by conversation or automation."""

    def __init__(self) -> None:
        self._tasks: dict[ConversationKey, asyncio.Task] = {}

    def schedule(
        self,
        key: ConversationKey,
        seconds: float,
        callback: Callable[[], Awaitable[None]],
    ) -> asyncio.Task:
        self.cancel(key)

        async def _wait_then_resume() -> None:
            await asyncio.sleep(seconds)
            # Drop our own entry before resuming so the callback can reschedule
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]
            await callback()

        task = asyncio.create_task(_wait_then_resume())
        task.add_done_callback(lambda done: self._report(key, done))
        self._tasks[key] = task
        return task

    def cancel(self, key: ConversationKey) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_automation(self, automation_id: str) -> int:
        """Cancel every pending resumption of one automation. Returns the count."""
        keys = [key for key in self._tasks if key[0] == automation_id]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def pending(self) -> list[ConversationKey]:
        return list(self._tasks)

    @staticmethod
    def _report(key: ConversationKey, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Delayed resumption for %s/%s failed", key[0], key[1], exc_info=error)


class AutomationRuntime:
    """Processes inbound messages for live conversations.

    Each (automation, recipient) pair is handled strictly in order under its own
    lock; different conversations run independently. A run that reaches a
    ``delay`` step is resumed later by the scheduler against the snapshot taken
    when the run started.
    """

    def __init__(
        self,
        executor: StepExecutor,
        matcher: TriggerMatcher,
        transport: OutboundTransport,
        scheduler: Optional[DelayScheduler] = None,
    ):
        self.executor = executor
        self.matcher = matcher
        self.transport = transport
        self.scheduler = scheduler or DelayScheduler()
        self._locks: dict[ConversationKey, asyncio.Lock] = {}
        self._lock_users: dict[ConversationKey, int] = {}

    async def handle_inbound(
        self,
        automation_id: str,
        graph: AutomationGraph,
        message: str,
        context: VariableContext,
    ) -> Optional[ExecutionResult]:
        """Match and run one inbound message. Returns None when nothing triggered."""
        key = (automation_id, context.recipient)
        async with self._conversation(key):
            snapshot = graph.snapshot()
            match = self.matcher.match(message, snapshot)
            if not match.triggered:
                logger.debug("No trigger for %s on automation %s", context.recipient, automation_id)
                return None

            # A new inbound message supersedes any pending resumption
            self.scheduler.cancel(key)
            result = await self.executor.execute(
                snapshot, match.entry_step_ids, message, context, automation_id=automation_id
            )
            await self._deliver(key, snapshot, result)
            return result

    def cancel_automation(self, automation_id: str) -> int:
        return self.scheduler.cancel_automation(automation_id)

    def active_conversations(self) -> list[ConversationKey]:
        """Conversations currently holding or waiting on their lock."""
        return list(self._locks)

    @asynccontextmanager
    async def _conversation(self, key: ConversationKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Idle conversations give their lock back
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _deliver(self, key: ConversationKey, snapshot: AutomationGraph, result: ExecutionResult) -> None:
        for effect in result.effects:
            await self.transport.deliver(key, effect)

        if result.status == "suspended" and result.suspension and result.state:
            state = result.state
            logger.info(
                "Run %s suspended at %s for %ss", state.run_id, result.suspension.step_id,
                result.suspension.seconds,
            )
            self.scheduler.schedule(
                key,
                result.suspension.seconds,
                lambda: self._resume(key, snapshot, state),
            )

    async def _resume(self, key: ConversationKey, snapshot: AutomationGraph, state: RunState) -> None:
        async with self._conversation(key):
            result = await self.executor.resume(snapshot, state)
            await self._deliver(key, snapshot, result)
