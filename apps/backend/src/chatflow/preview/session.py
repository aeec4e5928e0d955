"""Simulated chat that drives the trigger matcher and step executor."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import Any, Awaitable, Callable, Optional

from ..automation.executor import Effect, ExecutionResult, StepExecutor
from ..automation.graph import AutomationGraph
from ..automation.integrations import event_variables
from ..automation.schema import ButtonType
from ..automation.trigger import TriggerMatcher
from ..automation.variables import VariableContext
from ..errors import PreviewError
from .transcript import Transcript, TranscriptEntry

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "👋 Welcome! This is a live preview of your automation. "
    "Type a message to test how your AI assistant will respond."
)
NO_TRIGGER_TEXT = "🤖 Message did not match trigger conditions."
NO_AUTOMATION_TEXT = (
    "🤖 No automation triggered by your message. "
    "Try using different keywords or check your automation configuration."
)
NO_EVENT_MATCH_TEXT = "🤖 Event did not match trigger conditions."

PREVIEW_RECIPIENT = "preview_user"
PREVIEW_AUTOMATION = "preview_automation"


def jittered_latency(minimum: float = 0.8, maximum: float = 2.0) -> Callable[[], float]:
    """Typing pause before each outbound line, purely cosmetic."""
    return lambda: random.uniform(minimum, maximum)


def no_latency() -> float:
    return 0.0


class PreviewSession:
    """One simulated conversation against an automation being built.

    Each inbound message runs against a snapshot of ``graph`` taken when it
    arrives, so builder edits never affect a run in flight. Messages are
    processed one at a time. Delay steps are honoured with a plain timer capped
    at ``max_delay_seconds``.
    """

    def __init__(
        self,
        graph: AutomationGraph,
        executor: StepExecutor,
        matcher: Optional[TriggerMatcher] = None,
        context: Optional[VariableContext] = None,
        automation_id: str = PREVIEW_AUTOMATION,
        latency: Callable[[], float] = jittered_latency(),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_delay_seconds: float = 5.0,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.graph = graph
        self.executor = executor
        self.matcher = matcher or TriggerMatcher()
        self.context = context or VariableContext(recipient=PREVIEW_RECIPIENT)
        self.automation_id = automation_id
        self.latency = latency
        self.sleep = sleep
        self.max_delay_seconds = max_delay_seconds

        self.transcript = Transcript(entries=[TranscriptEntry(text=WELCOME_TEXT)])
        # Answers to data_input steps, available as {{field}} in later steps
        self.collected: dict[str, str] = {}
        self.awaiting_field: Optional[str] = None
        self.results: list[ExecutionResult] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    async def send(self, text: str) -> list[TranscriptEntry]:
        """Process one typed message. Returns the transcript lines it produced."""
        text = text.strip()
        if not text:
            raise PreviewError("Message is empty")

        async with self._lock:
            start = len(self.transcript.entries)
            self._append(TranscriptEntry(text=text, from_user=True, kind="inbound"))

            if self.awaiting_field:
                field_name = self.awaiting_field
                self.collected[field_name] = text
                self.awaiting_field = None
                await self._emit(Effect(kind="status", text=f"📝 Saved answer for {field_name}"))
            else:
                await self._run_inbound(text)
            return self.transcript.entries[start:]

    async def click_button(self, entry_id: str, index: int) -> list[TranscriptEntry]:
        """Activate a rendered button.

        A connected automation button continues along its own edge; an
        unconnected one is sent as a new inbound message with the button label.
        Link and phone buttons only render and produce nothing here.
        """
        entry = self.transcript.get(entry_id)
        if entry is None:
            raise PreviewError(f"No transcript entry {entry_id!r}")
        if index < 0 or index >= len(entry.buttons):
            raise PreviewError(f"Entry {entry_id!r} has no button {index}")

        button = entry.buttons[index]
        if button.type != ButtonType.AUTOMATION:
            logger.debug("Button %s of %s is a %s button; nothing to run", index, entry_id, button.type)
            return []

        async with self._lock:
            start = len(self.transcript.entries)
            self._append(
                TranscriptEntry(
                    text=button.text,
                    from_user=True,
                    kind="inbound",
                    metadata={"button": index, "source_entry": entry_id},
                )
            )

            snapshot = self.graph.snapshot()
            target = None
            if entry.step_id and entry.step_id in snapshot:
                target = snapshot.next_step_id(entry.step_id, index)

            if target is not None:
                result = await self.executor.execute(
                    snapshot, [target], button.text, self._context(), automation_id=self.automation_id
                )
                await self._play(snapshot, result)
            else:
                await self._run_inbound(button.text, snapshot)
            return self.transcript.entries[start:]

    async def fire_event(self, integration: str, event: str, payload: dict[str, Any]) -> list[TranscriptEntry]:
        """Simulate an integration webhook firing with ``payload``."""
        try:
            values = event_variables(integration, event, payload)
        except KeyError as e:
            raise PreviewError(e.args[0]) from e

        async with self._lock:
            start = len(self.transcript.entries)
            self._append(
                TranscriptEntry(
                    text=f"⚡ {integration} event {event} received",
                    kind="status",
                    metadata={"event_variables": values},
                )
            )
            snapshot = self.graph.snapshot()
            match = self.matcher.match_event(snapshot, integration, event)
            if not match.triggered:
                await self._emit(Effect(kind="status", text=NO_EVENT_MATCH_TEXT))
            else:
                result = await self.executor.execute(
                    snapshot,
                    match.entry_step_ids,
                    "",
                    self._context().with_values(values),
                    automation_id=self.automation_id,
                )
                await self._play(snapshot, result)
            return self.transcript.entries[start:]

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def to_markdown(self) -> str:
        return self.transcript.to_markdown()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "automation_id": self.automation_id,
            "awaiting_field": self.awaiting_field,
            "collected": dict(self.collected),
            "transcript": self.transcript.to_dict(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_inbound(self, text: str, snapshot: Optional[AutomationGraph] = None) -> None:
        if snapshot is None:
            snapshot = self.graph.snapshot()
        match = self.matcher.match(text, snapshot)
        if not match.triggered:
            notice = NO_TRIGGER_TEXT if match.trigger_step_id else NO_AUTOMATION_TEXT
            await self._emit(Effect(kind="status", text=notice))
            return

        result = await self.executor.execute(
            snapshot, match.entry_step_ids, text, self._context(), automation_id=self.automation_id
        )
        await self._play(snapshot, result)

    async def _play(self, snapshot: AutomationGraph, result: ExecutionResult) -> None:
        while True:
            self.results.append(result)
            for effect in result.effects:
                await self._emit(effect)
            if result.awaiting_field:
                self.awaiting_field = result.awaiting_field

            if result.status != "suspended" or result.state is None or result.suspension is None:
                return
            suspension = result.suspension
            await self.sleep(min(suspension.seconds, self.max_delay_seconds))
            await self._emit(
                Effect(
                    kind="status",
                    text=f"⏱️ Waited {suspension.label}",
                    step_id=suspension.step_id,
                    step_type="delay",
                )
            )
            result = await self.executor.resume(snapshot, result.state)

    async def _emit(self, effect: Effect) -> None:
        delay = self.latency()
        if delay > 0:
            await self.sleep(delay)
        self._append(
            TranscriptEntry(
                text=effect.text,
                kind=effect.kind,
                step_id=effect.step_id,
                attachments=effect.attachments,
                buttons=effect.buttons,
                metadata=effect.metadata,
            )
        )

    def _append(self, entry: TranscriptEntry) -> None:
        self.transcript.entries.append(entry)

    def _context(self) -> VariableContext:
        return self.context.with_values(self.collected)
