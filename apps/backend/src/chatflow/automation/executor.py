"""Step interpreter which walks an automation graph and produces outbound effects."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from ..errors import AutomationLoopError, GraphIntegrityError
from ..services import (
    AIRequest,
    AIResponse,
    AIResponseService,
    HttpCallClient,
    HttpCallRequest,
    HttpCallResponse,
)
from .graph import AutomationGraph
from .schema import Attachment, Button, Step, StepType
from .variables import VariableContext, VariableResolver

logger = logging.getLogger(__name__)

NO_STEPS_TEXT = "🤖 Automation triggered but no steps configured."
EMPTY_MESSAGE_TEXT = "💬 Message step (no text configured)"
DEFAULT_PROMPT_TEXT = "Please provide the required information:"
DEFAULT_RATE_LIMIT_TEXT = (
    "Our AI assistant has reached its usage limit. Please contact our support team."
)
DEFAULT_AI_FALLBACK_TEXT = (
    "I apologize, but I cannot assist with that request. Please contact our support team."
)

CONDITION_OPERATORS: dict[str, Callable[[str, str], bool]] = {
    "contains": lambda text, value: value in text,
    "equals": lambda text, value: text == value,
    "starts_with": lambda text, value: text.startswith(value),
}


class Effect(BaseModel):
    """One outbound item produced by a step: a chat message or a status notice."""

    kind: str  # "message" | "status"
    text: str
    step_id: Optional[str] = None
    step_type: Optional[str] = None
    attachments: list[Attachment] = []
    buttons: list[Button] = []
    metadata: dict[str, Any] = {}


class Suspension(BaseModel):
    step_id: str
    resume_step_id: Optional[str] = None
    seconds: float
    label: str


class RunState(BaseModel):
    """Everything needed to resume a suspended run against its graph snapshot."""

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    automation_id: str
    message: str
    context: VariableContext
    current: Optional[str] = None
    pending: list[str] = []
    visited: list[str] = []
    steps_executed: int = 0
    awaiting_field: Optional[str] = None


class ExecutionResult(BaseModel):
    run_id: str
    status: str  # "completed" | "suspended" | "aborted" | "failed"
    effects: list[Effect] = []
    suspension: Optional[Suspension] = None
    state: Optional[RunState] = None
    awaiting_field: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None


@dataclass
class StepOutcome:
    effects: list[Effect] = field(default_factory=list)
    suspend_seconds: Optional[float] = None
    suspend_label: str = ""
    awaiting_field: Optional[str] = None


StepHandler = Callable[[Step, RunState], Awaitable[StepOutcome]]


class StepExecutor:
    """Walks a graph snapshot one step at a time.

    Every step type maps to a handler. A ``delay`` step is the only suspension
    point: the run returns a ``suspended`` result and the caller decides when to
    ``resume`` it. ``api_call``/``webhook`` steps only reach the network through
    ``http_client``; without one they produce a simulated acknowledgement.
    """

    def __init__(
        self,
        ai_service: Optional[AIResponseService] = None,
        http_client: Optional[HttpCallClient] = None,
        resolver: Optional[VariableResolver] = None,
        max_steps: int = 50,
    ):
        self.ai_service = ai_service
        self.http_client = http_client
        self.resolver = resolver or VariableResolver()
        self.max_steps = max_steps
        self._handlers: dict[str, StepHandler] = {
            StepType.TRIGGER.value: self._run_trigger,
            StepType.MESSAGE.value: self._run_message,
            StepType.AI_RESPONSE.value: self._run_ai_response,
            StepType.CONDITION.value: self._run_condition,
            StepType.DELAY.value: self._run_delay,
            StepType.DATA_INPUT.value: self._run_data_input,
            StepType.API_CALL.value: self._run_http_step,
            StepType.WEBHOOK.value: self._run_http_step,
            StepType.CUSTOM_ACTION.value: self._run_custom_action,
            StepType.BRANCH.value: self._run_branch,
        }

    async def execute(
        self,
        graph: AutomationGraph,
        entry_step_ids: list[str],
        message: str,
        context: VariableContext,
        automation_id: str = "preview_automation",
    ) -> ExecutionResult:
        """Run the graph from ``entry_step_ids`` (in order) for one inbound message.

        ``graph`` should be a snapshot; a live graph is snapshotted here.
        """
        state = RunState(
            automation_id=automation_id,
            message=message,
            context=context,
            pending=list(entry_step_ids),
        )
        if not entry_step_ids:
            return ExecutionResult(
                run_id=state.run_id,
                status="completed",
                effects=[Effect(kind="status", text=NO_STEPS_TEXT)],
                completed_at=datetime.now(),
            )
        if not graph.frozen:
            graph = graph.snapshot()
        return await self._walk(graph, state)

    async def resume(self, graph: AutomationGraph, state: RunState) -> ExecutionResult:
        """Continue a suspended run after its delay has elapsed."""
        return await self._walk(graph, state.model_copy(deep=True))

    async def _walk(self, graph: AutomationGraph, state: RunState) -> ExecutionResult:
        result = ExecutionResult(run_id=state.run_id, status="completed")

        try:
            while True:
                if state.current is None:
                    if not state.pending:
                        break
                    # Each entry point starts a fresh walk within the same run
                    state.current = state.pending.pop(0)
                    state.visited = []

                step_id = state.current
                step = graph.get_step(step_id)
                if step is None:
                    raise GraphIntegrityError(f"Step {step_id!r} referenced by the graph does not exist")
                if step_id in state.visited:
                    raise AutomationLoopError(f"Automation loop detected at step {step_id!r}")
                if state.steps_executed >= self.max_steps:
                    raise AutomationLoopError(
                        f"Automation loop detected: more than {self.max_steps} steps in one run"
                    )

                state.visited.append(step_id)
                state.steps_executed += 1

                handler = self._handlers.get(step.type, self._run_unknown)
                outcome = await handler(step, state)
                result.effects.extend(outcome.effects)
                if outcome.awaiting_field:
                    state.awaiting_field = outcome.awaiting_field

                state.current = graph.next_step_id(step_id)

                if outcome.suspend_seconds is not None and (state.current or state.pending):
                    result.status = "suspended"
                    result.suspension = Suspension(
                        step_id=step_id,
                        resume_step_id=state.current,
                        seconds=outcome.suspend_seconds,
                        label=outcome.suspend_label,
                    )
                    result.state = state
                    break
        except AutomationLoopError as e:
            logger.warning("Run %s aborted: %s", state.run_id, e)
            result.status = "aborted"
            result.error = str(e)
            result.effects.append(Effect(kind="status", text=f"🔁 {e}", metadata={"aborted": True}))
        except GraphIntegrityError as e:
            logger.error("Run %s failed: %s", state.run_id, e)
            result.status = "failed"
            result.error = str(e)
            result.effects.append(Effect(kind="status", text=f"⚠️ {e}", metadata={"failed": True}))

        result.awaiting_field = state.awaiting_field
        result.completed_at = datetime.now()
        return result

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------

    async def _run_trigger(self, step: Step, state: RunState) -> StepOutcome:
        return StepOutcome()

    async def _run_message(self, step: Step, state: RunState) -> StepOutcome:
        config = step.config
        if not config.body.strip():
            text = EMPTY_MESSAGE_TEXT
        else:
            resolved = self.resolver.resolve(
                config.body, state.context, config.variables, config.variable_values
            )
            if not resolved.ok:
                tokens = ", ".join(f"{{{{{t}}}}}" for t in resolved.undefined)
                return StepOutcome(
                    effects=[
                        self._status(step, f"⚠️ Message references undefined variable(s): {tokens}",
                                     config_error=True)
                    ]
                )
            text = resolved.text

        return StepOutcome(
            effects=[
                Effect(
                    kind="message",
                    text=text,
                    step_id=step.id,
                    step_type=step.type,
                    attachments=list(config.attachments),
                    buttons=list(config.buttons),
                )
            ]
        )

    async def _run_ai_response(self, step: Step, state: RunState) -> StepOutcome:
        config = step.config
        request = AIRequest(
            message=state.message,
            system_prompt=config.system_prompt,
            context_data=config.context_data,
            tone=config.tone,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            recipient_id=state.context.recipient,
            automation_id=state.automation_id,
            rate_limit_per_hour=config.rate_limit.per_hour,
            rate_limit_per_day=config.rate_limit.per_day,
        )

        if self.ai_service is None:
            response = AIResponse(success=False, error="AI Response Service is not configured")
        else:
            try:
                response = await self.ai_service.generate(request)
            except Exception as e:
                logger.warning("AI response failed for step %s: %s", step.id, e)
                response = AIResponse(success=False, error=str(e))

        if response.success and response.response_text:
            text = response.response_text
            metadata: dict[str, Any] = {}
            if response.token_usage:
                metadata["token_usage"] = response.token_usage.model_dump()
        elif response.rate_limited:
            text = response.response_text or config.rate_limit_message or DEFAULT_RATE_LIMIT_TEXT
            metadata = {"rate_limited": True}
        else:
            text = response.response_text or config.fallback_response or DEFAULT_AI_FALLBACK_TEXT
            metadata = {"error": response.error}

        return StepOutcome(
            effects=[
                Effect(kind="message", text=text, step_id=step.id, step_type=step.type, metadata=metadata)
            ]
        )

    async def _run_condition(self, step: Step, state: RunState) -> StepOutcome:
        config = step.config
        if not config.conditions:
            return StepOutcome(
                effects=[self._status(step, "⚠️ Condition step has no conditions configured", config_error=True)]
            )

        text = state.message.lower()
        for rule in config.conditions:
            operator = CONDITION_OPERATORS.get(rule.operator)
            if rule.field != "message_text" or operator is None:
                return StepOutcome(
                    effects=[
                        self._status(
                            step,
                            f"⚠️ Unsupported condition: {rule.field} {rule.operator}",
                            config_error=True,
                        )
                    ]
                )
            if operator(text, rule.value.lower()):
                return StepOutcome(
                    effects=[
                        self._status(
                            step,
                            f'✅ Condition matched: "{rule.value}"',
                            condition_matched=True,
                            matched_condition=rule.model_dump(),
                        )
                    ]
                )

        return StepOutcome(effects=[self._status(step, "❌ No conditions matched", condition_matched=False)])

    async def _run_delay(self, step: Step, state: RunState) -> StepOutcome:
        config = step.config
        label = config.describe()
        return StepOutcome(
            effects=[self._status(step, f"⏱️ Waiting {label}...", delay_seconds=config.seconds)],
            suspend_seconds=config.seconds,
            suspend_label=label,
        )

    async def _run_data_input(self, step: Step, state: RunState) -> StepOutcome:
        config = step.config
        prompt = self.resolver.resolve(config.prompt or DEFAULT_PROMPT_TEXT, state.context).text
        field_name = config.target_field
        return StepOutcome(
            effects=[
                Effect(
                    kind="message",
                    text=prompt,
                    step_id=step.id,
                    step_type=step.type,
                    metadata={"requesting_input": True, "field": field_name},
                )
            ],
            awaiting_field=field_name,
        )

    async def _run_http_step(self, step: Step, state: RunState) -> StepOutcome:
        config = step.config
        is_webhook = step.type == StepType.WEBHOOK
        url = self.resolver.resolve(config.url, state.context).text if config.url else ""

        if self.http_client is None:
            if is_webhook:
                text = f"📡 Webhook sent to {url or 'external endpoint'}"
            else:
                text = f"🔄 API call to {url or 'external service'} executed"
            return StepOutcome(effects=[self._status(step, text, simulated=True, url=url)])

        if not url:
            return StepOutcome(
                effects=[self._status(step, "⚠️ No URL configured for this step", config_error=True)]
            )

        payload = config.payload if is_webhook else config.body
        request = HttpCallRequest(
            url=url,
            method=config.method.upper(),
            headers=self.resolver.resolve_value(config.headers, state.context),
            body=self.resolver.resolve_value(payload, state.context) or None,
        )

        response: Optional[HttpCallResponse] = None
        error: Optional[str] = None
        try:
            response = await self.http_client.request(request)
        except Exception as e:
            logger.warning("HTTP call for step %s failed: %s", step.id, e)
            error = str(e)

        label = "Webhook" if is_webhook else "API call"
        if response is not None and response.ok:
            return StepOutcome(
                effects=[
                    self._status(step, f"✅ {label} to {url} succeeded ({response.status})",
                                 url=url, http_status=response.status)
                ]
            )
        if response is not None:
            error = f"HTTP {response.status}"
        return StepOutcome(
            effects=[self._status(step, f"⚠️ {label} to {url} failed: {error}", url=url, error=error)]
        )

    async def _run_custom_action(self, step: Step, state: RunState) -> StepOutcome:
        text = step.config.description or "⚡ Custom action executed"
        return StepOutcome(effects=[self._status(step, text, custom_action=True)])

    async def _run_branch(self, step: Step, state: RunState) -> StepOutcome:
        return StepOutcome(effects=[self._status(step, "🔀 Flow branched based on conditions", branched=True)])

    async def _run_unknown(self, step: Step, state: RunState) -> StepOutcome:
        return StepOutcome(effects=[self._status(step, f"📝 {step.type} step executed")])

    @staticmethod
    def _status(step: Step, text: str, **metadata: Any) -> Effect:
        return Effect(kind="status", text=text, step_id=step.id, step_type=step.type, metadata=metadata)
