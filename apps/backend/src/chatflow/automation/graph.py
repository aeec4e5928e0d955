"""Automation graph: steps plus a single edge list, with referential integrity."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Any, Iterator, Optional

from pydantic import BaseModel

from ..errors import GraphIntegrityError
from .schema import (
    AIResponseConfig,
    AutomationRecord,
    ButtonType,
    Edge,
    MessageStep,
    Step,
    StepType,
    parse_step,
)

logger = logging.getLogger(__name__)


class GraphIssue(BaseModel):
    """A builder-facing problem found by ``AutomationGraph.validate``."""

    step_id: Optional[str] = None
    severity: str  # "error" | "warning"
    message: str


def validate_ai_config(config: AIResponseConfig) -> list[str]:
    """Return the configuration errors of an AI response step."""
    errors: list[str] = []
    if not config.system_prompt.strip():
        errors.append("System prompt is required")
    if not 0 <= config.temperature <= 1:
        errors.append("Temperature must be between 0 and 1")
    if not 10 <= config.max_tokens <= 1000:
        errors.append("Max tokens must be between 10 and 1000")
    if config.rate_limit.per_hour < 1:
        errors.append("Hourly rate limit must be at least 1")
    if config.rate_limit.per_day < 1:
        errors.append("Daily rate limit must be at least 1")
    return errors


class AutomationGraph:
    """Typed steps and the edges between them.

    The edge list is the only source of truth for connectivity. A step's plain
    ``connections`` are derived on export, and a button's ``connected_to`` is
    kept in step with its button edge by every mutation.
    """

    def __init__(
        self,
        steps: Optional[list[Step | dict]] = None,
        edges: Optional[list[Edge]] = None,
    ):
        self._steps: dict[str, Step] = {}
        self._edges: list[Edge] = []
        self._frozen = False
        for step in steps or []:
            self.add_step(step)
        for edge in edges or []:
            self.add_edge(edge.source, edge.target, edge.from_button)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def steps(self) -> list[Step]:
        return list(self._steps.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def get_step(self, step_id: str) -> Optional[Step]:
        return self._steps.get(step_id)

    def require_step(self, step_id: str) -> Step:
        step = self._steps.get(step_id)
        if step is None:
            raise GraphIntegrityError(f"Step {step_id!r} does not exist")
        return step

    def trigger_step(self) -> Optional[Step]:
        return next((s for s in self._steps.values() if s.type == StepType.TRIGGER), None)

    def successors(self, step_id: str, button: Optional[int] = None) -> list[Edge]:
        """Edges leaving ``step_id`` from the given button slot (``None`` = plain)."""
        return [e for e in self._edges if e.source == step_id and e.from_button == button]

    def next_step_id(self, step_id: str, button: Optional[int] = None) -> Optional[str]:
        edges = self.successors(step_id, button)
        return edges[0].target if edges else None

    def connections(self, step_id: str) -> list[str]:
        """Plain (non-button) successors of a step, in edge order."""
        return [e.target for e in self.successors(step_id)]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_step(self, step: Step | dict) -> Step:
        self._check_mutable()
        if isinstance(step, dict):
            step = parse_step(step)
        if step.id in self._steps:
            raise GraphIntegrityError(f"Step {step.id!r} already exists")

        # Connectivity only ever comes from edges added afterwards
        step = step.model_copy(deep=True)
        step.connections = []
        if isinstance(step, MessageStep):
            for button in step.config.buttons:
                button.connected_to = None

        self._steps[step.id] = step
        return step

    def update_step(self, step: Step | dict) -> Step:
        """Replace a step's title and config, keeping its edges where still valid."""
        self._check_mutable()
        if isinstance(step, dict):
            step = parse_step(step)
        current = self.require_step(step.id)
        if current.type != step.type:
            raise GraphIntegrityError(
                f"Cannot change type of step {step.id!r} from {current.type} to {step.type}"
            )

        step = step.model_copy(deep=True)
        step.connections = []
        self._steps[step.id] = step

        if isinstance(step, MessageStep):
            for button in step.config.buttons:
                button.connected_to = None
        for edge in [e for e in self._edges if e.source == step.id and e.from_button is not None]:
            if self._button_error(step, edge.from_button) is not None:
                logger.info("Dropping edge %s: button no longer connectable", edge.key())
                self._edges.remove(edge)
            else:
                step.config.buttons[edge.from_button].connected_to = edge.target
        return step

    def remove_step(self, step_id: str) -> None:
        """Remove a step, every edge touching it and any button pointing at it."""
        self._check_mutable()
        self.require_step(step_id)
        del self._steps[step_id]

        kept: list[Edge] = []
        for edge in self._edges:
            if edge.source == step_id:
                continue
            if edge.target == step_id:
                if edge.from_button is not None:
                    self._set_button_target(edge.source, edge.from_button, None)
                continue
            kept.append(edge)
        self._edges = kept

        for step in self._steps.values():
            if isinstance(step, MessageStep):
                for button in step.config.buttons:
                    if button.connected_to == step_id:
                        button.connected_to = None

    def add_edge(self, source: str, target: str, from_button: Optional[int] = None) -> Edge:
        self._check_mutable()
        source_step = self.require_step(source)
        self.require_step(target)
        if source == target:
            raise GraphIntegrityError(f"Step {source!r} cannot connect to itself")

        edge = Edge(source=source, target=target, from_button=from_button)
        if any(e.key() == edge.key() for e in self._edges):
            raise GraphIntegrityError(f"Edge {edge.key()} already exists")

        if from_button is not None:
            error = self._button_error(source_step, from_button)
            if error is not None:
                raise GraphIntegrityError(error)
            if self.successors(source, from_button):
                raise GraphIntegrityError(
                    f"Button {from_button} of step {source!r} is already connected"
                )
            self._set_button_target(source, from_button, target)

        self._edges.append(edge)
        return edge

    def remove_edge(self, source: str, target: str, from_button: Optional[int] = None) -> bool:
        """Remove one edge. Returns True if it existed."""
        self._check_mutable()
        key = (source, target, from_button)
        for edge in self._edges:
            if edge.key() == key:
                self._edges.remove(edge)
                if from_button is not None:
                    self._set_button_target(source, from_button, None)
                return True
        return False

    # ------------------------------------------------------------------
    # Snapshots and serialization
    # ------------------------------------------------------------------

    def snapshot(self) -> AutomationGraph:
        """Return a frozen deep copy for a single execution run."""
        copy = AutomationGraph()
        copy._steps = {sid: step.model_copy(deep=True) for sid, step in self._steps.items()}
        copy._edges = list(self._edges)
        copy._frozen = True
        return copy

    def export_steps(self) -> list[dict[str, Any]]:
        """Steps as plain dicts with their derived ``connections`` filled in."""
        exported = []
        for step in self._steps.values():
            data = step.model_dump(mode="json", exclude_none=True)
            data["connections"] = self.connections(step.id)
            exported.append(data)
        return exported

    def export_edges(self) -> list[dict[str, Any]]:
        return [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in self._edges]

    def to_record(self, record: AutomationRecord) -> AutomationRecord:
        """Write this graph into a copy of ``record``, refreshing derived fields."""
        trigger = self.trigger_step()
        data = record.model_dump(mode="json", by_alias=True)
        data.update(
            workflow=self.export_steps(),
            connections=self.export_edges(),
            trigger_type=trigger.config.type if trigger else record.trigger_type,
            trigger_config=(
                trigger.config.model_dump(mode="json", exclude_none=True)
                if trigger
                else record.trigger_config
            ),
            updated_at=datetime.now().isoformat(),
        )
        return AutomationRecord.model_validate(data)

    @classmethod
    def from_record(cls, record: AutomationRecord) -> AutomationGraph:
        """Build a graph from a stored record.

        Per-step ``connections`` and button ``connected_to`` written by older
        builders are merged into the edge list. References to missing steps are
        dropped with a warning.
        """
        graph = cls(steps=list(record.workflow))

        candidates: list[Edge] = list(record.connections)
        for step in record.workflow:
            for target in step.connections:
                candidates.append(Edge(source=step.id, target=target))
            if isinstance(step, MessageStep):
                for index, button in enumerate(step.config.buttons):
                    if button.connected_to:
                        candidates.append(
                            Edge(source=step.id, target=button.connected_to, from_button=index)
                        )

        seen: set[tuple] = set()
        for edge in candidates:
            if edge.key() in seen:
                continue
            seen.add(edge.key())
            try:
                graph.add_edge(edge.source, edge.target, edge.from_button)
            except GraphIntegrityError as e:
                logger.warning("Automation %s: dropping edge %s (%s)", record.id, edge.key(), e)
        return graph

    # ------------------------------------------------------------------
    # Builder lint
    # ------------------------------------------------------------------

    def validate(self) -> list[GraphIssue]:
        issues: list[GraphIssue] = []
        trigger = self.trigger_step()
        has_keyword_steps = any(s.config.keyword_tokens() for s in self._steps.values())

        if trigger is None and not has_keyword_steps:
            issues.append(
                GraphIssue(severity="error", message="Automation has no trigger step")
            )

        if trigger is not None:
            reachable = self._reachable_from(trigger.id)
            for step in self._steps.values():
                if step.id not in reachable and not step.config.keyword_tokens():
                    issues.append(
                        GraphIssue(
                            step_id=step.id,
                            severity="warning",
                            message="Step is not reachable from the trigger",
                        )
                    )

        for step in self._steps.values():
            if step.type == StepType.MESSAGE and not step.config.body.strip():
                issues.append(
                    GraphIssue(step_id=step.id, severity="warning", message="Message text is empty")
                )
            elif step.type == StepType.AI_RESPONSE:
                for error in validate_ai_config(step.config):
                    issues.append(GraphIssue(step_id=step.id, severity="error", message=error))
            elif step.type in (StepType.API_CALL, StepType.WEBHOOK) and not step.config.url:
                issues.append(
                    GraphIssue(step_id=step.id, severity="warning", message="No URL configured")
                )
        return issues

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphIntegrityError("Graph snapshot is read-only")

    def _reachable_from(self, start: str) -> set[str]:
        seen = {start}
        queue: deque[str] = deque([start])
        while queue:
            current = queue.popleft()
            for edge in self._edges:
                if edge.source == current and edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen

    @staticmethod
    def _button_error(step: Step, index: int) -> Optional[str]:
        if not isinstance(step, MessageStep):
            return f"Step {step.id!r} has no buttons"
        if index >= len(step.config.buttons):
            return f"Step {step.id!r} has no button {index}"
        if step.config.buttons[index].type != ButtonType.AUTOMATION:
            return f"Button {index} of step {step.id!r} is not an automation button"
        return None

    def _set_button_target(self, step_id: str, index: int, target: Optional[str]) -> None:
        step = self._steps.get(step_id)
        if isinstance(step, MessageStep) and index < len(step.config.buttons):
            step.config.buttons[index].connected_to = target
