"""Decides whether, and where, an inbound message enters an automation graph."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from .graph import AutomationGraph
from .schema import Step, StepType

logger = logging.getLogger(__name__)


class TriggerMatch(BaseModel):
    """Outcome of matching one inbound message against a graph.

    ``triggered`` can be true with no entry steps: the automation fired but has
    nothing configured after its trigger.
    """

    triggered: bool
    entry_step_ids: list[str] = []
    trigger_step_id: Optional[str] = None
    reason: str  # "keywords" | "trigger" | "legacy_fallback" | "event" | "no_match"

    @classmethod
    def no_match(cls, trigger_step_id: Optional[str] = None) -> TriggerMatch:
        return cls(triggered=False, trigger_step_id=trigger_step_id, reason="no_match")


class TriggerMatcher:
    """Matches inbound messages to entry steps.

    Priority:
      1. steps declaring ``trigger_keywords`` (any type)
      2. the trigger step's own config
      3. only with ``legacy_entry_fallback``: every non-trigger step that
         declares no keywords
    """

    def __init__(self, legacy_entry_fallback: bool = False):
        self.legacy_entry_fallback = legacy_entry_fallback

    def match(self, message: str, graph: AutomationGraph) -> TriggerMatch:
        text = message.lower()

        keyword_steps = [s for s in graph.steps if s.config.keyword_tokens()]
        if keyword_steps:
            matched = [
                s for s in keyword_steps if any(k in text for k in s.config.keyword_tokens())
            ]
            if not matched:
                return TriggerMatch.no_match()
            entries: list[str] = []
            for step in matched:
                if step.type == StepType.TRIGGER:
                    entries.extend(self._entry_after_trigger(step, graph))
                else:
                    entries.append(step.id)
            trigger = graph.trigger_step()
            return TriggerMatch(
                triggered=True,
                entry_step_ids=list(dict.fromkeys(entries)),
                trigger_step_id=trigger.id if trigger else None,
                reason="keywords",
            )

        trigger = graph.trigger_step()
        if trigger is not None:
            if not self._trigger_config_matches(trigger, text):
                return TriggerMatch.no_match(trigger.id)
            return TriggerMatch(
                triggered=True,
                entry_step_ids=self._entry_after_trigger(trigger, graph),
                trigger_step_id=trigger.id,
                reason="trigger",
            )

        if self.legacy_entry_fallback:
            entries = [s.id for s in graph.steps if s.type != StepType.TRIGGER]
            if entries:
                logger.warning("No trigger step; using legacy fallback over %d steps", len(entries))
                return TriggerMatch(triggered=True, entry_step_ids=entries, reason="legacy_fallback")

        return TriggerMatch.no_match()

    def match_event(self, graph: AutomationGraph, integration: str, event: str) -> TriggerMatch:
        """Match an integration webhook event against the graph's trigger step."""
        trigger = graph.trigger_step()
        if trigger is None:
            return TriggerMatch.no_match()

        config = trigger.config
        if config.type == "integration":
            if config.integration != integration or config.webhook_event != event:
                return TriggerMatch.no_match(trigger.id)
        elif config.type != "webhook":
            return TriggerMatch.no_match(trigger.id)

        return TriggerMatch(
            triggered=True,
            entry_step_ids=self._entry_after_trigger(trigger, graph),
            trigger_step_id=trigger.id,
            reason="event",
        )

    @staticmethod
    def _trigger_config_matches(trigger: Step, text: str) -> bool:
        config = trigger.config
        if config.type == "keyword":
            keywords = [k.strip().lower() for k in config.keywords if k.strip()]
            # A trigger with no keywords fires on every message
            return not keywords or any(k in text for k in keywords)
        if config.type == "exact_match":
            return text.strip() == config.match_text.strip().lower()
        # schedule / webhook / integration triggers are fired externally
        return True

    @staticmethod
    def _entry_after_trigger(trigger: Step, graph: AutomationGraph) -> list[str]:
        next_id = graph.next_step_id(trigger.id)
        if next_id is not None:
            return [next_id]
        first = next((s for s in graph.steps if s.type != StepType.TRIGGER), None)
        return [first.id] if first else []
