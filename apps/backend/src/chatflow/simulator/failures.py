"""Failure injection configuration for simulated collaborators."""

import random

from pydantic import BaseModel


class FailureRule(BaseModel):
    """Defines how a specific collaborator call should fail."""

    error_type: str  # "rate_limit" | "timeout" | "server_error"
    message: str
    status: int = 500  # HTTP status returned by simulated HTTP failures
    probability: float = 1.0  # 1.0 = always fail, 0.5 = 50% chance


class FailureConfig(BaseModel):
    """Maps service.action keys (e.g. "ai.generate", "http.POST") to failure rules."""

    rules: dict[str, FailureRule] = {}

    def should_fail(self, service: str, action: str) -> FailureRule | None:
        """Check if a call should fail. Returns the rule if it triggers."""
        key = f"{service}.{action}"
        rule = self.rules.get(key)
        if rule is None:
            return None
        if random.random() <= rule.probability:
            return rule
        return None
