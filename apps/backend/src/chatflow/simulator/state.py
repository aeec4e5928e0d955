"""Shared call log for the simulated collaborators."""

from datetime import datetime

from pydantic import BaseModel, Field


class CallRecord(BaseModel):
    """A single collaborator call recorded during a run."""

    service: str  # "ai" | "http" | "transport"
    action: str
    parameters: dict
    result: dict | None = None
    status: str  # "success" | "failed" | "rate_limited"
    error: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class SimulatorState(BaseModel):
    """Mutable state shared across all simulated collaborators."""

    calls: list[CallRecord] = []
    # (recipient, automation_id) -> timestamps of AI requests
    ai_usage: dict[str, list[datetime]] = {}
    delivered: list[dict] = []

    def calls_for(self, service: str) -> list[CallRecord]:
        return [c for c in self.calls if c.service == service]
