"""API models for ChatFlow."""

from typing import Any, Optional
from pydantic import BaseModel, Field

from .automation.schema import AutomationStatus, Edge
from .automation.variables import Contact


class AutomationWriteRequest(BaseModel):
    """Create or replace an automation."""

    name: str = Field("New Automation", description="Display name of the automation")
    description: str = ""
    status: AutomationStatus = "draft"
    workflow: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Steps as raw dicts; unknown step types are kept as placeholders",
    )
    connections: list[Edge] = Field(default_factory=list, description="Edge list: {from, to, fromButton?}")


class PreviewStartRequest(BaseModel):
    """Open a preview chat against an automation."""

    recipient: str = Field("preview_user", description="Recipient identifier used for {{phone}}")
    contact: Optional[Contact] = None
    typing_delay: bool = Field(False, description="Pause before each bot line like a person typing")


class InboundMessageRequest(BaseModel):
    """A message received from a live conversation."""

    recipient: str = Field(..., description="Sender identifier; one conversation per automation and recipient")
    contact: Optional[Contact] = None
    text: str


class PreviewMessageRequest(BaseModel):
    text: str = Field(..., description="Message typed into the preview chat")


class ButtonClickRequest(BaseModel):
    entry_id: str = Field(..., description="Transcript entry that rendered the button")
    index: int = Field(..., ge=0, description="Zero-based button index")


class EventRequest(BaseModel):
    """Simulate an integration webhook event."""

    integration: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str = "ChatFlow Backend"
