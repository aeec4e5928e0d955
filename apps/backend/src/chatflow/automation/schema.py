"""Pydantic models defining the automation graph: typed steps, edges and records."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, model_validator


class StepType(str, Enum):
    TRIGGER = "trigger"
    MESSAGE = "message"
    AI_RESPONSE = "ai_response"
    CONDITION = "condition"
    DATA_INPUT = "data_input"
    API_CALL = "api_call"
    WEBHOOK = "webhook"
    DELAY = "delay"
    CUSTOM_ACTION = "custom_action"
    BRANCH = "branch"


KNOWN_STEP_TYPES = {member.value for member in StepType}


class StepConfig(BaseModel):
    """Fields shared by every step config.

    ``trigger_keywords`` is a comma separated list; when present on any step it
    takes priority over the trigger step's own config during matching.
    Unknown keys written by the builder are kept so records round trip.
    """

    model_config = ConfigDict(extra="allow")

    trigger_keywords: Optional[str] = None

    def keyword_tokens(self) -> list[str]:
        if not self.trigger_keywords:
            return []
        return [k.strip().lower() for k in self.trigger_keywords.split(",") if k.strip()]


# ---------------------------------------------------------------------------
# Trigger configs
# ---------------------------------------------------------------------------


class KeywordTrigger(StepConfig):
    type: Literal["keyword"] = "keyword"
    keywords: list[str] = []


class ExactMatchTrigger(StepConfig):
    type: Literal["exact_match"] = "exact_match"
    match_text: str = ""


class ScheduleTrigger(StepConfig):
    type: Literal["schedule"] = "schedule"
    cron: Optional[str] = None


class WebhookTrigger(StepConfig):
    type: Literal["webhook"] = "webhook"


class IntegrationTrigger(StepConfig):
    type: Literal["integration"] = "integration"
    integration: str = ""
    webhook_event: str = ""
    webhook_variables: list[str] = []


TriggerConfig = Annotated[
    Union[KeywordTrigger, ExactMatchTrigger, ScheduleTrigger, WebhookTrigger, IntegrationTrigger],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Message config
# ---------------------------------------------------------------------------


class ButtonType(str, Enum):
    AUTOMATION = "automation"
    LINK = "link"
    PHONE = "phone"


class Button(BaseModel):
    """An interactive button on a message step.

    Only ``automation`` buttons take part in the graph; ``connected_to`` mirrors
    the button's edge and is maintained by the graph model.
    """

    model_config = ConfigDict(extra="allow")

    text: str
    type: ButtonType = ButtonType.AUTOMATION
    automation_id: Optional[str] = None
    url: Optional[str] = None
    phone: Optional[str] = None
    connected_to: Optional[str] = None


class Attachment(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "image"  # "image" | "video" | "document" | "audio"
    url: str = ""
    filename: Optional[str] = None
    caption: Optional[str] = None


class MessageConfig(StepConfig):
    text: str = ""
    message: str = ""  # older builder versions stored the body here
    buttons: list[Button] = []
    attachments: list[Attachment] = []
    # Positional template variables: {{1}} -> variables[0] -> variable_values[name]
    variables: list[str] = []
    variable_values: dict[str, str] = {}

    @property
    def body(self) -> str:
        return self.text or self.message


# ---------------------------------------------------------------------------
# AI response config
# ---------------------------------------------------------------------------


class RateLimitConfig(BaseModel):
    per_hour: int = 20
    per_day: int = 100


class ScopeRestrictions(BaseModel):
    company_only: bool = True
    no_technical_details: bool = False
    no_sensitive_info: bool = True


class AIResponseConfig(StepConfig):
    system_prompt: str = ""
    context_data: str = ""
    tone: str = "professional"
    temperature: float = 0.7
    max_tokens: int = 300
    fallback_response: Optional[str] = None
    rate_limit: RateLimitConfig = RateLimitConfig()
    rate_limit_message: Optional[str] = None
    scope_restrictions: ScopeRestrictions = ScopeRestrictions()


# ---------------------------------------------------------------------------
# Remaining step configs
# ---------------------------------------------------------------------------


class ConditionRule(BaseModel):
    field: str = "message_text"
    operator: str = "contains"  # "contains" | "equals" | "starts_with"
    value: str = ""


class ConditionConfig(StepConfig):
    conditions: list[ConditionRule] = []
    condition: str = ""
    # Stored by the builder but not used for routing
    true_path: list[str] = []
    false_path: list[str] = []


class DataField(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    label: str = ""
    type: str = "text"
    required: bool = True


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "google_sheets"


class DataInputConfig(StepConfig):
    prompt: Optional[str] = None
    field: Optional[str] = None
    fields: list[DataField] = []
    storage: StorageConfig = StorageConfig()

    @property
    def target_field(self) -> Optional[str]:
        if self.field:
            return self.field
        return self.fields[0].name if self.fields else None


class ApiCallConfig(StepConfig):
    url: str = ""
    method: str = "GET"
    headers: dict[str, str] = {}
    body: dict[str, Any] = {}


class WebhookConfig(StepConfig):
    url: str = ""
    method: str = "POST"
    headers: dict[str, str] = {}
    payload: dict[str, Any] = {}


_DELAY_UNIT_SECONDS = {"seconds": 1, "minutes": 60, "hours": 3600, "days": 86400}


class DelayConfig(StepConfig):
    duration: float = 5
    unit: Literal["seconds", "minutes", "hours", "days"] = "minutes"

    @model_validator(mode="before")
    @classmethod
    def _legacy_seconds(cls, data: Any) -> Any:
        # Preview-era configs stored {"delay": <seconds>}
        if isinstance(data, dict) and "delay" in data and "duration" not in data:
            data = dict(data)
            data["duration"] = data.pop("delay")
            data.setdefault("unit", "seconds")
        return data

    @property
    def seconds(self) -> float:
        return self.duration * _DELAY_UNIT_SECONDS[self.unit]

    def describe(self) -> str:
        amount = int(self.duration) if float(self.duration).is_integer() else self.duration
        unit = self.unit[:-1]
        return f"{amount} {unit}(s)"


class CustomActionConfig(StepConfig):
    description: Optional[str] = None
    action: Optional[str] = None
    parameters: dict[str, Any] = {}


class BranchConfig(StepConfig):
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class Position(BaseModel):
    x: float = 0
    y: float = 0


class BaseStep(BaseModel):
    """A single node of the automation graph.

    ``connections`` is the denormalized list of plain successors exchanged with
    the store. The graph model derives it from its edge list on export and
    never reads it back after loading.
    """

    id: str
    title: str = ""
    position: Optional[Position] = None
    connections: list[str] = []


class TriggerStep(BaseStep):
    type: Literal["trigger"] = "trigger"
    config: TriggerConfig = Field(default_factory=KeywordTrigger)

    @model_validator(mode="before")
    @classmethod
    def _default_trigger_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("config"), dict) and "type" not in data["config"]:
            data = {**data, "config": {**data["config"], "type": "keyword"}}
        return data


class MessageStep(BaseStep):
    type: Literal["message"] = "message"
    config: MessageConfig = Field(default_factory=MessageConfig)


class AIResponseStep(BaseStep):
    type: Literal["ai_response"] = "ai_response"
    config: AIResponseConfig = Field(default_factory=AIResponseConfig)


class ConditionStep(BaseStep):
    type: Literal["condition"] = "condition"
    config: ConditionConfig = Field(default_factory=ConditionConfig)


class DataInputStep(BaseStep):
    type: Literal["data_input"] = "data_input"
    config: DataInputConfig = Field(default_factory=DataInputConfig)


class ApiCallStep(BaseStep):
    type: Literal["api_call"] = "api_call"
    config: ApiCallConfig = Field(default_factory=ApiCallConfig)


class WebhookStep(BaseStep):
    type: Literal["webhook"] = "webhook"
    config: WebhookConfig = Field(default_factory=WebhookConfig)


class DelayStep(BaseStep):
    type: Literal["delay"] = "delay"
    config: DelayConfig = Field(default_factory=DelayConfig)


class CustomActionStep(BaseStep):
    type: Literal["custom_action"] = "custom_action"
    config: CustomActionConfig = Field(default_factory=CustomActionConfig)


class BranchStep(BaseStep):
    type: Literal["branch"] = "branch"
    config: BranchConfig = Field(default_factory=BranchConfig)


class UnknownStep(BaseStep):
    """A step whose type this engine does not know; executed as a placeholder."""

    type: str
    config: StepConfig = Field(default_factory=StepConfig)


def _step_tag(value: Any) -> str:
    step_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return step_type if step_type in KNOWN_STEP_TYPES else "unknown"


Step = Annotated[
    Union[
        Annotated[TriggerStep, Tag("trigger")],
        Annotated[MessageStep, Tag("message")],
        Annotated[AIResponseStep, Tag("ai_response")],
        Annotated[ConditionStep, Tag("condition")],
        Annotated[DataInputStep, Tag("data_input")],
        Annotated[ApiCallStep, Tag("api_call")],
        Annotated[WebhookStep, Tag("webhook")],
        Annotated[DelayStep, Tag("delay")],
        Annotated[CustomActionStep, Tag("custom_action")],
        Annotated[BranchStep, Tag("branch")],
        Annotated[UnknownStep, Tag("unknown")],
    ],
    Discriminator(_step_tag),
]

_STEP_ADAPTER: TypeAdapter[Step] = TypeAdapter(Step)


def parse_step(data: Any) -> Step:
    """Validate a raw step dict into its typed variant."""
    return _STEP_ADAPTER.validate_python(data)


class Edge(BaseModel):
    """A directed link between steps, optionally scoped to one button of the source."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    from_button: Optional[int] = Field(default=None, alias="fromButton", ge=0)
    label: Optional[str] = None

    def key(self) -> tuple[str, str, Optional[int]]:
        return (self.source, self.target, self.from_button)


AutomationStatus = Literal["draft", "active", "paused"]


class AutomationRecord(BaseModel):
    """The persisted automation exchanged with the store and the API."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str = "New Automation"
    description: str = ""
    trigger_type: str = "keyword"
    trigger_config: dict[str, Any] = {}
    workflow: list[Step] = []
    connections: list[Edge] = []
    status: AutomationStatus = "draft"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
