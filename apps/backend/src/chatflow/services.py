"""Call/response contracts of the external collaborators used by the executor."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from pydantic import BaseModel


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AIRequest(BaseModel):
    message: str
    system_prompt: str = ""
    context_data: str = ""
    tone: str = "professional"
    temperature: float = 0.7
    max_tokens: int = 300
    recipient_id: str
    automation_id: str
    # Limits of the calling step; the service default applies when unset
    rate_limit_per_hour: Optional[int] = None
    rate_limit_per_day: Optional[int] = None


class AIResponse(BaseModel):
    success: bool
    response_text: Optional[str] = None
    token_usage: Optional[TokenUsage] = None
    rate_limited: bool = False
    error: Optional[str] = None


class HttpCallRequest(BaseModel):
    url: str
    method: str = "GET"
    headers: dict[str, str] = {}
    body: Any = None


class HttpCallResponse(BaseModel):
    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class AIResponseService(Protocol):
    async def generate(self, request: AIRequest) -> AIResponse: ...


class HttpCallClient(Protocol):
    async def request(self, request: HttpCallRequest) -> HttpCallResponse: ...
