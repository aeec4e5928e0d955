"""Simulated collaborators for previews and tests: AI replies, HTTP calls, delivery."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable

from ..automation.schema import RateLimitConfig
from ..errors import ServiceError
from ..services import AIRequest, AIResponse, HttpCallRequest, HttpCallResponse, TokenUsage
from .failures import FailureConfig
from .state import CallRecord, SimulatorState

DEFAULT_REPLY = "Thanks for reaching out! A member of our team will help you shortly."


def _tokenize(text: str) -> set[str]:
    return set(re.findall(r"[a-z0-9]+", text.lower()))


class BaseSimulatedService:
    """Shared init and logging for all simulated collaborators."""

    service_name: str = ""

    def __init__(self, state: SimulatorState, failure_config: FailureConfig | None = None):
        self.state = state
        self.failure_config = failure_config

    def _log(self, action: str, params: dict, result: dict | None, status: str = "success",
             error: str | None = None) -> None:
        self.state.calls.append(
            CallRecord(
                service=self.service_name,
                action=action,
                parameters=params,
                result=result,
                status=status,
                error=error,
            )
        )

    def _injected_failure(self, action: str):
        if self.failure_config is None:
            return None
        return self.failure_config.should_fail(self.service_name, action)


class SimulatedAIService(BaseSimulatedService):
    """Answers from the step's ``context_data`` and enforces per-recipient rate limits.

    Limits come from the request (the calling step's config); ``rate_limit``
    is the default for requests that carry none.

    The reply is the context sentence sharing the most words with the inbound
    message, or a generic acknowledgement when nothing overlaps.
    """

    service_name = "ai"

    def __init__(
        self,
        state: SimulatorState,
        failure_config: FailureConfig | None = None,
        rate_limit: RateLimitConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        super().__init__(state, failure_config)
        self.rate_limit = rate_limit or RateLimitConfig()
        self.clock = clock

    async def generate(self, request: AIRequest) -> AIResponse:
        params = request.model_dump()

        rule = self._injected_failure("generate")
        if rule is not None:
            if rule.error_type == "rate_limit":
                self._log("generate", params, None, status="rate_limited", error=rule.message)
                return AIResponse(success=False, rate_limited=True, error=rule.message)
            self._log("generate", params, None, status="failed", error=rule.message)
            if rule.error_type == "timeout":
                raise ServiceError(rule.message, "timeout")
            return AIResponse(success=False, error=rule.message)

        if self._over_limit(request):
            self._log("generate", params, None, status="rate_limited", error="rate limit exceeded")
            return AIResponse(success=False, rate_limited=True, error="rate limit exceeded")

        text = self._compose(request)
        prompt_tokens = len(request.message.split()) + len(request.system_prompt.split())
        completion_tokens = min(len(text.split()), request.max_tokens)
        response = AIResponse(
            success=True,
            response_text=text,
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )
        self._log("generate", params, {"response_text": text})
        return response

    def _over_limit(self, request: AIRequest) -> bool:
        now = self.clock()
        key = f"{request.recipient_id}:{request.automation_id}"
        history = [t for t in self.state.ai_usage.get(key, []) if now - t < timedelta(days=1)]
        last_hour = [t for t in history if now - t < timedelta(hours=1)]
        per_hour = request.rate_limit_per_hour or self.rate_limit.per_hour
        per_day = request.rate_limit_per_day or self.rate_limit.per_day
        if len(last_hour) >= per_hour or len(history) >= per_day:
            self.state.ai_usage[key] = history
            return True
        history.append(now)
        self.state.ai_usage[key] = history
        return False

    @staticmethod
    def _compose(request: AIRequest) -> str:
        query = _tokenize(request.message)
        best, best_score = "", 0
        for sentence in re.split(r"(?<=[.!?])\s+|\n+", request.context_data):
            score = len(query & _tokenize(sentence))
            if score > best_score:
                best, best_score = sentence.strip(), score
        return best or DEFAULT_REPLY


class SimulatedHttpClient(BaseSimulatedService):
    """Records outbound requests and answers 200 unless a failure rule says otherwise."""

    service_name = "http"

    def __init__(
        self,
        state: SimulatorState,
        failure_config: FailureConfig | None = None,
        responses: dict[str, HttpCallResponse] | None = None,
    ):
        super().__init__(state, failure_config)
        self.responses = responses or {}

    async def request(self, request: HttpCallRequest) -> HttpCallResponse:
        params = request.model_dump()
        rule = self._injected_failure(request.method.upper())
        if rule is not None:
            self._log(request.method, params, None, status="failed", error=rule.message)
            if rule.error_type == "timeout":
                raise ServiceError(rule.message, "timeout")
            return HttpCallResponse(status=rule.status, body={"error": rule.message})

        response = self.responses.get(request.url) or HttpCallResponse(status=200, body={"ok": True})
        self._log(request.method, params, response.model_dump())
        return response


class RecordingTransport(BaseSimulatedService):
    """Stands in for the messaging network: keeps every delivered effect."""

    service_name = "transport"

    async def deliver(self, key: tuple[str, str], effect) -> None:
        automation_id, recipient = key
        entry = {
            "automation_id": automation_id,
            "recipient": recipient,
            "kind": effect.kind,
            "text": effect.text,
            "step_id": effect.step_id,
        }
        self.state.delivered.append(entry)
        self._log("deliver", entry, None)
