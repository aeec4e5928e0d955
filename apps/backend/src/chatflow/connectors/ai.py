"""HTTP connector for the AI Response Service."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from ..services import AIRequest, AIResponse
from ..simulator.state import SimulatorState
from .base import BaseConnector
from .registry import register

if TYPE_CHECKING:
    from ..config import Settings


@register
class HttpAIResponseService(BaseConnector):
    """Posts the AI request as JSON and reads back an ``AIResponse``.

    Required settings: AI_SERVICE_URL. Optional: AI_SERVICE_API_KEY (Bearer).
    A 429 from the service is reported as a rate-limited response, not an error.
    """

    service_name = "ai"

    def __init__(
        self,
        url: str,
        api_key: str | None,
        http_client: httpx.AsyncClient,
        state: SimulatorState | None = None,
    ) -> None:
        super().__init__(http_client, state)
        self._url = url
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        state: SimulatorState | None = None,
    ) -> HttpAIResponseService:
        return cls(settings.ai_service_url or "", settings.ai_service_api_key, http_client, state)

    @classmethod
    def is_configured(cls, settings: Settings) -> bool:
        return bool(settings.ai_service_url)

    async def generate(self, request: AIRequest) -> AIResponse:
        params = request.model_dump()
        try:
            resp = await self.http.post(self._url, headers=self._headers, json=params)
        except httpx.HTTPError as e:
            self._log("generate", params, None, status="failed", error=str(e))
            self._fail(f"AI service unreachable: {e}", "unreachable")

        if resp.status_code == 429:
            self._log("generate", params, None, status="rate_limited")
            data = self._json(resp)
            return AIResponse(
                success=False,
                rate_limited=True,
                response_text=data.get("response_text"),
                error="rate limit exceeded",
            )
        if resp.status_code >= 400:
            self._log("generate", params, None, status="failed", error=f"HTTP {resp.status_code}")
            return AIResponse(success=False, error=f"AI service returned HTTP {resp.status_code}")

        response = AIResponse.model_validate(self._json(resp))
        self._log("generate", params, response.model_dump())
        return response

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
