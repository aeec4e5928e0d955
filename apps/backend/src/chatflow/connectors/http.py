"""Outbound HTTP connector for live ``api_call`` and ``webhook`` steps."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from ..services import HttpCallRequest, HttpCallResponse
from ..simulator.state import SimulatorState
from .base import BaseConnector
from .registry import register

if TYPE_CHECKING:
    from ..config import Settings


@register
class HttpCallConnector(BaseConnector):
    """Performs the configured request; enabled with HTTP_CALLS_ENABLED=true."""

    service_name = "http"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        state: SimulatorState | None = None,
    ) -> HttpCallConnector:
        return cls(http_client, state)

    @classmethod
    def is_configured(cls, settings: Settings) -> bool:
        return settings.http_calls_enabled

    async def request(self, request: HttpCallRequest) -> HttpCallResponse:
        params = request.model_dump()
        kwargs: dict = {"headers": request.headers}
        if request.body is not None and request.method not in ("GET", "HEAD"):
            kwargs["json"] = request.body
        elif isinstance(request.body, dict):
            kwargs["params"] = request.body

        try:
            resp = await self.http.request(request.method, request.url, **kwargs)
        except httpx.HTTPError as e:
            self._log(request.method, params, None, status="failed", error=str(e))
            self._fail(f"{request.method} {request.url} failed: {e}", "unreachable")

        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        response = HttpCallResponse(status=resp.status_code, body=body)
        self._log(
            request.method,
            params,
            {"status": resp.status_code},
            status="success" if response.ok else "failed",
        )
        return response
