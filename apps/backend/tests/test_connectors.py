import asyncio
import json
import sys
import unittest
from pathlib import Path

import httpx

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from chatflow.config import Settings
from chatflow.connectors import close_service_layer, create_service_layer
from chatflow.connectors.ai import HttpAIResponseService
from chatflow.connectors.http import HttpCallConnector
from chatflow.errors import ServiceError
from chatflow.services import AIRequest, HttpCallRequest
from chatflow.simulator.services import SimulatedAIService
from chatflow.simulator.state import SimulatorState


def _ai_request() -> AIRequest:
    return AIRequest(
        message="When do you open?",
        system_prompt="You are a store assistant.",
        recipient_id="+1555",
        automation_id="auto1",
    )


class HttpAIResponseServiceTests(unittest.TestCase):
    def _generate(self, handler, api_key: str | None = "secret"):
        async def scenario():
            state = SimulatorState()
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                service = HttpAIResponseService("https://ai.test/respond", api_key, client, state)
                return await service.generate(_ai_request()), state

        return asyncio.run(scenario())

    def test_posts_request_and_parses_reply(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"success": True, "response_text": "We open at 9am.", "token_usage": {"total_tokens": 12}},
            )

        response, state = self._generate(handler)

        self.assertTrue(response.success)
        self.assertEqual(response.response_text, "We open at 9am.")
        self.assertEqual(response.token_usage.total_tokens, 12)
        self.assertEqual(seen["auth"], "Bearer secret")
        self.assertEqual(seen["body"]["recipient_id"], "+1555")
        self.assertEqual(state.calls_for("ai")[0].status, "success")

    def test_429_is_rate_limited(self):
        response, state = self._generate(lambda request: httpx.Response(429, json={}))

        self.assertFalse(response.success)
        self.assertTrue(response.rate_limited)
        self.assertEqual(state.calls_for("ai")[0].status, "rate_limited")

    def test_server_error_is_failure_response(self):
        response, _ = self._generate(lambda request: httpx.Response(503, text="unavailable"), api_key=None)

        self.assertFalse(response.success)
        self.assertFalse(response.rate_limited)
        self.assertIn("503", response.error)

    def test_transport_error_raises_service_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(ServiceError) as ctx:
            self._generate(handler)
        self.assertEqual(ctx.exception.error_type, "unreachable")


class HttpCallConnectorTests(unittest.TestCase):
    def _request(self, handler, call: HttpCallRequest):
        async def scenario():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await HttpCallConnector(client).request(call)

        return asyncio.run(scenario())

    def test_post_sends_json_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            seen["header"] = request.headers.get("X-Token")
            return httpx.Response(201, json={"id": 7})

        response = self._request(
            handler,
            HttpCallRequest(url="https://hooks.test/in", method="POST", headers={"X-Token": "t"}, body={"a": 1}),
        )

        self.assertTrue(response.ok)
        self.assertEqual(response.body, {"id": 7})
        self.assertEqual(seen, {"method": "POST", "body": {"a": 1}, "header": "t"})

    def test_get_sends_body_as_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["query"] = dict(request.url.params)
            return httpx.Response(404, text="not found")

        response = self._request(
            handler, HttpCallRequest(url="https://api.test/orders", body={"phone": "+1555"})
        )

        self.assertFalse(response.ok)
        self.assertEqual(response.body, "not found")
        self.assertEqual(seen["query"], {"phone": "+1555"})


class ServiceLayerTests(unittest.TestCase):
    def test_simulator_mode_has_no_live_http(self):
        layer = create_service_layer(Settings(connector_mode="simulator"))

        self.assertIsInstance(layer.ai, SimulatedAIService)
        self.assertIsNone(layer.http)
        self.assertIsNone(layer.http_client)

    def test_hybrid_mode_uses_configured_connectors(self):
        layer = create_service_layer(
            Settings(
                connector_mode="hybrid",
                ai_service_url="https://ai.test/respond",
                http_calls_enabled=True,
            )
        )
        try:
            self.assertIsInstance(layer.ai, HttpAIResponseService)
            self.assertIsInstance(layer.http, HttpCallConnector)
        finally:
            asyncio.run(close_service_layer(layer))
        self.assertIsNone(layer.http_client)

    def test_real_mode_falls_back_when_unconfigured(self):
        with self.assertLogs("chatflow.connectors", level="WARNING") as logs:
            layer = create_service_layer(Settings(connector_mode="real", http_calls_enabled=False))
        try:
            self.assertIsInstance(layer.ai, SimulatedAIService)
            self.assertIsNone(layer.http)
        finally:
            asyncio.run(close_service_layer(layer))
        self.assertEqual(len(logs.records), 2)


if __name__ == "__main__":
    unittest.main()
