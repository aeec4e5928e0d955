import asyncio
import sys
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from chatflow.automation.executor import (
    DEFAULT_RATE_LIMIT_TEXT,
    EMPTY_MESSAGE_TEXT,
    NO_STEPS_TEXT,
    StepExecutor,
)
from chatflow.automation.graph import AutomationGraph
from chatflow.automation.schema import RateLimitConfig
from chatflow.automation.variables import Contact, VariableContext
from chatflow.services import AIRequest
from chatflow.simulator.failures import FailureConfig, FailureRule
from chatflow.simulator.services import SimulatedAIService, SimulatedHttpClient
from chatflow.simulator.state import SimulatorState


def _chain(*steps: dict) -> AutomationGraph:
    """Graph whose steps are connected in the given order."""
    graph = AutomationGraph(steps=list(steps))
    for source, target in zip(steps, steps[1:]):
        graph.add_edge(source["id"], target["id"])
    return graph


def _message(step_id: str, text: str, **config) -> dict:
    return {"id": step_id, "type": "message", "config": {"text": text, **config}}


def _ai_step(**config) -> dict:
    base = {
        "system_prompt": "You are a store assistant.",
        "context_data": "We open at 9am. Shipping takes 3 days.",
    }
    return {"id": "ai", "type": "ai_response", "config": {**base, **config}}


class StepExecutorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.context = VariableContext(recipient="+1555", contact=Contact(name="Jane Doe"))
        self.state = SimulatorState()

    def _execute(self, executor: StepExecutor, graph: AutomationGraph, entries: list[str], message: str = "hi"):
        return asyncio.run(executor.execute(graph.snapshot(), entries, message, self.context))

    def _texts(self, result) -> list[str]:
        return [e.text for e in result.effects]

    # --- walking ---

    def test_delay_suspends_and_resume_continues(self):
        graph = _chain(
            {"id": "t1", "type": "trigger", "config": {"type": "keyword", "keywords": ["hi"]}},
            _message("m1", "Hello {{first_name}}"),
            {"id": "d1", "type": "delay", "config": {"duration": 2, "unit": "seconds"}},
            _message("m2", "Still there?"),
        )
        executor = StepExecutor()
        snapshot = graph.snapshot()

        first = asyncio.run(executor.execute(snapshot, ["m1"], "hi", self.context))

        self.assertEqual(first.status, "suspended")
        self.assertEqual(self._texts(first), ["Hello Jane", "⏱️ Waiting 2 second(s)..."])
        self.assertEqual(first.suspension.seconds, 2)
        self.assertEqual(first.suspension.resume_step_id, "m2")

        second = asyncio.run(executor.resume(snapshot, first.state))

        self.assertEqual(second.status, "completed")
        self.assertEqual(self._texts(second), ["Still there?"])
        self.assertEqual(second.run_id, first.run_id)

    def test_trailing_delay_does_not_suspend(self):
        graph = _chain(_message("m1", "Bye"), {"id": "d1", "type": "delay", "config": {"delay": 10}})

        result = self._execute(StepExecutor(), graph, ["m1"])

        self.assertEqual(result.status, "completed")
        self.assertEqual(self._texts(result), ["Bye", "⏱️ Waiting 10 second(s)..."])

    def test_no_entries_reports_no_steps(self):
        graph = AutomationGraph(steps=[{"id": "t1", "type": "trigger"}])

        result = self._execute(StepExecutor(), graph, [])

        self.assertEqual(result.status, "completed")
        self.assertEqual(len(result.effects), 1)
        self.assertEqual(result.effects[0].kind, "status")
        self.assertEqual(result.effects[0].text, NO_STEPS_TEXT)

    def test_cycle_aborts_run(self):
        graph = _chain(_message("m1", "One"), _message("m2", "Two"))
        graph.add_edge("m2", "m1")

        result = self._execute(StepExecutor(), graph, ["m1"])

        self.assertEqual(result.status, "aborted")
        self.assertEqual(self._texts(result)[:2], ["One", "Two"])
        self.assertEqual(result.effects[-1].text, "🔁 Automation loop detected at step 'm1'")

    def test_step_budget_aborts_run(self):
        graph = _chain(*[_message(f"m{i}", f"Line {i}") for i in range(5)])

        result = self._execute(StepExecutor(max_steps=3), graph, ["m0"])

        self.assertEqual(result.status, "aborted")
        self.assertEqual(self._texts(result)[:3], ["Line 0", "Line 1", "Line 2"])
        self.assertIn("more than 3 steps", result.error)

    def test_multiple_entry_points_run_in_order(self):
        graph = _chain(_message("m1", "A"), _message("m2", "B"))
        graph.add_step(_message("m3", "C"))

        result = self._execute(StepExecutor(), graph, ["m1", "m3"])

        self.assertEqual(self._texts(result), ["A", "B", "C"])

    def test_missing_entry_step_fails_run(self):
        graph = _chain(_message("m1", "A"))

        result = self._execute(StepExecutor(), graph, ["ghost"])

        self.assertEqual(result.status, "failed")
        self.assertEqual(result.effects[-1].text, "⚠️ Step 'ghost' referenced by the graph does not exist")

    # --- message ---

    def test_message_carries_buttons_and_attachments(self):
        graph = _chain(
            _message(
                "m1",
                "Pick",
                buttons=[{"text": "Yes"}, {"text": "Call us", "type": "phone", "phone": "+1800"}],
                attachments=[{"type": "image", "url": "https://cdn.example.com/a.png"}],
            )
        )

        effect = self._execute(StepExecutor(), graph, ["m1"]).effects[0]

        self.assertEqual(effect.kind, "message")
        self.assertEqual([b.text for b in effect.buttons], ["Yes", "Call us"])
        self.assertEqual(effect.attachments[0].url, "https://cdn.example.com/a.png")

    def test_empty_message_uses_placeholder(self):
        graph = _chain(_message("m1", ""))
        self.assertEqual(self._texts(self._execute(StepExecutor(), graph, ["m1"])), [EMPTY_MESSAGE_TEXT])

    def test_undefined_positional_variable_becomes_status(self):
        graph = _chain(_message("m1", "Order {{3}}", variables=["order"]), _message("m2", "Next"))

        result = self._execute(StepExecutor(), graph, ["m1"])

        self.assertEqual(result.effects[0].kind, "status")
        self.assertEqual(result.effects[0].text, "⚠️ Message references undefined variable(s): {{3}}")
        self.assertEqual(self._texts(result)[1], "Next")

    # --- ai_response ---

    def test_ai_response_uses_service_reply(self):
        executor = StepExecutor(ai_service=SimulatedAIService(self.state))
        graph = _chain(_ai_step())

        result = self._execute(executor, graph, ["ai"], message="How long does shipping take?")

        self.assertEqual(self._texts(result), ["Shipping takes 3 days."])
        self.assertIn("token_usage", result.effects[0].metadata)
        self.assertEqual(self.state.calls_for("ai")[0].parameters["recipient_id"], "+1555")

    def test_ai_rate_limit_uses_configured_message(self):
        failures = FailureConfig(rules={"ai.generate": FailureRule(error_type="rate_limit", message="slow down")})
        executor = StepExecutor(ai_service=SimulatedAIService(self.state, failures))

        custom = self._execute(executor, _chain(_ai_step(rate_limit_message="Too many questions today")), ["ai"])
        default = self._execute(executor, _chain(_ai_step()), ["ai"])

        self.assertEqual(self._texts(custom), ["Too many questions today"])
        self.assertTrue(custom.effects[0].metadata["rate_limited"])
        self.assertEqual(self._texts(default), [DEFAULT_RATE_LIMIT_TEXT])

    def test_ai_rate_limit_comes_from_step_config(self):
        executor = StepExecutor(ai_service=SimulatedAIService(self.state))
        graph = _chain(
            _ai_step(rate_limit={"per_hour": 1, "per_day": 1}, rate_limit_message="Limit reached")
        )

        texts = [self._texts(self._execute(executor, graph, ["ai"], "when do you open"))[0] for _ in range(3)]

        self.assertEqual(texts, ["We open at 9am.", "Limit reached", "Limit reached"])
        self.assertEqual(self.state.calls_for("ai")[0].parameters["rate_limit_per_hour"], 1)

    def test_ai_rate_limit_is_per_recipient(self):
        executor = StepExecutor(ai_service=SimulatedAIService(self.state))
        graph = _chain(_ai_step(rate_limit={"per_hour": 1, "per_day": 5}, rate_limit_message="Limit reached"))
        other = VariableContext(recipient="+1999")

        self._execute(executor, graph, ["ai"])
        second = self._execute(executor, graph, ["ai"])
        other_first = asyncio.run(executor.execute(graph.snapshot(), ["ai"], "hi", other))

        self.assertEqual(self._texts(second), ["Limit reached"])
        self.assertNotEqual(self._texts(other_first), ["Limit reached"])

    def test_ai_service_default_limit_applies_without_step_limit(self):
        service = SimulatedAIService(self.state, rate_limit=RateLimitConfig(per_hour=1, per_day=5))
        request = AIRequest(message="hi", recipient_id="+1555", automation_id="auto1")

        first = asyncio.run(service.generate(request))
        second = asyncio.run(service.generate(request))

        self.assertTrue(first.success)
        self.assertTrue(second.rate_limited)

    def test_ai_failure_uses_fallback_response(self):
        for error_type in ("server_error", "timeout"):
            with self.subTest(error_type=error_type):
                failures = FailureConfig(rules={"ai.generate": FailureRule(error_type=error_type, message="down")})
                executor = StepExecutor(ai_service=SimulatedAIService(SimulatorState(), failures))

                result = self._execute(executor, _chain(_ai_step(fallback_response="Let me get a human.")), ["ai"])

                self.assertEqual(self._texts(result), ["Let me get a human."])
                self.assertEqual(result.effects[0].metadata["error"], "down")

    # --- condition ---

    def test_condition_reports_match(self):
        graph = _chain(
            {
                "id": "c1",
                "type": "condition",
                "config": {"conditions": [{"field": "message_text", "operator": "contains", "value": "Refund"}]},
            },
            _message("m1", "Continues either way"),
        )

        hit = self._execute(StepExecutor(), graph, ["c1"], message="I want a refund")
        miss = self._execute(StepExecutor(), graph, ["c1"], message="Where is my parcel")

        self.assertEqual(self._texts(hit), ['✅ Condition matched: "Refund"', "Continues either way"])
        self.assertTrue(hit.effects[0].metadata["condition_matched"])
        self.assertEqual(self._texts(miss), ["❌ No conditions matched", "Continues either way"])

    def test_condition_configuration_errors(self):
        empty = _chain({"id": "c1", "type": "condition", "config": {}})
        unsupported = _chain(
            {
                "id": "c1",
                "type": "condition",
                "config": {"conditions": [{"field": "email", "operator": "contains", "value": "x"}]},
            }
        )

        self.assertEqual(
            self._texts(self._execute(StepExecutor(), empty, ["c1"])),
            ["⚠️ Condition step has no conditions configured"],
        )
        self.assertEqual(
            self._texts(self._execute(StepExecutor(), unsupported, ["c1"])),
            ["⚠️ Unsupported condition: email contains"],
        )

    # --- data_input ---

    def test_data_input_prompts_and_records_field(self):
        graph = _chain(
            {"id": "d1", "type": "data_input", "config": {"prompt": "Your email, {{first_name}}?", "field": "email"}},
            _message("m1", "Thanks"),
        )

        result = self._execute(StepExecutor(), graph, ["d1"])

        self.assertEqual(self._texts(result), ["Your email, Jane?", "Thanks"])
        self.assertEqual(result.awaiting_field, "email")
        self.assertTrue(result.effects[0].metadata["requesting_input"])

    # --- api_call / webhook ---

    def test_http_steps_are_simulated_without_client(self):
        graph = _chain(
            {"id": "a1", "type": "api_call", "config": {"url": "https://api.example.com/orders/{{phone}}"}},
            {"id": "w1", "type": "webhook", "config": {"url": "https://hooks.example.com/in"}},
        )

        result = self._execute(StepExecutor(), graph, ["a1"])

        self.assertEqual(
            self._texts(result),
            [
                "🔄 API call to https://api.example.com/orders/+1555 executed",
                "📡 Webhook sent to https://hooks.example.com/in",
            ],
        )

    def test_live_http_call_success_and_failure(self):
        failures = FailureConfig(
            rules={"http.POST": FailureRule(error_type="server_error", message="boom", status=503)}
        )
        executor = StepExecutor(http_client=SimulatedHttpClient(self.state, failures))
        graph = _chain(
            {
                "id": "a1",
                "type": "api_call",
                "config": {"url": "https://api.example.com/lookup", "body": {"phone": "{{phone}}"}},
            },
            {"id": "w1", "type": "webhook", "config": {"url": "https://hooks.example.com/in", "payload": {"a": 1}}},
        )

        result = self._execute(executor, graph, ["a1"])

        self.assertEqual(
            self._texts(result),
            [
                "✅ API call to https://api.example.com/lookup succeeded (200)",
                "⚠️ Webhook to https://hooks.example.com/in failed: HTTP 503",
            ],
        )
        calls = self.state.calls_for("http")
        self.assertEqual(calls[0].parameters["body"], {"phone": "+1555"})
        self.assertEqual(calls[1].status, "failed")

    def test_live_http_call_exception_is_reported(self):
        failures = FailureConfig(rules={"http.GET": FailureRule(error_type="timeout", message="timed out")})
        executor = StepExecutor(http_client=SimulatedHttpClient(self.state, failures))
        graph = _chain({"id": "a1", "type": "api_call", "config": {"url": "https://api.example.com/slow"}})

        result = self._execute(executor, graph, ["a1"])

        self.assertEqual(self._texts(result), ["⚠️ API call to https://api.example.com/slow failed: timed out"])

    # --- placeholders ---

    def test_custom_action_branch_and_unknown_steps(self):
        graph = _chain(
            {"id": "x1", "type": "custom_action", "config": {}},
            {"id": "b1", "type": "branch", "config": {}},
            {"id": "u1", "type": "sms_blast", "config": {}},
        )

        result = self._execute(StepExecutor(), graph, ["x1"])

        self.assertEqual(
            self._texts(result),
            ["⚡ Custom action executed", "🔀 Flow branched based on conditions", "📝 sms_blast step executed"],
        )
        self.assertTrue(all(e.kind == "status" for e in result.effects))


if __name__ == "__main__":
    unittest.main()
