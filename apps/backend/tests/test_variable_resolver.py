import sys
import unittest
from datetime import datetime
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from chatflow.automation.variables import Contact, VariableContext, VariableResolver


class VariableResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.resolver = VariableResolver(clock=lambda: datetime(2024, 3, 5, 14, 7, 9))
        self.context = VariableContext(recipient="+15550001", contact=Contact(name="Jane Doe"))

    def test_contact_and_positional_tokens(self):
        resolved = self.resolver.resolve(
            "Hi {{name}}, order {{1}}",
            self.context,
            variables=["order"],
            variable_values={"order": "#1001"},
        )

        self.assertEqual(resolved.text, "Hi Jane Doe, order #1001")
        self.assertTrue(resolved.ok)
        self.assertEqual(resolved.missing, [])

    def test_whatsapp_name_wins_over_name(self):
        context = VariableContext(
            recipient="+15550001",
            contact=Contact(name="Jane Doe", whatsapp_name="JD Shop"),
        )

        resolved = self.resolver.resolve("{{name}}/{{first_name}}/{{last_name}}", context)

        self.assertEqual(resolved.text, "JD Shop/JD/Shop")

    def test_first_and_last_name_split_display_name(self):
        context = VariableContext(recipient="+1", contact=Contact(name="Mary Ann Smith"))

        resolved = self.resolver.resolve("{{first_name}}|{{last_name}}", context)

        self.assertEqual(resolved.text, "Mary|Ann Smith")

    def test_name_falls_back_to_recipient(self):
        context = VariableContext(recipient="+15550002")
        self.assertEqual(self.resolver.resolve("{{name}} {{phone}}", context).text, "+15550002 +15550002")

    def test_date_and_time_formats(self):
        resolved = self.resolver.resolve("{{date}} {{time}}", self.context)
        self.assertEqual(resolved.text, "03/05/2024 02:07:09 PM")

    def test_missing_value_keeps_literal_token(self):
        resolved = self.resolver.resolve("Code {{coupon}} for {{company}}", self.context)

        self.assertEqual(resolved.text, "Code {{coupon}} for {{company}}")
        self.assertEqual(resolved.missing, ["coupon", "company"])
        self.assertTrue(resolved.ok)

    def test_positional_value_may_use_contact_tokens(self):
        resolved = self.resolver.resolve(
            "{{1}}!",
            self.context,
            variables=["greeting"],
            variable_values={"greeting": "Hello {{first_name}}"},
        )

        self.assertEqual(resolved.text, "Hello Jane!")

    def test_positional_token_past_variables_is_undefined(self):
        resolved = self.resolver.resolve("Hi {{2}}", self.context, variables=["only_one"])

        self.assertFalse(resolved.ok)
        self.assertEqual(resolved.undefined, ["2"])
        self.assertEqual(resolved.text, "Hi {{2}}")

    def test_named_values_from_context(self):
        context = self.context.with_values({"order_number": "#42"})

        resolved = self.resolver.resolve("Order {{ order_number }} shipped", context)

        self.assertEqual(resolved.text, "Order #42 shipped")

    def test_resolve_value_walks_nested_payloads(self):
        payload = {"to": "{{phone}}", "tags": ["{{first_name}}", 3], "meta": {"day": "{{date}}"}}

        resolved = self.resolver.resolve_value(payload, self.context)

        self.assertEqual(
            resolved,
            {"to": "+15550001", "tags": ["Jane", 3], "meta": {"day": "03/05/2024"}},
        )


if __name__ == "__main__":
    unittest.main()
