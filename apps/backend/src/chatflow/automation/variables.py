"""Per-recipient substitution of ``{{token}}`` placeholders.

Tokens with no value after substitution keep their literal ``{{token}}`` text
everywhere in the system, so a missing variable is visible in the output rather
than silently dropped. Positional tokens (``{{1}}``) that point past the
template's declared ``variables`` list are reported as undefined.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel

_TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")

DATE_FORMAT = "%m/%d/%Y"
TIME_FORMAT = "%I:%M:%S %p"


class Contact(BaseModel):
    name: Optional[str] = None
    whatsapp_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None


class VariableContext(BaseModel):
    """Recipient data used for substitution only, never persisted by the engine."""

    recipient: str
    contact: Optional[Contact] = None
    # Named values: webhook event variables, collected answers, ...
    values: dict[str, str] = {}

    def with_values(self, extra: dict[str, str]) -> VariableContext:
        return self.model_copy(update={"values": {**self.values, **extra}})


class ResolvedText(BaseModel):
    text: str
    missing: list[str] = []
    undefined: list[str] = []

    @property
    def ok(self) -> bool:
        return not self.undefined


class VariableResolver:
    """Resolves contact, date/time and named tokens against a ``VariableContext``."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def builtin_values(self, context: VariableContext) -> dict[str, str]:
        contact = context.contact or Contact()
        display_name = contact.whatsapp_name or contact.name or ""
        parts = display_name.split()
        now = self.clock()
        return {
            "name": display_name or context.recipient,
            "phone": context.recipient,
            "first_name": contact.first_name or (parts[0] if parts else ""),
            "last_name": contact.last_name or " ".join(parts[1:]),
            "company": contact.company or "",
            "date": now.strftime(DATE_FORMAT),
            "time": now.strftime(TIME_FORMAT),
        }

    def resolve(
        self,
        text: str,
        context: VariableContext,
        variables: Optional[list[str]] = None,
        variable_values: Optional[dict[str, str]] = None,
    ) -> ResolvedText:
        """Substitute every token in ``text``.

        ``variables`` maps positional tokens to names; ``variable_values`` holds
        the user-supplied value per name, which may itself contain tokens.
        """
        variables = variables or []
        named = {**context.values, **(variable_values or {})}
        builtins = self.builtin_values(context)
        missing: list[str] = []
        undefined: list[str] = []

        def lookup(token: str) -> str:
            if token.isdigit():
                index = int(token) - 1
                if index < 0 or index >= len(variables):
                    undefined.append(token)
                    return ""
                raw = named.get(variables[index], "")
                return self._substitute(raw, builtins, named, missing)
            if token in builtins:
                return builtins[token]
            return named.get(token, "")

        def replace(match: re.Match) -> str:
            value = lookup(match.group(1))
            if not value:
                if match.group(1) not in undefined:
                    missing.append(match.group(1))
                return match.group(0)
            return value

        result = _TOKEN_RE.sub(replace, text)
        return ResolvedText(
            text=result,
            missing=list(dict.fromkeys(missing)),
            undefined=list(dict.fromkeys(undefined)),
        )

    @staticmethod
    def _substitute(
        text: str,
        builtins: dict[str, str],
        named: dict[str, str],
        missing: list[str],
    ) -> str:
        # One level only: values supplied for positional tokens may use the
        # contact/date tokens and named values, not other positional tokens.
        def replace(match: re.Match) -> str:
            token = match.group(1)
            value = builtins.get(token) or named.get(token, "")
            if not value:
                missing.append(token)
                return match.group(0)
            return value

        return _TOKEN_RE.sub(replace, text)

    def resolve_value(self, value, context: VariableContext):
        """Resolve tokens inside nested request payloads (dicts, lists, strings)."""
        if isinstance(value, str):
            return self.resolve(value, context).text
        if isinstance(value, dict):
            return {k: self.resolve_value(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(v, context) for v in value]
        return value
