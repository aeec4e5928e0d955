"""Preview transcript model with markdown rendering."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..automation.schema import Attachment, Button


class TranscriptEntry(BaseModel):
    """One line of the simulated chat."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:10])
    text: str
    from_user: bool = False
    kind: str = "message"  # "inbound" | "message" | "status"
    step_id: Optional[str] = None
    attachments: list[Attachment] = []
    buttons: list[Button] = []
    metadata: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=datetime.now)


class Transcript(BaseModel):
    """Everything shown in a preview chat, in order."""

    entries: list[TranscriptEntry] = []
    started_at: datetime = Field(default_factory=datetime.now)

    def get(self, entry_id: str) -> Optional[TranscriptEntry]:
        return next((e for e in self.entries if e.id == entry_id), None)

    def outbound(self) -> list[TranscriptEntry]:
        return [e for e in self.entries if not e.from_user]

    def to_markdown(self, title: str = "Automation Preview") -> str:
        lines = [f"# {title}", ""]

        for entry in self.entries:
            time = entry.timestamp.strftime("%H:%M")
            if entry.from_user:
                lines.append(f"**[{time}] You:** {entry.text}")
            elif entry.kind == "status":
                lines.append(f"_[{time}] {entry.text}_")
            else:
                lines.append(f"**[{time}] Bot:** {entry.text}")

            for attachment in entry.attachments:
                name = attachment.filename or attachment.url
                lines.append(f"  - 📎 {attachment.type}: {name}")
            for index, button in enumerate(entry.buttons):
                target = ""
                if button.type == "link" and button.url:
                    target = f" → {button.url}"
                elif button.type == "phone" and button.phone:
                    target = f" → {button.phone}"
                lines.append(f"  - [{index}] `{button.text}` ({button.type.value}){target}")
            lines.append("")

        return "\n".join(lines)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")
