from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    role: str
    text: str
    position: int
    timestamp: str | None = None


@dataclass(slots=True)
class ToolCall:
    name: str
    input: dict[str, Any]
    result: str | None = None


@dataclass
class Transcript:
    entries: list[TranscriptEntry] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    full_text: str = ""
    skipped_lines: int = 0

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def user_messages(self) -> list[str]:
        return [entry.text for entry in self.entries if entry.role == "user"]

    def conversation_segments(self) -> list[TranscriptEntry]:
        return [entry for entry in self.entries if entry.role in {"user", "assistant"}]
