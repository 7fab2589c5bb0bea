from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

from .types import ToolCall, Transcript, TranscriptEntry

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
FILE_WRITING_TOOLS = {"Write", "Edit", "MultiEdit", "NotebookEdit"}

_ROLE_PREFIXES = {"user": "User", "assistant": "Assistant"}


def parse_transcript(path: str | Path) -> Transcript:
    """Parse a JSONL transcript file.

    A missing or empty file yields an empty transcript rather than an error.
    """

    transcript_path = Path(path).expanduser()
    if not transcript_path.is_file():
        logger.info("transcript not found: %s", transcript_path)
        return Transcript()
    text = transcript_path.read_text(encoding="utf-8", errors="replace")
    return parse_transcript_text(text)


def parse_transcript_text(text: str) -> Transcript:
    transcript = Transcript()
    full_text_parts: list[str] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            transcript.skipped_lines += 1
            logger.debug("skipping malformed transcript line %d", line_number)
            continue
        if not isinstance(record, dict):
            transcript.skipped_lines += 1
            logger.debug("skipping non-object transcript line %d", line_number)
            continue
        role = _record_role(record)
        if role == "user" and _is_tool_result_record(record):
            role = "tool_result"
        if role in {"user", "assistant"}:
            transcript.tool_calls.extend(_embedded_tool_calls(record))
            content = extract_content(record)
            if not content.strip():
                continue
            transcript.entries.append(
                TranscriptEntry(
                    role=role,
                    text=content,
                    position=len(transcript.entries),
                    timestamp=_timestamp(record),
                )
            )
            full_text_parts.append(f"{_ROLE_PREFIXES[role]}: {content}")
        elif role == "tool_use":
            name = str(record.get("tool_name") or record.get("name") or "")
            tool_input = record.get("tool_input") or record.get("input") or {}
            transcript.tool_calls.append(
                ToolCall(name=name, input=tool_input if isinstance(tool_input, dict) else {})
            )
        elif role in {"tool_result", "tool"}:
            content = extract_content(record)
            if transcript.tool_calls and transcript.tool_calls[-1].result is None:
                transcript.tool_calls[-1].result = content
            if content.strip():
                transcript.entries.append(
                    TranscriptEntry(
                        role="tool",
                        text=content,
                        position=len(transcript.entries),
                        timestamp=_timestamp(record),
                    )
                )
    transcript.full_text = "\n\n".join(full_text_parts)
    return transcript


def _record_role(record: dict[str, Any]) -> str:
    record_type = record.get("type")
    if record_type in {"user", "assistant", "tool_use", "tool_result", "tool"}:
        return str(record_type)
    role = record.get("role")
    if role in {"user", "assistant", "tool"}:
        return str(role)
    message = record.get("message")
    if isinstance(message, dict) and message.get("role") in {"user", "assistant"}:
        return str(message["role"])
    return ""


def _is_tool_result_record(record: dict[str, Any]) -> bool:
    # Tool output comes back as a user-role record made only of tool_result blocks.
    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else record.get("content")
    if not isinstance(content, list) or not content:
        return False
    return all(isinstance(block, dict) and block.get("type") == "tool_result" for block in content)


def _timestamp(record: dict[str, Any]) -> str | None:
    value = record.get("timestamp")
    return str(value) if value else None


def extract_content(record: dict[str, Any]) -> str:
    content = record.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return _text_from_blocks(content)
    message = record.get("message")
    if isinstance(message, dict):
        nested = message.get("content")
        if isinstance(nested, str):
            return nested
        if isinstance(nested, list):
            return _text_from_blocks(nested)
    text = record.get("text")
    if isinstance(text, str):
        return text
    return ""


def _text_from_blocks(blocks: list[Any]) -> str:
    parts: list[str] = []
    for block in blocks:
        if isinstance(block, str):
            parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
        elif block_type == "tool_result":
            nested = block.get("content")
            if isinstance(nested, str):
                parts.append(nested)
            elif isinstance(nested, list):
                parts.append(_text_from_blocks(nested))
    return "\n".join(part for part in parts if part)


def _embedded_tool_calls(record: dict[str, Any]) -> list[ToolCall]:
    # Agent transcripts carry tool_use blocks inside assistant message content.
    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else record.get("content")
    if not isinstance(content, list):
        return []
    calls = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "tool_use":
            tool_input = block.get("input")
            calls.append(
                ToolCall(
                    name=str(block.get("name") or ""),
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )
    return calls


def modified_files(transcript: Transcript) -> list[str]:
    files: list[str] = []
    for call in transcript.tool_calls:
        if call.name not in FILE_WRITING_TOOLS:
            continue
        file_path = call.input.get("file_path") or call.input.get("path")
        if isinstance(file_path, str) and file_path not in files:
            files.append(file_path)
    return files


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
