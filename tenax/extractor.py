from __future__ import annotations

import logging
import re
import textwrap
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Protocol

from .heuristics import HeuristicExtractor
from .ingest.types import Transcript
from .markers import MARKER_SYNTAXES, MarkerMatch, MarkerSyntax, extract_markers, has_markers
from .models import (
    Decision,
    Insight,
    KnowledgeBatch,
    KnowledgeItem,
    Pattern,
    Task,
    normalize_priority,
)
from .sanitize import (
    clean_segment,
    collapse_whitespace,
    detect_topic,
    generate_pattern_name,
    is_system_content,
    looks_like_documentation,
    normalize_body,
    split_labelled,
)

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 100
MAX_SUMMARY_SENTENCES = 3
MAX_SUMMARY_SENTENCE_CHARS = 150
MAX_USER_SUMMARY_CHARS = 150
DEFAULT_KEY_TOPIC_LIMIT = 10
NO_SUMMARY = "Session with no captured summary"


class KnowledgeSource(Protocol):
    name: str

    def extract(self, segments: Sequence[str], session_id: str) -> KnowledgeBatch: ...


@dataclass
class ExtractedKnowledge(KnowledgeBatch):
    summary: str = NO_SUMMARY
    key_topics: list[str] = field(default_factory=list)
    used_fallback: bool = False


class MarkerExtractor:
    name = "markers"

    def __init__(self, syntaxes: Iterable[MarkerSyntax] = MARKER_SYNTAXES) -> None:
        self.syntaxes = tuple(syntaxes)

    def extract(self, segments: Sequence[str], session_id: str) -> KnowledgeBatch:
        batch = KnowledgeBatch()
        for segment in segments:
            for match in extract_markers(segment, self.syntaxes):
                if looks_like_documentation(match.body) or looks_like_documentation(match.label):
                    logger.debug("skipping documentation-like %s marker", match.kind)
                    continue
                item = build_item(match, session_id)
                if item is not None:
                    batch.add(item)
        return batch


def build_item(match: MarkerMatch, session_id: str) -> KnowledgeItem | None:
    body = normalize_body(match.body)
    label = collapse_whitespace(match.label)
    if not body:
        return None
    if match.kind == "decision":
        text, rationale = split_labelled(body, ("Rationale", "Why"))
        if not text:
            text, rationale = body, ""
        return Decision(
            topic=label or detect_topic(text),
            decision=text,
            rationale=rationale,
            session_id=session_id,
        )
    if match.kind == "pattern":
        description, usage = split_labelled(body, ("Usage",))
        if not description:
            description, usage = body, ""
        return Pattern(
            name=label or generate_pattern_name(description),
            description=description,
            usage=usage,
            session_id=session_id,
        )
    if match.kind == "task":
        title = body.splitlines()[0][:MAX_TITLE_CHARS]
        return Task(
            title=title,
            description=body if len(body) > len(title) else "",
            priority=normalize_priority(label),
            session_created=session_id,
        )
    content, context = split_labelled(body, ("Context",))
    if not content:
        content, context = body, ""
    return Insight(content=collapse_whitespace(content), context=context, session_id=session_id)


def prepare_segments(transcript: Transcript) -> list[str]:
    segments = []
    for entry in transcript.conversation_segments():
        cleaned = clean_segment(entry.text)
        if cleaned:
            segments.append(cleaned)
    return segments


def _sentence(text: str) -> str:
    first_line = text.splitlines()[0] if text else ""
    sentence = textwrap.shorten(first_line, width=MAX_SUMMARY_SENTENCE_CHARS, placeholder="...")
    if sentence and sentence[-1] not in ".!?":
        sentence += "."
    return sentence


def _first_meaningful_user_message(transcript: Transcript) -> str | None:
    for message in transcript.user_messages:
        if message.startswith("<command-") or message.startswith("# /"):
            continue
        if is_system_content(message):
            continue
        cleaned = re.sub(r"```.*?```", "", message, flags=re.DOTALL)
        cleaned = collapse_whitespace(re.sub(r"<[^>]+>", "", cleaned))
        if len(cleaned) < 15:
            continue
        if re.match(r"^[\[{]", cleaned) or re.match(r"^[A-Z]:\\|^/[a-z]", cleaned, re.IGNORECASE):
            continue
        return cleaned[:MAX_USER_SUMMARY_CHARS].rstrip()
    return None


def _file_actions(transcript: Transcript) -> list[str]:
    actions: list[str] = []
    for call in transcript.tool_calls:
        verb = {"Write": "Created", "Edit": "Modified", "MultiEdit": "Modified"}.get(call.name)
        file_path = call.input.get("file_path")
        if not verb or not isinstance(file_path, str):
            continue
        filename = PurePath(file_path.replace("\\", "/")).name
        if not filename or filename.startswith("."):
            continue
        action = f"{verb} {filename}"
        if action not in actions:
            actions.append(action)
    return actions[:5]


def generate_summary(batch: KnowledgeBatch, transcript: Transcript | None = None) -> str:
    """Short summary built from the most salient items.

    Decisions come first, then patterns, then tasks and insights. Without any
    items the first meaningful user request is used instead.
    """

    sentences: list[str] = []
    sentences.extend(_sentence(f"Decided {d.topic}: {d.decision}") for d in batch.decisions)
    sentences.extend(_sentence(f"Pattern {p.name}: {p.description}") for p in batch.patterns)
    sentences.extend(_sentence(f"Task: {t.title}") for t in batch.tasks)
    sentences.extend(_sentence(f"Insight: {i.content}") for i in batch.insights)
    if sentences:
        return " ".join(sentences[:MAX_SUMMARY_SENTENCES])
    if transcript is None:
        return NO_SUMMARY
    parts: list[str] = []
    request = _first_meaningful_user_message(transcript)
    if request:
        parts.append(request)
    actions = _file_actions(transcript)
    if actions:
        parts.append(f"Files: {', '.join(actions)}")
    return ". ".join(parts) if parts else NO_SUMMARY


def key_topics(batch: KnowledgeBatch, limit: int = DEFAULT_KEY_TOPIC_LIMIT) -> list[str]:
    topics: list[str] = []
    seen: set[str] = set()
    candidates = [d.topic for d in batch.decisions] + [p.name for p in batch.patterns]
    for candidate in candidates:
        topic = collapse_whitespace(candidate)
        key = topic.casefold()
        if not topic or key in seen:
            continue
        seen.add(key)
        topics.append(topic)
        if len(topics) >= limit:
            break
    return topics


def extract_knowledge(
    transcript: Transcript,
    session_id: str,
    *,
    primary: KnowledgeSource | None = None,
    fallback: KnowledgeSource | None = None,
    key_topic_limit: int = DEFAULT_KEY_TOPIC_LIMIT,
) -> ExtractedKnowledge:
    segments = prepare_segments(transcript)
    marker_source = primary or MarkerExtractor()
    batch = marker_source.extract(segments, session_id)
    used_fallback = False
    if batch.is_empty and not any(has_markers(segment) for segment in segments):
        heuristic = fallback or HeuristicExtractor()
        batch = heuristic.extract(segments, session_id)
        used_fallback = True
        logger.debug(
            "no markers in session %s; heuristic fallback produced %s",
            session_id,
            batch.counts(),
        )
    return ExtractedKnowledge(
        decisions=batch.decisions,
        patterns=batch.patterns,
        tasks=batch.tasks,
        insights=batch.insights,
        summary=generate_summary(batch, transcript),
        key_topics=key_topics(batch, key_topic_limit),
        used_fallback=used_fallback,
    )
