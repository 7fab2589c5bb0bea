from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Final, Union
from uuid import uuid4

KNOWLEDGE_KINDS: Final[tuple[str, ...]] = ("decision", "pattern", "task", "insight")
SESSION_KIND: Final[str] = "session"
# Session summaries are embedded alongside items.
SEARCHABLE_KINDS: Final[tuple[str, ...]] = (*KNOWLEDGE_KINDS, SESSION_KIND)
TASK_STATUSES: Final[tuple[str, ...]] = ("pending", "completed")
TASK_PRIORITIES: Final[tuple[str, ...]] = ("low", "medium", "high")
DEFAULT_PRIORITY: Final[str] = "medium"
MANUAL_SESSION_ID: Final[str] = "manual"


def generate_id() -> str:
    return uuid4().hex


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def normalize_kind(kind: str) -> str:
    return (kind or "").strip().lower()


def validate_kind(kind: str) -> str:
    normalized = normalize_kind(kind)
    if normalized in SEARCHABLE_KINDS:
        return normalized
    if normalized.endswith("s") and normalized[:-1] in SEARCHABLE_KINDS:
        return normalized[:-1]
    raise ValueError(
        f"Invalid knowledge kind '{normalized}'. Allowed kinds: {', '.join(SEARCHABLE_KINDS)}"
    )


def normalize_priority(value: str | None) -> str:
    normalized = (value or "").strip().lower()
    if normalized in TASK_PRIORITIES:
        return normalized
    return DEFAULT_PRIORITY


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if isinstance(item, str) and item.strip()]


@dataclass
class Decision:
    topic: str
    decision: str
    rationale: str = ""
    session_id: str = MANUAL_SESSION_ID
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=now_iso)
    supersedes: str | None = None
    confidence: float = 1.0
    tags: list[str] = field(default_factory=list)

    kind = "decision"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "topic": self.topic,
            "decision": self.decision,
            "rationale": self.rationale,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "confidence": self.confidence,
        }
        if self.supersedes:
            data["supersedes"] = self.supersedes
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Decision:
        return cls(
            id=str(data.get("id") or generate_id()),
            topic=str(data.get("topic") or ""),
            decision=str(data.get("decision") or ""),
            rationale=str(data.get("rationale") or ""),
            session_id=str(data.get("sessionId") or MANUAL_SESSION_ID),
            timestamp=str(data.get("timestamp") or now_iso()),
            supersedes=data.get("supersedes") or None,
            confidence=float(data.get("confidence") or 1.0),
            tags=_str_list(data.get("tags")),
        )


@dataclass
class Pattern:
    name: str
    description: str
    usage: str = ""
    session_id: str = MANUAL_SESSION_ID
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=now_iso)
    tags: list[str] = field(default_factory=list)

    kind = "pattern"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "usage": self.usage,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
        }
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        return cls(
            id=str(data.get("id") or generate_id()),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            usage=str(data.get("usage") or ""),
            session_id=str(data.get("sessionId") or MANUAL_SESSION_ID),
            timestamp=str(data.get("timestamp") or now_iso()),
            tags=_str_list(data.get("tags")),
        )


@dataclass
class Task:
    title: str
    description: str = ""
    status: str = "pending"
    priority: str = DEFAULT_PRIORITY
    session_created: str = MANUAL_SESSION_ID
    id: str = field(default_factory=generate_id)
    timestamp_created: str = field(default_factory=now_iso)
    session_completed: str | None = None
    timestamp_completed: str | None = None
    tags: list[str] = field(default_factory=list)

    kind = "task"

    @property
    def session_id(self) -> str:
        return self.session_created

    @property
    def timestamp(self) -> str:
        return self.timestamp_created

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "sessionCreated": self.session_created,
            "timestampCreated": self.timestamp_created,
        }
        if self.session_completed:
            data["sessionCompleted"] = self.session_completed
        if self.timestamp_completed:
            data["timestampCompleted"] = self.timestamp_completed
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        status = str(data.get("status") or "pending").strip().lower()
        return cls(
            id=str(data.get("id") or generate_id()),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=status if status in TASK_STATUSES else "pending",
            priority=normalize_priority(data.get("priority")),
            session_created=str(data.get("sessionCreated") or MANUAL_SESSION_ID),
            timestamp_created=str(data.get("timestampCreated") or now_iso()),
            session_completed=data.get("sessionCompleted") or None,
            timestamp_completed=data.get("timestampCompleted") or None,
            tags=_str_list(data.get("tags")),
        )


@dataclass
class Insight:
    content: str
    context: str = ""
    session_id: str = MANUAL_SESSION_ID
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=now_iso)
    tags: list[str] = field(default_factory=list)

    kind = "insight"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "context": self.context,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
        }
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Insight:
        return cls(
            id=str(data.get("id") or generate_id()),
            content=str(data.get("content") or ""),
            context=str(data.get("context") or ""),
            session_id=str(data.get("sessionId") or MANUAL_SESSION_ID),
            timestamp=str(data.get("timestamp") or now_iso()),
            tags=_str_list(data.get("tags")),
        )


KnowledgeItem = Union[Decision, Pattern, Task, Insight]


@dataclass
class KnowledgeBatch:
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)

    def add(self, item: KnowledgeItem) -> None:
        if isinstance(item, Decision):
            self.decisions.append(item)
        elif isinstance(item, Pattern):
            self.patterns.append(item)
        elif isinstance(item, Task):
            self.tasks.append(item)
        else:
            self.insights.append(item)

    def items(self) -> list[KnowledgeItem]:
        return [*self.decisions, *self.patterns, *self.tasks, *self.insights]

    @property
    def is_empty(self) -> bool:
        return not (self.decisions or self.patterns or self.tasks or self.insights)

    def counts(self) -> dict[str, int]:
        return {
            "decisions": len(self.decisions),
            "patterns": len(self.patterns),
            "tasks": len(self.tasks),
            "insights": len(self.insights),
        }


def session_vector_id(session_id: str) -> str:
    return f"{SESSION_KIND}-{session_id}"


@dataclass
class SessionMetadata:
    id: str
    conversation_id: str
    start_time: str
    end_time: str
    token_count: int = 0
    summary: str = ""
    decisions_count: int = 0
    patterns_count: int = 0
    tasks_count: int = 0
    insights_count: int = 0
    files_modified: int = 0
    key_topics: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "claudeSessionId": self.conversation_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "tokenCount": self.token_count,
            "summary": self.summary,
            "decisionsCount": self.decisions_count,
            "patternsCount": self.patterns_count,
            "tasksCount": self.tasks_count,
            "insightsCount": self.insights_count,
            "filesModified": self.files_modified,
            "keyTopics": list(self.key_topics),
        }
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionMetadata:
        return cls(
            id=str(data.get("id") or ""),
            conversation_id=str(data.get("claudeSessionId") or ""),
            start_time=str(data.get("startTime") or ""),
            end_time=str(data.get("endTime") or ""),
            token_count=int(data.get("tokenCount") or 0),
            summary=str(data.get("summary") or ""),
            decisions_count=int(data.get("decisionsCount") or 0),
            patterns_count=int(data.get("patternsCount") or 0),
            tasks_count=int(data.get("tasksCount") or 0),
            insights_count=int(data.get("insightsCount") or 0),
            files_modified=int(data.get("filesModified") or 0),
            key_topics=_str_list(data.get("keyTopics")),
            tags=_str_list(data.get("tags")),
        )


@dataclass
class ProcessedSession:
    """Outcome of one capture pass.

    The item lists hold only the items this pass added to the index; items
    dropped as duplicates are counted in ``duplicates``.
    """

    metadata: SessionMetadata | None
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    key_topics: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    duplicates: int = 0
    is_update: bool = False
    persisted: bool = False
    used_fallback: bool = False

    @property
    def inserted(self) -> dict[str, int]:
        return {
            "decisions": len(self.decisions),
            "patterns": len(self.patterns),
            "tasks": len(self.tasks),
            "insights": len(self.insights),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "decisions": [item.to_dict() for item in self.decisions],
            "patterns": [item.to_dict() for item in self.patterns],
            "tasks": [item.to_dict() for item in self.tasks],
            "insights": [item.to_dict() for item in self.insights],
            "keyTopics": list(self.key_topics),
            "modifiedFiles": list(self.modified_files),
            "duplicates": self.duplicates,
            "isUpdate": self.is_update,
        }


@dataclass(frozen=True, slots=True)
class EmbeddingEntry:
    id: str
    type: str
    text: str
    session_id: str | None = None
    created_at: str | None = None
    content_hash: str | None = None


@dataclass
class SearchResult:
    id: str
    type: str
    score: float
    snippet: str
    content: KnowledgeItem | SessionMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "score": self.score,
            "snippet": self.snippet,
            "content": self.content.to_dict(),
        }
