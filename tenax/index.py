from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from . import fs_paths
from .errors import ConsistencyError, IndexLockTimeout, SupersessionError
from .models import (
    Decision,
    Insight,
    KnowledgeItem,
    Pattern,
    SessionMetadata,
    Task,
    now_iso,
)

logger = logging.getLogger(__name__)

INDEX_VERSION = "1.0.0"


def _fold(value: str) -> str:
    return (value or "").strip().casefold()


def normalize_session_id(session_id: str, padding: int = 3) -> str:
    """Pad numeric ids so `7` and `007` name the same session."""

    cleaned = (session_id or "").strip()
    return cleaned.zfill(max(padding, 1)) if cleaned.isdigit() else cleaned


@dataclass
class ProjectIndex:
    """Aggregate of every session and item stored for one project.

    Totals and the topic map are derived data: they are recomputed from the
    item lists after each mutation. ``total_sessions`` is the exception. It
    only ever grows, because session ids are derived from it.
    """

    project_path: str = ""
    version: str = INDEX_VERSION
    last_updated: str = field(default_factory=now_iso)
    total_sessions: int = 0
    total_decisions: int = 0
    total_patterns: int = 0
    total_tasks: dict[str, int] = field(default_factory=lambda: {"pending": 0, "completed": 0})
    total_insights: int = 0
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    sessions: list[SessionMetadata] = field(default_factory=list)
    topics: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "projectPath": self.project_path,
            "totalSessions": self.total_sessions,
            "totalDecisions": self.total_decisions,
            "totalPatterns": self.total_patterns,
            "totalTasks": dict(self.total_tasks),
            "totalInsights": self.total_insights,
            "decisions": [item.to_dict() for item in self.decisions],
            "patterns": [item.to_dict() for item in self.patterns],
            "tasks": [item.to_dict() for item in self.tasks],
            "insights": [item.to_dict() for item in self.insights],
            "sessions": [session.to_dict() for session in self.sessions],
            "topics": {topic: list(ids) for topic, ids in self.topics.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectIndex:
        def _records(key: str) -> list[dict[str, Any]]:
            value = data.get(key)
            if not isinstance(value, list):
                return []
            return [record for record in value if isinstance(record, dict)]

        index = cls(
            project_path=str(data.get("projectPath") or ""),
            version=str(data.get("version") or INDEX_VERSION),
            last_updated=str(data.get("lastUpdated") or now_iso()),
            total_sessions=int(data.get("totalSessions") or 0),
            decisions=[Decision.from_dict(record) for record in _records("decisions")],
            patterns=[Pattern.from_dict(record) for record in _records("patterns")],
            tasks=[Task.from_dict(record) for record in _records("tasks")],
            insights=[Insight.from_dict(record) for record in _records("insights")],
            sessions=[SessionMetadata.from_dict(record) for record in _records("sessions")],
        )
        index.recompute()
        return index

    def recompute(self) -> None:
        self.total_decisions = len(self.decisions)
        self.total_patterns = len(self.patterns)
        pending = sum(1 for task in self.tasks if task.status == "pending")
        self.total_tasks = {"pending": pending, "completed": len(self.tasks) - pending}
        self.total_insights = len(self.insights)
        self.total_sessions = max(self.total_sessions, len(self.sessions))
        topics: dict[str, list[str]] = {}
        for decision in self.decisions:
            topics.setdefault(decision.topic, []).append(decision.id)
        self.topics = topics

    # lookups

    def all_items(self) -> Iterator[KnowledgeItem]:
        yield from self.decisions
        yield from self.patterns
        yield from self.tasks
        yield from self.insights

    def find(self, item_id: str) -> tuple[str, KnowledgeItem] | None:
        for item in self.all_items():
            if item.id == item_id:
                return item.kind, item
        return None

    def get_decision(self, decision_id: str) -> Decision | None:
        return next((d for d in self.decisions if d.id == decision_id), None)

    def get_task(self, task_id: str) -> Task | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def find_session(self, session_id: str) -> SessionMetadata | None:
        return next((s for s in self.sessions if s.id == session_id), None)

    def find_session_by_conversation(self, conversation_id: str) -> SessionMetadata | None:
        if not conversation_id:
            return None
        return next((s for s in self.sessions if s.conversation_id == conversation_id), None)

    def next_session_id(self, padding: int = 3) -> str:
        return str(self.total_sessions + 1).zfill(max(padding, 1))

    def session_item_ids(self, session_id: str) -> list[str]:
        return [item.id for item in self.all_items() if item.session_id == session_id]

    # dedup

    def is_duplicate(self, item: KnowledgeItem) -> bool:
        if isinstance(item, Decision):
            text = _fold(item.decision)
            return any(
                d.topic.strip() == item.topic.strip() and _fold(d.decision) == text
                for d in self.decisions
            )
        if isinstance(item, Pattern):
            name = _fold(item.name)
            return any(_fold(p.name) == name for p in self.patterns)
        if isinstance(item, Task):
            title = _fold(item.title)
            return any(_fold(t.title) == title for t in self.tasks)
        content = _fold(item.content)
        return any(_fold(i.content) == content for i in self.insights)

    # mutations

    def validate_supersedes(self, decision: Decision) -> None:
        target = decision.supersedes
        if not target:
            return
        if target == decision.id:
            raise SupersessionError(f"decision {decision.id} cannot supersede itself")
        if self.get_decision(target) is None:
            raise SupersessionError(f"supersedes references unknown decision {target}")
        seen: set[str] = set()
        current: str | None = target
        while current and current not in seen:
            if current == decision.id:
                raise SupersessionError(f"supersession cycle through decision {decision.id}")
            seen.add(current)
            parent = self.get_decision(current)
            current = parent.supersedes if parent else None

    def add_decision(self, decision: Decision) -> bool:
        self.validate_supersedes(decision)
        if self.is_duplicate(decision):
            return False
        self.decisions.append(decision)
        self.recompute()
        return True

    def add_pattern(self, pattern: Pattern) -> bool:
        if self.is_duplicate(pattern):
            return False
        self.patterns.append(pattern)
        self.recompute()
        return True

    def add_task(self, task: Task) -> bool:
        if self.is_duplicate(task):
            return False
        self.tasks.append(task)
        self.recompute()
        return True

    def add_insight(self, insight: Insight) -> bool:
        if self.is_duplicate(insight):
            return False
        self.insights.append(insight)
        self.recompute()
        return True

    def add_item(self, item: KnowledgeItem) -> bool:
        if isinstance(item, Decision):
            return self.add_decision(item)
        if isinstance(item, Pattern):
            return self.add_pattern(item)
        if isinstance(item, Task):
            return self.add_task(item)
        return self.add_insight(item)

    def complete_task(self, task_id: str, session_id: str | None = None) -> bool:
        """Mark a pending task completed. Returns False if it already was."""

        task = self.get_task(task_id)
        if task is None:
            raise KeyError(f"unknown task {task_id}")
        if task.status == "completed":
            return False
        task.status = "completed"
        task.timestamp_completed = now_iso()
        task.session_completed = session_id
        self.recompute()
        return True

    def remove_items(self, ids: Iterable[str]) -> list[str]:
        targets = set(ids)
        referenced = {
            d.supersedes: d.id for d in self.decisions if d.supersedes and d.id not in targets
        }
        for item_id in targets:
            if item_id in referenced:
                raise SupersessionError(
                    f"decision {item_id} is superseded by {referenced[item_id]} and cannot be removed"
                )
        removed = [item.id for item in self.all_items() if item.id in targets]
        self.decisions = [d for d in self.decisions if d.id not in targets]
        self.patterns = [p for p in self.patterns if p.id not in targets]
        self.tasks = [t for t in self.tasks if t.id not in targets]
        self.insights = [i for i in self.insights if i.id not in targets]
        self.recompute()
        return removed

    def add_session(self, metadata: SessionMetadata) -> None:
        self.sessions.append(metadata)
        self.total_sessions += 1
        self.recompute()

    def replace_session(self, metadata: SessionMetadata) -> None:
        for position, existing in enumerate(self.sessions):
            if existing.id == metadata.id:
                self.sessions[position] = metadata
                self.recompute()
                return
        self.add_session(metadata)

    def remove_session_items(self, session_id: str) -> list[str]:
        return self.remove_items(self.session_item_ids(session_id))

    def remove_sessions(self, session_ids: Iterable[str]) -> None:
        targets = set(session_ids)
        self.sessions = [s for s in self.sessions if s.id not in targets]
        self.recompute()


class IndexRepository:
    """Loads and atomically publishes a project's ``index.json``."""

    def __init__(self, project_root: str | Path, *, lock_timeout: float = 10.0) -> None:
        self.project_root = Path(project_root)
        self.path = fs_paths.index_path(self.project_root)
        self.lock_path = fs_paths.index_lock_path(self.project_root)
        self.lock_timeout = lock_timeout
        self._lock: FileLock | None = None

    def exists(self) -> bool:
        return self.path.exists()

    def default_index(self) -> ProjectIndex:
        return ProjectIndex(project_path=str(self.project_root))

    def load(self) -> ProjectIndex:
        if not self.path.exists():
            return self.default_index()
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return self.default_index()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConsistencyError(f"index file is not valid json: {self.path}") from exc
        if not isinstance(data, dict):
            raise ConsistencyError(f"index file must hold an object: {self.path}")
        return ProjectIndex.from_dict(data)

    def save(self, index: ProjectIndex) -> Path:
        index.recompute()
        index.last_updated = now_iso()
        if not index.project_path:
            index.project_path = str(self.project_root)
        payload = json.dumps(index.to_dict(), ensure_ascii=False, indent=2) + "\n"
        path = fs_paths.atomic_write_text(self.path, payload)
        logger.debug("saved index to %s", path)
        return path

    def initialize(self) -> bool:
        """Create the memory layout and an empty index. False if already initialized."""

        fs_paths.sessions_dir(self.project_root).mkdir(parents=True, exist_ok=True)
        with self.locked():
            if self.path.exists():
                return False
            self.save(self.default_index())
        return True

    @contextmanager
    def locked(self) -> Iterator[None]:
        if self._lock is None:
            fs_paths.ensure_path(self.lock_path)
            self._lock = FileLock(str(self.lock_path), timeout=self.lock_timeout)
        try:
            self._lock.acquire()
        except Timeout as exc:
            raise IndexLockTimeout(
                f"timed out after {self.lock_timeout}s waiting for {self.lock_path}"
            ) from exc
        try:
            yield
        finally:
            self._lock.release()
