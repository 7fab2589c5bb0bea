from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from . import fs_paths, storage
from .config import TenaxConfig, load_config, write_config_file
from .errors import BatchPayloadError, TranscriptNotFoundError
from .extractor import ExtractedKnowledge, extract_knowledge
from .index import IndexRepository, ProjectIndex, normalize_session_id
from .ingest.transcript import estimate_tokens, modified_files, parse_transcript
from .ingest.types import Transcript
from .models import (
    MANUAL_SESSION_ID,
    SESSION_KIND,
    Decision,
    EmbeddingEntry,
    Insight,
    KnowledgeBatch,
    KnowledgeItem,
    Pattern,
    ProcessedSession,
    SearchResult,
    SessionMetadata,
    Task,
    now_iso,
    normalize_priority,
    session_vector_id,
)
from .sanitize import collapse_whitespace
from .semantic import (
    EmbeddingClient,
    canonical_text,
    embed_text,
    embed_texts,
    get_embedding_client,
    hash_text,
    session_text,
)
from .store import VectorStore
from .store.search import normalize_type_filter
from .store.utils import recency_key

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200
BATCH_KEYS = ("decisions", "patterns", "tasks", "insights")
RECENT_DECISIONS = 5
RECENT_PATTERNS = 3
PENDING_TASKS = 5
TOP_TOPICS = 5
DEFAULT_RECENT_SESSIONS = 3


def parse_batch(batch: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(batch, (str, bytes)):
        try:
            data = json.loads(batch)
        except json.JSONDecodeError as exc:
            raise BatchPayloadError("invalid batch json") from exc
    else:
        data = batch
    if not isinstance(data, dict):
        raise BatchPayloadError("batch must be a JSON object")
    return data


def _text(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return collapse_whitespace(value) if isinstance(value, str) else ""


def _tags(raw: dict[str, Any]) -> list[str]:
    value = raw.get("tags")
    if not isinstance(value, list):
        return []
    return [collapse_whitespace(tag) for tag in value if isinstance(tag, str) and tag.strip()]


def build_manual_item(kind: str, raw: Any) -> KnowledgeItem | None:
    """Build an item from a manually supplied batch entry, or None if it is unusable."""

    if not isinstance(raw, dict):
        return None
    if kind == "decisions":
        topic, text = _text(raw, "topic"), _text(raw, "decision")
        if not topic or not text:
            return None
        return Decision(
            topic=topic,
            decision=text,
            rationale=_text(raw, "rationale"),
            session_id=MANUAL_SESSION_ID,
            supersedes=_text(raw, "supersedes") or None,
            tags=_tags(raw),
        )
    if kind == "patterns":
        name, description = _text(raw, "name"), _text(raw, "description")
        if not name or not description:
            return None
        return Pattern(
            name=name,
            description=description,
            usage=_text(raw, "usage"),
            session_id=MANUAL_SESSION_ID,
            tags=_tags(raw),
        )
    if kind == "tasks":
        title = _text(raw, "title")
        if not title:
            return None
        priority = raw.get("priority")
        return Task(
            title=title,
            description=_text(raw, "description"),
            priority=normalize_priority(priority if isinstance(priority, str) else None),
            session_created=MANUAL_SESSION_ID,
            tags=_tags(raw),
        )
    content = _text(raw, "content")
    if not content:
        return None
    return Insight(
        content=content,
        context=_text(raw, "context"),
        session_id=MANUAL_SESSION_ID,
        tags=_tags(raw),
    )


def item_entry(item: KnowledgeItem) -> EmbeddingEntry:
    text = canonical_text(item)
    return EmbeddingEntry(
        id=item.id,
        type=item.kind,
        text=text,
        session_id=item.session_id,
        created_at=item.timestamp,
        content_hash=hash_text(text),
    )


def session_entry(metadata: SessionMetadata) -> EmbeddingEntry:
    text = session_text(metadata)
    return EmbeddingEntry(
        id=session_vector_id(metadata.id),
        type=SESSION_KIND,
        text=text,
        session_id=metadata.id,
        created_at=now_iso(),
        content_hash=hash_text(text),
    )


class ProjectMemory:
    """Capture, search and maintenance operations for one project's memory."""

    def __init__(
        self, project_root: str | Path | None = None, config: TenaxConfig | None = None
    ) -> None:
        self.project_root = fs_paths.resolve_project_root(project_root)
        self.config = config or load_config(self.project_root)
        self.repository = IndexRepository(
            self.project_root, lock_timeout=self.config.lock_timeout_s
        )

    @property
    def embeddings_path(self) -> Path:
        return fs_paths.embeddings_db_path(self.project_root)

    def _client(self) -> EmbeddingClient:
        return get_embedding_client(
            self.config.embedding_model, batch_size=self.config.embedding_batch_size
        )

    def _open_store(self, client: EmbeddingClient | None = None) -> VectorStore:
        model = client.model if client is not None else self.config.embedding_model
        return VectorStore(self.embeddings_path, model=model)

    def _session_id(self, session_id: str) -> str:
        return normalize_session_id(session_id, self.config.session_id_padding)

    def _write_vectors(self, entries: Sequence[EmbeddingEntry]) -> int:
        """Embed and store ``entries``, skipping rows whose stored text is unchanged."""

        if not entries:
            return 0
        client = self._client()
        with self._open_store(client) as store:
            pending = [
                entry for entry in entries if store.content_hash(entry.id) != entry.content_hash
            ]
            if not pending:
                return 0
            vectors = embed_texts([entry.text for entry in pending], client=client)
            return store.insert_batch(list(zip(pending, vectors, strict=True)))

    def _reconcile_vectors(self, index: ProjectIndex) -> int:
        # Rows written before a failed index save have no index entry.
        if not self.embeddings_path.exists():
            return 0
        known = {item.id for item in index.all_items()}
        known.update(session_vector_id(session.id) for session in index.sessions)
        with self._open_store() as store:
            orphans = [vector_id for vector_id in store.ids() if vector_id not in known]
            if not orphans:
                return 0
            removed = store.delete(orphans)
        logger.warning("removed %d vectors with no index entry", removed)
        return removed

    def _accept(
        self, index: ProjectIndex, items: Iterable[KnowledgeItem]
    ) -> tuple[KnowledgeBatch, int]:
        accepted = KnowledgeBatch()
        duplicates = 0
        for item in items:
            if index.add_item(item):
                accepted.add(item)
            else:
                duplicates += 1
        return accepted, duplicates

    def _session_metadata(
        self,
        index: ProjectIndex,
        session_id: str,
        conversation_id: str,
        transcript: Transcript,
        knowledge: ExtractedKnowledge,
        previous: SessionMetadata | None,
    ) -> SessionMetadata:
        timestamps = [entry.timestamp for entry in transcript.entries if entry.timestamp]
        now = now_iso()
        start_time = timestamps[0] if timestamps else (previous.start_time if previous else now)
        return SessionMetadata(
            id=session_id,
            conversation_id=conversation_id,
            start_time=start_time,
            end_time=timestamps[-1] if timestamps else now,
            token_count=estimate_tokens(transcript.full_text),
            summary=knowledge.summary,
            decisions_count=sum(1 for d in index.decisions if d.session_id == session_id),
            patterns_count=sum(1 for p in index.patterns if p.session_id == session_id),
            tasks_count=sum(1 for t in index.tasks if t.session_id == session_id),
            insights_count=sum(1 for i in index.insights if i.session_id == session_id),
            files_modified=len(modified_files(transcript)),
            key_topics=list(knowledge.key_topics),
            tags=list(previous.tags) if previous else [],
        )

    def _plan_prune(self, index: ProjectIndex, keep: Iterable[str] = ()) -> list[str]:
        doomed = storage.select_sessions_to_prune(index, self.config.max_sessions_stored, keep)
        if doomed:
            index.remove_sessions(doomed)
        return doomed

    def _discard_sessions(self, session_ids: Sequence[str]) -> None:
        """Delete files and summary vectors of sessions the saved index no longer holds."""

        if not session_ids:
            return
        for session_id in session_ids:
            storage.delete_session_files(self.project_root, session_id)
        if self.embeddings_path.exists():
            with self._open_store() as store:
                store.delete(session_vector_id(session_id) for session_id in session_ids)
        logger.info("pruned %d sessions", len(session_ids))

    def initialize(self) -> bool:
        created = self.repository.initialize()
        config_file = fs_paths.config_path(self.project_root)
        if not config_file.exists():
            write_config_file(self.config.to_dict(), path=config_file)
        with self._open_store():
            pass
        return created

    def process_transcript(
        self, path: str | Path, conversation_id: str | None = None
    ) -> ProcessedSession:
        """Parse, extract, dedup, embed and persist one transcript.

        Re-processing the same conversation updates its existing session and
        only stores items the index does not already hold. Vectors are written
        before the index is saved; the retained transcript and session record
        of the session being written are never pruned.
        """

        transcript_path = Path(path).expanduser()
        transcript = parse_transcript(transcript_path)
        if transcript.is_empty:
            logger.info("nothing to extract from %s", transcript_path)
            return ProcessedSession(metadata=None)
        conversation = conversation_id or transcript_path.stem
        with self.repository.locked():
            index = self.repository.load()
            self._reconcile_vectors(index)
            previous = index.find_session_by_conversation(conversation)
            session_id = (
                previous.id if previous else index.next_session_id(self.config.session_id_padding)
            )
            knowledge = extract_knowledge(
                transcript, session_id, key_topic_limit=self.config.key_topic_limit
            )
            accepted, duplicates = self._accept(index, knowledge.items())
            metadata = self._session_metadata(
                index, session_id, conversation, transcript, knowledge, previous
            )
            self._write_vectors(
                [*(item_entry(item) for item in accepted.items()), session_entry(metadata)]
            )
            if previous:
                index.replace_session(metadata)
            else:
                index.add_session(metadata)
            doomed = self._plan_prune(index, keep=[session_id])
            processed = ProcessedSession(
                metadata=metadata,
                decisions=accepted.decisions,
                patterns=accepted.patterns,
                tasks=accepted.tasks,
                insights=accepted.insights,
                key_topics=list(knowledge.key_topics),
                modified_files=modified_files(transcript),
                duplicates=duplicates,
                is_update=previous is not None,
                persisted=True,
                used_fallback=knowledge.used_fallback,
            )
            storage.copy_transcript(transcript_path, self.project_root, session_id)
            storage.save_session_record(self.project_root, processed)
            self.repository.save(index)
            self._discard_sessions(doomed)
        logger.info(
            "captured session %s: %s new, %d duplicates",
            session_id,
            accepted.counts(),
            duplicates,
        )
        return processed

    def search(
        self,
        query: str,
        k: int = 10,
        type_filter: str | Iterable[str] | None = None,
        *,
        approximate: bool = False,
    ) -> list[SearchResult]:
        """Rank items and session summaries by similarity to ``query``.

        ``approximate`` ranks inside SQLite with sqlite-vec instead of the
        exact numpy scan.
        """

        kinds = normalize_type_filter(type_filter)
        if k <= 0 or not query.strip() or not self.embeddings_path.exists():
            return []
        index = self.repository.load()
        client = self._client()
        vector = embed_text(query, client=client)
        with self._open_store(client) as store:
            total = store.count()
            if total == 0:
                return []
            hits = store.search(vector, total, kinds, approximate=approximate)
        results: list[SearchResult] = []
        for hit in hits:
            content: KnowledgeItem | SessionMetadata | None
            if hit.type == SESSION_KIND:
                content = index.find_session(hit.session_id or "")
            else:
                found = index.find(hit.id)
                content = found[1] if found else None
            if content is None:
                logger.debug("vector %s has no index entry; skipping", hit.id)
                continue
            results.append(
                SearchResult(
                    id=hit.id,
                    type=hit.type,
                    score=hit.score,
                    snippet=textwrap.shorten(hit.text, width=SNIPPET_CHARS, placeholder="..."),
                    content=content,
                )
            )
            if len(results) >= k:
                break
        return results

    def record_items_batch(self, batch: str | bytes | dict[str, Any]) -> dict[str, int]:
        payload = parse_batch(batch)
        counts = {key: 0 for key in BATCH_KEYS}
        counts.update(duplicates=0, skipped=0)
        with self.repository.locked():
            index = self.repository.load()
            items: list[KnowledgeItem] = []
            for key in BATCH_KEYS:
                raw_items = payload.get(key)
                if raw_items is None:
                    continue
                if not isinstance(raw_items, list):
                    logger.warning("batch field %s is not a list; skipping", key)
                    counts["skipped"] += 1
                    continue
                for position, raw in enumerate(raw_items):
                    item = build_manual_item(key, raw)
                    if item is None:
                        logger.warning("skipping malformed %s entry at position %d", key, position)
                        counts["skipped"] += 1
                        continue
                    items.append(item)
            accepted, duplicates = self._accept(index, items)
            counts.update(accepted.counts())
            counts["duplicates"] = duplicates
            if accepted.is_empty:
                return counts
            self._reconcile_vectors(index)
            self._write_vectors([item_entry(item) for item in accepted.items()])
            self.repository.save(index)
        return counts

    def complete_task(self, task_id: str, session_id: str | None = None) -> Task:
        with self.repository.locked():
            index = self.repository.load()
            task = index.get_task(task_id)
            if task is None:
                raise KeyError(f"unknown task {task_id}")
            if index.complete_task(task_id, session_id):
                self.repository.save(index)
        return task

    def forget(self, ids: Iterable[str]) -> dict[str, Any]:
        targets = list(dict.fromkeys(ids))
        with self.repository.locked():
            index = self.repository.load()
            removed = index.remove_items(targets)
            if removed:
                self.repository.save(index)
            vectors_removed = 0
            if removed and self.embeddings_path.exists():
                with self._open_store() as store:
                    vectors_removed = store.delete(removed)
        return {
            "removed": removed,
            "missing": [item_id for item_id in targets if item_id not in removed],
            "vectors_removed": vectors_removed,
        }

    def tag_session(
        self, session_id: str, tags: Iterable[str], *, remove: bool = False
    ) -> SessionMetadata:
        """Add tags to a session, or remove them when ``remove`` is set."""

        cleaned = [collapse_whitespace(tag) for tag in tags if tag and tag.strip()]
        with self.repository.locked():
            index = self.repository.load()
            session = index.find_session(self._session_id(session_id))
            if session is None:
                raise KeyError(f"unknown session {session_id}")
            if remove:
                session.tags = [tag for tag in session.tags if tag not in cleaned]
            else:
                for tag in cleaned:
                    if tag not in session.tags:
                        session.tags.append(tag)
            self.repository.save(index)
        return session

    def reextract_session(self, session_id: str) -> ProcessedSession:
        """Replace a session's items with a fresh extraction of its retained transcript."""

        session_id = self._session_id(session_id)
        with self.repository.locked():
            index = self.repository.load()
            previous = index.find_session(session_id)
            if previous is None:
                raise KeyError(f"unknown session {session_id}")
            transcript_path = storage.retained_transcript(self.project_root, session_id)
            if transcript_path is None:
                raise TranscriptNotFoundError(f"no retained transcript for session {session_id}")
            self._reconcile_vectors(index)
            transcript = parse_transcript(transcript_path)
            knowledge = extract_knowledge(
                transcript, session_id, key_topic_limit=self.config.key_topic_limit
            )
            old_ids = index.remove_session_items(session_id)
            accepted, duplicates = self._accept(index, knowledge.items())
            metadata = self._session_metadata(
                index, session_id, previous.conversation_id, transcript, knowledge, previous
            )
            self._write_vectors(
                [*(item_entry(item) for item in accepted.items()), session_entry(metadata)]
            )
            if old_ids and self.embeddings_path.exists():
                with self._open_store() as store:
                    store.delete(old_ids)
            index.replace_session(metadata)
            processed = ProcessedSession(
                metadata=metadata,
                decisions=accepted.decisions,
                patterns=accepted.patterns,
                tasks=accepted.tasks,
                insights=accepted.insights,
                key_topics=list(knowledge.key_topics),
                modified_files=modified_files(transcript),
                duplicates=duplicates,
                is_update=True,
                persisted=True,
                used_fallback=knowledge.used_fallback,
            )
            storage.save_session_record(self.project_root, processed)
            self.repository.save(index)
        return processed

    def reextract_all(self) -> list[ProcessedSession]:
        results = []
        for session in list(self.repository.load().sessions):
            try:
                results.append(self.reextract_session(session.id))
            except TranscriptNotFoundError as exc:
                logger.warning("skipping session %s", session.id, exc_info=exc)
        return results

    def prune_sessions(self) -> dict[str, int]:
        with self.repository.locked():
            index = self.repository.load()
            doomed = self._plan_prune(index)
            if doomed:
                self.repository.save(index)
                self._discard_sessions(doomed)
            self._reconcile_vectors(index)
        return {"pruned": len(doomed), "remaining": len(index.sessions)}

    def load_sessions(
        self,
        session_ids: Sequence[str] | None = None,
        *,
        recent: int | None = None,
        budget: int | None = None,
    ) -> dict[str, Any]:
        """Load stored session records, most recent first, within a token budget.

        Explicit ids win over ``recent``; ids may be comma separated. Loading
        stops at the first record that would exceed the budget.
        """

        index = self.repository.load()
        token_budget = budget if budget is not None else self.config.token_budget
        if session_ids:
            requested = [
                self._session_id(part)
                for raw in session_ids
                for part in raw.split(",")
                if part.strip()
            ]
        else:
            ordered = sorted(
                index.sessions, key=lambda session: recency_key(session.end_time), reverse=True
            )
            requested = [session.id for session in ordered[: recent or DEFAULT_RECENT_SESSIONS]]
        loaded: list[dict[str, Any]] = []
        total_tokens = 0
        for session_id in requested:
            record = storage.load_session_record(self.project_root, session_id)
            if record is None:
                logger.debug("no stored record for session %s", session_id)
                continue
            current = index.find_session(session_id)
            if current is not None:
                record["metadata"] = current.to_dict()
            tokens = estimate_tokens(json.dumps(record, ensure_ascii=False))
            if total_tokens + tokens > token_budget:
                break
            loaded.append(record)
            total_tokens += tokens
        return {
            "sessions": loaded,
            "requested": requested,
            "total_tokens": total_tokens,
            "budget": token_budget,
        }

    def summary(self) -> dict[str, Any]:
        """Recent decisions and patterns, pending tasks and the busiest topics."""

        index = self.repository.load()

        def newest_first(items: Iterable[Any]) -> list[Any]:
            return sorted(items, key=lambda item: recency_key(item.timestamp), reverse=True)

        topics = sorted(index.topics.items(), key=lambda pair: (-len(pair[1]), pair[0]))
        return {
            "initialized": self.repository.exists(),
            "stats": {
                "sessions": index.total_sessions,
                "decisions": index.total_decisions,
                "patterns": index.total_patterns,
                "tasks": dict(index.total_tasks),
                "insights": index.total_insights,
            },
            "recent_decisions": [
                item.to_dict() for item in newest_first(index.decisions)[:RECENT_DECISIONS]
            ],
            "recent_patterns": [
                item.to_dict() for item in newest_first(index.patterns)[:RECENT_PATTERNS]
            ],
            "pending_tasks": [
                task.to_dict() for task in index.tasks if task.status == "pending"
            ][:PENDING_TASKS],
            "top_topics": [
                {"topic": topic, "count": len(ids)} for topic, ids in topics[:TOP_TOPICS]
            ],
            "storage_bytes": storage.storage_size(self.project_root)["total"],
        }

    def stats(self) -> dict[str, Any]:
        index = self.repository.load()
        vectors: dict[str, Any] = {"total": 0, "by_type": {}}
        if self.embeddings_path.exists():
            with self._open_store() as store:
                vectors = {"total": store.count(), "by_type": store.count_by_type()}
        return {
            "project_root": str(self.project_root),
            "initialized": self.repository.exists(),
            "last_updated": index.last_updated,
            "sessions": {"total": index.total_sessions, "stored": len(index.sessions)},
            "decisions": index.total_decisions,
            "patterns": index.total_patterns,
            "tasks": dict(index.total_tasks),
            "insights": index.total_insights,
            "topics": sorted(index.topics),
            "vectors": vectors,
            "storage": storage.storage_size(self.project_root),
        }
