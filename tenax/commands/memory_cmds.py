from __future__ import annotations

import json
import sys
from pathlib import Path

from rich import print
from rich.markup import escape

from ..errors import TenaxError
from ..memory import ProjectMemory
from ..models import ProcessedSession
from .common import fail, print_json, read_payload_or_exit


def _read_hook_input() -> dict[str, object]:
    # Session-end hooks pipe {"transcript_path": ..., "session_id": ...} on stdin.
    if sys.stdin.isatty():
        return {}
    raw = sys.stdin.read()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise fail("Hook input on stdin is not valid JSON") from exc
    return data if isinstance(data, dict) else {}


def _print_processed(processed: ProcessedSession) -> None:
    metadata = processed.metadata
    if metadata is None:
        print("[yellow]Nothing to capture[/yellow]")
        return
    verb = "Updated" if processed.is_update else "Captured"
    counts = ", ".join(f"{count} {kind}" for kind, count in processed.inserted.items())
    print(f"{verb} session {escape(metadata.id)}: {counts} ({processed.duplicates} duplicates)")
    if metadata.summary:
        print(f"  {escape(metadata.summary)}")


def init_cmd(*, memory_from_root, project_root: str | None) -> None:
    """Create the memory directory, index, config and embeddings store."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        created = memory.initialize()
    except TenaxError as exc:
        raise fail(f"Initialization failed: {exc}") from exc
    if created:
        print(f"Initialized memory at {memory.repository.path.parent}")
    else:
        print(f"Memory already initialized at {memory.repository.path.parent}")


def capture_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    transcript: Path | None,
    conversation_id: str | None,
    as_json: bool,
) -> None:
    """Extract knowledge from a transcript into project memory."""

    if transcript is None:
        hook = _read_hook_input()
        transcript_path = hook.get("transcript_path")
        if not isinstance(transcript_path, str) or not transcript_path:
            raise fail("Provide a transcript path or hook JSON with transcript_path on stdin")
        transcript = Path(transcript_path)
        hook_session = hook.get("session_id")
        if conversation_id is None and isinstance(hook_session, str) and hook_session:
            conversation_id = hook_session
    memory: ProjectMemory = memory_from_root(project_root)
    try:
        processed = memory.process_transcript(transcript, conversation_id=conversation_id)
    except TenaxError as exc:
        raise fail(f"Capture failed: {exc}") from exc
    if as_json:
        print_json(processed.to_dict())
        return
    _print_processed(processed)


def search_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    query: str,
    limit: int,
    kinds: list[str] | None,
    approximate: bool,
    as_json: bool,
) -> None:
    """Search project memory by semantic similarity."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        results = memory.search(
            query, k=limit, type_filter=kinds or None, approximate=approximate
        )
    except (TenaxError, ValueError, RuntimeError) as exc:
        raise fail(f"Search failed: {exc}") from exc
    if as_json:
        print_json([result.to_dict() for result in results])
        return
    if not results:
        print("No matches")
        return
    for result in results:
        print(f"{escape(f'[{result.id}]')} ({result.type}) score={result.score:.2f}")
        print(f"{escape(result.snippet)}\n")


def batch_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    payload: str | None,
    payload_file: Path | None,
) -> None:
    """Record decisions, patterns, tasks and insights from a JSON batch."""

    data = read_payload_or_exit(payload, payload_file)
    memory: ProjectMemory = memory_from_root(project_root)
    try:
        counts = memory.record_items_batch(data)
    except TenaxError as exc:
        raise fail(f"Batch failed: {exc}") from exc
    print_json(counts)


def complete_task_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    task_id: str,
    session_id: str | None,
) -> None:
    """Mark a pending task completed."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        task = memory.complete_task(task_id, session_id=session_id)
    except KeyError as exc:
        raise fail(f"Task {task_id} not found") from exc
    except TenaxError as exc:
        raise fail(f"Could not complete task: {exc}") from exc
    print(f"Task {task.id} completed: {escape(task.title)}")


def forget_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    item_ids: list[str],
    as_json: bool,
) -> None:
    """Remove items and their vectors from project memory."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        result = memory.forget(item_ids)
    except TenaxError as exc:
        raise fail(f"Forget failed: {exc}") from exc
    if as_json:
        print_json(result)
        return
    for item_id in result["removed"]:
        print(f"Forgot {item_id}")
    for item_id in result["missing"]:
        print(f"[yellow]No item {item_id}[/yellow]")


def reextract_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    session_id: str | None,
    all_sessions: bool,
    as_json: bool,
) -> None:
    """Re-run extraction over retained transcripts."""

    if not session_id and not all_sessions:
        raise fail("Provide a session id or --all")
    memory: ProjectMemory = memory_from_root(project_root)
    try:
        if all_sessions:
            results = memory.reextract_all()
        else:
            results = [memory.reextract_session(session_id)]
    except KeyError as exc:
        raise fail(f"Session {session_id} not found") from exc
    except TenaxError as exc:
        raise fail(f"Re-extraction failed: {exc}") from exc
    if as_json:
        print_json([processed.to_dict() for processed in results])
        return
    if not results:
        print("No sessions re-extracted")
    for processed in results:
        _print_processed(processed)


def prune_cmd(*, memory_from_root, project_root: str | None) -> None:
    """Drop the oldest session records beyond the configured limit."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        result = memory.prune_sessions()
    except TenaxError as exc:
        raise fail(f"Prune failed: {exc}") from exc
    print(f"Pruned {result['pruned']} sessions, {result['remaining']} remaining")


def stats_cmd(*, memory_from_root, project_root: str | None, as_json: bool) -> None:
    """Show memory statistics."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        stats = memory.stats()
    except TenaxError as exc:
        raise fail(f"Stats failed: {exc}") from exc
    if as_json:
        print_json(stats)
        return
    tasks = stats["tasks"]
    vectors = stats["vectors"]
    print(f"[bold]Project[/bold] {stats['project_root']}")
    print(f"- Sessions: {stats['sessions']['stored']} stored ({stats['sessions']['total']} total)")
    print(f"- Decisions: {stats['decisions']}")
    print(f"- Patterns: {stats['patterns']}")
    print(f"- Tasks: {tasks['pending']} pending, {tasks['completed']} completed")
    print(f"- Insights: {stats['insights']}")
    print(f"- Vectors: {vectors['total']}")
    print(f"- Storage: {stats['storage']['total']} bytes")
    if stats["topics"]:
        print(f"- Topics: {', '.join(stats['topics'])}")


def summary_cmd(*, memory_from_root, project_root: str | None, as_json: bool) -> None:
    """Show recent decisions, pending tasks and top topics."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        summary = memory.summary()
    except TenaxError as exc:
        raise fail(f"Summary failed: {exc}") from exc
    if as_json:
        print_json(summary)
        return
    if not summary["initialized"]:
        print("[yellow]Project memory not initialized[/yellow]")
        return
    stats = summary["stats"]
    print(f"Project memory: {stats['sessions']} sessions, {stats['decisions']} decisions")
    if summary["recent_decisions"]:
        print("[bold]Recent decisions[/bold]")
        for decision in summary["recent_decisions"]:
            print(f"- {escape(decision['topic'])}: {escape(decision['decision'])}")
    if summary["recent_patterns"]:
        print("[bold]Recent patterns[/bold]")
        for pattern in summary["recent_patterns"]:
            print(f"- {escape(pattern['name'])}: {escape(pattern['description'])}")
    if summary["pending_tasks"]:
        print("[bold]Pending tasks[/bold]")
        for task in summary["pending_tasks"]:
            priority = escape(f"[{task['priority']}]")
            print(f"- {priority} {escape(task['title'])}")
    if summary["top_topics"]:
        topics = ", ".join(f"{t['topic']} ({t['count']})" for t in summary["top_topics"])
        print(f"Topics: {escape(topics)}")


def sessions_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    session_ids: list[str] | None,
    recent: int | None,
    budget: int | None,
    as_json: bool,
) -> None:
    """Load stored sessions within a token budget."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        result = memory.load_sessions(session_ids or None, recent=recent, budget=budget)
    except TenaxError as exc:
        raise fail(f"Loading sessions failed: {exc}") from exc
    if as_json:
        print_json(result)
        return
    print(
        f"Loaded {len(result['sessions'])} of {len(result['requested'])} sessions "
        f"({result['total_tokens']}/{result['budget']} tokens)"
    )
    for record in result["sessions"]:
        metadata = record.get("metadata") or {}
        print(f"- {escape(str(metadata.get('id')))}: {escape(str(metadata.get('summary', '')))}")


def tag_session_cmd(
    *,
    memory_from_root,
    project_root: str | None,
    session_id: str,
    tags: list[str],
    remove: bool,
) -> None:
    """Add or remove session tags."""

    memory: ProjectMemory = memory_from_root(project_root)
    try:
        session = memory.tag_session(session_id, tags, remove=remove)
    except KeyError as exc:
        raise fail(f"Session {session_id} not found") from exc
    except TenaxError as exc:
        raise fail(f"Tagging failed: {exc}") from exc
    action = "removed from" if remove else "added to"
    print(f"Tags {action} session {session.id}: {escape(', '.join(session.tags) or '-')}")
