from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich import print

from . import __version__
from .commands.common import memory_from_root
from .commands.memory_cmds import (
    batch_cmd,
    capture_cmd,
    complete_task_cmd,
    forget_cmd,
    init_cmd,
    prune_cmd,
    reextract_cmd,
    search_cmd,
    sessions_cmd,
    stats_cmd,
    summary_cmd,
    tag_session_cmd,
)

app = typer.Typer(help="tenax: durable, searchable project memory for coding agents")

PROJECT_ROOT_HELP = "Project root (defaults to TENAX_PROJECT_ROOT, CLAUDE_PROJECT_DIR or cwd)"


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def init(project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP)) -> None:
    """Create the memory directory, index, config and embeddings store."""
    init_cmd(memory_from_root=memory_from_root, project_root=project_root)


@app.command()
def capture(
    transcript: Path | None = typer.Argument(
        None, help="JSONL transcript (defaults to hook JSON on stdin)"
    ),
    conversation_id: str = typer.Option(
        None, help="Conversation id (defaults to the transcript file name)"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the processed session as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Extract knowledge from a transcript into project memory."""
    capture_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        transcript=transcript,
        conversation_id=conversation_id,
        as_json=as_json,
    )


@app.command()
def search(
    query: str,
    limit: int = typer.Option(10, "--limit", "-k", help="Max results"),
    kinds: list[str] = typer.Option(
        None, "--type", "-t", help="Filter by kind (repeat for multiple)"
    ),
    approximate: bool = typer.Option(
        False, "--approximate", help="Rank inside SQLite with sqlite-vec"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Search project memory by semantic similarity."""
    search_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        query=query,
        limit=limit,
        kinds=kinds,
        approximate=approximate,
        as_json=as_json,
    )


@app.command()
def batch(
    payload: str = typer.Option(None, "--json", help="Batch payload as a JSON string"),
    payload_file: Path = typer.Option(None, "--json-file", help="Read the batch from a file"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Record decisions, patterns, tasks and insights from a JSON batch (stdin by default)."""
    batch_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        payload=payload,
        payload_file=payload_file,
    )


@app.command("complete-task")
def complete_task(
    task_id: str,
    session_id: str = typer.Option(None, help="Session that completed the task"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Mark a pending task completed."""
    complete_task_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        task_id=task_id,
        session_id=session_id,
    )


@app.command()
def forget(
    item_ids: list[str],
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Remove items and their vectors from project memory."""
    forget_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        item_ids=item_ids,
        as_json=as_json,
    )


@app.command()
def reextract(
    session_id: str = typer.Argument(None, help="Session id to re-extract"),
    all_sessions: bool = typer.Option(False, "--all", help="Re-extract every stored session"),
    as_json: bool = typer.Option(False, "--json", help="Print the sessions as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Re-run extraction over retained transcripts."""
    reextract_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        session_id=session_id,
        all_sessions=all_sessions,
        as_json=as_json,
    )


@app.command()
def prune(project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP)) -> None:
    """Drop the oldest session records beyond the configured limit."""
    prune_cmd(memory_from_root=memory_from_root, project_root=project_root)


@app.command()
def stats(
    as_json: bool = typer.Option(False, "--json", help="Print statistics as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Show memory statistics."""
    stats_cmd(memory_from_root=memory_from_root, project_root=project_root, as_json=as_json)


@app.command()
def summary(
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Show recent decisions, pending tasks and top topics."""
    summary_cmd(memory_from_root=memory_from_root, project_root=project_root, as_json=as_json)


@app.command()
def sessions(
    session_ids: list[str] = typer.Argument(None, help="Session ids (comma or space separated)"),
    recent: int = typer.Option(None, "--recent", "-r", help="Load the N most recent sessions"),
    budget: int = typer.Option(None, "--budget", "-b", help="Token budget (defaults to config)"),
    as_json: bool = typer.Option(False, "--json", help="Print the sessions as JSON"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Load stored sessions within a token budget."""
    sessions_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        session_ids=session_ids,
        recent=recent,
        budget=budget,
        as_json=as_json,
    )


@app.command("tag-session")
def tag_session(
    session_id: str,
    tags: list[str],
    remove: bool = typer.Option(False, "--remove", "-r", help="Remove the tags instead"),
    project_root: str = typer.Option(None, help=PROJECT_ROOT_HELP),
) -> None:
    """Add or remove tags on a session."""
    tag_session_cmd(
        memory_from_root=memory_from_root,
        project_root=project_root,
        session_id=session_id,
        tags=tags,
        remove=remove,
    )


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
