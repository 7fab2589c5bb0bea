from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from . import fs_paths
from .index import ProjectIndex
from .models import ProcessedSession

logger = logging.getLogger(__name__)


def save_session_record(project_root: str | Path, processed: ProcessedSession) -> Path | None:
    if processed.metadata is None:
        return None
    path = fs_paths.session_record_path(project_root, processed.metadata.id)
    payload = json.dumps(processed.to_dict(), ensure_ascii=False, indent=2) + "\n"
    return fs_paths.atomic_write_text(path, payload)


def load_session_record(project_root: str | Path, session_id: str) -> dict[str, Any] | None:
    path = fs_paths.session_record_path(project_root, session_id)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.warning("ignoring unreadable session record %s", path, exc_info=exc)
        return None
    return data if isinstance(data, dict) else None


def list_session_ids(project_root: str | Path) -> list[str]:
    directory = fs_paths.sessions_dir(project_root)
    if not directory.is_dir():
        return []
    return sorted(path.stem for path in directory.glob("*.json"))


def copy_transcript(source: str | Path, project_root: str | Path, session_id: str) -> Path | None:
    source_path = Path(source).expanduser()
    if not source_path.is_file():
        return None
    target = fs_paths.ensure_path(fs_paths.session_transcript_path(project_root, session_id))
    if source_path.resolve() == target.resolve():
        return target
    shutil.copyfile(source_path, target)
    return target


def retained_transcript(project_root: str | Path, session_id: str) -> Path | None:
    path = fs_paths.session_transcript_path(project_root, session_id)
    return path if path.is_file() else None


def delete_session_files(project_root: str | Path, session_id: str) -> None:
    fs_paths.session_record_path(project_root, session_id).unlink(missing_ok=True)
    fs_paths.session_transcript_path(project_root, session_id).unlink(missing_ok=True)


def select_sessions_to_prune(
    index: ProjectIndex, limit: int, keep: Iterable[str] = ()
) -> list[str]:
    """Ids of the earliest captured sessions beyond ``limit``.

    ``index.sessions`` is kept in capture order. Sessions named in ``keep``
    are never selected, so a session being written cannot prune itself.
    """

    if limit <= 0 or len(index.sessions) <= limit:
        return []
    protected = set(keep)
    candidates = [session.id for session in index.sessions if session.id not in protected]
    return candidates[: len(index.sessions) - limit]


def storage_size(project_root: str | Path) -> dict[str, int]:
    index_size = fs_paths.file_size(fs_paths.index_path(project_root))
    embeddings_size = fs_paths.file_size(fs_paths.embeddings_db_path(project_root))
    sessions_size = 0
    for session_id in list_session_ids(project_root):
        sessions_size += fs_paths.file_size(fs_paths.session_record_path(project_root, session_id))
        sessions_size += fs_paths.file_size(
            fs_paths.session_transcript_path(project_root, session_id)
        )
    return {
        "index": index_size,
        "sessions": sessions_size,
        "embeddings": embeddings_size,
        "total": index_size + sessions_size + embeddings_size,
    }
