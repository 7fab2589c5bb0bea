from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

MEMORY_DIRNAME = Path(".claude") / "tenax"
INDEX_FILENAME = "index.json"
EMBEDDINGS_FILENAME = "embeddings.db"
CONFIG_FILENAME = "config.json"


def ensure_path(path: str | Path) -> Path:
    resolved = Path(path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def resolve_project_root(override: str | Path | None = None) -> Path:
    if override is not None and str(override).strip():
        return Path(override).expanduser().resolve()
    for env_var in ("TENAX_PROJECT_ROOT", "CLAUDE_PROJECT_DIR"):
        value = os.getenv(env_var, "").strip()
        if value:
            return Path(value).expanduser().resolve()
    return Path.cwd().resolve()


def memory_dir(project_root: str | Path) -> Path:
    return Path(project_root) / MEMORY_DIRNAME


def index_path(project_root: str | Path) -> Path:
    return memory_dir(project_root) / INDEX_FILENAME


def index_lock_path(project_root: str | Path) -> Path:
    return memory_dir(project_root) / f"{INDEX_FILENAME}.lock"


def embeddings_db_path(project_root: str | Path) -> Path:
    return memory_dir(project_root) / EMBEDDINGS_FILENAME


def config_path(project_root: str | Path) -> Path:
    return memory_dir(project_root) / CONFIG_FILENAME


def sessions_dir(project_root: str | Path) -> Path:
    return memory_dir(project_root) / "sessions"


def session_record_path(project_root: str | Path, session_id: str) -> Path:
    return sessions_dir(project_root) / f"{session_id}.json"


def session_transcript_path(project_root: str | Path, session_id: str) -> Path:
    return sessions_dir(project_root) / f"{session_id}.jsonl"


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def atomic_write_text(path: Path, text: str) -> Path:
    """Write through a temp file in the same directory, then replace."""

    target = ensure_path(path)
    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_path, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise
    return target
