from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec


def sqlite_vec_version(conn: sqlite3.Connection) -> str | None:
    try:
        row = conn.execute("select vec_version()").fetchone()
    except sqlite3.Error:
        return None
    if not row or row[0] is None:
        return None
    return str(row[0])


def load_sqlite_vec(conn: sqlite3.Connection) -> None:
    try:
        conn.enable_load_extension(True)
    except AttributeError as exc:
        raise RuntimeError(
            "sqlite-vec requires a Python SQLite build that supports extension loading. "
            "Install a Python build with enable_load_extension and try again, "
            "or use exact search, which does not need the extension."
        ) from exc
    try:
        sqlite_vec.load(conn)
        if sqlite_vec_version(conn) is None:
            raise RuntimeError("sqlite-vec loaded but version check failed")
    except Exception as exc:  # pragma: no cover
        message = "Failed to load sqlite-vec extension. Approximate search requires sqlite-vec."
        if "ELFCLASS32" in str(exc):
            message = (
                "Failed to load sqlite-vec extension (ELFCLASS32). "
                "On Linux aarch64, PyPI may ship a 32-bit vec0.so; "
                "replace it with the 64-bit aarch64 loadable."
            )
        raise RuntimeError(message) from exc
    finally:
        try:
            conn.enable_load_extension(False)
        except AttributeError:
            pass


def connect(db_path: Path | str) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    # Transactions are opened explicitly by the store.
    conn = sqlite3.connect(path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS embeddings (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            text TEXT NOT NULL,
            session_id TEXT,
            dim INTEGER NOT NULL,
            embedding BLOB NOT NULL,
            content_hash TEXT,
            model TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_embeddings_type ON embeddings(type);
        CREATE INDEX IF NOT EXISTS idx_embeddings_session ON embeddings(session_id);

        CREATE TABLE IF NOT EXISTS store_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
        """
    )
