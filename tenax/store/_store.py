from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from .. import db
from ..errors import DimensionMismatchError, StoreClosedError
from ..models import EmbeddingEntry, now_iso
from . import search as store_search
from .types import VectorHit
from .utils import as_vector, decode_vector, encode_vector

logger = logging.getLogger(__name__)

DELETE_CHUNK_SIZE = 500


class VectorStore:
    """On-disk vectors keyed by item id, with the metadata needed for hydration."""

    def __init__(self, db_path: Path | str, *, model: str | None = None) -> None:
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path)
        db.initialize_schema(self.conn)
        self.model = model
        self._closed = False
        self._vec_loaded = False

    def __enter__(self) -> VectorStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise StoreClosedError()

    def ensure_vec_loaded(self) -> None:
        self._require_open()
        if not self._vec_loaded:
            db.load_sqlite_vec(self.conn)
            self._vec_loaded = True

    @property
    def dimension(self) -> int | None:
        self._require_open()
        row = self.conn.execute("SELECT value FROM store_meta WHERE key = 'dim'").fetchone()
        return int(row["value"]) if row else None

    def _upsert(self, entry: EmbeddingEntry, vector: Sequence[float]) -> None:
        values = as_vector(vector)
        dim = self.dimension
        if dim is None:
            self.conn.execute(
                "INSERT INTO store_meta(key, value) VALUES ('dim', ?)", (str(values.size),)
            )
        elif dim != values.size:
            raise DimensionMismatchError(dim, values.size)
        self.conn.execute(
            """
            INSERT INTO embeddings(
                id, type, text, session_id, dim, embedding, content_hash, model, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                type = excluded.type,
                text = excluded.text,
                session_id = excluded.session_id,
                dim = excluded.dim,
                embedding = excluded.embedding,
                content_hash = excluded.content_hash,
                model = excluded.model,
                created_at = excluded.created_at
            """,
            (
                entry.id,
                entry.type,
                entry.text,
                entry.session_id,
                values.size,
                encode_vector(values),
                entry.content_hash,
                self.model,
                entry.created_at or now_iso(),
            ),
        )

    def insert(self, entry: EmbeddingEntry, vector: Sequence[float]) -> None:
        self.insert_batch([(entry, vector)])

    def insert_batch(self, items: Iterable[tuple[EmbeddingEntry, Sequence[float]]]) -> int:
        """Upsert every row in one transaction; nothing is kept if any row fails."""

        self._require_open()
        rows = list(items)
        if not rows:
            return 0
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            for entry, vector in rows:
                self._upsert(entry, vector)
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")
        logger.debug("stored %d vectors in %s", len(rows), self.db_path)
        return len(rows)

    def search(
        self,
        query_vector: Sequence[float],
        k: int,
        type_filter: str | Iterable[str] | None = None,
        *,
        approximate: bool = False,
    ) -> list[VectorHit]:
        self._require_open()
        if approximate:
            return store_search.approximate_search(self, query_vector, k, type_filter)
        return store_search.exact_search(self, query_vector, k, type_filter)

    def delete(self, ids: Iterable[str]) -> int:
        self._require_open()
        unique = list(dict.fromkeys(str(item_id) for item_id in ids))
        if not unique:
            return 0
        deleted = 0
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            for start in range(0, len(unique), DELETE_CHUNK_SIZE):
                chunk = unique[start : start + DELETE_CHUNK_SIZE]
                placeholders = ",".join("?" for _ in chunk)
                cursor = self.conn.execute(
                    f"DELETE FROM embeddings WHERE id IN ({placeholders})", chunk
                )
                deleted += cursor.rowcount
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")
        return deleted

    def ids(self) -> list[str]:
        self._require_open()
        rows = self.conn.execute("SELECT id FROM embeddings ORDER BY id").fetchall()
        return [row["id"] for row in rows]

    def count(self) -> int:
        self._require_open()
        row = self.conn.execute("SELECT COUNT(*) AS total FROM embeddings").fetchone()
        return int(row["total"])

    def count_by_type(self) -> dict[str, int]:
        self._require_open()
        rows = self.conn.execute(
            "SELECT type, COUNT(*) AS total FROM embeddings GROUP BY type ORDER BY type"
        ).fetchall()
        return {row["type"]: int(row["total"]) for row in rows}

    def exists(self, item_id: str) -> bool:
        self._require_open()
        row = self.conn.execute("SELECT 1 FROM embeddings WHERE id = ?", (item_id,)).fetchone()
        return row is not None

    def get_vector(self, item_id: str) -> list[float] | None:
        self._require_open()
        row = self.conn.execute(
            "SELECT embedding FROM embeddings WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            return None
        return decode_vector(row["embedding"]).tolist()

    def content_hash(self, item_id: str) -> str | None:
        self._require_open()
        row = self.conn.execute(
            "SELECT content_hash FROM embeddings WHERE id = ?", (item_id,)
        ).fetchone()
        return row["content_hash"] if row else None

    def close(self) -> None:
        if self._closed:
            return
        self.conn.close()
        self._closed = True
