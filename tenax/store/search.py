from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import numpy as np

from ..errors import DimensionMismatchError
from ..models import validate_kind
from .types import VectorHit
from .utils import as_vector, cosine_scores, decode_vector, encode_vector, recency_key

if TYPE_CHECKING:
    from ._store import VectorStore


def normalize_type_filter(type_filter: str | Iterable[str] | None) -> list[str] | None:
    if type_filter is None:
        return None
    values = [type_filter] if isinstance(type_filter, str) else list(type_filter)
    kinds: list[str] = []
    for value in values:
        kind = validate_kind(value)
        if kind not in kinds:
            kinds.append(kind)
    return kinds or None


def _type_clause(kinds: list[str] | None) -> tuple[str, list[Any]]:
    if not kinds:
        return "", []
    placeholders = ",".join("?" for _ in kinds)
    return f"WHERE type IN ({placeholders})", list(kinds)


def _check_query(store: VectorStore, query_vector: Any) -> np.ndarray:
    query = as_vector(query_vector)
    dim = store.dimension
    if dim is not None and dim != query.size:
        raise DimensionMismatchError(dim, query.size)
    return query


def exact_search(
    store: VectorStore,
    query_vector: Any,
    k: int,
    type_filter: str | Iterable[str] | None = None,
) -> list[VectorHit]:
    """Brute-force cosine scan over every candidate row.

    Scores are computed in double precision, so a query equal to a stored
    vector scores 1.0. Ties go to the most recently created row.
    """

    query = _check_query(store, query_vector)
    if k <= 0:
        return []
    where, params = _type_clause(normalize_type_filter(type_filter))
    rows = store.conn.execute(
        f"""
        SELECT id, type, text, session_id, dim, embedding, created_at
        FROM embeddings
        {where}
        """,
        params,
    ).fetchall()
    if not rows:
        return []
    for row in rows:
        if int(row["dim"]) != query.size:
            raise DimensionMismatchError(query.size, int(row["dim"]))
    matrix = np.vstack([decode_vector(row["embedding"]) for row in rows])
    scores = cosine_scores(matrix, query)
    hits = [
        VectorHit(
            id=row["id"],
            type=row["type"],
            score=float(score),
            text=row["text"],
            session_id=row["session_id"],
            created_at=row["created_at"],
        )
        for row, score in zip(rows, scores, strict=True)
    ]
    hits.sort(key=lambda hit: (hit.score, recency_key(hit.created_at)), reverse=True)
    return hits[:k]


def approximate_search(
    store: VectorStore,
    query_vector: Any,
    k: int,
    type_filter: str | Iterable[str] | None = None,
) -> list[VectorHit]:
    """Rank inside SQLite with sqlite-vec.

    Distances are computed in float32, so scores can differ from the exact
    scan in the last few digits and near-ties may reorder.
    """

    query = _check_query(store, query_vector)
    if k <= 0:
        return []
    store.ensure_vec_loaded()
    where, params = _type_clause(normalize_type_filter(type_filter))
    rows = store.conn.execute(
        f"""
        SELECT id, type, text, session_id, created_at,
               vec_distance_cosine(embedding, ?) AS distance
        FROM embeddings
        {where}
        ORDER BY distance ASC, created_at DESC
        LIMIT ?
        """,
        [encode_vector(query), *params, k],
    ).fetchall()
    return [
        VectorHit(
            id=row["id"],
            type=row["type"],
            score=1.0 - float(row["distance"]),
            text=row["text"],
            session_id=row["session_id"],
            created_at=row["created_at"],
        )
        for row in rows
    ]
