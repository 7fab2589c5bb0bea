from __future__ import annotations

import datetime as dt
from collections.abc import Sequence

import numpy as np
import sqlite_vec

from ..errors import DimensionMismatchError


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64).ravel()
    if vector.size == 0:
        raise ValueError("vector must not be empty")
    return vector


def encode_vector(vector: np.ndarray) -> bytes:
    return sqlite_vec.serialize_float32(vector.astype(np.float32).tolist())


def decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).astype(np.float64)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """dot(a, b) / (|a| |b|), or 0.0 when either vector has zero norm."""

    left = np.asarray(a, dtype=np.float64).ravel()
    right = np.asarray(b, dtype=np.float64).ravel()
    if left.size != right.size:
        raise DimensionMismatchError(left.size, right.size)
    norm = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)


def cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    if matrix.shape[1] != query.size:
        raise DimensionMismatchError(matrix.shape[1], query.size)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.zeros(len(matrix), dtype=np.float64)
    np.divide(dots, norms, out=scores, where=norms > 0)
    return scores


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def recency_key(created_at: str | None) -> float:
    parsed = parse_iso8601(created_at or "")
    return parsed.timestamp() if parsed else 0.0
