from __future__ import annotations

from ._store import VectorStore
from .types import VectorHit
from .utils import cosine_similarity

__all__ = ["VectorHit", "VectorStore", "cosine_similarity"]
