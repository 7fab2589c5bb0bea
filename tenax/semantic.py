from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Iterable, Sequence
from typing import Protocol

from .config import DEFAULT_EMBEDDING_MODEL
from .errors import ConsistencyError, EmbeddingUnavailableError
from .models import Decision, Insight, KnowledgeItem, Pattern, SessionMetadata, Task

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 8000


class EmbeddingClient(Protocol):
    model: str

    def embed(self, texts: Iterable[str]) -> list[list[float]]: ...


class _FastEmbedClient:
    def __init__(self, model: str, batch_size: int = 32) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise EmbeddingUnavailableError("fastembed is required for embeddings") from exc
        self.model = model
        self.batch_size = batch_size
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        embeddings = self._embedder.embed(list(texts), batch_size=self.batch_size)
        return [[float(value) for value in vec] for vec in embeddings]


_CLIENT: EmbeddingClient | None = None


def get_embedding_client(model: str | None = None, batch_size: int = 32) -> EmbeddingClient:
    """Return the process-wide embedding client, loading the model on first use."""

    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    model_name = model or os.getenv("TENAX_EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL
    try:
        _CLIENT = _FastEmbedClient(model=model_name, batch_size=batch_size)
    except EmbeddingUnavailableError:
        raise
    except Exception as exc:
        logger.warning("failed to load embedding model %s", model_name, exc_info=exc)
        raise EmbeddingUnavailableError(
            f"could not load embedding model {model_name!r}: {exc}"
        ) from exc
    return _CLIENT


def set_embedding_client(client: EmbeddingClient | None) -> None:
    global _CLIENT
    _CLIENT = client


def reset_embedding_client() -> None:
    set_embedding_client(None)


def _prepare(texts: Iterable[str]) -> list[str]:
    return [(text or "")[:MAX_EMBED_CHARS] for text in texts]


def embed_texts(texts: Sequence[str], client: EmbeddingClient | None = None) -> list[list[float]]:
    prepared = _prepare(texts)
    if not prepared:
        return []
    active = client or get_embedding_client()
    vectors = active.embed(prepared)
    if len(vectors) != len(prepared):
        raise ConsistencyError(
            f"embedding client returned {len(vectors)} vectors for {len(prepared)} texts"
        )
    return [list(vector) for vector in vectors]


def embed_text(text: str, client: EmbeddingClient | None = None) -> list[float]:
    return embed_texts([text], client=client)[0]


def decision_text(item: Decision) -> str:
    text = f"{item.topic}: {item.decision}"
    if item.rationale:
        text += f". Rationale: {item.rationale}"
    return text


def pattern_text(item: Pattern) -> str:
    text = f"{item.name}: {item.description}"
    if item.usage:
        text += f". Usage: {item.usage}"
    return text


def task_text(item: Task) -> str:
    if item.description:
        return f"{item.title}: {item.description}"
    return item.title


def insight_text(item: Insight) -> str:
    if item.context:
        return f"{item.content} (Context: {item.context})"
    return item.content


def canonical_text(item: KnowledgeItem) -> str:
    """Text fed to the embedder for an item; used for both insert and comparison."""

    if isinstance(item, Decision):
        return decision_text(item)
    if isinstance(item, Pattern):
        return pattern_text(item)
    if isinstance(item, Task):
        return task_text(item)
    return insight_text(item)


def session_text(metadata: SessionMetadata) -> str:
    topics = ", ".join(metadata.key_topics)
    return f"{metadata.summary.rstrip('.')}. Topics: {topics}" if topics else metadata.summary


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
