import sqlite3
from pathlib import Path

import pytest

from tenax.errors import DimensionMismatchError, StoreClosedError
from tenax.models import EmbeddingEntry
from tenax.store import VectorStore, cosine_similarity


def _entry(item_id: str, kind: str = "decision", created_at: str = "2026-01-01T00:00:00+00:00"):
    return EmbeddingEntry(
        id=item_id,
        type=kind,
        text=f"text for {item_id}",
        session_id="001",
        created_at=created_at,
        content_hash=f"hash-{item_id}",
    )


@pytest.fixture
def store(tmp_path: Path):
    with VectorStore(tmp_path / "embeddings.db", model="fake") as vector_store:
        yield vector_store


def test_cosine_similarity_basics() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_query_equal_to_stored_vector_scores_one(store: VectorStore) -> None:
    target = [0.1, 0.7, 0.2, 0.4]
    store.insert_batch(
        [
            (_entry("a"), [0.9, 0.1, 0.0, 0.2]),
            (_entry("b"), target),
            (_entry("c"), [0.0, 0.0, 1.0, 0.0]),
        ]
    )

    hits = store.search(target, k=3)

    assert hits[0].id == "b"
    assert hits[0].score == pytest.approx(1.0, abs=1e-6)
    assert [hit.score for hit in hits] == sorted((hit.score for hit in hits), reverse=True)


def test_ties_go_to_most_recent(store: VectorStore) -> None:
    store.insert(_entry("old", created_at="2026-01-01T00:00:00+00:00"), [1.0, 0.0])
    store.insert(_entry("new", created_at="2026-02-01T00:00:00+00:00"), [2.0, 0.0])

    hits = store.search([1.0, 0.0], k=2)

    assert [hit.id for hit in hits] == ["new", "old"]


def test_k_edge_cases(store: VectorStore) -> None:
    store.insert_batch([(_entry("a"), [1.0, 0.0]), (_entry("b"), [0.0, 1.0])])

    assert store.search([1.0, 0.0], k=0) == []
    assert store.search([1.0, 0.0], k=-1) == []
    assert len(store.search([1.0, 0.0], k=10)) == 2


def test_search_empty_store(store: VectorStore) -> None:
    assert store.search([1.0, 0.0], k=5) == []


def test_type_filter_applies_before_ranking(store: VectorStore) -> None:
    store.insert_batch(
        [
            (_entry("d", kind="decision"), [1.0, 0.0]),
            (_entry("t", kind="task"), [0.9, 0.1]),
            (_entry("i", kind="insight"), [0.0, 1.0]),
        ]
    )

    assert [hit.id for hit in store.search([1.0, 0.0], k=1, type_filter="task")] == ["t"]
    assert [hit.id for hit in store.search([1.0, 0.0], k=5, type_filter=["insights"])] == ["i"]
    with pytest.raises(ValueError):
        store.search([1.0, 0.0], k=1, type_filter="note")


def test_insert_upserts_by_id(store: VectorStore) -> None:
    store.insert(_entry("a"), [1.0, 0.0])
    store.insert(_entry("a"), [0.0, 1.0])

    assert store.count() == 1
    assert store.get_vector("a") == pytest.approx([0.0, 1.0])


def test_dimension_mismatch_is_rejected(store: VectorStore) -> None:
    store.insert(_entry("a"), [1.0, 0.0])

    with pytest.raises(DimensionMismatchError):
        store.insert(_entry("b"), [1.0, 0.0, 0.0])
    with pytest.raises(DimensionMismatchError):
        store.search([1.0, 0.0, 0.0], k=1)
    assert store.dimension == 2


def test_batch_is_all_or_nothing_on_bad_row(store: VectorStore) -> None:
    store.insert(_entry("existing"), [1.0, 0.0])

    with pytest.raises(DimensionMismatchError):
        store.insert_batch(
            [
                (_entry("a"), [1.0, 0.0]),
                (_entry("b"), [0.0, 1.0, 0.0]),
                (_entry("c"), [0.0, 1.0]),
            ]
        )

    assert store.count() == 1
    assert not store.exists("a")


def test_batch_rolls_back_on_fault_mid_batch(
    store: VectorStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    original = VectorStore._upsert
    calls = {"n": 0}

    def flaky_upsert(self, entry, vector):
        calls["n"] += 1
        if calls["n"] == 2:
            raise sqlite3.OperationalError("disk I/O error")
        return original(self, entry, vector)

    monkeypatch.setattr(VectorStore, "_upsert", flaky_upsert)

    with pytest.raises(sqlite3.OperationalError):
        store.insert_batch([(_entry("a"), [1.0, 0.0]), (_entry("b"), [0.0, 1.0])])

    assert store.count() == 0
    assert store.dimension is None


def test_delete_and_counts(store: VectorStore) -> None:
    store.insert_batch(
        [
            (_entry("a", kind="decision"), [1.0, 0.0]),
            (_entry("b", kind="task"), [0.0, 1.0]),
            (_entry("c", kind="task"), [1.0, 1.0]),
        ]
    )

    assert store.count_by_type() == {"decision": 1, "task": 2}
    assert store.delete(["a", "missing", "a"]) == 1
    assert not store.exists("a")
    assert store.delete([]) == 0
    assert store.ids() == ["b", "c"]
    assert store.content_hash("b") == "hash-b"
    assert store.content_hash("missing") is None


def test_vectors_persist_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "embeddings.db"
    with VectorStore(path) as first:
        first.insert(_entry("a"), [0.25, 0.5])

    with VectorStore(path) as second:
        assert second.exists("a")
        assert second.get_vector("a") == pytest.approx([0.25, 0.5])
        assert second.get_vector("missing") is None


def test_closed_store_rejects_calls(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "embeddings.db")
    store.close()
    store.close()

    assert store.closed
    with pytest.raises(StoreClosedError, match="store closed"):
        store.count()
    with pytest.raises(StoreClosedError):
        store.search([1.0], k=1)
    with pytest.raises(StoreClosedError):
        store.insert(_entry("a"), [1.0])


@pytest.mark.skipif(
    not hasattr(sqlite3.Connection, "enable_load_extension"),
    reason="sqlite3 build cannot load extensions",
)
def test_approximate_search_agrees_with_exact(store: VectorStore) -> None:
    store.insert_batch(
        [
            (_entry("a"), [1.0, 0.0, 0.0]),
            (_entry("b"), [0.8, 0.6, 0.0]),
            (_entry("c"), [0.0, 0.0, 1.0]),
        ]
    )

    approximate = store.search([1.0, 0.1, 0.0], k=2, approximate=True)
    exact = store.search([1.0, 0.1, 0.0], k=2)

    assert [hit.id for hit in approximate] == [hit.id for hit in exact]
    for left, right in zip(approximate, exact, strict=True):
        assert left.score == pytest.approx(right.score, abs=1e-5)
