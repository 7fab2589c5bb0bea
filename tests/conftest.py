from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable
from pathlib import Path

import pytest

from tenax.config import CONFIG_ENV_OVERRIDES
from tenax.semantic import reset_embedding_client, set_embedding_client

TOKEN_RE = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Bag-of-words embedder: every distinct token gets its own dimension."""

    model = "fake-bow"

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim
        self.vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []

    def _slot(self, token: str) -> int:
        if token not in self.vocabulary:
            self.vocabulary[token] = len(self.vocabulary) % self.dim
        return self.vocabulary[token]

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.dim
        tokens = TOKEN_RE.findall(text.lower())
        if not tokens:
            values[0] = 1.0
        for token in tokens:
            values[self._slot(token)] += 1.0
        norm = math.sqrt(sum(value * value for value in values))
        return [value / norm for value in values]

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        batch = list(texts)
        self.calls.append(batch)
        return [self.vector(text) for text in batch]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("TENAX_CONFIG", raising=False)
    monkeypatch.delenv("CLAUDE_PROJECT_DIR", raising=False)
    for env_var in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("TENAX_PROJECT_ROOT", str(tmp_path / "project"))


@pytest.fixture(autouse=True)
def embedder() -> Iterable[FakeEmbedder]:
    client = FakeEmbedder()
    set_embedding_client(client)
    yield client
    reset_embedding_client()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


def write_transcript(path: Path, records: list[dict]) -> Path:
    path.write_text("\n".join(json.dumps(record) for record in records) + "\n")
    return path


@pytest.fixture
def make_transcript(tmp_path: Path):
    def _make(*messages: tuple[str, str], name: str = "conversation-1") -> Path:
        records = [
            {
                "type": role,
                "message": {"role": role, "content": text},
                "timestamp": f"2026-01-01T00:00:{position:02d}Z",
            }
            for position, (role, text) in enumerate(messages)
        ]
        return write_transcript(tmp_path / f"{name}.jsonl", records)

    return _make
