from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class VectorHit:
    id: str
    type: str
    score: float
    text: str
    session_id: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "score": self.score,
            "text": self.text,
            "session_id": self.session_id,
            "created_at": self.created_at,
        }
