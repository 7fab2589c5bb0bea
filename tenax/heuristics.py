"""Best-effort extraction for transcripts that carry no markers.

This path is approximate by nature: it works sentence by sentence from cue
phrases and will both miss items and pick up noise. Everything it produces
is tagged ``heuristic`` and decisions carry a low confidence.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from .models import Decision, Insight, KnowledgeBatch, Task
from .sanitize import collapse_whitespace, detect_topic

HEURISTIC_TAG = "heuristic"
HEURISTIC_CONFIDENCE = 0.4
MAX_ITEMS_PER_KIND = 5
MIN_SENTENCE_CHARS = 12
MAX_SENTENCE_CHARS = 300
MAX_TITLE_CHARS = 100

SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")
DECISION_CUES = re.compile(
    r"\b(decided to|we will use|we'll use|chose|going with|opted for|settled on)\b",
    re.IGNORECASE,
)
INSIGHT_CUES = re.compile(
    r"\b(turns out|discovered|found that|root cause|the issue was|realized|learned that|note that)\b",
    re.IGNORECASE,
)
TODO_PREFIX_RE = re.compile(r"^(?:TODO|FIXME|follow[- ]up)\b\s*[:\-]?\s*", re.IGNORECASE)
TASK_CUES = re.compile(
    r"^(?:we\s+)?(?:still\s+)?(?:need to|needs to|should|must|remember to)\s+\w+",
    re.IGNORECASE,
)
IMPERATIVE_RE = re.compile(
    r"^(?:please\s+)?(add|fix|implement|update|write|remove|refactor|create|migrate|document)\s+\w+",
    re.IGNORECASE,
)


def split_sentences(text: str) -> list[str]:
    sentences: list[str] = []
    for raw in SENTENCE_SPLIT_RE.split(text or ""):
        sentence = collapse_whitespace(raw.lstrip("-*> \t"))
        if MIN_SENTENCE_CHARS <= len(sentence) <= MAX_SENTENCE_CHARS:
            sentences.append(sentence)
    return sentences


def _task_title(sentence: str) -> str | None:
    stripped = TODO_PREFIX_RE.sub("", sentence)
    if stripped != sentence:
        return stripped.rstrip(".!") or None
    if TASK_CUES.match(sentence) or IMPERATIVE_RE.match(sentence):
        return sentence.rstrip(".!")
    return None


class HeuristicExtractor:
    name = "heuristic"

    def __init__(self, max_per_kind: int = MAX_ITEMS_PER_KIND) -> None:
        self.max_per_kind = max_per_kind

    def extract(self, segments: Sequence[str], session_id: str) -> KnowledgeBatch:
        batch = KnowledgeBatch()
        seen: set[str] = set()
        for segment in segments:
            for sentence in split_sentences(segment):
                key = sentence.casefold()
                if key in seen:
                    continue
                seen.add(key)
                self._classify(sentence, session_id, batch)
        return batch

    def _classify(self, sentence: str, session_id: str, batch: KnowledgeBatch) -> None:
        if DECISION_CUES.search(sentence):
            if len(batch.decisions) < self.max_per_kind:
                batch.decisions.append(
                    Decision(
                        topic=detect_topic(sentence),
                        decision=sentence,
                        session_id=session_id,
                        confidence=HEURISTIC_CONFIDENCE,
                        tags=[HEURISTIC_TAG],
                    )
                )
            return
        if INSIGHT_CUES.search(sentence):
            if len(batch.insights) < self.max_per_kind:
                batch.insights.append(
                    Insight(content=sentence, session_id=session_id, tags=[HEURISTIC_TAG])
                )
            return
        title = _task_title(sentence)
        if title and len(batch.tasks) < self.max_per_kind:
            batch.tasks.append(
                Task(
                    title=title[:MAX_TITLE_CHARS],
                    description=sentence if len(sentence) > MAX_TITLE_CHARS else "",
                    session_created=session_id,
                    tags=[HEURISTIC_TAG],
                )
            )
