"""Marker grammar for explicit knowledge capture.

Each supported syntax is a ``MarkerSyntax`` record: a line-anchored head
pattern plus the mapping from tag keyword to knowledge kind. The scanner is
shared, so supporting another syntax means adding a record to
``MARKER_SYNTAXES``.

Body rules, common to every syntax:

* a head followed by text on the same line is single-line, unless a closing
  ``[/]`` line appears before the next blank line;
* a head with nothing after it takes the following lines up to a closing
  ``[/]`` line, or up to the next blank line when no closing line exists;
* the next head of any known syntax always ends a body, so verbose and
  compact markers can be mixed freely.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

CLOSING_RE = re.compile(r"^[ \t]*\[/\][ \t]*$", re.MULTILINE)
BLANK_LINE_RE = re.compile(r"\n[ \t]*(?:\n|$)")
INLINE_LABEL_RE = re.compile(r"^\s*(?P<label>[^:\n]{1,60}?)\s*:(?:\s+(?P<text>\S.*))?\s*$")


@dataclass(frozen=True)
class MarkerSyntax:
    name: str
    head: re.Pattern[str]
    kinds: Mapping[str, str]
    # Kinds whose label is written inline as "label: text" instead of inside the tag.
    inline_label_kinds: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class MarkerMatch:
    kind: str
    label: str
    body: str
    start: int
    end: int
    syntax: str


VERBOSE_SYNTAX = MarkerSyntax(
    name="verbose",
    head=re.compile(
        r"^[ \t]*(?:[-*][ \t]+)?"
        r"\[(?P<tag>DECISION|PATTERN|TASK|INSIGHT)(?:[ \t]*:[ \t]*(?P<label>[^\]\n]*))?\]"
        r"(?P<rest>[^\n]*)$",
        re.IGNORECASE | re.MULTILINE,
    ),
    kinds={"DECISION": "decision", "PATTERN": "pattern", "TASK": "task", "INSIGHT": "insight"},
)

COMPACT_SYNTAX = MarkerSyntax(
    name="compact",
    head=re.compile(
        r"^[ \t]*(?:[-*][ \t]+)?\[(?P<tag>[DPTI])\](?P<rest>[^\n]*)$",
        re.IGNORECASE | re.MULTILINE,
    ),
    kinds={"D": "decision", "P": "pattern", "T": "task", "I": "insight"},
    inline_label_kinds=frozenset({"decision", "pattern"}),
)

MARKER_SYNTAXES: tuple[MarkerSyntax, ...] = (VERBOSE_SYNTAX, COMPACT_SYNTAX)


def _read_body(text: str, first_line: str, start: int, boundary: int) -> tuple[str, int]:
    region = text[start:boundary]
    closing = CLOSING_RE.search(region)
    blank = BLANK_LINE_RE.search(region)
    if first_line.strip():
        if closing and (blank is None or closing.start() < blank.start()):
            return first_line + region[: closing.start()], start + closing.end()
        return first_line, start
    if closing:
        return region[: closing.start()], start + closing.end()
    if blank:
        return region[: blank.start()], start + blank.start()
    return region, boundary


def _split_inline_label(rest: str) -> tuple[str, str] | None:
    match = INLINE_LABEL_RE.match(rest)
    if not match:
        return None
    return match.group("label").strip(), match.group("text") or ""


def _head_starts(text: str, syntaxes: Iterable[MarkerSyntax]) -> list[int]:
    return sorted({head.start() for syntax in syntaxes for head in syntax.head.finditer(text)})


def scan_syntax(
    text: str, syntax: MarkerSyntax, boundaries: Iterable[MarkerSyntax] = MARKER_SYNTAXES
) -> list[MarkerMatch]:
    heads = list(syntax.head.finditer(text))
    starts = _head_starts(text, [syntax, *boundaries])
    matches: list[MarkerMatch] = []
    consumed_to = 0
    for head in heads:
        if head.start() < consumed_to:
            continue
        following = bisect_right(starts, head.start())
        boundary = starts[following] if following < len(starts) else len(text)
        kind = syntax.kinds[head.group("tag").upper()]
        label = (head.groupdict().get("label") or "").strip()
        first_line = head.group("rest")
        if kind in syntax.inline_label_kinds and not label:
            inline = _split_inline_label(first_line)
            if inline is not None:
                label, first_line = inline
        body, end = _read_body(text, first_line, head.end(), boundary)
        consumed_to = max(end, head.end())
        matches.append(
            MarkerMatch(
                kind=kind,
                label=label,
                body=body,
                start=head.start(),
                end=consumed_to,
                syntax=syntax.name,
            )
        )
    return matches


def extract_markers(
    text: str, syntaxes: Iterable[MarkerSyntax] = MARKER_SYNTAXES
) -> list[MarkerMatch]:
    """Run every syntax as an independent pass and merge in document order."""

    ordered = list(syntaxes)
    matches: list[tuple[int, int, MarkerMatch]] = []
    for rank, syntax in enumerate(ordered):
        for match in scan_syntax(text, syntax, ordered):
            matches.append((match.start, rank, match))
    matches.sort(key=lambda item: (item[0], item[1]))
    return [match for _, _, match in matches]


def has_markers(text: str, syntaxes: Iterable[MarkerSyntax] = MARKER_SYNTAXES) -> bool:
    return any(syntax.head.search(text) for syntax in syntaxes)
