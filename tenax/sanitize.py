from __future__ import annotations

import re

SYSTEM_BLOCK_PATTERNS = [
    re.compile(r"<system-reminder>.*?</system-reminder>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<function_results>.*?</function_results>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<command-[a-z-]+>.*?</command-[a-z-]+>", re.DOTALL | re.IGNORECASE),
]
SYSTEM_MESSAGE_PATTERNS = [
    re.compile(r"</?system-reminder>", re.IGNORECASE),
    re.compile(r"CRITICAL:.*READ-ONLY", re.IGNORECASE),
    re.compile(r"\[Omitted long matching line\]", re.IGNORECASE),
    re.compile(r"^\s*\d+→", re.MULTILINE),
]
FENCED_CODE_RE = re.compile(r"```.*?(?:```|\Z)", re.DOTALL)
INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")

DOCUMENTATION_PATTERNS = [
    re.compile(r"marker\s+(about|was|for|is|are|isn't|weren't|that)", re.IGNORECASE),
    re.compile(r"\b(the|earlier|no(\s+new)?)\s+\[(DECISION|PATTERN|TASK|INSIGHT)\b", re.IGNORECASE),
    re.compile(r"\[/?(DECISION|PATTERN|TASK|INSIGHT)[:\s]*\]", re.IGNORECASE),
    re.compile(r"\[[DPTI]\]", re.IGNORECASE),
    re.compile(r"^\s*\.\.\.|\.\.\.\s*$"),
    re.compile(r"\b(example|template):", re.IGNORECASE),
    re.compile(r"e\.g\.,?\s*\[", re.IGNORECASE),
    re.compile(r"for instance.*\[", re.IGNORECASE),
    re.compile(r"extract(or|ion)?\s+(captured|grabbed|found|matched|picked)", re.IGNORECASE),
    re.compile(r"was(n't)?\s+(captured|extracted|marked)", re.IGNORECASE),
]

TOPIC_KEYWORDS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(architecture|structure|organization|layout)\b", re.I), "architecture"),
    (re.compile(r"\b(state\s*management|redux|zustand|context|store)\b", re.I), "state-management"),
    (
        re.compile(r"\b(database|db|postgres|mysql|mongo|prisma|drizzle|sqlite)\b", re.I),
        "database",
    ),
    (re.compile(r"\b(api|rest|graphql|endpoint|route)\b", re.I), "api"),
    (re.compile(r"\b(auth|authentication|login|jwt|oauth|session)\b", re.I), "authentication"),
    (re.compile(r"\b(test|tests|testing|pytest|jest|vitest|cypress)\b", re.I), "testing"),
    (re.compile(r"\b(style|css|tailwind|scss|styled)\b", re.I), "styling"),
    (re.compile(r"\b(deploy|deployment|hosting|vercel|aws|docker)\b", re.I), "deployment"),
    (re.compile(r"\b(lint|format|eslint|prettier|ruff|biome)\b", re.I), "code-quality"),
    (re.compile(r"\b(type|types|typescript|interface|schema|zod|mypy)\b", re.I), "typing"),
    (re.compile(r"\b(component|react|vue|angular|svelte)\b", re.I), "components"),
    (re.compile(r"\b(package|dependency|library|npm|pip|uv)\b", re.I), "dependencies"),
    (re.compile(r"\b(error|exception|handling|validation)\b", re.I), "error-handling"),
    (re.compile(r"\b(cache|caching|memoization)\b", re.I), "caching"),
    (re.compile(r"\b(file|folder|directory|naming)\b", re.I), "file-organization"),
]
DEFAULT_TOPIC = "general"

_PATTERN_NAME_SKIP_WORDS = {"the", "a", "an", "to", "for", "with", "use", "we", "i", "will", "should"}


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def normalize_body(text: str) -> str:
    """Trim and collapse each line, dropping blank ones, but keep line breaks."""

    lines = (collapse_whitespace(line) for line in (text or "").splitlines())
    return "\n".join(line for line in lines if line)


def is_system_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in SYSTEM_MESSAGE_PATTERNS)


def _unwrap_inline_code(match: re.Match[str]) -> str:
    # Inline code that carries a bracket is usually a quoted marker literal.
    code = match.group(1)
    return "" if "[" in code else code


def clean_segment(text: str) -> str:
    cleaned = text or ""
    for pattern in SYSTEM_BLOCK_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = FENCED_CODE_RE.sub("", cleaned)
    cleaned = INLINE_CODE_RE.sub(_unwrap_inline_code, cleaned)
    if is_system_content(cleaned):
        return ""
    return cleaned.strip()


def looks_like_documentation(text: str) -> bool:
    return any(pattern.search(text) for pattern in DOCUMENTATION_PATTERNS)


def detect_topic(text: str) -> str:
    for pattern, topic in TOPIC_KEYWORDS:
        if pattern.search(text):
            return topic
    return DEFAULT_TOPIC


def generate_pattern_name(description: str) -> str:
    words = []
    for raw in description.split():
        word = re.sub(r"[^a-zA-Z]", "", raw).lower()
        if len(word) > 2 and word not in _PATTERN_NAME_SKIP_WORDS:
            words.append(word)
        if len(words) == 4:
            break
    return "-".join(words)[:50] or "pattern"


def split_labelled(text: str, labels: tuple[str, ...]) -> tuple[str, str]:
    """Split ``text`` at the first ``Label:`` marker, returning (head, tail)."""

    alternatives = "|".join(re.escape(label) for label in labels)
    match = re.search(rf"(?:^|(?<=[\s.;,]))(?:{alternatives})\s*:\s*", text, re.IGNORECASE)
    if not match:
        return text, ""
    head = text[: match.start()].rstrip(" \t\n.;,-")
    tail = text[match.end() :]
    return head, collapse_whitespace(tail)
