"""
Heuristic note format detection.

Categories overlap (a code snippet may also contain a URL), so the checks
run in a fixed order: code, markdown, task, link, then plain text.
"""

import re

from .types import NoteFormat

_CODE_KEYWORDS = ("function", "class", "var", "const", "let", "import")
_MARKDOWN_TOKENS = ("#", "**", "__", "```", "- ", "1. ")
_TASK_MARKERS = ("[ ]", "[x]")
_TASK_ITEM_RE = re.compile(r"^\s*-\s+(?:\[\s\]|\[x\])", re.MULTILINE)
_URL_RE = re.compile(r"https?://\S+")
_WWW_RE = re.compile(r"www\.\S+")


def _looks_like_code(text: str) -> bool:
    if any(keyword in text for keyword in _CODE_KEYWORDS):
        return True
    return "{" in text and "}" in text


def _looks_like_markdown(text: str) -> bool:
    return any(token in text for token in _MARKDOWN_TOKENS)


def _looks_like_task(text: str) -> bool:
    if any(marker in text for marker in _TASK_MARKERS):
        return True
    return bool(_TASK_ITEM_RE.search(text))


def _looks_like_link(text: str) -> bool:
    return bool(_URL_RE.search(text) or _WWW_RE.search(text))


_CHECKS = (
    (NoteFormat.CODE, _looks_like_code),
    (NoteFormat.MARKDOWN, _looks_like_markdown),
    (NoteFormat.TASK, _looks_like_task),
    (NoteFormat.LINK, _looks_like_link),
)


def detect_format(text: str) -> NoteFormat:
    """
    Classify note text.

    Total and deterministic: any string (including empty) maps to a format.
    """
    if not text or not text.strip():
        return NoteFormat.TEXT
    for fmt, check in _CHECKS:
        if check(text):
            return fmt
    return NoteFormat.TEXT
