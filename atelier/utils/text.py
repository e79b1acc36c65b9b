"""
Text Helpers
============

Small pure functions for shortening text and handling <file> blocks.
"""

import re

ELISION_MARKER = "\n... (truncated)\n"

FILE_OPEN_TAG = "<file>"
FILE_CLOSE_TAG = "</file>"
_FILE_BLOCK_RE = re.compile(r"<file>([\s\S]*?)</file>")


def compact_text(text: str | None, max_chars: int) -> str:
    """
    Shorten text to at most max_chars characters.

    Keeps the first 60% of the budget and the end of the text, with an
    elision marker between them, so both the opening and the most recent
    part survive.
    """
    t = text or ""
    if len(t) <= max_chars:
        return t
    if max_chars <= len(ELISION_MARKER):
        return t[:max(0, max_chars)]

    budget = max_chars - len(ELISION_MARKER)
    head = int(budget * 0.6)
    tail = budget - head
    return t[:head] + ELISION_MARKER + (t[len(t) - tail:] if tail else "")


def strip_file_blocks(text: str | None) -> str:
    """Remove <file>...</file> payloads (whole-file dumps are useless in summaries)."""
    return _FILE_BLOCK_RE.sub("", text or "")


def extract_file_block(text: str | None) -> str | None:
    """Content of the first <file>...</file> block, or None."""
    match = _FILE_BLOCK_RE.search(text or "")
    return match.group(1) if match else None
