"""Chat title helpers."""

import re
from typing import Optional

FALLBACK_TITLE_LENGTH = 15  # raw characters used when no word survives cleanup
MAX_RENAME_LENGTH = 60
TITLE_WORD_COUNT = 3

_NON_WORD = re.compile(r"[^a-zA-Z0-9\s]")


def derive_title(text: Optional[str]) -> str:
    """
    Derive a short label for a new chat from its first message.

    Keeps the first three alphanumeric words, e.g.
    ``"Hello, world! This is great"`` -> ``"Hello world This"``.
    """
    if not text:
        return "Chat"

    words = _NON_WORD.sub("", text).split()
    title = " ".join(words[:TITLE_WORD_COUNT]) or text[:FALLBACK_TITLE_LENGTH]
    return title[:1].upper() + title[1:]


def clean_title(title: Optional[str], max_length: int = MAX_RENAME_LENGTH) -> Optional[str]:
    """Trim and bound a user-supplied title; None when nothing is left."""
    trimmed = (title or "").strip()
    if not trimmed:
        return None
    return trimmed[:max_length]
