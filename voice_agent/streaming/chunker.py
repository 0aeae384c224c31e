"""Split a streaming LLM token sequence into speakable chunks.

Waiting for the full response before synthesizing adds seconds of dead air,
so text is handed to TTS as soon as a natural boundary appears: a sentence
terminator, or a clause separator once enough words have piled up.

A boundary is only decided when the character *after* the punctuation is
whitespace.  That is what keeps ``3.14``, ``$10.50`` and ``5:30 PM`` in one
piece, and it means a trailing ``.`` stays undecided until the next token.
"""

from __future__ import annotations

import re

from voice_agent.config import settings

# Lowercase, without the trailing period
ABBREVIATIONS = frozenset({
    # Honorifics and titles
    "mr", "mrs", "ms", "dr", "prof", "sr", "jr",
    # Street and company
    "st", "rd", "ave", "blvd", "inc", "ltd", "co", "corp", "vs", "est", "dept", "apt", "no",
    # Units and Latin
    "approx", "sq", "ft", "km", "lb", "lbs", "oz", "min", "hrs", "e.g", "i.e",
    # Portuguese
    "sra", "srs", "sras", "dra", "drs", "dras", "profa", "eng", "sto", "sta", "dom", "dona",
    "av", "pç",
    # Singapore / Malaysia / Australia addresses
    "blk", "jln", "lor", "bt", "kg", "upp", "pte", "pl",
})

_SENTENCE_END = re.compile(r"[.!?]['\"”’]?(?=\s)")
_CLAUSE_END = re.compile(r"[,;:](?=\s)")
# Letters-only word (dots allowed inside, as in "e.g") right before a final "."
_WORD_BEFORE_PERIOD = re.compile(r"(?:^|[^\w.])([^\W\d_]+(?:\.[^\W\d_]+)*)\.$")


def is_abbreviation(text: str) -> bool:
    """True if ``text`` ends with a period that belongs to an abbreviation."""
    match = _WORD_BEFORE_PERIOD.search(text)
    if not match:
        return False
    return match.group(1).lower() in ABBREVIATIONS


class SmartTextChunker:
    """Accumulates tokens and releases chunks at natural speech boundaries."""

    def __init__(self, min_chunk_words: int | None = None) -> None:
        if min_chunk_words is None:
            min_chunk_words = settings.min_chunk_words
        self.min_chunk_words = min_chunk_words
        self._buffer = ""
        # Buffer offset before which every boundary candidate was rejected
        self._scanned = 0

    @property
    def buffer(self) -> str:
        return self._buffer

    def add_token(self, token: str) -> str | None:
        """Append a token; return the first chunk that became ready, if any.

        One token can complete more than one chunk; call ``next_chunk()``
        until it returns None to drain the rest.
        """
        self._buffer += token
        return self.next_chunk()

    def next_chunk(self) -> str | None:
        """Return the next ready chunk already in the buffer, if any."""
        end = self._find_boundary()
        if end is None:
            return None
        chunk = self._buffer[:end].strip()
        self._buffer = self._buffer[end:].lstrip()
        self._scanned = 0
        return chunk or None

    def flush(self) -> str | None:
        """Return whatever is left (trimmed) and empty the buffer."""
        remainder = self._buffer.strip()
        self.reset()
        return remainder or None

    def reset(self) -> None:
        self._buffer = ""
        self._scanned = 0

    def _find_boundary(self) -> int | None:
        """End index (exclusive) of the earliest boundary in the buffer.

        Rejected candidates stay rejected as the buffer grows, so scanning
        resumes near the previous end instead of at the start.
        """
        start = self._scanned
        candidates: list[tuple[int, bool]] = []
        for m in _SENTENCE_END.finditer(self._buffer, start):
            candidates.append((m.end(), True))
        for m in _CLAUSE_END.finditer(self._buffer, start):
            candidates.append((m.end(), False))

        for end, strong in sorted(candidates):
            head = self._buffer[:end]
            if strong:
                sentence = head.rstrip("'\"”’")
                if sentence.endswith(".") and is_abbreviation(sentence):
                    continue
                return end
            if len(head.split()) >= self.min_chunk_words:
                return end

        # A terminator plus closing quote may still be waiting for its whitespace
        self._scanned = max(0, len(self._buffer) - 2)
        return None
