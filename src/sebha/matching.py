"""
Phrase Matching Module

Counts how many times a sebha phrase was said inside a speech transcript.

Matching is word-token based: both strings are split on whitespace and
normalized, then a window the size of the phrase slides over the spoken
tokens. A full window match is counted and consumed (non-overlapping), a
mismatch moves the window by one token.

The recognizer keeps revising its transcript, so callers rescan the whole
transcript on every update and diff the count against their last value.
"""

import logging

from .normalize import tokenize

logger = logging.getLogger(__name__)


def match_spans(transcript: str, phrase: str) -> list[int]:
    """
    Find the start token index of every non-overlapping phrase occurrence.

    Args:
        transcript: Spoken text (partial or final recognizer output)
        phrase: The sebha phrase to look for

    Returns:
        Token start indices into ``transcript.split()``, in order
    """
    phrase_tokens = tokenize(phrase)
    if not phrase_tokens:
        return []

    spoken_tokens = tokenize(transcript)
    width = len(phrase_tokens)
    spans = []

    i = 0
    while i + width <= len(spoken_tokens):
        if spoken_tokens[i:i + width] == phrase_tokens:
            spans.append(i)
            i += width  # consume the window
        else:
            i += 1

    logger.debug(f"Matched {len(spans)}x {phrase!r} in {len(spoken_tokens)} spoken tokens")
    return spans


def count_matches(transcript: str, phrase: str) -> int:
    """Total non-overlapping occurrences of ``phrase`` in ``transcript``."""
    return len(match_spans(transcript, phrase))
