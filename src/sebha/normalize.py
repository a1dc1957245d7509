"""
Text Normalization Module

Reduces phrase and transcript tokens to a comparable form. Everything that is
not a letter, a number or whitespace is dropped (Arabic harakat, punctuation,
bidi and zero-width marks) and the rest is lowercased.
"""

import unicodedata


# Unicode general categories that survive normalization
KEPT_CATEGORY_PREFIXES = ("L", "N")


def is_kept_char(char: str) -> bool:
    """
    Check if a character survives normalization.

    Args:
        char: Single character to check

    Returns:
        True for letters, numbers and whitespace
    """
    if char.isspace():
        return True
    return unicodedata.category(char).startswith(KEPT_CATEGORY_PREFIXES)


def normalize(token: str) -> str:
    """
    Strip non letter/number/whitespace characters and lowercase the result.

    Combining marks (category Mn, e.g. fatha, shadda, dagger alif) are not
    letters, so diacritized and bare spellings normalize to the same string.

    Args:
        token: A word or any string

    Returns:
        The normalized string (possibly empty)
    """
    return "".join(ch for ch in token if is_kept_char(ch)).lower()


def tokenize(text: str) -> list[str]:
    """Split on whitespace and normalize every token."""
    return [normalize(tok) for tok in text.split()]
