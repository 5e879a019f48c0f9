# src/services/text_normalizer.py
"""
Text Normalization
Cleaning, tokenization and set similarity shared by filtering and clustering
"""

import re
from typing import FrozenSet, Iterable, List

MIN_TOKEN_LENGTH = 3

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "this", "that", "these", "those",
        "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us",
        "them", "my", "your", "his", "its", "our", "their", "mine", "yours",
        "hers", "ours", "theirs", "am", "so", "very", "just", "now", "then",
        "here", "there", "where", "when", "why", "how", "what", "who", "which",
        "all", "any", "some", "no", "not", "only", "own", "other", "such",
        "same", "different", "new", "old", "first", "last", "long", "short",
        "high", "low", "big", "small", "large", "little", "good", "bad",
        "right", "wrong", "true", "false", "from", "about", "into", "than",
        "too", "also", "really", "get", "got", "one", "more", "most", "much",
        "out", "up", "if", "as", "because", "while", "again", "each", "both",
    }
)

_NON_WORD = re.compile(r"[^\w\s]")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s.,!?@#-]")
_PUNCT_RUN = re.compile(r"[.,!?]{3,}")
_DIGITS = re.compile(r"^\d+$")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize(text: str) -> str:
    """
    Lowercase, strip punctuation and control characters, collapse whitespace

    Args:
        text: Raw comment text

    Returns:
        Normalized text with single spaces
    """
    lowered = _CONTROL.sub(" ", text.lower())
    return collapse_whitespace(_NON_WORD.sub(" ", lowered))


def tokenize(
    text: str,
    stop_words: Iterable[str] = STOP_WORDS,
    min_length: int = MIN_TOKEN_LENGTH,
) -> List[str]:
    """
    Split normalized text into meaningful tokens

    Tokens shorter than min_length, stop words and pure numbers are dropped.
    Order and repeats are preserved so callers can count term frequency.
    """
    stop = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    return [
        token
        for token in normalize(text).split(" ")
        if len(token) >= min_length and token not in stop and not _DIGITS.match(token)
    ]


def clean_text(text: str) -> str:
    """Collapse whitespace, drop unusual symbols and shorten punctuation runs"""
    cleaned = collapse_whitespace(text)
    cleaned = _DISALLOWED.sub("", cleaned)
    cleaned = _PUNCT_RUN.sub("...", cleaned)
    return cleaned.strip()


def normalize_for_comparison(text: str) -> str:
    """Lowercase, single-spaced text used for duplicate and keyword checks"""
    return collapse_whitespace(text.lower())


def jaccard_similarity(first: Iterable[str], second: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B|, 0.0 when both sets are empty"""
    a, b = set(first), set(second)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)
