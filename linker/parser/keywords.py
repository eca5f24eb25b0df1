"""
Keyword Similarity
==================
Pure helpers used to rank past bugs against a new one.

Keywords are lowercased word tokens longer than three characters with stop
words removed. Similarity is the Jaccard index of two keyword sets.
"""
import re
from typing import AbstractSet, Set

from linker.core.constants import MIN_KEYWORD_LENGTH, STOP_WORDS

_NON_WORD_RE = re.compile(r"[^\w\s]")


def extract_keywords(text: str) -> Set[str]:
    """Return the normalized keyword set of *text* (empty for empty input)."""
    if not text:
        return set()
    normalized = _NON_WORD_RE.sub(" ", text.lower())
    return {
        token
        for token in normalized.split()
        if len(token) >= MIN_KEYWORD_LENGTH and token not in STOP_WORDS
    }


def similarity(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """Jaccard index ``|a ∩ b| / |a ∪ b|``; 0.0 when both sets are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)
