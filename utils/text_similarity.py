"""
Trigram text similarity compatible with PostgreSQL's pg_trgm semantics.

Each word is lowercased and padded with two leading spaces and one trailing
space before trigrams are taken; similarity is the Jaccard ratio of the
two trigram sets.
"""

import re
from typing import Set

_WORD_PATTERN = re.compile(r'[^\W_]+', re.UNICODE)


def trigrams(text: str) -> Set[str]:
    result: Set[str] = set()
    for word in _WORD_PATTERN.findall((text or "").lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            result.add(padded[i:i + 3])
    return result


def trigram_similarity(left: str, right: str) -> float:
    """Similarity in [0, 1]; two empty strings are not similar."""
    left_set = trigrams(left)
    right_set = trigrams(right)
    if not left_set or not right_set:
        return 0.0

    shared = len(left_set & right_set)
    return shared / len(left_set | right_set)


def text_rank(query: str, candidate: str) -> float:
    """
    Rank a taxonomy candidate against a search query.

    Exact (case-insensitive) matches rank 1.0, prefix matches 0.9, anything
    else falls back to trigram similarity.
    """
    query_norm = (query or "").strip().lower()
    candidate_norm = (candidate or "").strip().lower()
    if not query_norm or not candidate_norm:
        return 0.0
    if query_norm == candidate_norm:
        return 1.0
    if candidate_norm.startswith(query_norm):
        return 0.9
    return trigram_similarity(query_norm, candidate_norm)


def word_similarity(needle: str, text: str) -> float:
    """
    Best share of needle's trigrams found in any run of consecutive words
    in text, the run being as many words long as needle (pg_trgm's
    word_similarity). "palmsocker" scores 0.73 against "Tillsätt palmsockret".
    """
    needle_set = trigrams(needle)
    if not needle_set:
        return 0.0

    size = len(_WORD_PATTERN.findall((needle or "").lower()))
    words = _WORD_PATTERN.findall((text or "").lower())
    best = 0.0
    for start in range(max(len(words) - size + 1, 0)):
        shared = len(needle_set & trigrams(" ".join(words[start:start + size])))
        best = max(best, shared / len(needle_set))
    return best
