"""
Text similarity for transaction descriptions.
"""

from typing import FrozenSet

from rapidfuzz import fuzz


def tokenize(text: str) -> FrozenSet[str]:
    """Lower-cased whitespace-separated word set."""
    return frozenset(text.lower().split())


def jaccard_similarity(text1: str, text2: str) -> float:
    """
    Jaccard similarity of the word sets of two strings.

    Comparison ignores case and surrounding whitespace. Identical strings score
    1.0 and an empty side scores 0.0. The measure is symmetric.
    """
    str1 = (text1 or "").lower().strip()
    str2 = (text2 or "").lower().strip()
    if not str1 or not str2:
        return 0.0
    if str1 == str2:
        return 1.0

    words1 = tokenize(str1)
    words2 = tokenize(str2)
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def fuzzy_similarity(text1: str, text2: str) -> float:
    """rapidfuzz token-set ratio scaled to [0, 1]."""
    if not text1 or not text2:
        return 0.0
    return fuzz.token_set_ratio(text1.lower(), text2.lower()) / 100.0


def description_similarity(text1: str, text2: str, fuzzy: bool = False) -> float:
    """Jaccard score, or the better of Jaccard and token-set ratio when fuzzy."""
    score = jaccard_similarity(text1, text2)
    if fuzzy:
        score = max(score, fuzzy_similarity(text1, text2))
    return score
