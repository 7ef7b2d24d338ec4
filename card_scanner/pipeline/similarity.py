# pipeline/similarity.py
from __future__ import annotations


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert / delete / substitute, all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # two-row DP over the shorter string
    if len(a) < len(b):
        a, b = b, a

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(
                prev[j] + 1,         # deletion
                cur[j - 1] + 1,      # insertion
                prev[j - 1] + cost,  # substitution
            ))
        prev = cur
    return prev[-1]


def similarity(a: str, b: str) -> float:
    """
    Normalized inverse edit distance in [0, 1]:
    1 - levenshtein(a, b) / max(len(a), len(b)).
    Identical strings score 1, anything against "" scores 0.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein(a, b) / max(len(a), len(b))


def similarity_upper_bound(len_a: int, len_b: int) -> float:
    """Best similarity two strings of these lengths could possibly reach."""
    longest = max(len_a, len_b)
    if longest == 0:
        return 1.0
    return 1.0 - abs(len_a - len_b) / longest
