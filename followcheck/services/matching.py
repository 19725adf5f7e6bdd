"""
Fuzzy matching of admin-typed handles against pending sessions.
"""

from typing import List, Optional, Tuple

from rapidfuzz import fuzz


def fuzz_ratio(a: str, b: str) -> int:
    return int(fuzz.ratio(a, b))


def best_match(candidate: str, handles: List[str], threshold: int = 80) -> Tuple[Optional[int], int]:
    """
    Return the best match (index, score) for candidate in handles.
    - comparison is case-insensitive and ignores a leading '@'.
    - index is 0-based; None if the best score is below threshold.
    - score is the fuzz ratio for visibility/debugging.
    """
    if not handles:
        return None, 0

    cand = (candidate or "").lstrip("@").lower()
    best_i, best_s = None, -1
    for i, target in enumerate(handles):
        s = fuzz_ratio(cand, (target or "").lstrip("@").lower())
        if s > best_s:
            best_i, best_s = i, s

    if best_s >= threshold:
        return best_i, best_s

    return None, best_s
