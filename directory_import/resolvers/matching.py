"""Name matching shared by the category and location resolvers."""

from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from rapidfuzz import fuzz

T = TypeVar("T")

EXACT = "exact"
CASE_INSENSITIVE = "case-insensitive"
PARTIAL = "partial"


def _name_of(candidate) -> str:
    return candidate.name


def find_match(
    candidates: Iterable[T],
    name: str,
    key: Callable[[T], str] = _name_of,
) -> Tuple[Optional[T], Optional[str]]:
    """Find ``name`` among ``candidates`` with progressively looser rules.

    Tiers, first hit wins: exact, case-insensitive, then containment in
    either direction. Several partial hits are ranked by similarity ratio;
    equal scores keep list order.
    """
    wanted = (name or "").strip()
    if not wanted:
        return None, None

    pool: List[T] = list(candidates)
    for candidate in pool:
        if key(candidate) == wanted:
            return candidate, EXACT

    lowered = wanted.lower()
    for candidate in pool:
        if (key(candidate) or "").lower() == lowered:
            return candidate, CASE_INSENSITIVE

    partial: List[Tuple[float, T]] = []
    for candidate in pool:
        candidate_name = (key(candidate) or "").strip().lower()
        if not candidate_name:
            continue
        if candidate_name in lowered or lowered in candidate_name:
            partial.append((fuzz.ratio(lowered, candidate_name), candidate))

    if not partial:
        return None, None

    best_score = max(score for score, _ in partial)
    for score, candidate in partial:
        if score == best_score:
            return candidate, PARTIAL
    return None, None
