from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

_SEPARATORS = re.compile(r"[_\s-]+")
_GENERIC_WORDS = re.compile(r"\b(?:ppts?|tracker|links?)\b")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True)
class SheetMatch:
    id: str
    name: str
    similarity: float


def normalize_name(value: str) -> str:
    text = _SEPARATORS.sub(" ", str(value or "").casefold())
    text = _GENERIC_WORDS.sub(" ", text)
    return _SPACES.sub(" ", text).strip()


def levenshtein_distance(left: str, right: str) -> int:
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(left: str, right: str) -> float:
    """Edit-distance similarity in [0, 1] of the normalized names."""
    a = normalize_name(left)
    b = normalize_name(right)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def find_similar_sheet(
    target_name: str,
    candidates: Iterable[dict],
    threshold: float = 0.75,
) -> SheetMatch | None:
    """Best candidate at or above ``threshold``; ties keep the first one seen."""
    best: SheetMatch | None = None
    for candidate in candidates:
        score = similarity(target_name, str(candidate.get("name") or ""))
        if score < threshold:
            continue
        if best is None or score > best.similarity:
            best = SheetMatch(id=str(candidate["id"]), name=str(candidate.get("name") or ""), similarity=score)
    return best
