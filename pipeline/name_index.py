from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Callable, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

Scorer = Callable[[str, str], float]

# NFKD does not decompose the Turkish dotless i.
_TURKISH_FOLD = str.maketrans({"ı": "i", "İ": "i"})


def normalize_name(value: Optional[str]) -> str:
    if not value:
        return ""
    text = value.translate(_TURKISH_FOLD)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.casefold()
    sanitized = "".join(ch if ch.isalnum() else " " for ch in text)
    return " ".join(sanitized.split())


def sequence_ratio(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def token_set_ratio(a: str, b: str) -> float:
    """Order-insensitive variant: "Yılmaz Ahmet" scores like "Ahmet Yılmaz"."""
    if not a or not b:
        return 0.0
    return max(
        sequence_ratio(a, b),
        sequence_ratio(" ".join(sorted(a.split())), " ".join(sorted(b.split()))),
    )


@dataclass(frozen=True)
class Match(Generic[T]):
    candidate: T
    score: float


class NameIndex(Generic[T]):
    """
    Approximate lookup of candidates by one name field.

    The scoring function is pluggable; it receives two normalized names and
    returns a similarity in [0, 1]. Candidates scoring below ``min_score``
    are never returned.
    """

    def __init__(
        self,
        entries: Sequence[Tuple[str, T]],
        *,
        scorer: Scorer = token_set_ratio,
        min_score: float = 0.6,
    ) -> None:
        self._entries = entries
        self._exact = {}
        for key, candidate in entries:
            self._exact.setdefault(key, candidate)
        self.scorer = scorer
        self.min_score = min_score

    @classmethod
    def build(
        cls,
        candidates: Iterable[T],
        *,
        key: Callable[[T], str],
        scorer: Scorer = token_set_ratio,
        min_score: float = 0.6,
    ) -> "NameIndex[T]":
        entries: List[Tuple[str, T]] = []
        for candidate in candidates:
            name = normalize_name(key(candidate))
            if name:
                entries.append((name, candidate))
        return cls(entries, scorer=scorer, min_score=min_score)

    def __len__(self) -> int:
        return len(self._entries)

    def best_match(self, name: Optional[str]) -> Optional[Match[T]]:
        needle = normalize_name(name)
        if not needle:
            return None
        exact = self._exact.get(needle)
        if exact is not None:
            return Match(exact, 1.0)

        best: Optional[Match[T]] = None
        for key, candidate in self._entries:
            score = self.scorer(needle, key)
            if score < self.min_score:
                continue
            if best is None or score > best.score:
                best = Match(candidate, score)
        return best
