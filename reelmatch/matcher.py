"""Scores provider candidates against a normalized title and year hint."""

from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Any, Protocol

from .models import Confidence, MatchResult
from .normalize import comparable

YEAR_EXACT = "exact"
YEAR_CLOSE = "close"
YEAR_OFF = "off"
YEAR_UNKNOWN = "unknown"


class Provider(Protocol):
    def search(self, title: str, year: int | None = None) -> list[dict[str, Any]]: ...

    def fetch(self, external_id: str) -> dict[str, Any] | None: ...


@dataclass
class Thresholds:
    high_similarity: float = 0.90
    low_similarity: float = 0.50
    year_tolerance: int = 2

    @classmethod
    def from_config(cls, cfg: dict[str, Any] | None) -> "Thresholds":
        cfg = cfg or {}
        return cls(
            high_similarity=float(cfg.get("high_similarity", cls.high_similarity)),
            low_similarity=float(cfg.get("low_similarity", cls.low_similarity)),
            year_tolerance=int(cfg.get("year_tolerance", cls.year_tolerance)),
        )


def similarity(left: str | None, right: str | None) -> float:
    a = comparable(left)
    b = comparable(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return SequenceMatcher(None, a, b).ratio()


def year_verdict(candidate_year: int | None, year_hint: int | None, tolerance: int) -> str:
    if not year_hint or not candidate_year:
        return YEAR_UNKNOWN
    delta = abs(candidate_year - year_hint)
    if delta == 0:
        return YEAR_EXACT
    if delta <= tolerance:
        return YEAR_CLOSE
    return YEAR_OFF


def score(sim: float, verdict: str, thresholds: Thresholds) -> Confidence:
    """Map a similarity and year verdict to a confidence tier.

    ``high`` needs both signals: an exact year and a near-identical title.
    ``medium`` needs one strong signal without the other contradicting it.
    """
    if verdict == YEAR_EXACT and sim >= thresholds.high_similarity:
        return Confidence.HIGH
    if sim >= thresholds.high_similarity and verdict in (YEAR_UNKNOWN, YEAR_CLOSE):
        return Confidence.MEDIUM
    if verdict == YEAR_EXACT and sim >= thresholds.low_similarity:
        return Confidence.MEDIUM
    if sim >= thresholds.low_similarity:
        return Confidence.LOW
    return Confidence.NONE


class CandidateMatcher:
    def __init__(self, provider: Provider, thresholds: Thresholds | None = None) -> None:
        self.provider = provider
        self.thresholds = thresholds or Thresholds()

    def _search(self, name: str, year_hint: int | None) -> list[dict[str, Any]]:
        results = self.provider.search(name, year_hint)
        if results or not year_hint:
            return results
        # Provider years are often off by one or two for festival and re-releases.
        widened = self.provider.search(name, None)
        tolerance = self.thresholds.year_tolerance
        return [
            item
            for item in widened
            if item.get("year") is None or abs(int(item["year"]) - year_hint) <= tolerance
        ]

    def rank(self, name: str, year_hint: int | None, candidates: list[dict[str, Any]]) -> list[MatchResult]:
        scored = []
        for position, item in enumerate(candidates):
            sim = similarity(name, item.get("title"))
            verdict = year_verdict(item.get("year"), year_hint, self.thresholds.year_tolerance)
            result = MatchResult(
                confidence=score(sim, verdict, self.thresholds),
                external_id=item.get("external_id"),
                title=item.get("title"),
                year=item.get("year"),
                similarity=sim,
            )
            scored.append((result.confidence.rank, verdict == YEAR_EXACT, sim, -position, result))
        scored.sort(key=lambda entry: entry[:4], reverse=True)
        return [entry[4] for entry in scored]

    def match(self, name: str, year_hint: int | None = None) -> MatchResult:
        if not name or not name.strip():
            return MatchResult()
        candidates = self._search(name.strip(), year_hint)
        if not candidates:
            return MatchResult()
        best = self.rank(name.strip(), year_hint, candidates)[0]
        if best.confidence == Confidence.NONE:
            return MatchResult(similarity=best.similarity)
        if best.accepted and best.external_id:
            best.metadata = self.provider.fetch(best.external_id)
        return best
