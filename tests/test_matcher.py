from unittest import TestCase

from reelmatch.matcher import (
    YEAR_CLOSE,
    YEAR_EXACT,
    YEAR_OFF,
    YEAR_UNKNOWN,
    CandidateMatcher,
    Thresholds,
    score,
    similarity,
    year_verdict,
)
from reelmatch.models import Confidence


class FakeProvider:
    def __init__(self, results: dict, details: dict | None = None) -> None:
        self.results = results
        self.details = details or {}
        self.searches: list[tuple[str, int | None]] = []
        self.fetches: list[str] = []

    def search(self, title: str, year: int | None = None) -> list[dict]:
        self.searches.append((title, year))
        return list(self.results.get((title, year), []))

    def fetch(self, external_id: str) -> dict | None:
        self.fetches.append(external_id)
        return self.details.get(external_id)


def _candidate(external_id: str, title: str, year: int | None) -> dict:
    return {"external_id": external_id, "title": title, "year": year, "kind": "movie", "poster": None}


class ScoringTests(TestCase):
    def test_similarity_is_case_and_punctuation_blind(self) -> None:
        self.assertEqual(similarity("The Matrix", "the matrix!"), 1.0)
        self.assertEqual(similarity("", "The Matrix"), 0.0)
        self.assertLess(similarity("The Matrix", "Casablanca"), 0.5)

    def test_year_verdicts(self) -> None:
        self.assertEqual(year_verdict(1999, 1999, 2), YEAR_EXACT)
        self.assertEqual(year_verdict(2000, 1999, 2), YEAR_CLOSE)
        self.assertEqual(year_verdict(2003, 1999, 2), YEAR_OFF)
        self.assertEqual(year_verdict(1999, None, 2), YEAR_UNKNOWN)
        self.assertEqual(year_verdict(None, 1999, 2), YEAR_UNKNOWN)

    def test_tiers(self) -> None:
        thresholds = Thresholds()
        self.assertEqual(score(1.0, YEAR_EXACT, thresholds), Confidence.HIGH)
        self.assertEqual(score(0.95, YEAR_UNKNOWN, thresholds), Confidence.MEDIUM)
        self.assertEqual(score(0.95, YEAR_CLOSE, thresholds), Confidence.MEDIUM)
        self.assertEqual(score(0.6, YEAR_EXACT, thresholds), Confidence.MEDIUM)
        self.assertEqual(score(1.0, YEAR_OFF, thresholds), Confidence.LOW)
        self.assertEqual(score(0.6, YEAR_UNKNOWN, thresholds), Confidence.LOW)
        self.assertEqual(score(0.2, YEAR_EXACT, thresholds), Confidence.NONE)

    def test_thresholds_from_config(self) -> None:
        thresholds = Thresholds.from_config({"high_similarity": 0.8, "year_tolerance": 1})
        self.assertEqual(thresholds.high_similarity, 0.8)
        self.assertEqual(thresholds.low_similarity, 0.5)
        self.assertEqual(thresholds.year_tolerance, 1)


class CandidateMatcherTests(TestCase):
    def test_matrix_is_high_confidence(self) -> None:
        provider = FakeProvider(
            {("The Matrix", 1999): [_candidate("tt0133093", "The Matrix", 1999)]},
            {"tt0133093": {"title": "The Matrix", "year": 1999, "rating": 8.7}},
        )
        result = CandidateMatcher(provider).match("The Matrix", 1999)
        self.assertEqual(result.confidence, Confidence.HIGH)
        self.assertEqual(result.external_id, "tt0133093")
        self.assertEqual(result.metadata, {"title": "The Matrix", "year": 1999, "rating": 8.7})
        self.assertEqual(provider.fetches, ["tt0133093"])

    def test_exact_year_outranks_provider_order(self) -> None:
        provider = FakeProvider(
            {
                ("Cyrano de Bergerac", 1950): [
                    _candidate("tt0099334", "Cyrano de Bergerac", 1990),
                    _candidate("tt0042367", "Cyrano de Bergerac", 1950),
                ]
            }
        )
        result = CandidateMatcher(provider).match("Cyrano de Bergerac", 1950)
        self.assertEqual(result.external_id, "tt0042367")
        self.assertEqual(result.confidence, Confidence.HIGH)

    def test_provider_order_breaks_ties(self) -> None:
        provider = FakeProvider(
            {
                ("Hamlet", None): [
                    _candidate("tt0000002", "Hamlet", 1948),
                    _candidate("tt0000003", "Hamlet", 1996),
                ]
            }
        )
        result = CandidateMatcher(provider).match("Hamlet")
        self.assertEqual(result.external_id, "tt0000002")
        self.assertEqual(result.confidence, Confidence.MEDIUM)

    def test_blank_name_skips_provider(self) -> None:
        provider = FakeProvider({})
        result = CandidateMatcher(provider).match("   ", 1999)
        self.assertEqual(result.confidence, Confidence.NONE)
        self.assertEqual(provider.searches, [])

    def test_no_results_is_none(self) -> None:
        provider = FakeProvider({})
        result = CandidateMatcher(provider).match("Unknown Picture")
        self.assertEqual(result.confidence, Confidence.NONE)
        self.assertIsNone(result.external_id)
        self.assertEqual(provider.fetches, [])

    def test_retry_without_year_keeps_close_years(self) -> None:
        provider = FakeProvider(
            {
                ("Nosferatu", None): [
                    _candidate("tt0013442", "Nosferatu", 1922),
                    _candidate("tt0079641", "Nosferatu the Vampyre", 1979),
                ]
            },
            {"tt0013442": {"title": "Nosferatu"}},
        )
        result = CandidateMatcher(provider).match("Nosferatu", 1921)
        self.assertEqual(provider.searches, [("Nosferatu", 1921), ("Nosferatu", None)])
        self.assertEqual(result.external_id, "tt0013442")
        self.assertEqual(result.confidence, Confidence.MEDIUM)

    def test_low_confidence_is_not_fetched(self) -> None:
        provider = FakeProvider({("Casablanca", 1942): [_candidate("tt0000009", "Casablanca Express", 1989)]})
        result = CandidateMatcher(provider).match("Casablanca", 1942)
        self.assertEqual(result.confidence, Confidence.LOW)
        self.assertFalse(result.accepted)
        self.assertEqual(provider.fetches, [])
