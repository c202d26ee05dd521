import json
from pathlib import Path
from unittest import TestCase, mock

import requests

from reelmatch.errors import ConfigError, ProviderError
from reelmatch.matcher import CandidateMatcher
from reelmatch.provider import OmdbProvider, map_metadata

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _fixture(name: str) -> dict:
    return json.loads((FIXTURES / name).read_text(encoding="utf-8"))


def _response(payload=None, status: int = 200, text: str | None = None) -> mock.Mock:
    response = mock.Mock()
    response.status_code = status
    if text is not None:
        response.json.side_effect = json.JSONDecodeError("Expecting value", text, 0)
    else:
        response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error for url: https://omdb.test/?apikey=SECRET")
    else:
        response.raise_for_status.return_value = None
    return response


class OmdbProviderTests(TestCase):
    def setUp(self) -> None:
        self.provider = OmdbProvider({"url": "https://omdb.test/", "api_key": "SECRET", "min_interval_seconds": 0})

    def test_search_maps_candidates(self) -> None:
        with mock.patch("requests.request", return_value=_response(_fixture("omdb_search_matrix.json"))) as request:
            results = self.provider.search("The Matrix", 1999)
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0]["external_id"], "tt0133093")
        self.assertEqual(results[0]["year"], 1999)
        self.assertIsNone(results[1]["poster"])
        params = request.call_args.kwargs["params"]
        self.assertEqual(params["s"], "The Matrix")
        self.assertEqual(params["y"], "1999")
        self.assertEqual(params["type"], "movie")
        self.assertEqual(params["apikey"], "SECRET")

    def test_not_found_is_empty(self) -> None:
        with mock.patch("requests.request", return_value=_response(_fixture("omdb_not_found.json"))):
            self.assertEqual(self.provider.search("Zzyzx"), [])

    def test_provider_error_text_raises(self) -> None:
        with mock.patch("requests.request", return_value=_response(_fixture("omdb_invalid_key.json"))):
            with self.assertRaises(ProviderError):
                self.provider.search("The Matrix")

    def test_http_error_is_redacted(self) -> None:
        with mock.patch("requests.request", return_value=_response({}, status=500)):
            with self.assertRaises(ProviderError) as ctx:
                self.provider.search("The Matrix")
        self.assertNotIn("SECRET", str(ctx.exception))

    def test_transport_error_raises(self) -> None:
        with mock.patch("requests.request", side_effect=requests.ConnectionError("boom")):
            with self.assertRaises(ProviderError):
                self.provider.fetch("tt0133093")

    def test_invalid_json_raises(self) -> None:
        with mock.patch("requests.request", return_value=_response(text="<html>")):
            with self.assertRaises(ProviderError) as ctx:
                self.provider.search("The Matrix")
        self.assertEqual(ctx.exception.code, "PARSE_ERROR")

    def test_fetch_maps_metadata(self) -> None:
        with mock.patch("requests.request", return_value=_response(_fixture("omdb_detail_matrix.json"))) as request:
            metadata = self.provider.fetch("tt0133093")
        params = request.call_args.kwargs["params"]
        self.assertEqual(params["i"], "tt0133093")
        self.assertEqual(params["plot"], "full")
        self.assertEqual(metadata["rating"], 8.7)
        self.assertEqual(metadata["votes"], 2107318)
        self.assertEqual(metadata["metascore"], 73)
        self.assertEqual(metadata["year"], 1999)
        self.assertEqual(metadata["genre"], "Action, Sci-Fi")
        self.assertEqual(metadata["external_id"], "tt0133093")
        self.assertEqual(len(metadata["ratings"]), 2)

    def test_missing_api_key(self) -> None:
        provider = OmdbProvider({"api_key": "CHANGE_ME"})
        with mock.patch("requests.request") as request:
            with self.assertRaises(ConfigError):
                provider.search("The Matrix")
        request.assert_not_called()


class ProviderMatcherTests(TestCase):
    def test_cyrano_exact_year_wins_over_provider_order(self) -> None:
        provider = OmdbProvider({"url": "https://omdb.test/", "api_key": "SECRET", "min_interval_seconds": 0})
        detail = {"Title": "Cyrano de Bergerac", "Year": "1950", "imdbID": "tt0042367", "Response": "True"}
        responses = [_response(_fixture("omdb_search_cyrano.json")), _response(detail)]
        with mock.patch("requests.request", side_effect=responses) as request:
            result = CandidateMatcher(provider).match("Cyrano de Bergerac", 1950)
        self.assertEqual(result.external_id, "tt0042367")
        self.assertEqual(result.metadata["year"], 1950)
        self.assertEqual(request.call_args_list[1].kwargs["params"]["i"], "tt0042367")


class MapMetadataTests(TestCase):
    def test_na_values_are_dropped(self) -> None:
        metadata = map_metadata({"Title": "Detour", "Poster": "N/A", "imdbRating": "N/A", "imdbVotes": ""})
        self.assertEqual(metadata, {"title": "Detour"})
