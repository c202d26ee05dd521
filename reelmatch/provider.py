"""OMDb client used as the authoritative metadata provider."""

from __future__ import annotations

import json
import time
from typing import Any

import requests

from .errors import ConfigError, ProviderError
from .util import cache_key, read_cache, request_with_retry, safe_error_message, write_cache

DEFAULT_FIELDS = {
    "title": "Title",
    "year": "Year",
    "rated": "Rated",
    "released": "Released",
    "runtime": "Runtime",
    "genre": "Genre",
    "director": "Director",
    "writer": "Writer",
    "actors": "Actors",
    "plot": "Plot",
    "language": "Language",
    "country": "Country",
    "awards": "Awards",
    "poster": "Poster",
    "metascore": "Metascore",
    "rating": "imdbRating",
    "votes": "imdbVotes",
    "external_id": "imdbID",
    "kind": "Type",
}

_NOT_FOUND = ("not found", "no results", "too many results", "incorrect imdb id")


def _parse_year(value: Any) -> int | None:
    text = str(value or "").strip()
    if len(text) < 4 or not text[:4].isdigit():
        return None
    return int(text[:4])


def _parse_float(value: Any) -> float | None:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return None


def _parse_int(value: Any) -> int | None:
    try:
        return int(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return None


def map_metadata(payload: dict[str, Any], fields: dict[str, str] | None = None) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for key, source_key in (fields or DEFAULT_FIELDS).items():
        value = payload.get(source_key)
        if value is None or value == "" or value == "N/A":
            continue
        if key == "rating":
            value = _parse_float(value)
        elif key in ("votes", "metascore"):
            value = _parse_int(value)
        elif key == "year":
            value = _parse_year(value)
        if value is not None:
            metadata[key] = value
    ratings = payload.get("Ratings")
    if isinstance(ratings, list) and ratings:
        metadata["ratings"] = [
            {"source": item.get("Source"), "value": item.get("Value")}
            for item in ratings
            if isinstance(item, dict)
        ]
    return metadata


class OmdbProvider:
    """Read-only search and fetch against the OMDb API.

    Requests are spaced by ``min_interval_seconds`` and retried with backoff.
    Any transport, HTTP or payload problem surfaces as ``ProviderError``; a
    search that simply finds nothing returns an empty list.
    """

    def __init__(self, cfg: dict[str, Any]) -> None:
        self.url = cfg.get("url") or "https://www.omdbapi.com/"
        self.api_key = cfg.get("api_key") or ""
        self.timeout = float(cfg.get("timeout") or 15)
        self.retries = int(cfg.get("retries") or 0)
        self.backoff_seconds = float(cfg.get("retry_backoff_seconds") or 0.5)
        self.max_backoff_seconds = float(cfg.get("max_backoff_seconds") or 8.0)
        self.retry_statuses = cfg.get("retry_statuses")
        self.min_interval = float(cfg.get("min_interval_seconds") or 0.0)
        self.search_type = cfg.get("search_type") or "movie"
        self.fields = (cfg.get("response") or {}).get("fields") or DEFAULT_FIELDS
        cache_cfg = cfg.get("cache") or {}
        if isinstance(cache_cfg, bool):
            cache_cfg = {"enabled": cache_cfg}
        self.cache_enabled = bool(cache_cfg.get("enabled"))
        self.cache_namespace = cache_cfg.get("namespace", "omdb")
        self.cache_ttl = cache_cfg.get("ttl_seconds")
        self._last_request = 0.0

    def _throttle(self) -> None:
        if self.min_interval <= 0:
            return
        wait = self.min_interval - (time.monotonic() - self._last_request)
        if wait > 0:
            time.sleep(wait)
        self._last_request = time.monotonic()

    def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key or self.api_key == "CHANGE_ME":
            raise ConfigError("provider.api_key is required")
        key = None
        if self.cache_enabled:
            key = cache_key({"url": self.url, "params": params})
            cached = read_cache(self.cache_namespace, key, self.cache_ttl)
            if cached is not None:
                return cached
        self._throttle()
        query = dict(params)
        query["apikey"] = self.api_key
        try:
            response = request_with_retry(
                "GET",
                self.url,
                params=query,
                timeout=self.timeout,
                retries=self.retries,
                backoff_seconds=self.backoff_seconds,
                max_backoff_seconds=self.max_backoff_seconds,
                retry_statuses=self.retry_statuses,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderError(f"provider request failed: {safe_error_message(exc)}") from exc
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProviderError(f"provider returned invalid JSON: {exc}", code="PARSE_ERROR") from exc
        if not isinstance(payload, dict):
            raise ProviderError("provider returned a non-object payload", code="PARSE_ERROR")
        if str(payload.get("Response", "True")).lower() == "false":
            error = str(payload.get("Error") or "unknown error")
            if not any(marker in error.lower() for marker in _NOT_FOUND):
                raise ProviderError(f"provider error: {error}")
        if key is not None:
            write_cache(self.cache_namespace, key, payload)
        return payload

    def search(self, title: str, year: int | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"s": title, "type": self.search_type}
        if year:
            params["y"] = str(year)
        payload = self._get(params)
        results = payload.get("Search")
        if not isinstance(results, list):
            return []
        candidates = []
        for item in results:
            if not isinstance(item, dict) or not item.get("imdbID"):
                continue
            poster = item.get("Poster")
            candidates.append(
                {
                    "external_id": item.get("imdbID"),
                    "title": item.get("Title") or "",
                    "year": _parse_year(item.get("Year")),
                    "kind": item.get("Type"),
                    "poster": poster if poster and poster != "N/A" else None,
                }
            )
        return candidates

    def fetch(self, external_id: str) -> dict[str, Any] | None:
        payload = self._get({"i": external_id, "plot": "full"})
        if str(payload.get("Response", "True")).lower() == "false":
            return None
        return map_metadata(payload, self.fields)
