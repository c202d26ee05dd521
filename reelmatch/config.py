"""Config loading and defaults."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from .paths import config_path, ensure_dir, secrets_path
from .schema import validate_config_schema
from .util import deep_merge, resolve_env_values


def default_channel_rules() -> list[dict[str, Any]]:
    return [
        {
            "channel_id": "@Netzkino",
            "name": "Netzkino",
            "patterns": [
                {"match": r"(?i)^Watch\s+", "replace": ""},
                {
                    "match": r"(?i)\s*\([^)]*(?:full.*?movie|movie.*?full|comedy|drama|thriller|horror|film"
                    r"|classic|ganzer film|romantic|family|animal)[^)]*\)\s*$",
                    "replace": "",
                },
            ],
        },
        {
            "channel_id": "@FilmRiseMovies",
            "name": "FilmRise Movies",
            "patterns": [{"match": r"(?i)\s*\|\s*(?:Free Full|Part \d+ of \d+).*$", "replace": ""}],
        },
        {
            "channel_id": "@Popcornflix",
            "name": "Popcornflix",
            "patterns": [
                {"match": r"(?i)\s*(?:\(\d{4}\))?\s*\|\s*(?:Part \d+ of \d+\s*\|)?\s*FULL MOVIE.*$", "replace": ""}
            ],
        },
        {
            "channel_id": "@MovieCentral",
            "name": "Movie Central",
            "patterns": [
                {"match": r"^[^|]+\|\s*([^|]+?)(?:\s*\|\s*(?:HD|20\d{2}).*)?$", "extract": 1},
                {"match": r"(?i)\s*\|\s*(?:HD|20\d{2}).*$", "replace": ""},
            ],
        },
        {
            "channel_id": "@TimelessClassicMovies",
            "name": "Timeless Classic Movies",
            "patterns": [{"match": r"\s*\[[^\]]+\]\s*", "replace": ""}],
        },
        {
            "channel_id": "@Moviedome",
            "name": "Moviedome",
            "patterns": [
                {"match": r".*:\s*([^(]+?)(?:\s*\(Ganzer Film.*)?$", "extract": 1},
                {"match": r"(?i)\s*\(Ganzer Film[^)]*\)\s*$", "replace": ""},
            ],
        },
    ]


def default_config() -> dict[str, Any]:
    return {
        "provider": {
            "url": "https://www.omdbapi.com/",
            "api_key": "${ENV:OMDB_API_KEY}",
            "timeout": 15,
            "retries": 2,
            "retry_backoff_seconds": 0.5,
            "max_backoff_seconds": 8.0,
            "retry_statuses": [429, 502, 503, 504],
            "min_interval_seconds": 0.25,
            "search_type": "movie",
            "cache": {"enabled": False, "ttl_seconds": 86400},
        },
        "matching": {
            "high_similarity": 0.90,
            "low_similarity": 0.50,
            "year_tolerance": 2,
        },
        "enrich": {
            "only_unmatched": True,
            "limit": None,
            "max_errors": 100,
            "min_confidence": "medium",
        },
        "store": {"path": None},
        "ledger": {"path": None},
        "normalize": {"channel_rules": default_channel_rules()},
        "logging": {"path": None},
        "report": {"enabled": False},
    }


def load_config(path: Path | None = None) -> dict[str, Any]:
    cfg_path = path or config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found at {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as handle:
        config = yaml.safe_load(handle) or {}
    secrets = {}
    secrets_file = secrets_path()
    if secrets_file.exists():
        with secrets_file.open("r", encoding="utf-8") as handle:
            secrets = yaml.safe_load(handle) or {}
    merged = deep_merge(default_config(), deep_merge(config, secrets))
    return resolve_env_values(merged)


def save_default_config(path: Path | None = None, overwrite: bool = False) -> Path:
    cfg_path = path or config_path()
    ensure_dir(cfg_path.parent)
    if cfg_path.exists() and not overwrite:
        return cfg_path
    with cfg_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(default_config(), handle, sort_keys=False)
    return cfg_path


def save_default_secrets(path: Path | None = None, overwrite: bool = False) -> Path:
    cfg_path = path or secrets_path()
    ensure_dir(cfg_path.parent)
    if cfg_path.exists() and not overwrite:
        return cfg_path
    with cfg_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump({"provider": {"api_key": "CHANGE_ME"}}, handle, sort_keys=False)
    return cfg_path


def resolve_config_path(path_str: str | None) -> Path:
    if path_str:
        return Path(path_str).expanduser()
    return config_path()


def ensure_config_exists(path_str: str | None = None) -> Path:
    cfg_path = resolve_config_path(path_str)
    if not cfg_path.exists():
        cfg_path = save_default_config(cfg_path, overwrite=False)
    return cfg_path


def validate_config(config: dict[str, Any]) -> tuple[list[str], list[str]]:
    errors: list[str] = list(validate_config_schema(config))
    warnings: list[str] = []

    provider = config.get("provider", {}) or {}
    if not provider.get("url"):
        errors.append("provider.url is required")
    api_key = provider.get("api_key")
    if not api_key or api_key == "CHANGE_ME":
        errors.append("provider.api_key is not set (export OMDB_API_KEY or edit secrets.yaml)")
    if float(provider.get("min_interval_seconds") or 0) == 0:
        warnings.append("provider.min_interval_seconds is 0; OMDb may throttle the batch")

    matching = config.get("matching", {}) or {}
    high = matching.get("high_similarity", 0.90)
    low = matching.get("low_similarity", 0.50)
    if isinstance(high, (int, float)) and isinstance(low, (int, float)) and low > high:
        errors.append("matching.low_similarity must not exceed matching.high_similarity")

    rules = (config.get("normalize", {}) or {}).get("channel_rules") or []
    seen: set[str] = set()
    for rule in rules:
        if not isinstance(rule, dict):
            continue
        channel = rule.get("channel_id")
        if channel in seen:
            warnings.append(f"normalize.channel_rules has more than one rule for {channel}")
        seen.add(channel)
        for pattern in rule.get("patterns") or []:
            regex = pattern.get("match") if isinstance(pattern, dict) else None
            if not regex:
                continue
            try:
                compiled = re.compile(regex)
            except re.error as exc:
                errors.append(f"normalize.channel_rules {channel}: invalid pattern {regex!r}: {exc}")
                continue
            if "extract" in pattern and int(pattern["extract"]) > compiled.groups:
                errors.append(f"normalize.channel_rules {channel}: extract group {pattern['extract']} not in {regex!r}")

    return errors, warnings
