"""Utility helpers."""

from __future__ import annotations

import json
import os
import random
import re
import sys
import tempfile
import time
from datetime import datetime, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any

import requests

from .errors import ReelmatchError, StoreWriteError
from .paths import cache_dir, ensure_dir


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_json(obj: Any) -> None:
    json.dump(obj, sys.stdout, indent=2, ensure_ascii=True, sort_keys=False)
    sys.stdout.write("\n")


def read_json_file(path: Path) -> Any | None:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def write_json_atomic(path: Path, obj: Any) -> None:
    """Replace ``path`` with ``obj`` serialized as JSON.

    The document is written to a temp file in the same directory, flushed and
    fsynced, then moved over the target with ``os.replace`` so a crash leaves
    either the old or the new document on disk, never a partial one.
    """
    temp_name: str | None = None
    try:
        ensure_dir(path.parent)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            delete=False,
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
        ) as handle:
            temp_name = handle.name
            json.dump(obj, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
        temp_name = None
    except (OSError, TypeError, ValueError) as exc:
        raise StoreWriteError(f"failed to write {path}: {exc}") from exc
    finally:
        if temp_name and os.path.exists(temp_name):
            os.unlink(temp_name)


def deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


_ENV_PATTERN = re.compile(r"\$\{ENV:([A-Z0-9_]+)\}")


def resolve_env_values(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value.keys()) == {"_env"}:
            name = str(value.get("_env", ""))
            return os.environ.get(name, "")
        return {k: resolve_env_values(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_values(v) for v in value]
    if isinstance(value, str):
        def _replace(match: re.Match[str]) -> str:
            name = match.group(1)
            return os.environ.get(name, "")

        return _ENV_PATTERN.sub(_replace, value)
    return value


_SECRET_PARAM = re.compile(r"(?i)\b(apikey|api_key|token|key)=([^&\s\"']+)")
_SECRET_KEYS = {"apikey", "api_key", "token", "authorization", "x-api-key"}


def redact_payload(value: Any) -> Any:
    if isinstance(value, dict):
        redacted: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in _SECRET_KEYS:
                redacted[key] = "***"
            else:
                redacted[key] = redact_payload(item)
        return redacted
    if isinstance(value, list):
        return [redact_payload(item) for item in value]
    if isinstance(value, str):
        return _SECRET_PARAM.sub(lambda m: f"{m.group(1)}=***", value)
    return value


def safe_error_message(exc: BaseException) -> str:
    return str(redact_payload(str(exc)))


def classify_exception(exc: BaseException) -> tuple[str, str]:
    if isinstance(exc, ReelmatchError):
        return exc.code, exc.hint
    if isinstance(exc, requests.Timeout):
        return "TIMEOUT", "The provider did not answer in time; raise provider.timeout."
    if isinstance(exc, requests.RequestException):
        return "NETWORK_ERROR", "Check network connectivity to the provider."
    if isinstance(exc, json.JSONDecodeError):
        return "PARSE_ERROR", "A JSON document could not be parsed."
    if isinstance(exc, OSError):
        return "IO_ERROR", "Check filesystem permissions and free space."
    return "UNEXPECTED", ""


def append_log(config: dict[str, Any], entry: dict[str, Any]) -> None:
    log_cfg = config.get("logging", {}) or {}
    path = log_cfg.get("path")
    if not path:
        return
    try:
        log_path = ensure_dir(Path(path).expanduser().parent) / Path(path).name
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(redact_payload(entry), ensure_ascii=True) + "\n")
    except OSError:
        return


def request_with_retry(
    method: str,
    url: str,
    *,
    retries: int = 0,
    backoff_seconds: float = 0.5,
    max_backoff_seconds: float = 8.0,
    jitter: float = 0.1,
    retry_statuses: list[int] | None = None,
    **kwargs: Any,
) -> requests.Response:
    if retry_statuses is None:
        retry_statuses = [429, 502, 503, 504]
    attempt = 0
    while True:
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException:
            if attempt >= retries:
                raise
            delay = min(max_backoff_seconds, backoff_seconds * (2 ** attempt))
            delay = delay + (random.random() * jitter)
            time.sleep(delay)
            attempt += 1
            continue
        if response.status_code in retry_statuses and attempt < retries:
            delay = min(max_backoff_seconds, backoff_seconds * (2 ** attempt))
            delay = delay + (random.random() * jitter)
            time.sleep(delay)
            attempt += 1
            continue
        return response


def _cache_path(namespace: str, key: str) -> Path:
    base = ensure_dir(cache_dir() / namespace)
    return base / f"{key}.json"


def cache_key(payload: Any) -> str:
    raw = json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)
    return sha256(raw.encode("utf-8")).hexdigest()


def read_cache(namespace: str, key: str, ttl_seconds: int | None) -> Any | None:
    path = _cache_path(namespace, key)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return None
    timestamp = data.get("timestamp")
    if ttl_seconds is not None and timestamp:
        try:
            ttl = float(ttl_seconds)
        except (TypeError, ValueError):
            ttl = None
        if ttl is not None:
            age = time.time() - float(timestamp)
            if age > ttl:
                return None
    return data.get("value")


def write_cache(namespace: str, key: str, value: Any) -> None:
    path = _cache_path(namespace, key)
    payload = {"timestamp": time.time(), "value": value}
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=True, sort_keys=True), encoding="utf-8")
