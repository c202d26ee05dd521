#!/usr/bin/env python3
"""Functional smoke tests for reelmatch (offline, stubbed OMDb)."""

from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import tempfile
import shutil
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

import yaml

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from reelmatch.config import default_config  # noqa: E402


SEARCH_FIXTURE = {
    "the matrix": {
        "Search": [
            {"Title": "The Matrix", "Year": "1999", "imdbID": "tt0133093", "Type": "movie", "Poster": "N/A"},
            {"Title": "The Matrix Reloaded", "Year": "2003", "imdbID": "tt0234215", "Type": "movie", "Poster": "N/A"},
        ],
        "totalResults": "2",
        "Response": "True",
    },
}

DETAIL_FIXTURE = {
    "tt0133093": {
        "Title": "The Matrix",
        "Year": "1999",
        "Rated": "R",
        "Runtime": "136 min",
        "Genre": "Action, Sci-Fi",
        "Director": "Lana Wachowski, Lilly Wachowski",
        "Plot": "A computer hacker learns about the true nature of reality.",
        "imdbRating": "8.7",
        "imdbVotes": "2,100,000",
        "imdbID": "tt0133093",
        "Type": "movie",
        "Response": "True",
    }
}

STORE_FIXTURE = {
    "youtube-abc": {
        "title": "1999 The Matrix",
        "sources": [
            {"type": "youtube", "source_id": "abc", "url": "https://www.youtube.com/watch?v=abc", "channel_id": "@Other"}
        ],
    },
    "archive-xyz": {
        "title": "The_Matrix.mp4",
        "sources": [
            {
                "type": "archive.org",
                "source_id": "xyz",
                "url": "https://archive.org/details/xyz",
                "release_date": "1999-03-31",
            }
        ],
    },
    "archive-nope": {
        "title": "Zzyzx Home Movies [Reel 3]",
        "sources": [{"type": "archive.org", "source_id": "nope", "url": "https://archive.org/details/nope"}],
    },
}


class StubHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        parsed = urlparse(self.path)
        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        if params.get("apikey") != "TEST":
            self._write_json({"Response": "False", "Error": "Invalid API key!"})
            return
        if "i" in params:
            detail = DETAIL_FIXTURE.get(params["i"])
            self._write_json(detail or {"Response": "False", "Error": "Incorrect IMDb ID."})
            return
        if "s" in params:
            result = SEARCH_FIXTURE.get(params["s"].lower())
            self._write_json(result or {"Response": "False", "Error": "Movie not found!"})
            return
        self.send_response(404)
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003 - BaseHTTPRequestHandler signature
        return

    def _write_json(self, payload: Any) -> None:
        data = json.dumps(payload, ensure_ascii=True).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)


def _start_server() -> tuple[ThreadingHTTPServer, int]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), StubHandler)
    port = server.server_address[1]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, port


def _write_config(path: Path, port: int, temp_dir: Path) -> None:
    config = default_config()
    config["provider"]["url"] = f"http://127.0.0.1:{port}/"
    config["provider"]["api_key"] = "TEST"
    config["provider"]["retries"] = 0
    config["provider"]["min_interval_seconds"] = 0
    config["store"]["path"] = str(temp_dir / "movies.json")
    config["ledger"]["path"] = str(temp_dir / "failed-matches.json")
    config["logging"]["path"] = str(temp_dir / "logs" / "enrich.jsonl")
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config, handle, sort_keys=False)


def _run_cli(
    args: list[str],
    env: dict[str, str],
    *,
    allowed_codes: set[int] | None = None,
) -> Any:
    cmd = [sys.executable, "-m", "reelmatch.cli"] + args
    proc = subprocess.run(cmd, capture_output=True, text=True, env=env)
    if allowed_codes is None:
        allowed_codes = {0}
    if proc.returncode not in allowed_codes:
        raise RuntimeError(
            f"command failed ({proc.returncode}): {' '.join(args)}\nstdout: {proc.stdout}\nstderr: {proc.stderr}"
        )
    try:
        return json.loads(proc.stdout) if proc.stdout.strip() else {}
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"invalid JSON output for {' '.join(args)}") from exc


def _assert(condition: bool, message: str) -> None:
    if not condition:
        raise AssertionError(message)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run reelmatch functional smoke tests.")
    parser.add_argument("--keep-temp", action="store_true", help="Keep temporary config directory")
    parser.add_argument("--verbose", action="store_true", help="Print extra diagnostics")
    args = parser.parse_args()

    server, port = _start_server()
    temp_dir = Path(tempfile.mkdtemp(prefix="reelmatch-functional-"))
    cfg_path = temp_dir / "config.yaml"
    secrets_path = temp_dir / "secrets.yaml"
    _write_config(cfg_path, port, temp_dir)
    secrets_path.write_text("{}", encoding="utf-8")
    (temp_dir / "movies.json").write_text(json.dumps(STORE_FIXTURE), encoding="utf-8")

    env = os.environ.copy()
    env["REELMATCH_CONFIG"] = str(cfg_path)
    env["REELMATCH_SECRETS"] = str(secrets_path)
    env["XDG_STATE_HOME"] = str(temp_dir / "state")
    env["XDG_CACHE_HOME"] = str(temp_dir / "cache")

    try:
        before = (temp_dir / "movies.json").read_text(encoding="utf-8")
        dry = _run_cli(["enrich", "--quiet", "--dry-run"], env)
        _assert(dry.get("dry_run") is True and dry.get("matched") == 2, "dry run should report both matches")
        _assert((temp_dir / "movies.json").read_text(encoding="utf-8") == before, "dry run must not touch the store")
        _assert(not (temp_dir / "failed-matches.json").exists(), "dry run must not write the ledger")

        run1 = _run_cli(["enrich", "--quiet"], env)
        _assert(run1.get("processed") == 3, "all three entities should be processed")
        _assert(run1.get("matched") == 2, "both Matrix sources should match")
        _assert(run1.get("failed") == 1, "home movie should fail")

        store = json.loads((temp_dir / "movies.json").read_text(encoding="utf-8"))
        _assert("_schema" in store, "store should carry a schema header")
        _assert("youtube-abc" not in store and "archive-xyz" not in store, "provisional keys should be gone")
        matrix = store.get("tt0133093") or {}
        types = sorted(source.get("type") for source in matrix.get("sources", []))
        _assert(types == ["archive.org", "youtube"], "merged entity should hold both sources")
        _assert((matrix.get("metadata") or {}).get("votes") == 2100000, "votes should parse as int")

        failed = _run_cli(["failed", "list"], env)
        _assert([item.get("identifier") for item in failed] == ["archive-nope"], "ledger should hold the miss")

        run2 = _run_cli(["enrich", "--quiet"], env)
        _assert(run2.get("processed") == 0, "ledger entries should be skipped without --force-retry-failed")

        run3 = _run_cli(["enrich", "--quiet", "--force-retry-failed"], env)
        _assert(run3.get("processed") == 1, "forced retry should revisit the failed entity")

        demoted = _run_cli(["demote", "tt0133093"], env)
        _assert(demoted.get("demoted_to") == "youtube-abc", "demote should return to the first source key")

        stats = _run_cli(["stats"], env)
        _assert(stats.get("canonical") == 0, "no canonical entities after demote")

        linked = _run_cli(["link", "youtube-abc", "tt0133093", "--verified", "--fetch"], env)
        _assert(linked.get("linked_to") == "tt0133093", "link should move the entity to the IMDb id")
        _assert(linked.get("verified") is True and linked.get("has_metadata") is True, "link should verify and fetch")
        _assert(_run_cli(["stats"], env).get("canonical") == 1, "linked entity should be canonical")

        log_lines = (temp_dir / "logs" / "enrich.jsonl").read_text(encoding="utf-8").splitlines()
        _assert(any('"status": "matched"' in line for line in log_lines), "enrich log should record matches")
        _assert(not any("TEST" in line for line in log_lines), "log should never contain the API key")

        doctor_proc = subprocess.run(
            [sys.executable, "-m", "reelmatch.cli", "doctor", "--quiet"],
            capture_output=True,
            text=True,
            env=env,
        )
        _assert(doctor_proc.returncode == 0, f"doctor failed: {doctor_proc.stderr}")

        if args.verbose:
            sys.stdout.write("Functional tests passed.\n")
    finally:
        server.shutdown()
        server.server_close()
        if args.keep_temp:
            sys.stdout.write(f"Temp config at {temp_dir}\n")
        else:
            shutil.rmtree(temp_dir, ignore_errors=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
