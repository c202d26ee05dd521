"""CLI entrypoint for reelmatch."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import requests

from .config import (
    ensure_config_exists,
    load_config,
    save_default_config,
    save_default_secrets,
    validate_config,
)
from .enrich import EnrichOptions, Enricher
from .errors import ProviderError
from .ledger import FailureLedger
from .matcher import CandidateMatcher, Thresholds
from .paths import ledger_path, store_path
from .provider import OmdbProvider
from .store import CanonicalStore
from .util import classify_exception, safe_error_message, write_json


def _error_output(exc: Exception, command: str) -> dict[str, Any]:
    code, hint = classify_exception(exc)
    return {
        "error": {
            "message": safe_error_message(exc),
            "command": command,
            "type": exc.__class__.__name__,
            "code": code,
            "hint": hint,
        }
    }


def _load(args: argparse.Namespace) -> dict[str, Any]:
    return load_config(ensure_config_exists(args.config))


def _open_store(config: dict[str, Any]) -> CanonicalStore:
    return CanonicalStore(store_path((config.get("store", {}) or {}).get("path")))


def _open_ledger(config: dict[str, Any]) -> FailureLedger:
    return FailureLedger(ledger_path((config.get("ledger", {}) or {}).get("path")))


def _build_matcher(config: dict[str, Any]) -> CandidateMatcher:
    provider = OmdbProvider(config.get("provider", {}) or {})
    return CandidateMatcher(provider, Thresholds.from_config(config.get("matching")))


def _progress(event: dict[str, Any]) -> None:
    status = event.get("status")
    current = event.get("current", 0)
    total = event.get("total", 0)
    message = event.get("message") or ""
    if status == "in_progress":
        sys.stderr.write(f"[{current}/{total}] {message}\n")
    elif status == "error":
        sys.stderr.write(f"error: {message}\n")
    elif status == "warning":
        sys.stderr.write(f"warning: {message}\n")
    else:
        sys.stderr.write(f"{message} (matched {event.get('matched', 0)}, failed {event.get('failed', 0)})\n")


def cmd_init(args: argparse.Namespace) -> int:
    cfg_path = save_default_config(path=Path(args.config).expanduser() if args.config else None, overwrite=args.force)
    save_default_secrets(overwrite=False)
    sys.stdout.write(f"Initialized config at {cfg_path}\n")
    return 0


def cmd_enrich(args: argparse.Namespace) -> int:
    config = _load(args)
    enrich_cfg = config.get("enrich", {}) or {}
    options = EnrichOptions(
        limit=args.limit if args.limit is not None else enrich_cfg.get("limit"),
        only_unmatched=not args.all and bool(enrich_cfg.get("only_unmatched", True)),
        force_retry_failed=args.force_retry_failed,
        dry_run=args.dry_run,
        min_confidence=args.min_confidence or enrich_cfg.get("min_confidence") or "medium",
    )
    try:
        enricher = Enricher(
            _open_store(config),
            _open_ledger(config),
            _build_matcher(config),
            config,
            progress=None if args.quiet else _progress,
        )
        result = enricher.run(options)
    except Exception as exc:
        write_json(_error_output(exc, "enrich"))
        return 1
    write_json(result.to_dict())
    return 1 if result.aborted else 0


def cmd_match(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        result = _build_matcher(config).match(args.title, args.year)
    except Exception as exc:
        write_json(_error_output(exc, "match"))
        return 1
    write_json({"query": {"title": args.title, "year": args.year}, "result": result.to_dict()})
    return 0


def cmd_failed(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        ledger = _open_ledger(config)
        if args.action == "list":
            output: Any = [record.to_dict() for record in ledger.list()]
        elif args.action == "summary":
            output = ledger.summary(top=args.top)
        elif args.action == "clear":
            if not args.value:
                sys.stderr.write("failed clear needs an identifier\n")
                return 1
            output = {"cleared": [args.value] if ledger.clear(args.value) else []}
        elif args.action == "clear-all":
            output = {"cleared_count": ledger.clear_all()}
        else:
            if not args.value:
                sys.stderr.write("failed clear-prefix needs a query prefix\n")
                return 1
            output = {"cleared": ledger.clear_query_prefix(args.value)}
    except Exception as exc:
        write_json(_error_output(exc, "failed"))
        return 1
    write_json(output)
    return 0


def cmd_demote(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        store = _open_store(config)
        new_key = store.demote(args.key)
        store.save()
    except Exception as exc:
        write_json(_error_output(exc, "demote"))
        return 1
    write_json({"key": args.key, "demoted_to": new_key})
    return 0


def cmd_link(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        store = _open_store(config)
        metadata = None
        if args.fetch:
            metadata = OmdbProvider(config.get("provider", {}) or {}).fetch(args.imdb_id)
            if not metadata:
                raise ProviderError(f"provider has no details for {args.imdb_id}")
        entity = store.link(args.key, args.imdb_id, verified=True if args.verified else None, metadata=metadata)
        store.save()
        ledger = _open_ledger(config)
        ledger.clear(args.key)
        ledger.clear(args.imdb_id)
    except Exception as exc:
        write_json(_error_output(exc, "link"))
        return 1
    write_json(
        {
            "key": args.key,
            "linked_to": entity.key if entity is not None else args.imdb_id,
            "verified": bool(entity and entity.verified),
            "has_metadata": bool(entity and entity.metadata),
            "sources": len(entity.sources) if entity is not None else 0,
        }
    )
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        stats = _open_store(config).stats()
        stats["failed"] = len(_open_ledger(config))
    except Exception as exc:
        write_json(_error_output(exc, "stats"))
        return 1
    write_json(stats)
    return 0


def cmd_duplicates(args: argparse.Namespace) -> int:
    config = _load(args)
    try:
        pairs = _open_store(config).find_duplicates(threshold=args.threshold)
    except Exception as exc:
        write_json(_error_output(exc, "duplicates"))
        return 1
    write_json({"threshold": args.threshold, "pairs": pairs})
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    config = _load(args)
    errors, warnings = validate_config(config)
    for warning in warnings:
        sys.stderr.write(f"warning: {warning}\n")
    for error in errors:
        sys.stderr.write(f"error: {error}\n")
    return 1 if errors else 0


def _check_provider(cfg: dict[str, Any], timeout: float = 5.0) -> tuple[bool, str]:
    try:
        response = requests.get(
            cfg.get("url") or "https://www.omdbapi.com/",
            params={"apikey": cfg.get("api_key"), "i": "tt0133093"},
            timeout=timeout,
        )
        if response.status_code in {401, 403}:
            return False, f"omdb auth failed ({response.status_code})"
        response.raise_for_status()
        payload = response.json()
        if str(payload.get("Response", "True")).lower() == "false":
            return False, f"omdb error: {payload.get('Error')}"
        return True, "omdb ok"
    except (requests.RequestException, ValueError) as exc:
        return False, f"omdb error: {safe_error_message(exc)}"


def cmd_doctor(args: argparse.Namespace) -> int:
    config = _load(args)
    errors, warnings = validate_config(config)
    failed = False
    for warning in warnings:
        sys.stderr.write(f"warning: {warning}\n")
    for error in errors:
        sys.stderr.write(f"error: {error}\n")
        failed = True

    for label, opener in (("store", _open_store), ("ledger", _open_ledger)):
        try:
            size = len(opener(config))
            sys.stderr.write(f"{label} ok ({size} records)\n")
        except Exception as exc:
            code, _ = classify_exception(exc)
            sys.stderr.write(f"{label} error: {code} {safe_error_message(exc)}\n")
            failed = True

    provider = config.get("provider", {}) or {}
    if provider.get("api_key") and provider.get("api_key") != "CHANGE_ME":
        ok, msg = _check_provider(provider)
        sys.stderr.write(msg + "\n")
        failed = failed or not ok

    return 1 if failed else 0


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or more, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    epilog = (
        "Examples:\n"
        "  reelmatch init\n"
        "  reelmatch enrich --limit 50\n"
        "  reelmatch enrich --all --force-retry-failed\n"
        "  reelmatch match \"The Matrix\" --year 1999\n"
        "  reelmatch failed summary\n"
        "  reelmatch enrich --dry-run --min-confidence high\n"
        "  reelmatch demote tt0133093\n"
        "  reelmatch link archive-detour tt0037638 --verified --fetch\n"
        "\n"
        "Notes:\n"
        "  - JSON goes to stdout, progress to stderr.\n"
        "  - Exit code 1 means an error or an aborted batch.\n"
    )
    parser = argparse.ArgumentParser(
        prog="reelmatch",
        description="Resolve and enrich movie records against OMDb",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=epilog,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to config file (or set REELMATCH_CONFIG)")
    common.add_argument("--quiet", action="store_true", help="Suppress progress output")

    init_cmd = sub.add_parser("init", parents=[common], help="Initialize default config")
    init_cmd.add_argument("--force", action="store_true", help="Overwrite config if it exists")
    init_cmd.set_defaults(func=cmd_init)

    enrich_cmd = sub.add_parser("enrich", parents=[common], help="Match unresolved entities against OMDb")
    enrich_cmd.add_argument("--limit", type=_non_negative_int, help="Process at most N entities (0 means no limit)")
    enrich_cmd.add_argument("--dry-run", action="store_true", help="Match and report without writing store or ledger")
    enrich_cmd.add_argument(
        "--min-confidence",
        choices=["medium", "high"],
        help="Lowest confidence that is committed (default from enrich.min_confidence)",
    )
    enrich_cmd.add_argument("--all", action="store_true", help="Include entities that already have metadata")
    enrich_cmd.add_argument(
        "--force-retry-failed",
        action="store_true",
        help="Clear the failure ledger and retry previously failed entities",
    )
    enrich_cmd.set_defaults(func=cmd_enrich)

    match_cmd = sub.add_parser("match", parents=[common], help="Match a single title without touching the store")
    match_cmd.add_argument("title", help="Movie title")
    match_cmd.add_argument("--year", type=int, help="Release year hint")
    match_cmd.set_defaults(func=cmd_match)

    failed_cmd = sub.add_parser("failed", parents=[common], help="Inspect or clear the failure ledger")
    failed_cmd.add_argument("action", choices=["list", "summary", "clear", "clear-all", "clear-prefix"])
    failed_cmd.add_argument("value", nargs="?", help="Identifier for clear, query prefix for clear-prefix")
    failed_cmd.add_argument("--top", type=int, default=10, help="Number of common queries in summary")
    failed_cmd.set_defaults(func=cmd_failed)

    demote_cmd = sub.add_parser("demote", parents=[common], help="Remove metadata and return to a provisional key")
    demote_cmd.add_argument("key", help="Entity key")
    demote_cmd.set_defaults(func=cmd_demote)

    link_cmd = sub.add_parser("link", parents=[common], help="Attach an entity to an IMDb id by hand")
    link_cmd.add_argument("key", help="Entity key")
    link_cmd.add_argument("imdb_id", help="Target IMDb id (tt...)")
    link_cmd.add_argument("--verified", action="store_true", help="Mark the linked entity as verified")
    link_cmd.add_argument("--fetch", action="store_true", help="Fetch provider metadata for the id")
    link_cmd.set_defaults(func=cmd_link)

    stats_cmd = sub.add_parser("stats", parents=[common], help="Show store statistics")
    stats_cmd.set_defaults(func=cmd_stats)

    dup_cmd = sub.add_parser("duplicates", parents=[common], help="List likely duplicate entities")
    dup_cmd.add_argument("--threshold", type=float, default=0.85, help="Minimum title similarity")
    dup_cmd.set_defaults(func=cmd_duplicates)

    validate_cmd = sub.add_parser("validate", parents=[common], help="Validate config")
    validate_cmd.set_defaults(func=cmd_validate)

    doctor_cmd = sub.add_parser("doctor", parents=[common], help="Check configuration, files and connectivity")
    doctor_cmd.set_defaults(func=cmd_doctor)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
