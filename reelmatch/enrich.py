"""Batch enrichment: resolve provisional entities to canonical keys."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import ConfigError, InvalidEntityState, NoConfidentMatch, ProviderError, StoreWriteError
from .ledger import FailureLedger
from .matcher import CandidateMatcher
from .models import Attempt, Confidence, MatchResult, MovieEntity, VideoSource
from .normalize import clean_channel_title, extract_year, normalize
from .report import write_report
from .store import CanonicalStore
from .util import append_log, classify_exception, safe_error_message

INVALID_TITLE = "Invalid title"
NO_CONFIDENT_MATCH = "No confident match"

ProgressCallback = Callable[[dict[str, Any]], None]


@dataclass
class EnrichOptions:
    limit: int | None = None
    only_unmatched: bool = True
    force_retry_failed: bool = False
    dry_run: bool = False
    min_confidence: str = Confidence.MEDIUM.value


@dataclass
class EnrichmentResult:
    run_id: str
    dry_run: bool = False
    processed: int = 0
    matched: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    error_count: int = 0
    aborted: bool = False
    matches: list[dict[str, Any]] = field(default_factory=list)
    report_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "matched": self.matched,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted": self.aborted,
            "error_count": self.error_count,
            "errors": self.errors,
            "matches": self.matches,
            "report_path": self.report_path,
        }


class Enricher:
    def __init__(
        self,
        store: CanonicalStore,
        ledger: FailureLedger,
        matcher: CandidateMatcher,
        config: dict[str, Any],
        progress: ProgressCallback | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.matcher = matcher
        self.config = config
        self.progress = progress
        enrich_cfg = config.get("enrich", {}) or {}
        self.max_errors = int(enrich_cfg.get("max_errors", 100))
        self.channel_rules = (config.get("normalize", {}) or {}).get("channel_rules") or []

    def _check_config(self) -> None:
        api_key = (self.config.get("provider", {}) or {}).get("api_key")
        if not api_key or api_key == "CHANGE_ME":
            raise ConfigError("provider.api_key is required before enriching")

    @staticmethod
    def _min_confidence(options: EnrichOptions) -> Confidence:
        try:
            level = Confidence(options.min_confidence)
        except ValueError as exc:
            raise ConfigError(f"unknown confidence level: {options.min_confidence!r}") from exc
        if level.rank < Confidence.MEDIUM.rank:
            raise ConfigError("min_confidence must be medium or high")
        return level

    def _emit(self, status: str, current: int, total: int, message: str, result: EnrichmentResult) -> None:
        if not self.progress:
            return
        self.progress(
            {
                "type": "enrich",
                "status": status,
                "current": current,
                "total": total,
                "message": message,
                "matched": result.matched,
                "failed": result.failed,
            }
        )

    def select(self, options: EnrichOptions) -> list[MovieEntity]:
        if options.limit is not None and options.limit < 0:
            raise ConfigError(f"limit must not be negative (got {options.limit})")
        if options.only_unmatched:
            candidates = self.store.unresolved()
        else:
            candidates = self.store.entities()
        if not options.force_retry_failed:
            skipped = self.ledger.identifiers()
            candidates = [entity for entity in candidates if entity.key not in skipped]
        if options.limit:
            candidates = candidates[: options.limit]
        return candidates

    def prepare(self, entity: MovieEntity) -> tuple[str, int | None]:
        """Return the query title and year hint for ``entity``."""
        raw = (entity.title or "").strip()
        video = next((source for source in entity.sources if isinstance(source, VideoSource)), None)
        if video is not None:
            raw = clean_channel_title(raw, video.channel_id, self.channel_rules)
        stripped, parsed_year = extract_year(raw)
        return normalize(stripped), entity.source_year() or parsed_year

    def _note_failure(self, dry_run: bool, key: str, title: str, reason: str, **kwargs: Any) -> None:
        if not dry_run:
            self.ledger.record(key, title, reason, **kwargs)

    def _resolve(self, entity: MovieEntity, dry_run: bool = False) -> MatchResult:
        """Match ``entity``; failures go to the ledger unless ``dry_run``."""
        key = entity.key
        if not entity.title or not entity.title.strip():
            self._note_failure(dry_run, key, entity.title or "", INVALID_TITLE)
            raise InvalidEntityState(f"{key} has no title")
        name, year = self.prepare(entity)
        if not name:
            self._note_failure(dry_run, key, entity.title, INVALID_TITLE)
            raise InvalidEntityState(f"{key} title normalizes to nothing")
        attempts = [Attempt(query=name, year=year)]
        result = self.matcher.match(name, year)
        hint = entity.ai_hint
        hint_used = False
        if not result.accepted and hint is not None and hint.title:
            hint_year = hint.year or year
            attempts.append(Attempt(query=hint.title, year=hint_year))
            hint_used = True
            result = self.matcher.match(hint.title, hint_year)
        if not result.accepted or not result.external_id:
            self._note_failure(
                dry_run,
                key,
                entity.title,
                NO_CONFIDENT_MATCH,
                attempts=attempts,
                year=year,
                diagnostics={
                    "has_ai_title": bool(hint and hint.title),
                    "has_ai_year": bool(hint and hint.year),
                    "ai_title_used": hint_used,
                },
            )
            raise NoConfidentMatch(f"no confident match for {name!r} ({year or 'unknown year'})")
        if not result.metadata:
            # Search and detail lookups disagree; leave the entity for the next run.
            raise ProviderError(f"provider returned no details for {result.external_id}")
        return result

    def _apply(self, entity: MovieEntity, result: MatchResult) -> MovieEntity | None:
        old_key = entity.key
        new_key = str(result.external_id)
        entity.year = result.year or entity.year
        entity.metadata = result.metadata
        entity.verified = entity.verified or result.confidence == Confidence.HIGH
        entity.touch()
        self.store.put(old_key, entity)
        survivor = self.store.migrate(old_key, new_key)
        self.store.save()
        self.ledger.clear(old_key)
        self.ledger.clear(new_key)
        return survivor

    def _record_error(self, result: EnrichmentResult, key: str, exc: BaseException) -> dict[str, Any]:
        code, hint = classify_exception(exc)
        error = {"key": key, "code": code, "message": safe_error_message(exc)}
        if hint:
            error["hint"] = hint
        result.error_count += 1
        if len(result.errors) < self.max_errors:
            result.errors.append(error)
        return error

    def _write_report(self, result: EnrichmentResult) -> None:
        try:
            result.report_path = write_report(result.to_dict(), self.config)
        except OSError as exc:
            # Matches are already saved; a missing report does not fail the batch.
            message = safe_error_message(exc)
            append_log(
                self.config,
                {"run_id": result.run_id, "phase": "report", "status": "error", "error": message, "ts": time.time()},
            )
            self._emit("warning", result.processed, result.processed, f"report not written: {message}", result)

    def run(self, options: EnrichOptions | None = None) -> EnrichmentResult:
        options = options or EnrichOptions()
        self._check_config()
        min_confidence = self._min_confidence(options)
        result = EnrichmentResult(run_id=uuid.uuid4().hex, dry_run=options.dry_run)
        if options.force_retry_failed and not options.dry_run:
            self.ledger.clear_all()
        candidates = self.select(options)
        total = len(candidates)
        self._emit("starting", 0, total, f"Enriching {total} entities", result)
        for index, entity in enumerate(candidates, start=1):
            key = entity.key
            start_mono = time.monotonic()
            append_log(self.config, {"run_id": result.run_id, "key": key, "phase": "start", "ts": time.time()})
            entry: dict[str, Any] = {"run_id": result.run_id, "key": key, "phase": "end"}
            try:
                match = self._resolve(entity, dry_run=options.dry_run)
                below = match.confidence.rank < min_confidence.rank
                survivor = None if below or options.dry_run else self._apply(entity, match)
            except StoreWriteError as exc:
                result.processed += 1
                result.failed += 1
                result.aborted = True
                error = self._record_error(result, key, exc)
                entry.update({"status": "aborted", "error": {"code": error["code"], "message": error["message"]}})
                entry.update({"duration_s": time.monotonic() - start_mono, "ts": time.time()})
                append_log(self.config, entry)
                self._emit("error", index, total, f"Aborted: {error['message']}", result)
                break
            except (InvalidEntityState, NoConfidentMatch) as exc:
                result.failed += 1
                entry.update({"status": "failed", "error": {"code": exc.code, "message": str(exc)}})
                message = f"{key}: {exc}"
            except Exception as exc:
                # Provider and unexpected failures skip the ledger so the entity is retried next run.
                result.failed += 1
                error = self._record_error(result, key, exc)
                entry.update({"status": "error", "error": {"code": error["code"], "message": error["message"]}})
                message = f"{key}: {error['message']}"
            else:
                confidence = match.confidence.value
                if below:
                    result.skipped += 1
                    entry.update({"status": "skipped", "confidence": confidence, "external_id": match.external_id})
                    message = f"{key}: {confidence} match {match.external_id} is below {min_confidence.value}"
                else:
                    result.matched += 1
                    new_key = survivor.key if survivor is not None else str(match.external_id)
                    result.matches.append(
                        {
                            "key": key,
                            "external_id": new_key,
                            "title": match.title,
                            "year": match.year,
                            "confidence": confidence,
                        }
                    )
                    status = "dry_run" if options.dry_run else "matched"
                    entry.update({"status": status, "confidence": confidence, "external_id": new_key})
                    message = f"{key} -> {new_key} ({confidence})" + (" (dry run)" if options.dry_run else "")
            result.processed += 1
            entry.update({"duration_s": time.monotonic() - start_mono, "ts": time.time()})
            append_log(self.config, entry)
            self._emit("in_progress", index, total, message, result)
        if not result.aborted:
            self._emit("completed", result.processed, total, f"Matched {result.matched} of {result.processed}", result)
        self._write_report(result)
        return result
