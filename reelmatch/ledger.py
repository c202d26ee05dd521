"""Durable record of identifiers that failed to match."""

from __future__ import annotations

import json
import threading
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Iterable

from .errors import StoreFormatError
from .models import Attempt, FailedMatchRecord
from .util import read_json_file, utc_now, write_json_atomic


def _dedupe(existing: list[Attempt], incoming: Iterable[Attempt]) -> list[Attempt]:
    merged = list(existing)
    seen = set(merged)
    for attempt in incoming:
        if attempt in seen:
            continue
        seen.add(attempt)
        merged.append(attempt)
    return merged


class FailureLedger:
    """Failed-match records keyed by entity identifier.

    The file is a JSON array of records. Every mutation rewrites the whole
    document atomically, so the ledger on disk always matches memory.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._records: dict[str, FailedMatchRecord] = {}
        self._load()

    def _load(self) -> None:
        try:
            data = read_json_file(self.path)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StoreFormatError(f"failure ledger {self.path} is not valid JSON: {exc}") from exc
        if data is None:
            return
        if not isinstance(data, list):
            raise StoreFormatError(f"failure ledger {self.path} must hold a JSON array")
        for item in data:
            if not isinstance(item, dict) or not item.get("identifier"):
                raise StoreFormatError(f"failure ledger {self.path} has a record without identifier")
            record = FailedMatchRecord.from_dict(item)
            self._records[record.identifier] = record

    def _flush(self) -> None:
        write_json_atomic(self.path, [record.to_dict() for record in self._records.values()])

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._records

    def __len__(self) -> int:
        return len(self._records)

    def has(self, identifier: str) -> bool:
        return identifier in self._records

    def get(self, identifier: str) -> FailedMatchRecord | None:
        return self._records.get(identifier)

    def identifiers(self) -> set[str]:
        return set(self._records)

    def list(self) -> list[FailedMatchRecord]:
        return list(self._records.values())

    def record(
        self,
        identifier: str,
        original_title: str,
        reason: str | None,
        attempts: Iterable[Attempt] = (),
        year: int | None = None,
        diagnostics: dict[str, bool] | None = None,
    ) -> FailedMatchRecord:
        with self._lock:
            now = utc_now()
            existing = self._records.get(identifier)
            if existing is not None:
                existing.attempts = _dedupe(existing.attempts, attempts)
                existing.last_attempt = now
                existing.reason = reason
                if diagnostics is not None:
                    existing.diagnostics = diagnostics
                record = existing
            else:
                record = FailedMatchRecord(
                    identifier=identifier,
                    original_title=original_title,
                    attempts=_dedupe([], attempts),
                    failed_at=now,
                    last_attempt=now,
                    reason=reason,
                    year=year,
                    diagnostics=diagnostics,
                )
                self._records[identifier] = record
            self._flush()
            return record

    def clear(self, identifier: str) -> bool:
        with self._lock:
            if identifier not in self._records:
                return False
            del self._records[identifier]
            self._flush()
            return True

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._flush()
            return count

    def clear_where(self, predicate: Callable[[FailedMatchRecord], bool]) -> list[str]:
        with self._lock:
            removed = [key for key, record in self._records.items() if predicate(record)]
            if not removed:
                return []
            for key in removed:
                del self._records[key]
            self._flush()
            return removed

    def clear_query_prefix(self, prefix: str) -> list[str]:
        """Drop records whose attempts include a query starting with ``prefix``."""
        return self.clear_where(
            lambda record: any(attempt.query.startswith(prefix) for attempt in record.attempts)
        )

    def summary(self, top: int = 10) -> dict[str, Any]:
        records = self.list()
        reasons = Counter(record.reason or "unknown" for record in records)
        queries = Counter(attempt.query for record in records for attempt in record.attempts)
        diagnostics: Counter[str] = Counter()
        for record in records:
            for key, flag in (record.diagnostics or {}).items():
                if flag:
                    diagnostics[key] += 1
        return {
            "total": len(records),
            "by_reason": dict(reasons.most_common()),
            "diagnostics": dict(diagnostics),
            "with_year": sum(1 for record in records if record.year),
            "top_queries": [{"query": q, "count": c} for q, c in queries.most_common(top)],
        }
