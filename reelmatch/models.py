"""Movie entities, sources and match records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar

from .errors import InvalidEntityState
from .util import utc_now

CANONICAL_KEY = re.compile(r"^tt\d{7,}$")
_YEAR = re.compile(r"\b(18|19|20)\d{2}\b")


def is_canonical_key(key: str) -> bool:
    return bool(CANONICAL_KEY.match(key or ""))


def is_provisional_key(key: str) -> bool:
    return any((key or "").startswith(prefix) for prefix in PROVISIONAL_PREFIXES.values())


def _coerce_year(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _YEAR.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def _clean(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class Source:
    source_id: str
    url: str
    title: str | None = None
    description: str | None = None
    added_at: str | None = None

    type: ClassVar[str] = ""
    key_prefix: ClassVar[str] = ""

    @property
    def identity(self) -> tuple[str, str]:
        return (self.type, self.source_id)

    def provisional_key(self) -> str:
        return f"{self.key_prefix}{self.source_id}"

    def year_hint(self) -> int | None:
        return None

    def _payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        data = {
            "type": self.type,
            "source_id": self.source_id,
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "added_at": self.added_at,
        }
        data.update(self._payload())
        return _clean(data)


@dataclass
class ArchiveSource(Source):
    collection: str | None = None
    release_date: str | None = None
    language: str | None = None
    downloads: int | None = None
    duration: float | None = None

    type: ClassVar[str] = "archive.org"
    key_prefix: ClassVar[str] = "archive-"

    def year_hint(self) -> int | None:
        return _coerce_year(self.release_date)

    def _payload(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "release_date": self.release_date,
            "language": self.language,
            "downloads": self.downloads,
            "duration": self.duration,
        }


@dataclass
class VideoSource(Source):
    channel_name: str | None = None
    channel_id: str | None = None
    release_year: int | None = None
    language: str | None = None
    published_at: str | None = None
    duration: float | None = None

    type: ClassVar[str] = "youtube"
    key_prefix: ClassVar[str] = "youtube-"

    def year_hint(self) -> int | None:
        return _coerce_year(self.release_year)

    def _payload(self) -> dict[str, Any]:
        return {
            "channel_name": self.channel_name,
            "channel_id": self.channel_id,
            "release_year": self.release_year,
            "language": self.language,
            "published_at": self.published_at,
            "duration": self.duration,
        }


SOURCE_TYPES: dict[str, type[Source]] = {
    ArchiveSource.type: ArchiveSource,
    VideoSource.type: VideoSource,
}

PROVISIONAL_PREFIXES = {name: cls.key_prefix for name, cls in SOURCE_TYPES.items()}


def source_from_dict(data: dict[str, Any]) -> Source:
    kind = data.get("type")
    cls = SOURCE_TYPES.get(str(kind))
    if cls is None:
        raise InvalidEntityState(f"unknown source type: {kind!r}")
    if not data.get("source_id"):
        raise InvalidEntityState(f"{kind} source is missing source_id")
    names = {item.name for item in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    kwargs.setdefault("url", "")
    return cls(**kwargs)


@dataclass
class AIHint:
    title: str | None = None
    year: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return _clean({"title": self.title, "year": self.year})


@dataclass
class MovieEntity:
    key: str
    title: str | None = None
    year: int | None = None
    sources: list[Source] = field(default_factory=list)
    metadata: dict[str, Any] | None = None
    ai_hint: AIHint | None = None
    verified: bool = False
    last_updated: str = field(default_factory=utc_now)

    @property
    def is_canonical(self) -> bool:
        return is_canonical_key(self.key)

    def add_source(self, source: Source) -> bool:
        if any(existing.identity == source.identity for existing in self.sources):
            return False
        self.sources.append(source)
        return True

    def dedupe_sources(self) -> None:
        unique: list[Source] = []
        seen: set[tuple[str, str]] = set()
        for source in self.sources:
            if source.identity in seen:
                continue
            seen.add(source.identity)
            unique.append(source)
        self.sources = unique

    def source_year(self) -> int | None:
        for source in self.sources:
            year = source.year_hint()
            if year:
                return year
        return None

    def touch(self) -> None:
        self.last_updated = utc_now()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "title": self.title,
            "year": self.year,
            "sources": [source.to_dict() for source in self.sources],
            "metadata": self.metadata,
            "ai_hint": self.ai_hint.to_dict() if self.ai_hint else None,
            "verified": self.verified,
            "last_updated": self.last_updated,
        }
        return _clean(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any], key: str | None = None) -> "MovieEntity":
        hint = data.get("ai_hint")
        title = data.get("title")
        if isinstance(title, list):
            title = title[0] if title else None
        return cls(
            key=key or str(data.get("key") or ""),
            title=title,
            year=_coerce_year(data.get("year")),
            sources=[source_from_dict(item) for item in data.get("sources") or []],
            metadata=data.get("metadata") or None,
            ai_hint=AIHint(title=hint.get("title"), year=_coerce_year(hint.get("year"))) if hint else None,
            verified=bool(data.get("verified")),
            last_updated=data.get("last_updated") or utc_now(),
        )


@dataclass(frozen=True)
class Attempt:
    query: str
    year: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return _clean({"query": self.query, "year": self.year})


@dataclass
class FailedMatchRecord:
    identifier: str
    original_title: str
    attempts: list[Attempt] = field(default_factory=list)
    failed_at: str = field(default_factory=utc_now)
    last_attempt: str = field(default_factory=utc_now)
    reason: str | None = None
    year: int | None = None
    diagnostics: dict[str, bool] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _clean(
            {
                "identifier": self.identifier,
                "original_title": self.original_title,
                "year": self.year,
                "attempts": [attempt.to_dict() for attempt in self.attempts],
                "failed_at": self.failed_at,
                "last_attempt": self.last_attempt,
                "reason": self.reason,
                "diagnostics": self.diagnostics,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailedMatchRecord":
        attempts = [
            Attempt(query=str(item.get("query", "")), year=_coerce_year(item.get("year")))
            for item in data.get("attempts") or []
            if isinstance(item, dict)
        ]
        failed_at = data.get("failed_at") or utc_now()
        return cls(
            identifier=str(data["identifier"]),
            original_title=str(data.get("original_title") or ""),
            attempts=attempts,
            failed_at=failed_at,
            last_attempt=data.get("last_attempt") or failed_at,
            reason=data.get("reason"),
            year=_coerce_year(data.get("year")),
            diagnostics=data.get("diagnostics"),
        )


class Confidence(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    Confidence.NONE: 0,
    Confidence.LOW: 1,
    Confidence.MEDIUM: 2,
    Confidence.HIGH: 3,
}


@dataclass
class MatchResult:
    confidence: Confidence = Confidence.NONE
    external_id: str | None = None
    title: str | None = None
    year: int | None = None
    metadata: dict[str, Any] | None = None
    similarity: float | None = None

    @property
    def accepted(self) -> bool:
        return self.confidence in (Confidence.MEDIUM, Confidence.HIGH)

    def to_dict(self) -> dict[str, Any]:
        return _clean(
            {
                "confidence": self.confidence.value,
                "external_id": self.external_id,
                "title": self.title,
                "year": self.year,
                "similarity": round(self.similarity, 3) if self.similarity is not None else None,
                "metadata": self.metadata,
            }
        )
