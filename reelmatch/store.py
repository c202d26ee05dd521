"""Single-writer repository of movie entities keyed by canonical or provisional key."""

from __future__ import annotations

import json
import threading
from collections import Counter
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any, Iterator

from .errors import InvalidEntityState, SourceConflictError, StoreFormatError
from .models import MovieEntity, is_canonical_key, is_provisional_key
from .normalize import comparable
from .schema import STORE_SCHEMA_VERSION, validate_store_document
from .util import read_json_file, utc_now, write_json_atomic

SCHEMA_KEY = "_schema"


class CanonicalStore:
    """In-memory snapshot of the movie document with explicit persistence.

    Every source identity ``(type, source_id)`` is owned by at most one live
    key. ``put`` refuses to break that; ``migrate`` folds entities together
    instead. Nothing reaches disk until ``save``.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._entities: dict[str, MovieEntity] = {}
        self._owners: dict[tuple[str, str], str] = {}
        self._load()

    def _load(self) -> None:
        try:
            document = read_json_file(self.path)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StoreFormatError(f"store {self.path} is not valid JSON: {exc}") from exc
        if document is None:
            return
        errors = validate_store_document(document)
        if errors:
            raise StoreFormatError(f"store {self.path} failed validation: {'; '.join(errors[:5])}")
        for key, data in document.items():
            if key == SCHEMA_KEY:
                continue
            try:
                entity = MovieEntity.from_dict(data, key=key)
            except (InvalidEntityState, TypeError, ValueError) as exc:
                raise StoreFormatError(f"store {self.path}: {key}: {exc}") from exc
            try:
                self._insert(key, entity)
            except SourceConflictError as exc:
                raise StoreFormatError(f"store {self.path}: {exc}") from exc

    def _conflicts(self, key: str, entity: MovieEntity) -> list[tuple[tuple[str, str], str]]:
        conflicts = []
        for source in entity.sources:
            owner = self._owners.get(source.identity)
            if owner is not None and owner != key:
                conflicts.append((source.identity, owner))
        return conflicts

    def _unindex(self, key: str) -> None:
        entity = self._entities.get(key)
        if entity is None:
            return
        for source in entity.sources:
            if self._owners.get(source.identity) == key:
                del self._owners[source.identity]

    def _index(self, key: str, entity: MovieEntity) -> None:
        for source in entity.sources:
            self._owners[source.identity] = key

    def _insert(self, key: str, entity: MovieEntity) -> None:
        entity.dedupe_sources()
        conflicts = self._conflicts(key, entity)
        if conflicts:
            identity, owner = conflicts[0]
            raise SourceConflictError(f"source {identity[0]}:{identity[1]} already belongs to {owner}, not {key}")
        self._unindex(key)
        entity.key = key
        self._entities[key] = entity
        self._index(key, entity)

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[MovieEntity]:
        return iter(list(self._entities.values()))

    def keys(self) -> list[str]:
        return list(self._entities)

    def entities(self) -> list[MovieEntity]:
        return list(self._entities.values())

    def get(self, key: str) -> MovieEntity | None:
        return self._entities.get(key)

    def owner_of(self, source_type: str, source_id: str) -> str | None:
        return self._owners.get((source_type, source_id))

    def put(self, key: str, entity: MovieEntity) -> MovieEntity:
        with self._lock:
            self._insert(key, entity)
            return entity

    def migrate(self, old_key: str, new_key: str) -> MovieEntity | None:
        """Move ``old_key`` to ``new_key``, merging when ``new_key`` is live.

        The entity already at ``new_key`` survives: its sources come first and
        its non-empty fields win. Repeating a migrate only refreshes the
        timestamp.
        """
        with self._lock:
            incoming = self._entities.get(old_key)
            survivor = self._entities.get(new_key)
            if incoming is None or old_key == new_key:
                if survivor is not None:
                    survivor.touch()
                return survivor
            self._unindex(old_key)
            del self._entities[old_key]
            if survivor is None:
                incoming.key = new_key
                incoming.touch()
                self._entities[new_key] = incoming
                self._index(new_key, incoming)
                return incoming
            for source in incoming.sources:
                survivor.add_source(source)
            if not survivor.metadata and incoming.metadata:
                survivor.metadata = incoming.metadata
            if not survivor.title and incoming.title:
                survivor.title = incoming.title
            if not survivor.year and incoming.year:
                survivor.year = incoming.year
            if survivor.ai_hint is None and incoming.ai_hint is not None:
                survivor.ai_hint = incoming.ai_hint
            survivor.verified = survivor.verified or incoming.verified
            survivor.touch()
            self._index(new_key, survivor)
            return survivor

    def demote(self, key: str) -> str:
        """Drop provider metadata and move a canonical entity back to a provisional key."""
        with self._lock:
            entity = self._entities.get(key)
            if entity is None:
                raise InvalidEntityState(f"no entity stored under {key}")
            entity.metadata = None
            entity.verified = False
            entity.touch()
            if not entity.is_canonical:
                return key
            if not entity.sources:
                raise InvalidEntityState(f"{key} has no sources to derive a provisional key from")
            target = entity.sources[0].provisional_key()
            self.migrate(key, target)
            return target

    def link(
        self,
        key: str,
        external_id: str,
        verified: bool | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MovieEntity | None:
        """Attach the entity at ``key`` to ``external_id`` by hand.

        Goes through ``migrate``, so an entity already stored under
        ``external_id`` absorbs this one. ``verified`` and ``metadata`` are
        applied before the move and follow the usual merge rules.
        """
        if not is_canonical_key(external_id):
            raise InvalidEntityState(f"{external_id!r} is not an IMDb id")
        with self._lock:
            entity = self._entities.get(key)
            if entity is None:
                raise InvalidEntityState(f"no entity stored under {key}")
            if metadata:
                entity.metadata = metadata
            if verified is not None:
                entity.verified = verified
            entity.touch()
            return self.migrate(key, external_id)

    def unresolved(self) -> list[MovieEntity]:
        return [entity for entity in self._entities.values() if not entity.metadata]

    def stats(self) -> dict[str, Any]:
        by_source: Counter[str] = Counter()
        for entity in self._entities.values():
            for source in entity.sources:
                by_source[source.type] += 1
        matched = sum(1 for entity in self._entities.values() if entity.metadata)
        return {
            "total": len(self._entities),
            "matched": matched,
            "unmatched": len(self._entities) - matched,
            "canonical": sum(1 for entity in self._entities.values() if entity.is_canonical),
            "provisional": sum(1 for key in self._entities if is_provisional_key(key)),
            "verified": sum(1 for entity in self._entities.values() if entity.verified),
            "sources": dict(by_source),
        }

    def find_duplicates(self, threshold: float = 0.85) -> list[dict[str, Any]]:
        titled = [
            (entity.key, comparable(entity.title), entity.year)
            for entity in self._entities.values()
            if entity.title
        ]
        pairs = []
        for index, (left_key, left, left_year) in enumerate(titled):
            for right_key, right, right_year in titled[index + 1:]:
                if left_year and right_year and left_year != right_year:
                    continue
                ratio = 1.0 if left == right else SequenceMatcher(None, left, right).ratio()
                if ratio >= threshold:
                    pairs.append({"keys": [left_key, right_key], "similarity": round(ratio, 3)})
        pairs.sort(key=lambda pair: pair["similarity"], reverse=True)
        return pairs

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            SCHEMA_KEY: {
                "version": STORE_SCHEMA_VERSION,
                "description": "Movie entities keyed by IMDb id or provisional source key",
                "last_updated": utc_now(),
            }
        }
        for key, entity in self._entities.items():
            document[key] = entity.to_dict()
        return document

    def save(self) -> None:
        with self._lock:
            write_json_atomic(self.path, self.to_document())
