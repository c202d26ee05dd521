"""JSON schemas for the config file and the movie store document."""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator

STORE_SCHEMA_VERSION = "1.0.0"


def config_schema() -> dict[str, Any]:
    section = {"type": "object", "additionalProperties": True}
    return {
        "type": "object",
        "additionalProperties": True,
        "properties": {
            "provider": {
                "type": "object",
                "additionalProperties": True,
                "properties": {
                    "url": {"type": "string"},
                    "api_key": {"type": "string"},
                    "timeout": {"type": "number", "minimum": 0},
                    "retries": {"type": "integer", "minimum": 0},
                    "min_interval_seconds": {"type": "number", "minimum": 0},
                    "retry_statuses": {"type": "array", "items": {"type": "integer"}},
                    "cache": {"type": ["object", "boolean"]},
                    "response": section,
                },
            },
            "matching": {
                "type": "object",
                "additionalProperties": True,
                "properties": {
                    "high_similarity": {"type": "number", "minimum": 0, "maximum": 1},
                    "low_similarity": {"type": "number", "minimum": 0, "maximum": 1},
                    "year_tolerance": {"type": "integer", "minimum": 0},
                },
            },
            "enrich": {
                "type": "object",
                "additionalProperties": True,
                "properties": {
                    "only_unmatched": {"type": "boolean"},
                    "limit": {"type": ["integer", "null"], "minimum": 0},
                    "max_errors": {"type": "integer", "minimum": 0},
                    "min_confidence": {"enum": ["medium", "high"]},
                },
            },
            "store": section,
            "ledger": section,
            "normalize": {
                "type": "object",
                "additionalProperties": True,
                "properties": {
                    "channel_rules": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "additionalProperties": True,
                            "properties": {
                                "channel_id": {"type": "string"},
                                "name": {"type": "string"},
                                "patterns": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "properties": {
                                            "match": {"type": "string"},
                                            "replace": {"type": "string"},
                                            "extract": {"type": "integer", "minimum": 0},
                                        },
                                        "required": ["match"],
                                    },
                                },
                            },
                            "required": ["channel_id", "patterns"],
                        },
                    }
                },
            },
            "logging": section,
            "report": section,
        },
    }


def _source_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": True,
        "properties": {
            "type": {"enum": ["archive.org", "youtube"]},
            "source_id": {"type": "string", "minLength": 1},
            "url": {"type": "string"},
        },
        "required": ["type", "source_id"],
    }


def entity_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": True,
        "properties": {
            "key": {"type": "string", "minLength": 1},
            "title": {"type": ["string", "array", "null"]},
            "year": {"type": ["integer", "string", "null"]},
            "sources": {"type": "array", "items": _source_schema()},
            "metadata": {"type": ["object", "null"]},
            "ai_hint": {
                "type": ["object", "null"],
                "properties": {
                    "title": {"type": ["string", "null"]},
                    "year": {"type": ["integer", "string", "null"]},
                },
            },
            "verified": {"type": "boolean"},
            "last_updated": {"type": "string"},
        },
        "required": ["sources"],
    }


def _format_errors(validator: Draft7Validator, document: Any, prefix: str = "") -> list[str]:
    errors = []
    for error in sorted(validator.iter_errors(document), key=lambda e: list(e.path)):
        path = ".".join(str(part) for part in error.path)
        label = ".".join(part for part in (prefix, path) if part)
        errors.append((f"{label}: " if label else "") + error.message)
    return errors


def validate_config_schema(config: dict[str, Any]) -> list[str]:
    return _format_errors(Draft7Validator(config_schema()), config)


def validate_store_document(document: Any) -> list[str]:
    """Validate a whole store document: ``_schema`` header plus one entity per key."""
    if not isinstance(document, dict):
        return ["store document must be a JSON object"]
    validator = Draft7Validator(entity_schema())
    errors: list[str] = []
    for key, entity in document.items():
        if key == "_schema":
            if not isinstance(entity, dict):
                errors.append("_schema: must be an object")
            continue
        errors.extend(_format_errors(validator, entity, prefix=key))
    return errors
