"""Error taxonomy for the resolution engine."""

from __future__ import annotations


class ReelmatchError(RuntimeError):
    code = "ERROR"
    hint = ""

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code
        if hint is not None:
            self.hint = hint


class ConfigError(ReelmatchError):
    code = "CONFIG_ERROR"
    hint = "Run `reelmatch validate` and fix the reported config keys."


class ProviderError(ReelmatchError):
    """Network, HTTP or payload failure talking to the metadata provider."""

    code = "PROVIDER_ERROR"
    hint = "Check provider connectivity, API key and rate limits."


class NoConfidentMatch(ReelmatchError):
    code = "NO_MATCH"
    hint = "Retry later with --force-retry-failed or fix the title by hand."


class InvalidEntityState(ReelmatchError):
    code = "INVALID_ENTITY"
    hint = "The stored record is missing required fields."


class StoreWriteError(ReelmatchError):
    code = "STORE_WRITE_ERROR"
    hint = "Check free disk space and permissions on the state directory."


class StoreFormatError(ReelmatchError):
    code = "STORE_FORMAT_ERROR"
    hint = "The document on disk is corrupt; restore it from a backup."


class SourceConflictError(ReelmatchError):
    code = "SOURCE_CONFLICT"
    hint = "Use migrate to fold the entities together instead of put."
