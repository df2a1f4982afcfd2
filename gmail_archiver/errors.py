"""Exception taxonomy for the sync and ingestion pipeline."""

from __future__ import annotations


class ArchiverError(Exception):
    """Base class for all archiver errors."""


class AuthError(ArchiverError):
    """Credential is invalid or expired beyond refresh.

    Halts the affected account's round; requires re-authentication.
    """


class StaleCursorError(ArchiverError):
    """The history cursor is too old for the change-log API."""

    def __init__(self, history_id: str) -> None:
        super().__init__(f"History cursor {history_id} is no longer valid")
        self.history_id = history_id


class TransientFetchError(ArchiverError):
    """Network or API failure while fetching a message or attachment."""


class UploadError(ArchiverError):
    """The object store rejected a write or a permission grant."""


class DuplicateKeyError(ArchiverError):
    """A record with the same unique key already exists."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Duplicate key: {key}")
        self.key = key
