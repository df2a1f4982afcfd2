"""FastAPI dependency-injection helpers for the archiver's shared services."""

from __future__ import annotations

from fastapi import Request

from gmail_archiver.credentials import CredentialService
from gmail_archiver.db.store import ArchiveStore
from gmail_archiver.scheduler import SyncScheduler


def get_store(request: Request) -> ArchiveStore:
    return request.app.state.service.store


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.service.scheduler


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.service.credentials
