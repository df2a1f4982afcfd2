"""Manual sync and token-maintenance triggers."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from gmail_archiver.credentials import CredentialService
from gmail_archiver.db.store import ArchiveStore
from gmail_archiver.deps import get_credentials, get_scheduler, get_store
from gmail_archiver.scheduler import SyncScheduler
from gmail_archiver.schemas.sync import SyncAccepted, SyncStatus, TokenRefreshResult

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


@router.post("/initial", response_model=SyncAccepted, status_code=status.HTTP_202_ACCEPTED)
async def trigger_initial_sync(
    store: Annotated[ArchiveStore, Depends(get_store)],
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
):
    """Queue a large backfill plus watch registration for every account."""
    accounts = await store.list_accounts()
    accepted = scheduler.enqueue_all(initial=True, reason="manual_initial")
    return SyncAccepted(
        accepted=accepted,
        accounts=len(accounts),
        message=(
            f"Initial sync queued for {len(accounts)} account(s)"
            if accepted
            else "Sync queue is full, try again later"
        ),
    )


@router.post("/refresh-tokens", response_model=TokenRefreshResult)
async def refresh_tokens(
    credentials: Annotated[CredentialService, Depends(get_credentials)],
):
    return TokenRefreshResult(refreshed=await credentials.refresh_all_expired())


@router.get("/status", response_model=SyncStatus)
async def sync_status(scheduler: Annotated[SyncScheduler, Depends(get_scheduler)]):
    return SyncStatus(
        pending=scheduler.pending,
        rounds_completed=scheduler.rounds_completed,
        last_round_at=scheduler.last_round_at,
    )
