"""Archive totals and recent activity."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from gmail_archiver.db.store import ArchiveStore
from gmail_archiver.deps import get_store
from gmail_archiver.schemas.email import RecentEmail, Stats, StatsOut

router = APIRouter(prefix="/api/v1/stats", tags=["stats"])

RECENT_ACTIVITY_COUNT = 5


@router.get("", response_model=StatsOut)
async def get_stats(store: Annotated[ArchiveStore, Depends(get_store)]):
    return StatsOut(
        stats=Stats(
            total_emails=await store.count_emails(),
            total_attachments=await store.count_attachments(),
        ),
        recent_activity=[
            RecentEmail.model_validate(e)
            for e in await store.recent_emails(RECENT_ACTIVITY_COUNT)
        ],
    )
