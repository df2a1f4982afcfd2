"""Gmail Pub/Sub push endpoint.

The handler only enqueues a sync round and returns; discovery runs on the
scheduler's worker.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from gmail_archiver.deps import get_scheduler
from gmail_archiver.scheduler import SyncScheduler
from gmail_archiver.schemas.sync import PubSubEnvelope

logger = structlog.get_logger()

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/gmail", status_code=status.HTTP_202_ACCEPTED)
async def gmail_push(
    envelope: PubSubEnvelope,
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
):
    if envelope.message is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid Pub/Sub message format",
        )
    accepted = scheduler.handle_push_notification(
        envelope.message.model_dump(by_alias=True, exclude_none=True)
    )
    return {"status": "accepted" if accepted else "queue_full"}
