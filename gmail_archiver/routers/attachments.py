"""Attachment listing across all archived emails."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from gmail_archiver.db.store import ArchiveStore
from gmail_archiver.deps import get_store
from gmail_archiver.schemas.common import PaginatedResponse, Pagination
from gmail_archiver.schemas.email import AttachmentWithEmail

router = APIRouter(prefix="/api/v1/attachments", tags=["attachments"])


@router.get("", response_model=PaginatedResponse[AttachmentWithEmail])
async def list_attachments(
    store: Annotated[ArchiveStore, Depends(get_store)],
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    attachments = await store.list_attachments(page, limit)
    total = await store.count_attachments()
    return PaginatedResponse[AttachmentWithEmail](
        items=[AttachmentWithEmail.model_validate(a) for a in attachments],
        pagination=Pagination.build(page, limit, total),
    )
