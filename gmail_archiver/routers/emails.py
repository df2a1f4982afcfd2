"""Archived email listing and retrieval."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from gmail_archiver.db.store import ArchiveStore
from gmail_archiver.deps import get_store
from gmail_archiver.schemas.common import PaginatedResponse, Pagination
from gmail_archiver.schemas.email import EmailOut

router = APIRouter(prefix="/api/v1/emails", tags=["emails"])


@router.get("", response_model=PaginatedResponse[EmailOut])
async def list_emails(
    store: Annotated[ArchiveStore, Depends(get_store)],
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """Newest emails first, with their attachments."""
    emails = await store.list_emails(page, limit)
    total = await store.count_emails()
    return PaginatedResponse[EmailOut](
        items=[EmailOut.model_validate(e) for e in emails],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{message_id}", response_model=EmailOut)
async def get_email(
    message_id: str,
    store: Annotated[ArchiveStore, Depends(get_store)],
):
    email = await store.get_email(message_id)
    if email is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")
    return EmailOut.model_validate(email)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_email(
    message_id: str,
    store: Annotated[ArchiveStore, Depends(get_store)],
):
    """Remove an email and, by cascade, its attachment rows.

    Uploaded objects are left in the bucket.
    """
    if not await store.delete_email(message_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")
