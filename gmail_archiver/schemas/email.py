"""Response schemas for archived emails and attachments."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AttachmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    filename: str
    mime_type: str
    link: str
    created_at: datetime


class EmailOut(BaseModel):
    """An archived email with its attachments."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    message_id: str
    thread_id: str
    subject: str
    sender: str
    recipients: str
    cc: str
    bcc: str
    date: datetime
    body_text: str
    body_html: str
    account_id: UUID | None
    created_at: datetime
    attachments: list[AttachmentOut] = []


class EmailSummary(BaseModel):
    """Minimal parent-email fields shown alongside an attachment."""

    model_config = ConfigDict(from_attributes=True)

    message_id: str
    subject: str
    sender: str
    date: datetime


class AttachmentWithEmail(AttachmentOut):
    email: EmailSummary


class RecentEmail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject: str
    sender: str
    date: datetime
    created_at: datetime


class Stats(BaseModel):
    total_emails: int
    total_attachments: int


class StatsOut(BaseModel):
    stats: Stats
    recent_activity: list[RecentEmail]
