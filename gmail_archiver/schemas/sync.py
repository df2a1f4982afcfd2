"""Request/response schemas for sync triggers and the Pub/Sub webhook."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PubSubMessage(BaseModel):
    """The ``message`` member of a Pub/Sub push envelope."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    data: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")
    publish_time: str | None = Field(default=None, alias="publishTime")
    attributes: dict[str, str] = Field(default_factory=dict)


class PubSubEnvelope(BaseModel):
    message: PubSubMessage | None = None
    subscription: str | None = None


class SyncAccepted(BaseModel):
    """A sync request was queued (or rejected because the queue is full)."""

    accepted: bool
    accounts: int
    message: str


class TokenRefreshResult(BaseModel):
    refreshed: int


class SyncStatus(BaseModel):
    pending: int
    rounds_completed: int
    last_round_at: datetime | None
