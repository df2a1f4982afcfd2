"""Shared test fixtures for the archiver test suite."""

from __future__ import annotations

import base64
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from gmail_archiver.config import (
    ArchiverConfig,
    DatabaseConfig,
    GmailConfig,
    GoogleOAuthConfig,
    RetryConfig,
    S3Config,
    SchedulerConfig,
)
from gmail_archiver.credentials import Credential
from gmail_archiver.db.engine import Database
from gmail_archiver.db.store import ArchiveStore

GMAIL_API = "https://gmail.test/gmail/v1/users/me"
TOKEN_URL = "https://oauth.test/token"


@pytest.fixture
def gmail_config() -> GmailConfig:
    return GmailConfig(
        api_base_url=GMAIL_API,
        pubsub_topic="projects/test/topics/gmail",
        page_size=2,
        routine_max_messages=5,
        initial_max_messages=20,
        stale_cursor_routine_max_messages=3,
        stale_cursor_initial_max_messages=10,
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=2, initial_wait_seconds=0.01, max_wait_seconds=0.02)


@pytest.fixture
def oauth_config() -> GoogleOAuthConfig:
    return GoogleOAuthConfig(
        client_id="client-id",
        client_secret="client-secret",
        token_url=TOKEN_URL,
        expiry_buffer_seconds=300,
    )


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(bucket="test-bucket", region="us-east-1")


@pytest.fixture
def db_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'archive.db'}")


@pytest.fixture
def archiver_config(
    oauth_config: GoogleOAuthConfig,
    gmail_config: GmailConfig,
    s3_config: S3Config,
    db_config: DatabaseConfig,
    retry_config: RetryConfig,
) -> ArchiverConfig:
    return ArchiverConfig(
        log_json=False,
        oauth=oauth_config,
        gmail=gmail_config,
        s3=s3_config,
        database=db_config,
        scheduler=SchedulerConfig(interval_seconds=0.05, queue_capacity=2, run_on_start=False),
        retry=retry_config,
    )


@pytest.fixture
async def database(db_config: DatabaseConfig):
    db = Database(db_config)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database) -> ArchiveStore:
    return ArchiveStore(database.session)


@pytest.fixture
async def account(store: ArchiveStore):
    return await store.register_account(
        "alice@example.com",
        "refresh-token",
        access_token="access-token",
        token_expiry=datetime.now(UTC) + timedelta(hours=1),
    )


@pytest.fixture
def credential(account) -> Credential:
    return make_credential(account.id)


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------


def make_credential(account_id: uuid.UUID | None = None) -> Credential:
    return Credential(
        account_id=account_id or uuid.uuid4(),
        email_address="alice@example.com",
        access_token="access-token",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


def b64url(data: bytes | str) -> str:
    """Gmail-style URL-safe base64 without padding."""
    raw = data.encode() if isinstance(data, str) else data
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def make_part(
    *,
    part_id: str = "0",
    mime_type: str = "text/plain",
    filename: str = "",
    headers: dict[str, str] | None = None,
    data: bytes | str | None = None,
    attachment_id: str | None = None,
    size: int | None = None,
    parts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build one node of a ``format=full`` payload tree."""
    body: dict[str, Any] = {}
    if data is not None:
        body["data"] = b64url(data)
        body["size"] = len(data)
    if attachment_id is not None:
        body["attachmentId"] = attachment_id
    if size is not None:
        body["size"] = size
    part: dict[str, Any] = {
        "partId": part_id,
        "mimeType": mime_type,
        "filename": filename,
        "headers": [{"name": k, "value": v} for k, v in (headers or {}).items()],
        "body": body,
    }
    if parts is not None:
        part["parts"] = parts
    return part


def make_attachment_part(
    part_id: str,
    filename: str,
    *,
    attachment_id: str | None = None,
    mime_type: str = "application/pdf",
    size: int = 10,
) -> dict[str, Any]:
    return make_part(
        part_id=part_id,
        mime_type=mime_type,
        filename=filename,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        attachment_id=attachment_id or f"att-{part_id}",
        size=size,
    )


def make_message(
    message_id: str = "msg-1",
    *,
    subject: str = "Quarterly report",
    sender: str = "Bob <bob@example.com>",
    to: str = "alice@example.com",
    body_text: str = "Hello Alice",
    attachments: list[dict[str, Any]] | None = None,
    internal_date: str = "1700000000000",
) -> dict[str, Any]:
    """Build a ``users.messages.get?format=full`` response."""
    children = [make_part(part_id="0", mime_type="text/plain", data=body_text)]
    children.extend(attachments or [])
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "internalDate": internal_date,
        "payload": make_part(
            part_id="",
            mime_type="multipart/mixed",
            headers={"Subject": subject, "From": sender, "To": to},
            parts=children,
        ),
    }
