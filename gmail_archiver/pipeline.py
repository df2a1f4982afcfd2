"""MessageIngestionPipeline: fetch one Gmail message, store it exactly once,
then upload and record its attachments.

The email row is always committed before any attachment is touched, so an
interrupted run leaves an email with zero or some attachments, never an
attachment without its email.  Attachment rows are written only after a
successful upload.
"""

from __future__ import annotations

import binascii
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .credentials import Credential, CredentialService
from .db.models import Email
from .db.store import ArchiveStore
from .errors import AuthError, DuplicateKeyError, TransientFetchError, UploadError
from .gmail_client import GmailClient
from .organizer import FolderOrganizer
from .parser import GmailMessageParser, ParsedAttachment, ParsedEmail, decode_base64url
from .storage import S3AttachmentStore

logger = structlog.get_logger()


class IngestOutcome(str, Enum):
    """Result of one pipeline run, for counters and the caller's control flow."""

    STORED = "stored"
    ALREADY_STORED = "already_stored"
    DUPLICATE = "duplicate"
    EMPTY = "empty"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadedAttachment:
    filename: str
    content_type: str
    payload: bytes


@dataclass
class _GmailSession:
    """The credential behind one message's Gmail calls; refreshed at most once."""

    credential: Credential
    refreshed: bool = False


class MessageIngestionPipeline:
    """Ingest Gmail messages by ID.

    :meth:`ingest` never raises: every failure is logged with the message ID
    and reported as an :class:`IngestOutcome`.  A Gmail 401 triggers one
    forced token refresh and a retry of the rejected call before the message
    is reported as ``AUTH_FAILED``.
    """

    def __init__(
        self,
        store: ArchiveStore,
        gmail: GmailClient,
        object_store: S3AttachmentStore,
        credentials: CredentialService,
        parser: GmailMessageParser | None = None,
    ) -> None:
        self._store = store
        self._gmail = gmail
        self._object_store = object_store
        self._credentials = credentials
        self._organizer = FolderOrganizer(object_store)
        self._parser = parser or GmailMessageParser()

    async def ingest(self, credential: Credential, message_id: str) -> IngestOutcome:
        try:
            return await self._ingest(_GmailSession(credential), message_id)
        except AuthError as exc:
            logger.error("message_ingest_auth_failed", message_id=message_id, error=str(exc))
            return IngestOutcome.AUTH_FAILED
        except Exception:
            logger.exception("message_ingest_failed", message_id=message_id)
            return IngestOutcome.FAILED

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _ingest(self, session: _GmailSession, message_id: str) -> IngestOutcome:
        # Cheap pre-check; the unique constraint below is the real guard
        if await self._store.email_exists(message_id):
            logger.debug("message_already_stored", message_id=message_id)
            return IngestOutcome.ALREADY_STORED

        try:
            message = await self._gmail_call(session, self._gmail.get_message, message_id)
        except TransientFetchError as exc:
            logger.warning("message_fetch_failed", message_id=message_id, error=str(exc))
            return IngestOutcome.FAILED

        if not message.get("payload"):
            logger.warning("message_without_payload", message_id=message_id)
            return IngestOutcome.EMPTY

        parsed = self._parser.parse(message)
        parsed.message_id = parsed.message_id or message_id

        try:
            email = await self._store.create_email(parsed, session.credential.account_id)
        except DuplicateKeyError:
            logger.debug("message_duplicate_skipped", message_id=message_id)
            return IngestOutcome.DUPLICATE

        stored = await self._process_attachments(session, email, parsed)
        logger.info(
            "message_stored",
            message_id=message_id,
            subject=parsed.subject,
            sender=parsed.sender,
            attachments=stored,
        )
        return IngestOutcome.STORED

    async def _gmail_call(
        self,
        session: _GmailSession,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        try:
            return await call(session.credential, *args)
        except AuthError:
            if session.refreshed:
                raise
            account_id = session.credential.account_id
            logger.warning("gmail_token_rejected_refreshing", account_id=str(account_id))
            session.credential = await self._credentials.force_refresh(account_id)
            session.refreshed = True
            return await call(session.credential, *args)

    async def _process_attachments(
        self,
        session: _GmailSession,
        email: Email,
        parsed: ParsedEmail,
    ) -> int:
        """Download, upload and record attachments.  Returns rows created."""
        if not parsed.attachments:
            return 0

        downloaded = await self._download_attachments(session, parsed)
        if not downloaded:
            return 0

        logger.info(
            "attachments_found",
            message_id=parsed.message_id,
            discovered=len(parsed.attachments),
            downloaded=len(downloaded),
        )

        try:
            folder = await self._organizer.target_folder(len(downloaded), parsed.subject)
        except Exception:
            logger.exception("attachment_folder_unavailable", message_id=parsed.message_id)
            return 0

        recorded = 0
        for attachment in downloaded:
            try:
                result = await self._object_store.upload(
                    attachment.payload,
                    attachment.filename,
                    attachment.content_type,
                    folder,
                )
            except UploadError as exc:
                logger.warning(
                    "attachment_skipped",
                    message_id=parsed.message_id,
                    filename=attachment.filename,
                    error=str(exc),
                )
                continue

            try:
                await self._store.create_attachment(
                    email.id,
                    filename=attachment.filename,
                    mime_type=attachment.content_type,
                    link=result.link,
                )
            except SQLAlchemyError as exc:
                # The object is uploaded but unrecorded; the link allows manual repair
                logger.error(
                    "attachment_record_failed",
                    message_id=parsed.message_id,
                    filename=attachment.filename,
                    link=result.link,
                    error=str(exc),
                )
                continue
            recorded += 1

        logger.info(
            "attachments_recorded",
            message_id=parsed.message_id,
            recorded=recorded,
            total=len(downloaded),
        )
        return recorded

    async def _download_attachments(
        self,
        session: _GmailSession,
        parsed: ParsedEmail,
    ) -> list[DownloadedAttachment]:
        """One download per attachment; a failed download skips only that attachment."""
        downloaded: list[DownloadedAttachment] = []
        for attachment in parsed.attachments:
            try:
                payload = await self._fetch_attachment(session, parsed.message_id, attachment)
            except (TransientFetchError, binascii.Error) as exc:
                logger.warning(
                    "attachment_download_failed",
                    message_id=parsed.message_id,
                    attachment_id=attachment.attachment_id,
                    part_id=attachment.part_id,
                    filename=attachment.filename,
                    error=str(exc),
                )
                continue
            if payload is None:
                logger.warning(
                    "attachment_without_content",
                    message_id=parsed.message_id,
                    part_id=attachment.part_id,
                    filename=attachment.filename,
                )
                continue
            downloaded.append(
                DownloadedAttachment(
                    filename=attachment.filename,
                    content_type=attachment.content_type,
                    payload=payload,
                )
            )
        return downloaded

    async def _fetch_attachment(
        self,
        session: _GmailSession,
        message_id: str,
        attachment: ParsedAttachment,
    ) -> bytes | None:
        if attachment.attachment_id:
            return await self._gmail_call(
                session,
                self._gmail.get_attachment_bytes,
                message_id,
                attachment.attachment_id,
            )
        if attachment.inline_data:
            return decode_base64url(attachment.inline_data)
        return None
