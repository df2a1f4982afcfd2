"""ArchiveStore: record create/find/count over the relational schema.

Every operation opens its own short-lived session.  The unique constraint
on ``emails.message_id`` is the only deduplication authority: concurrent
creators of the same message race to the insert, and the loser receives
:class:`DuplicateKeyError`.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gmail_archiver.db.models import Account, Attachment, Email
from gmail_archiver.errors import DuplicateKeyError
from gmail_archiver.parser import ParsedEmail

logger = structlog.get_logger()


class ArchiveStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def list_accounts(self) -> list[Account]:
        async with self._sessions() as session:
            result = await session.execute(select(Account).order_by(Account.created_at))
            return list(result.scalars().all())

    async def get_account(self, account_id: uuid.UUID) -> Account | None:
        async with self._sessions() as session:
            return await session.get(Account, account_id)

    async def register_account(
        self,
        email_address: str,
        refresh_token: str,
        *,
        access_token: str = "",
        token_expiry: datetime | None = None,
    ) -> Account:
        """Insert an account, or replace the tokens of an existing one.

        Without an access token the expiry defaults to now, so the first
        credential request refreshes it.
        """
        token_expiry = token_expiry or datetime.now(UTC)
        async with self._sessions() as session:
            result = await session.execute(
                select(Account).where(Account.email_address == email_address)
            )
            account = result.scalar_one_or_none()
            if account is None:
                account = Account(email_address=email_address, refresh_token=refresh_token)
                session.add(account)
            account.refresh_token = refresh_token
            account.access_token = access_token
            account.token_expiry = token_expiry
            await session.commit()
            await session.refresh(account)
            logger.info("account_registered", account_id=str(account.id), email=email_address)
            return account

    async def update_tokens(
        self,
        account_id: uuid.UUID,
        *,
        access_token: str,
        token_expiry: datetime,
        refresh_token: str | None = None,
    ) -> None:
        values: dict = {"access_token": access_token, "token_expiry": token_expiry}
        if refresh_token:
            values["refresh_token"] = refresh_token
        async with self._sessions() as session:
            await session.execute(update(Account).where(Account.id == account_id).values(**values))
            await session.commit()

    async def update_history_id(self, account_id: uuid.UUID, history_id: str) -> None:
        async with self._sessions() as session:
            await session.execute(
                update(Account).where(Account.id == account_id).values(history_id=history_id)
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Emails and attachments (write side)
    # ------------------------------------------------------------------

    async def email_exists(self, message_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                select(Email.id).where(Email.message_id == message_id)
            )
            return result.scalar_one_or_none() is not None

    async def create_email(self, parsed: ParsedEmail, account_id: uuid.UUID | None) -> Email:
        """Insert the email row.  Raises :class:`DuplicateKeyError` if it exists."""
        email = Email(
            message_id=parsed.message_id,
            thread_id=parsed.thread_id,
            subject=parsed.subject,
            sender=parsed.sender,
            recipients=parsed.recipients,
            cc=parsed.cc,
            bcc=parsed.bcc,
            date=parsed.date,
            body_text=parsed.body_text,
            body_html=parsed.body_html,
            account_id=account_id,
        )
        async with self._sessions() as session:
            session.add(email)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateKeyError(parsed.message_id) from exc
            await session.refresh(email)
            return email

    async def create_attachment(
        self,
        email_id: uuid.UUID,
        *,
        filename: str,
        mime_type: str,
        link: str,
    ) -> Attachment:
        attachment = Attachment(
            email_id=email_id,
            filename=filename,
            mime_type=mime_type,
            link=link,
        )
        async with self._sessions() as session:
            session.add(attachment)
            await session.commit()
            await session.refresh(attachment)
            return attachment

    async def delete_email(self, message_id: str) -> bool:
        """Administrative removal; the email's attachments are deleted with it."""
        async with self._sessions() as session:
            result = await session.execute(
                delete(Email).where(Email.message_id == message_id)
            )
            await session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    async def get_email(self, message_id: str) -> Email | None:
        async with self._sessions() as session:
            result = await session.execute(
                select(Email)
                .options(selectinload(Email.attachments))
                .where(Email.message_id == message_id)
            )
            return result.scalar_one_or_none()

    async def list_emails(self, page: int, limit: int) -> list[Email]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Email)
                .options(selectinload(Email.attachments))
                .order_by(Email.date.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_attachments(self, page: int, limit: int) -> list[Attachment]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Attachment)
                .options(selectinload(Attachment.email))
                .order_by(Attachment.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_attachments_for(self, message_id: str) -> list[Attachment]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Attachment)
                .join(Email, Attachment.email_id == Email.id)
                .where(Email.message_id == message_id)
                .order_by(Attachment.created_at)
            )
            return list(result.scalars().all())

    async def recent_emails(self, count: int = 5) -> list[Email]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Email).order_by(Email.created_at.desc()).limit(count)
            )
            return list(result.scalars().all())

    async def count_emails(self) -> int:
        async with self._sessions() as session:
            return (await session.execute(select(func.count()).select_from(Email))).scalar_one()

    async def count_attachments(self) -> int:
        async with self._sessions() as session:
            return (
                await session.execute(select(func.count()).select_from(Attachment))
            ).scalar_one()
