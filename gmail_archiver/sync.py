"""SyncController: per-account discovery of new message IDs.

Each account is in one of two states, derived from its stored cursor:

``NO_CURSOR``
    Full (capped) listing backfill, then watch registration; the cursor
    returned by the watch becomes the account's cursor, moving it to
    ``HAS_CURSOR``.

``HAS_CURSOR``
    History listing since the cursor; the cursor advances to the listing's
    new value.  A stale cursor makes this round fall back to a
    capped listing plus watch re-registration; the stored cursor is kept
    unless a new watch succeeds.

The new cursor is persisted only after every candidate has been handed to the
pipeline without an authentication failure, so a round that stops early is
rediscovered from the old cursor next time.

The controller is re-entered every tick and by push notifications.  Two
overlapping rounds for one account are safe because message creation is
deduplicated by the store's unique constraint.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

import structlog

from .config import GmailConfig
from .credentials import Credential, CredentialService
from .db.models import Account
from .db.store import ArchiveStore
from .errors import AuthError, StaleCursorError, TransientFetchError
from .gmail_client import GmailClient
from .pipeline import IngestOutcome, MessageIngestionPipeline

logger = structlog.get_logger()


class CursorState(str, Enum):
    NO_CURSOR = "no_cursor"
    HAS_CURSOR = "has_cursor"


class DiscoveryMode(str, Enum):
    HISTORY = "history"
    BACKFILL = "backfill"
    FALLBACK = "fallback"


@dataclass
class SyncResult:
    """Summary of one account's discovery round."""

    account_id: uuid.UUID
    mode: DiscoveryMode
    candidates: int = 0
    history_id: str | None = None
    outcomes: Counter = field(default_factory=Counter)


def cursor_state(account: Account) -> CursorState:
    return CursorState.HAS_CURSOR if account.history_id else CursorState.NO_CURSOR


class SyncController:
    def __init__(
        self,
        config: GmailConfig,
        store: ArchiveStore,
        gmail: GmailClient,
        credentials: CredentialService,
        pipeline: MessageIngestionPipeline,
    ) -> None:
        self._config = config
        self._store = store
        self._gmail = gmail
        self._credentials = credentials
        self._pipeline = pipeline

    async def sync_account(self, account_id: uuid.UUID, *, initial: bool = False) -> SyncResult:
        """Run one discovery round for an account and ingest every candidate.

        Raises :class:`AuthError` when the account's credential is unusable
        even after a forced refresh; the round stops at that point and the
        stored cursor is left where it was.
        """
        account = await self._store.get_account(account_id)
        if account is None:
            raise AuthError(f"Unknown account {account_id}")

        result, message_ids = await self._discover(account, initial=initial)

        result.candidates = len(message_ids)
        for message_id in message_ids:
            # Re-resolved per message; a long round can outlive the token
            credential = await self._credentials.get_valid_credential(account_id)
            outcome = await self._pipeline.ingest(credential, message_id)
            result.outcomes[outcome.value] += 1
            if outcome is IngestOutcome.AUTH_FAILED:
                raise AuthError(f"Credential rejected while ingesting {message_id}")

        if result.history_id and result.history_id != account.history_id:
            await self._store.update_history_id(account_id, result.history_id)

        logger.info(
            "account_sync_complete",
            account_id=str(account_id),
            mode=result.mode.value,
            candidates=result.candidates,
            history_id=result.history_id,
            **dict(result.outcomes),
        )
        return result

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover(
        self,
        account: Account,
        *,
        initial: bool,
    ) -> tuple[SyncResult, list[str]]:
        credential = await self._credentials.get_valid_credential(account.id)
        try:
            return await self._discover_with(credential, account, initial=initial)
        except AuthError:
            logger.warning("gmail_token_rejected_refreshing", account_id=str(account.id))
            credential = await self._credentials.force_refresh(account.id)
            return await self._discover_with(credential, account, initial=initial)

    async def _discover_with(
        self,
        credential: Credential,
        account: Account,
        *,
        initial: bool,
    ) -> tuple[SyncResult, list[str]]:
        if initial or cursor_state(account) is CursorState.NO_CURSOR:
            return await self._backfill(credential, initial=initial)
        return await self._incremental(credential, account.history_id, initial=initial)

    async def _incremental(
        self,
        credential: Credential,
        history_id: str,
        *,
        initial: bool,
    ) -> tuple[SyncResult, list[str]]:
        try:
            page = await self._gmail.list_history(credential, history_id)
        except StaleCursorError:
            logger.warning(
                "history_cursor_stale",
                account_id=str(credential.account_id),
                history_id=history_id,
            )
            return await self._fallback(credential, history_id, initial=initial, rewatch=True)
        except TransientFetchError as exc:
            logger.warning(
                "history_list_failed",
                account_id=str(credential.account_id),
                history_id=history_id,
                error=str(exc),
            )
            return await self._fallback(credential, history_id, initial=initial, rewatch=False)

        result = SyncResult(
            account_id=credential.account_id,
            mode=DiscoveryMode.HISTORY,
            history_id=history_id,
        )
        if page.history_id:
            result.history_id = page.history_id

        logger.info(
            "history_listed",
            account_id=str(credential.account_id),
            new_messages=len(page.message_ids),
            history_id=result.history_id,
        )
        return result, page.message_ids

    async def _fallback(
        self,
        credential: Credential,
        history_id: str,
        *,
        initial: bool,
        rewatch: bool,
    ) -> tuple[SyncResult, list[str]]:
        cap = (
            self._config.stale_cursor_initial_max_messages
            if initial
            else self._config.stale_cursor_routine_max_messages
        )
        message_ids = await self._gmail.list_recent(credential, cap)
        result = SyncResult(
            account_id=credential.account_id,
            mode=DiscoveryMode.FALLBACK,
            history_id=history_id,
        )
        if rewatch:
            result.history_id = await self._register_cursor(credential) or history_id
        return result, message_ids

    async def _backfill(
        self,
        credential: Credential,
        *,
        initial: bool,
    ) -> tuple[SyncResult, list[str]]:
        cap = self._config.initial_max_messages if initial else self._config.routine_max_messages
        logger.info("backfill_started", account_id=str(credential.account_id), max_messages=cap)

        message_ids = await self._gmail.list_recent(credential, cap)
        result = SyncResult(account_id=credential.account_id, mode=DiscoveryMode.BACKFILL)
        result.history_id = await self._register_cursor(credential)
        return result, message_ids

    async def _register_cursor(self, credential: Credential) -> str | None:
        """Register the push watch and return its cursor.

        Without a configured topic the mailbox's current history ID is used
        instead.  Returns None if registration failed.
        """
        try:
            if self._config.pubsub_topic:
                watch = await self._gmail.register_watch(credential, self._config.pubsub_topic)
                history_id = watch.history_id
                logger.info(
                    "gmail_watch_registered",
                    account_id=str(credential.account_id),
                    history_id=history_id,
                    expiration=watch.expiration.isoformat() if watch.expiration else None,
                )
            else:
                history_id = await self._gmail.current_history_id(credential)
                logger.warning(
                    "gmail_watch_skipped",
                    account_id=str(credential.account_id),
                    reason="no_pubsub_topic",
                    history_id=history_id,
                )
        except TransientFetchError as exc:
            logger.error(
                "gmail_watch_failed",
                account_id=str(credential.account_id),
                error=str(exc),
            )
            return None

        return history_id
