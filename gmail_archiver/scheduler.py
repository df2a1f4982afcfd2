"""SyncScheduler: periodic and push-driven discovery rounds.

Triggers never run a round themselves: they enqueue a :class:`SyncRequest`
onto a bounded queue and return immediately.  A single worker loop drains
the queue, running one round across all known accounts per request,
account by account.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from .config import SchedulerConfig
from .credentials import CredentialService
from .db.store import ArchiveStore
from .errors import AuthError
from .logging import bound_account
from .sync import SyncController

logger = structlog.get_logger()


@dataclass(frozen=True)
class SyncRequest:
    """One queued discovery round over all accounts."""

    initial: bool = False
    reason: str = "schedule"
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class SyncScheduler:
    def __init__(
        self,
        config: SchedulerConfig,
        store: ArchiveStore,
        credentials: CredentialService,
        controller: SyncController,
    ) -> None:
        self._config = config
        self._store = store
        self._credentials = credentials
        self._controller = controller
        self._queue: asyncio.Queue[SyncRequest] = asyncio.Queue(maxsize=config.queue_capacity)
        self._rounds_completed: int = 0
        self._last_round_at: datetime | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def rounds_completed(self) -> int:
        return self._rounds_completed

    @property
    def last_round_at(self) -> datetime | None:
        return self._last_round_at

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def enqueue_all(self, *, initial: bool = False, reason: str = "schedule") -> bool:
        """Queue a round for every account.  Returns False if the queue is full."""
        try:
            self._queue.put_nowait(SyncRequest(initial=initial, reason=reason))
        except asyncio.QueueFull:
            logger.warning("sync_request_rejected", reason=reason, pending=self.pending)
            return False
        logger.debug("sync_request_enqueued", reason=reason, initial=initial, pending=self.pending)
        return True

    def handle_push_notification(self, message: dict[str, Any]) -> bool:
        """Accept a Pub/Sub push message and queue a routine round.

        The payload is decoded and logged for diagnostics only; it never
        gates the round.
        """
        notification: Any = {}
        data = message.get("data")
        if isinstance(data, str) and data:
            try:
                notification = json.loads(base64.b64decode(data))
            except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
                logger.warning("push_notification_unparsable", error=str(exc))
        logger.info(
            "push_notification_received",
            pubsub_message_id=message.get("messageId"),
            notification=notification,
        )
        return self.enqueue_all(reason="push")

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def run_ticker(self, shutdown_event: asyncio.Event) -> None:
        """Enqueue a routine round every ``interval_seconds`` until shutdown."""
        if self._config.run_on_start:
            self.enqueue_all(reason="startup")
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._config.interval_seconds)
            except TimeoutError:
                self.enqueue_all(reason="schedule")

    async def run_worker(self, shutdown_event: asyncio.Event) -> None:
        """Drain the queue one request at a time until shutdown."""
        logger.info("sync_worker_started")
        while not shutdown_event.is_set():
            try:
                request = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            try:
                await self.run_round(request)
            except Exception:
                logger.exception("sync_round_failed", reason=request.reason)
            finally:
                self._queue.task_done()
        logger.info("sync_worker_stopped")

    async def run_round(self, request: SyncRequest) -> None:
        """Run one discovery round for every known account.

        Each account is isolated: its failure is logged and the round moves
        on to the next account.
        """
        logger.info("sync_round_started", reason=request.reason, initial=request.initial)
        await self._credentials.refresh_all_expired()

        accounts = await self._store.list_accounts()
        if not accounts:
            logger.warning("sync_round_no_accounts")

        for account in accounts:
            with bound_account(account.id, account.email_address):
                try:
                    await self._controller.sync_account(account.id, initial=request.initial)
                except AuthError as exc:
                    logger.error("account_requires_reauthentication", error=str(exc))
                except Exception:
                    logger.exception("account_sync_failed")

        self._rounds_completed += 1
        self._last_round_at = datetime.now(UTC)
        logger.info("sync_round_finished", reason=request.reason, accounts=len(accounts))
