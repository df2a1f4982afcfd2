"""ArchiverService: wires up infrastructure and runs the sync loops."""

from __future__ import annotations

import asyncio
import signal

import structlog
import uvicorn

from .app import create_app
from .config import ArchiverConfig
from .credentials import CredentialService
from .db.engine import Database
from .db.store import ArchiveStore
from .gmail_client import GmailClient
from .pipeline import MessageIngestionPipeline
from .scheduler import SyncScheduler
from .storage import S3AttachmentStore
from .sync import SyncController

logger = structlog.get_logger()


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Register SIGTERM and SIGINT handlers that set *shutdown_event*."""
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)


class ArchiverService:
    """Owns every long-lived component of the archiver.

    ``run()`` starts the following concurrently via :class:`asyncio.TaskGroup`:

    * the HTTP API (webhook, read endpoints, manual triggers)
    * the scheduler ticker, which enqueues a routine round every interval
    * the sync worker, which drains the queue one round at a time
    """

    def __init__(self, config: ArchiverConfig) -> None:
        self.config = config
        self.database = Database(config.database)
        self.store = ArchiveStore(self.database.session)
        self.gmail = GmailClient(config.gmail, config.retry)
        self.credentials = CredentialService(config.oauth, self.store)
        self.object_store = S3AttachmentStore(config.s3)
        self.pipeline = MessageIngestionPipeline(
            self.store, self.gmail, self.object_store, self.credentials
        )
        self.controller = SyncController(
            config.gmail, self.store, self.gmail, self.credentials, self.pipeline
        )
        self.scheduler = SyncScheduler(
            config.scheduler, self.store, self.credentials, self.controller
        )
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.database.create_all()
        await self.gmail.start()
        await self.credentials.start()
        await self.object_store.start()

    async def stop(self) -> None:
        await self.object_store.stop()
        await self.credentials.stop()
        await self.gmail.stop()
        await self.database.close()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # HTTP server
    # ------------------------------------------------------------------

    async def _run_api_server(self) -> None:
        """Serve the API and shut it down on signal."""
        config = uvicorn.Config(
            create_app(self),
            host=self.config.host,
            port=self.config.port,
            log_config=None,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start all subsystems and run until shutdown::

            asyncio.run(ArchiverService(config).run())
        """
        install_signal_handlers(self._shutdown_event)
        logger.info("archiver_starting", host=self.config.host, port=self.config.port)

        await self.start()
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self.scheduler.run_ticker(self._shutdown_event))
                tg.create_task(self.scheduler.run_worker(self._shutdown_event))
                tg.create_task(self._run_api_server())
        except* Exception:
            logger.exception("archiver_task_group_error")
        finally:
            await self.stop()
            logger.info("archiver_stopped")
