"""Entry point for the archiver.

Usage::

    python -m gmail_archiver service                          # API + scheduler + worker
    python -m gmail_archiver init-db                          # create tables and exit
    python -m gmail_archiver add-account EMAIL REFRESH_TOKEN  # register a mailbox
    python -m gmail_archiver sync [--initial]                 # one round, then exit
"""

from __future__ import annotations

import asyncio
import sys

from .config import ArchiverConfig
from .logging import setup_logging
from .scheduler import SyncRequest
from .service import ArchiverService

USAGE = (
    "Usage: python -m gmail_archiver "
    "<service | init-db | add-account EMAIL REFRESH_TOKEN | sync [--initial]>"
)


async def _init_db(service: ArchiverService) -> None:
    await service.database.create_all()
    await service.database.close()
    print("Database tables created")


async def _add_account(service: ArchiverService, email: str, refresh_token: str) -> None:
    await service.database.create_all()
    try:
        account = await service.store.register_account(email, refresh_token)
    finally:
        await service.database.close()
    print(f"Registered {account.email_address} ({account.id})")


async def _sync_once(service: ArchiverService, initial: bool) -> None:
    await service.start()
    try:
        await service.scheduler.run_round(SyncRequest(initial=initial, reason="cli"))
    finally:
        await service.stop()


def main() -> None:
    args = sys.argv[1:]
    commands = ("service", "init-db", "add-account", "sync")
    if not args or args[0] not in commands:
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    mode = args[0]
    config = ArchiverConfig()  # type: ignore[call-arg]
    setup_logging(json=config.log_json, level=config.log_level)
    service = ArchiverService(config)

    if mode == "service":
        asyncio.run(service.run())

    elif mode == "init-db":
        asyncio.run(_init_db(service))

    elif mode == "add-account":
        if len(args) != 3:
            print(USAGE, file=sys.stderr)
            sys.exit(1)
        asyncio.run(_add_account(service, args[1], args[2]))

    elif mode == "sync":
        asyncio.run(_sync_once(service, initial="--initial" in args[1:]))


if __name__ == "__main__":
    main()
