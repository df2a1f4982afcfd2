"""Folder placement policy for one message's attachment batch."""

from __future__ import annotations

import structlog

from .storage import FolderRef, S3AttachmentStore

logger = structlog.get_logger()

NO_SUBJECT = "No Subject"


class FolderOrganizer:
    """A lone attachment goes to the root folder; several attachments share
    a new subfolder named after the message subject.
    """

    def __init__(self, store: S3AttachmentStore) -> None:
        self._store = store

    async def target_folder(self, attachment_count: int, subject: str) -> FolderRef:
        if attachment_count < 1:
            raise ValueError("attachment_count must be positive")

        root = await self._store.ensure_root_folder()
        if attachment_count == 1:
            return root

        folder = await self._store.create_subfolder(root, subject.strip() or NO_SUBJECT)
        logger.debug("attachments_grouped", folder=folder.key, count=attachment_count)
        return folder
