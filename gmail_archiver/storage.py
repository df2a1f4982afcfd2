"""S3 object store for attachments, organised into folders.

Folders are key prefixes marked by a zero-byte ``<prefix>/`` object, the
same convention the S3 console uses.  Uploaded objects are granted
``public-read`` and addressed by a stable public URL.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import secrets
from dataclasses import dataclass
from urllib.parse import quote

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import S3Config
from .errors import UploadError

logger = structlog.get_logger()

_ILLEGAL_FOLDER_CHARS = re.compile(r'[<>:"/\\|?*]')


@dataclass(frozen=True)
class FolderRef:
    """Locator of a folder: its key prefix (always ending in ``/``)."""

    key: str
    name: str


@dataclass(frozen=True)
class UploadResult:
    key: str
    link: str
    filename: str
    content_type: str
    size: int


class S3AttachmentStore:
    """Upload attachment bytes into a folder hierarchy and publish them."""

    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]
        self._root: FolderRef | None = None

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("s3_store_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        """Clean up the boto3 client."""
        self._client = None
        logger.info("s3_store_stopped")

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def ensure_root_folder(self) -> FolderRef:
        """Return the well-known root folder, creating its marker if absent.

        Concurrent creators write the same marker key, so a race yields one
        folder.
        """
        if self._root is not None:
            return self._root
        assert self._client is not None, "S3 client not started"

        name = self._config.root_folder
        root = FolderRef(key=f"{name}/", name=name)
        try:
            await asyncio.to_thread(
                self._client.head_object, Bucket=self._config.bucket, Key=root.key
            )
            logger.debug("attachments_folder_found", key=root.key)
        except ClientError as exc:
            if _error_code(exc) not in ("404", "NoSuchKey", "NotFound"):
                raise
            await asyncio.to_thread(
                self._client.put_object, Bucket=self._config.bucket, Key=root.key, Body=b""
            )
            logger.info("attachments_folder_created", key=root.key)

        self._root = root
        return root

    async def create_subfolder(self, parent: FolderRef, name: str) -> FolderRef:
        """Create a new folder under *parent* named from *name*.

        Every call creates a distinct folder, even for identical names.
        Falls back to *parent* if the folder cannot be created.
        """
        assert self._client is not None, "S3 client not started"
        display = sanitize_folder_name(name, self._config.folder_name_max_length) or "No Subject"
        folder = FolderRef(key=f"{parent.key}{display}-{secrets.token_hex(4)}/", name=display)
        try:
            await asyncio.to_thread(
                self._client.put_object, Bucket=self._config.bucket, Key=folder.key, Body=b""
            )
        except (ClientError, BotoCoreError) as exc:
            logger.warning("subfolder_create_failed", parent=parent.key, name=display, error=str(exc))
            return parent
        logger.debug("subfolder_created", key=folder.key)
        return folder

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def upload(
        self,
        payload: bytes,
        filename: str,
        content_type: str,
        folder: FolderRef,
    ) -> UploadResult:
        """Upload *payload* into *folder*, grant public read, return its link.

        Raises :class:`UploadError` if either the write or the grant fails.
        """
        assert self._client is not None, "S3 client not started"
        content_hash = hashlib.sha256(payload).hexdigest()[:12]
        key = f"{folder.key}{content_hash}_{_sanitize_filename(filename)}"

        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._config.bucket,
                Key=key,
                Body=payload,
                ContentType=content_type,
            )
            await asyncio.to_thread(
                self._client.put_object_acl,
                Bucket=self._config.bucket,
                Key=key,
                ACL="public-read",
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("attachment_upload_failed", filename=filename, key=key, error=str(exc))
            raise UploadError(f"Upload of {filename} failed: {exc}") from exc

        link = self.public_link(key)
        logger.info(
            "attachment_uploaded",
            filename=filename,
            key=key,
            size=_format_size(len(payload)),
        )
        return UploadResult(
            key=key,
            link=link,
            filename=filename,
            content_type=content_type,
            size=len(payload),
        )

    def public_link(self, key: str) -> str:
        quoted = quote(key)
        if self._config.public_base_url:
            return f"{self._config.public_base_url.rstrip('/')}/{quoted}"
        if self._config.endpoint_url:
            return f"{self._config.endpoint_url.rstrip('/')}/{self._config.bucket}/{quoted}"
        return f"https://{self._config.bucket}.s3.{self._config.region}.amazonaws.com/{quoted}"


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def sanitize_folder_name(name: str, max_length: int = 100) -> str:
    """Strip characters illegal in folder names and truncate."""
    return _ILLEGAL_FOLDER_CHARS.sub("", name)[:max_length].strip()


def _sanitize_filename(name: str) -> str:
    """Remove characters unsafe for S3 keys."""
    return re.sub(r"[^\w.\-]", "_", name)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB"):
        value /= 1024
        if value < 1024:
            return f"{value:.2f} {unit}"
    return f"{value / 1024:.2f} GB"
