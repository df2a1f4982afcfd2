"""Gmail archiver: incremental mailbox sync with attachment archiving.

Public API re-exported here for convenience::

    from gmail_archiver import ArchiverConfig, ArchiverService
"""

from .config import (
    ArchiverConfig,
    DatabaseConfig,
    GmailConfig,
    GoogleOAuthConfig,
    RetryConfig,
    S3Config,
    SchedulerConfig,
)
from .credentials import Credential, CredentialService
from .errors import (
    ArchiverError,
    AuthError,
    DuplicateKeyError,
    StaleCursorError,
    TransientFetchError,
    UploadError,
)
from .gmail_client import GmailClient
from .logging import setup_logging
from .parser import GmailMessageParser, ParsedAttachment, ParsedEmail
from .pipeline import IngestOutcome, MessageIngestionPipeline
from .scheduler import SyncRequest, SyncScheduler
from .service import ArchiverService
from .storage import FolderRef, S3AttachmentStore
from .sync import SyncController

__all__ = [
    "ArchiverConfig",
    "ArchiverError",
    "ArchiverService",
    "AuthError",
    "Credential",
    "CredentialService",
    "DatabaseConfig",
    "DuplicateKeyError",
    "FolderRef",
    "GmailClient",
    "GmailConfig",
    "GmailMessageParser",
    "GoogleOAuthConfig",
    "IngestOutcome",
    "MessageIngestionPipeline",
    "ParsedAttachment",
    "ParsedEmail",
    "RetryConfig",
    "S3AttachmentStore",
    "S3Config",
    "SchedulerConfig",
    "StaleCursorError",
    "SyncController",
    "SyncRequest",
    "SyncScheduler",
    "TransientFetchError",
    "UploadError",
    "setup_logging",
]
