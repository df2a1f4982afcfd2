"""Relational persistence: ORM models, engine, and the archive store."""

from .engine import Database
from .models import Account, Attachment, Base, Email
from .store import ArchiveStore

__all__ = ["Account", "ArchiveStore", "Attachment", "Base", "Database", "Email"]
