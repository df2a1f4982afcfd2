"""Gmail message parsing: part-tree flattening, attachment classification,
header lookup, and body extraction.

Operates on the JSON returned by ``users.messages.get?format=full``.  The
payload is converted once into an immutable :class:`MessagePart` tree.  An
undecodable body part is logged and read as empty rather than failing the
message.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger()

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class MessagePart:
    """One node of a message's MIME part tree."""

    part_id: str = ""
    mime_type: str = ""
    filename: str = ""
    headers: tuple[tuple[str, str], ...] = ()
    attachment_id: str | None = None
    size: int = 0
    data: str | None = None
    parts: tuple[MessagePart, ...] = ()

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> MessagePart:
        body = payload.get("body") or {}
        return cls(
            part_id=payload.get("partId") or "",
            mime_type=payload.get("mimeType") or "",
            filename=payload.get("filename") or "",
            headers=tuple(
                (h.get("name") or "", h.get("value") or "")
                for h in payload.get("headers") or []
            ),
            attachment_id=body.get("attachmentId") or None,
            size=int(body.get("size") or 0),
            data=body.get("data") or None,
            parts=tuple(cls.from_api(p) for p in payload.get("parts") or []),
        )

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup; the first match wins."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None


@dataclass(frozen=True)
class ParsedAttachment:
    """An attachment part selected for download."""

    part_id: str
    filename: str
    content_type: str
    attachment_id: str | None
    inline_data: str | None
    size: int


@dataclass
class ParsedEmail:
    """Structured representation of a fully fetched Gmail message."""

    message_id: str
    thread_id: str
    subject: str
    sender: str
    recipients: str
    cc: str
    bcc: str
    date: datetime
    body_text: str = ""
    body_html: str = ""
    attachments: list[ParsedAttachment] = field(default_factory=list)


# ------------------------------------------------------------------
# Tree walk and classification
# ------------------------------------------------------------------


def flatten_parts(root: MessagePart) -> list[MessagePart]:
    """Return the leaf parts of *root*, depth-first, left to right.

    A part without children is a leaf, including *root* itself.
    """
    leaves: list[MessagePart] = []
    stack = [root]
    while stack:
        part = stack.pop()
        if part.parts:
            stack.extend(reversed(part.parts))
        else:
            leaves.append(part)
    return leaves


def disposition_type(part: MessagePart) -> str:
    """The disposition token of the part's Content-Disposition header, lowercased."""
    value = part.header("Content-Disposition")
    if not value:
        return ""
    return value.split(";", 1)[0].strip().lower()


def is_attachment(part: MessagePart) -> bool:
    """Decide whether a leaf part is a user attachment.

    Rules, first match wins: an attachment-content reference; an explicit
    ``attachment`` disposition; a filename together with a positive size.
    """
    if part.attachment_id:
        return True
    if disposition_type(part) == "attachment":
        return True
    return bool(part.filename and part.size > 0)


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's URL-safe base64, tolerating missing padding."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


# ------------------------------------------------------------------
# Parser
# ------------------------------------------------------------------


class GmailMessageParser:
    """Stateless parser: Gmail ``format=full`` message JSON → ParsedEmail."""

    def parse(self, message: dict[str, Any]) -> ParsedEmail:
        root = MessagePart.from_api(message.get("payload") or {})

        parsed = ParsedEmail(
            message_id=message.get("id") or "",
            thread_id=message.get("threadId") or "",
            subject=root.header("Subject") or "",
            sender=root.header("From") or "",
            recipients=root.header("To") or "",
            cc=root.header("Cc") or "",
            bcc=root.header("Bcc") or "",
            date=_internal_date(message.get("internalDate")),
        )

        for part in flatten_parts(root):
            if is_attachment(part):
                parsed.attachments.append(
                    ParsedAttachment(
                        part_id=part.part_id,
                        filename=part.filename or f"attachment-{part.part_id or 'unnamed'}",
                        content_type=part.mime_type or DEFAULT_CONTENT_TYPE,
                        attachment_id=part.attachment_id,
                        inline_data=part.data,
                        size=part.size,
                    )
                )
                continue

            if not part.data:
                continue
            # Last part of each subtype wins
            if part.mime_type == "text/plain":
                parsed.body_text = _decode_text(part)
            elif part.mime_type == "text/html":
                parsed.body_html = _decode_text(part)

        return parsed


def _decode_text(part: MessagePart) -> str:
    try:
        return decode_base64url(part.data).decode("utf-8", errors="replace")
    except binascii.Error:
        logger.warning("message_body_undecodable", part_id=part.part_id, mime_type=part.mime_type)
        return ""


def _internal_date(value: str | int | None) -> datetime:
    """Convert Gmail's epoch-millisecond ``internalDate``; falls back to now."""
    try:
        millis = int(value) if value is not None else 0
    except (TypeError, ValueError):
        millis = 0
    if millis <= 0:
        return datetime.now(UTC)
    return datetime.fromtimestamp(millis / 1000, UTC)
