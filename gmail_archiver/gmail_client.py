"""Async Gmail REST client over httpx.

Every call takes the caller's :class:`~gmail_archiver.credentials.Credential`
explicitly; the client holds no per-account state.  HTTP outcomes are mapped
onto the archiver's error taxonomy:

* 401 → :class:`AuthError`
* 404 on ``history.list`` → :class:`StaleCursorError`
* transport errors and any other non-2xx (after retries) → :class:`TransientFetchError`
* undecodable attachment data → :class:`TransientFetchError`
"""

from __future__ import annotations

import binascii
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from .config import GmailConfig, RetryConfig
from .errors import AuthError, StaleCursorError, TransientFetchError
from .parser import decode_base64url
from .retry import with_retry

if TYPE_CHECKING:
    from .credentials import Credential

logger = structlog.get_logger()


@dataclass(frozen=True)
class HistoryPage:
    """Result of a complete ``history.list`` walk."""

    message_ids: list[str]
    history_id: str | None


@dataclass(frozen=True)
class WatchRegistration:
    """Result of ``users.watch``."""

    history_id: str
    expiration: datetime | None


class GmailClient:
    """Thin async wrapper around the Gmail users API."""

    def __init__(
        self,
        config: GmailConfig,
        retry: RetryConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._retry = retry
        self._client = http_client
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        logger.info("gmail_client_started", base_url=self._config.api_base_url)

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("gmail_client_stopped")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def list_recent(self, credential: Credential, max_messages: int) -> list[str]:
        """Page through ``messages.list`` until *max_messages* IDs are collected."""
        message_ids: list[str] = []
        page_token: str | None = None

        while len(message_ids) < max_messages:
            params: dict[str, Any] = {
                "maxResults": min(self._config.page_size, max_messages - len(message_ids)),
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", "/messages", credential, params=params)
            page = [m["id"] for m in data.get("messages") or [] if m.get("id")]
            message_ids.extend(page)
            page_token = data.get("nextPageToken")

            logger.debug(
                "gmail_messages_page",
                account_id=str(credential.account_id),
                fetched=len(page),
                total=len(message_ids),
            )
            if not page or not page_token:
                break

        return message_ids[:max_messages]

    async def list_history(self, credential: Credential, since_history_id: str) -> HistoryPage:
        """Collect every ``messageAdded`` event since *since_history_id*.

        Raises :class:`StaleCursorError` when Gmail no longer holds history
        for the cursor.
        """
        message_ids: list[str] = []
        seen: set[str] = set()
        latest: str | None = None
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "startHistoryId": since_history_id,
                "historyTypes": "messageAdded",
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request(
                "GET",
                "/history",
                credential,
                params=params,
                stale_cursor=since_history_id,
            )
            for record in data.get("history") or []:
                for added in record.get("messagesAdded") or []:
                    message_id = (added.get("message") or {}).get("id")
                    if message_id and message_id not in seen:
                        seen.add(message_id)
                        message_ids.append(message_id)

            latest = data.get("historyId") or latest
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return HistoryPage(message_ids=message_ids, history_id=latest)

    async def register_watch(self, credential: Credential, topic: str) -> WatchRegistration:
        """Register a Pub/Sub push subscription; returns the current cursor."""
        data = await self._request(
            "POST",
            "/watch",
            credential,
            json={"topicName": topic, "labelIds": [], "labelFilterAction": "include"},
        )
        expiration_ms = int(data.get("expiration") or 0)
        return WatchRegistration(
            history_id=str(data["historyId"]),
            expiration=datetime.fromtimestamp(expiration_ms / 1000, UTC) if expiration_ms else None,
        )

    async def current_history_id(self, credential: Credential) -> str:
        """The mailbox's latest history ID, from ``users.getProfile``."""
        data = await self._request("GET", "/profile", credential)
        return str(data["historyId"])

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def get_message(self, credential: Credential, message_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/messages/{message_id}",
            credential,
            params={"format": "full"},
        )

    async def get_attachment_bytes(
        self,
        credential: Credential,
        message_id: str,
        attachment_id: str,
    ) -> bytes:
        data = await self._request(
            "GET",
            f"/messages/{message_id}/attachments/{attachment_id}",
            credential,
        )
        encoded = data.get("data")
        if not encoded:
            raise TransientFetchError(
                f"No attachment data for message {message_id} attachment {attachment_id}"
            )
        try:
            return decode_base64url(encoded)
        except binascii.Error as exc:
            raise TransientFetchError(
                f"Undecodable attachment data for message {message_id} attachment {attachment_id}"
            ) from exc

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        credential: Credential,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        stale_cursor: str | None = None,
    ) -> dict[str, Any]:
        assert self._client is not None, "Gmail client not started"
        url = f"{self._config.api_base_url}{path}"
        headers = {"Authorization": f"Bearer {credential.access_token}"}

        @with_retry(self._retry)
        async def _send() -> httpx.Response:
            response = await self._client.request(
                method, url, params=params, json=json, headers=headers
            )
            response.raise_for_status()
            return response

        try:
            response = await _send()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            details = format_google_error(exc.response)
            if status == 401:
                raise AuthError(f"Gmail rejected credential ({details or status})") from exc
            if status == 404 and stale_cursor is not None:
                raise StaleCursorError(stale_cursor) from exc
            logger.warning("gmail_request_failed", path=path, status=status, details=details)
            raise TransientFetchError(f"Gmail {method} {path} failed with {status}") from exc
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Gmail {method} {path} failed: {exc}") from exc

        return response.json()


def format_google_error(response: httpx.Response) -> str | None:
    """Extract a compact Google API/OAuth error summary from response JSON."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    # Gmail API shape: {"error": {"code": 404, "status": "...", "message": "..."}}
    if isinstance(error, dict):
        parts = [
            f"{key}={error[key]}" for key in ("code", "status", "message") if error.get(key)
        ]
        return ", ".join(parts) or None
    # OAuth shape: {"error": "invalid_grant", "error_description": "..."}
    if isinstance(error, str) and error:
        description = payload.get("error_description")
        return f"error={error}, description={description}" if description else f"error={error}"
    return None
