"""Per-account OAuth credential resolution.

``get_valid_credential(account_id)`` returns the account's current access
token, refreshing it through the OAuth token endpoint first when it expires
within the configured buffer.  Safe to call concurrently: at worst two
callers both refresh and the later write wins.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx
import structlog

from .config import GoogleOAuthConfig
from .db.models import Account
from .db.store import ArchiveStore
from .errors import AuthError, TransientFetchError
from .gmail_client import format_google_error

logger = structlog.get_logger()

_PERMANENT_OAUTH_ERRORS = frozenset({"invalid_grant", "invalid_request", "unauthorized_client"})


@dataclass(frozen=True)
class Credential:
    """Capability to call Google APIs on behalf of one account."""

    account_id: uuid.UUID
    email_address: str
    access_token: str
    expires_at: datetime


class CredentialService:
    def __init__(
        self,
        config: GoogleOAuthConfig,
        store: ArchiveStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._client = http_client
        self._owns_client = http_client is None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_valid_credential(self, account_id: uuid.UUID) -> Credential:
        account = await self._store.get_account(account_id)
        if account is None:
            raise AuthError(f"Unknown account {account_id}")
        if self.needs_refresh(account):
            return await self.refresh(account)
        return _to_credential(account)

    async def force_refresh(self, account_id: uuid.UUID) -> Credential:
        """Refresh regardless of the stored expiry.

        Used after Gmail rejects a token the store still considers valid.
        Raises :class:`AuthError` only if the refresh token itself is rejected.
        """
        account = await self._store.get_account(account_id)
        if account is None:
            raise AuthError(f"Unknown account {account_id}")
        return await self.refresh(account)

    def needs_refresh(self, account: Account, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        buffer = timedelta(seconds=self._config.expiry_buffer_seconds)
        return not account.access_token or _aware(account.token_expiry) <= now + buffer

    async def refresh(self, account: Account) -> Credential:
        """Exchange the refresh token for a new access token and persist it."""
        assert self._client is not None, "Credential service not started"
        logger.info("oauth_token_refreshing", account_id=str(account.id))

        try:
            response = await self._client.post(
                self._config.token_url,
                data={
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret.get_secret_value(),
                    "refresh_token": account.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Token refresh failed: {exc}") from exc

        if response.is_error:
            details = format_google_error(response)
            error_code = _oauth_error_code(response)
            logger.error(
                "oauth_token_refresh_failed",
                account_id=str(account.id),
                status=response.status_code,
                details=details,
            )
            if error_code in _PERMANENT_OAUTH_ERRORS or response.status_code == 401:
                raise AuthError(
                    f"Refresh token rejected for account {account.id}; re-authentication required"
                )
            raise TransientFetchError(f"Token refresh failed with {response.status_code}")

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthError(f"Token endpoint returned no access token for account {account.id}")

        expires_at = datetime.now(UTC) + timedelta(seconds=int(payload.get("expires_in", 3600)))
        await self._store.update_tokens(
            account.id,
            access_token=access_token,
            token_expiry=expires_at,
            refresh_token=payload.get("refresh_token"),
        )
        logger.info("oauth_token_refreshed", account_id=str(account.id))
        return Credential(
            account_id=account.id,
            email_address=account.email_address,
            access_token=access_token,
            expires_at=expires_at,
        )

    async def refresh_all_expired(self) -> int:
        """Refresh every near-expiry account.  Returns the number refreshed.

        Failures are logged per account and never abort the sweep.
        """
        refreshed = 0
        for account in await self._store.list_accounts():
            if not self.needs_refresh(account):
                continue
            try:
                await self.refresh(account)
                refreshed += 1
            except AuthError:
                logger.error("account_requires_reauthentication", account_id=str(account.id))
            except TransientFetchError as exc:
                logger.warning(
                    "oauth_token_refresh_deferred", account_id=str(account.id), error=str(exc)
                )
        return refreshed


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_credential(account: Account) -> Credential:
    return Credential(
        account_id=account.id,
        email_address=account.email_address,
        access_token=account.access_token,
        expires_at=_aware(account.token_expiry),
    )


def _oauth_error_code(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    return error if isinstance(error, str) else None
