"""
Credential lifecycle management.

Owns the current QuickBooks credential for every realm: decides validity,
refreshes through the Intuit token endpoint before it expires, and persists
every new credential to the CredentialStore. Consumers only call
``ensure_valid`` and ``get``.

A credential is valid while ``now < issued_at + expires_in - 5 minutes``.
A refresh failure never raises; it leaves the realm without a credential,
so later API calls for that realm are skipped rather than retried inline.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from qbo_einvoice.connectors.intuit_oauth import IntuitOAuthClient, QBOAuthError
from qbo_einvoice.models.credentials import EXPIRY_BUFFER, Credential, utcnow
from qbo_einvoice.storage.base import CredentialStore, StorageError

logger = structlog.get_logger()

# Lifetimes used for manually injected test credentials.
INJECTED_EXPIRES_IN = 3600
INJECTED_REFRESH_EXPIRES_IN = 8726400


class CredentialManager:
    """
    Per-realm credential holder with proactive refresh.

    Refreshes are serialized per realm with an ``asyncio.Lock`` so that a
    refresh triggered while processing one entity is what the next entity
    (or a concurrent request for the same realm) sees.

    Attributes:
        last_realm_id: Realm of the most recent authorization or injection
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: IntuitOAuthClient,
        clock: Callable[[], datetime] = utcnow,
        expiry_buffer: timedelta = EXPIRY_BUFFER,
    ):
        self._store = store
        self._oauth = oauth_client
        self._clock = clock
        self._expiry_buffer = expiry_buffer
        self._current: dict[str, Optional[Credential]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.last_realm_id: Optional[str] = None

    def is_valid(self, credential: Optional[Credential], now: Optional[datetime] = None) -> bool:
        """
        Whether a credential can still be used without refreshing.

        The boundary itself (exactly ``expires_at - buffer``) counts as invalid.
        """
        if credential is None or not credential.access_token:
            return False
        now = now or self._clock()
        return now < credential.expires_at - self._expiry_buffer

    def get(self, realm_id: str) -> Optional[Credential]:
        """
        Current credential for a realm, or None if none is usable.

        The stored credential is loaded on first access. After a failed
        refresh the realm stays empty until a new authorization.
        """
        if realm_id in self._current:
            return self._current[realm_id]

        try:
            credential = self._store.load_credential(realm_id)
        except StorageError as e:
            logger.error("credential_load_failed", realm_id=realm_id, error=str(e))
            return None

        self._current[realm_id] = credential
        if credential is not None:
            logger.info("credential_loaded", realm_id=realm_id, expires_at=credential.expires_at.isoformat())
        return credential

    def _lock_for(self, realm_id: str) -> asyncio.Lock:
        if realm_id not in self._locks:
            self._locks[realm_id] = asyncio.Lock()
        return self._locks[realm_id]

    def _clear(self, realm_id: str) -> None:
        self._current[realm_id] = None

    def _replace(self, realm_id: str, credential: Credential) -> None:
        self._current[realm_id] = credential
        try:
            self._store.save_credential(realm_id, credential)
        except StorageError as e:
            logger.error("credential_persist_failed", realm_id=realm_id, error=str(e))

    async def ensure_valid(self, realm_id: str) -> None:
        """
        Refresh the realm's credential if it is expired or about to expire.

        Never raises. If there is nothing to refresh with, or the token
        endpoint refuses, the realm is left without a credential.
        """
        async with self._lock_for(realm_id):
            credential = self.get(realm_id)

            if credential is None:
                logger.info("no_credential_available", realm_id=realm_id)
                return

            if self.is_valid(credential):
                logger.debug("credential_still_valid", realm_id=realm_id)
                return

            if not credential.refresh_token:
                logger.warning("no_refresh_token_available", realm_id=realm_id)
                self._clear(realm_id)
                return

            logger.info("credential_expiring_refreshing", realm_id=realm_id)

            try:
                payload = await self._oauth.refresh(credential.refresh_token)
                refreshed = Credential.from_token_response(payload, issued_at=self._clock())
            except (QBOAuthError, KeyError, TypeError, ValueError) as e:
                logger.error("credential_refresh_failed", realm_id=realm_id, error=str(e))
                self._clear(realm_id)
                return

            self._replace(realm_id, refreshed)
            logger.info("credential_refreshed", realm_id=realm_id, expires_in=refreshed.expires_in)

    async def exchange_authorization_code(self, code: str, realm_id: str) -> Credential:
        """
        Exchange an OAuth callback code and store the resulting credential.

        Raises:
            QBOAuthError: If the token endpoint refuses the code
        """
        async with self._lock_for(realm_id):
            payload = await self._oauth.exchange_code(code)
            try:
                credential = Credential.from_token_response(payload, issued_at=self._clock())
            except (KeyError, TypeError, ValueError) as e:
                raise QBOAuthError(f"Malformed token response: {e}") from e

            self._replace(realm_id, credential)
            self.last_realm_id = realm_id

        logger.info("oauth_flow_completed", realm_id=realm_id)
        return credential

    def inject(self, access_token: str, refresh_token: str, realm_id: str) -> Credential:
        """Install a known token pair for a realm (manual testing only)."""
        credential = Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="Bearer",
            issued_at=self._clock(),
            expires_in=INJECTED_EXPIRES_IN,
            x_refresh_token_expires_in=INJECTED_REFRESH_EXPIRES_IN,
        )
        self._replace(realm_id, credential)
        self.last_realm_id = realm_id
        logger.info("credential_injected", realm_id=realm_id)
        return credential

    def default_realm_id(self) -> Optional[str]:
        """Most recently connected realm, falling back to the newest stored one."""
        if self.last_realm_id:
            return self.last_realm_id
        try:
            realms = self._store.list_credential_realms()
        except StorageError as e:
            logger.error("credential_realms_list_failed", error=str(e))
            return None
        return realms[0] if realms else None
