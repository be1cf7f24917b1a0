"""
Intuit OAuth2 token endpoint client.

Only the two grants this service uses are implemented:
- authorization_code: one-shot exchange at OAuth callback time
- refresh_token: renewal of an expiring access token

Both calls authenticate with HTTP Basic built from the app's client ID and
secret and post a form-encoded body.
"""

from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog

from qbo_einvoice.config import Settings

logger = structlog.get_logger()


class QBOAuthError(Exception):
    """Raised when OAuth2 authentication fails or no credential is available."""

    pass


class IntuitOAuthClient:
    """
    Thin client for the Intuit authorization and token endpoints.

    Attributes:
        client_id: Intuit OAuth2 client ID
        client_secret: Intuit OAuth2 client secret
        redirect_uri: OAuth2 callback URL registered with Intuit
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.client_id = settings.intuit_client_id
        self.client_secret = settings.intuit_client_secret
        self.redirect_uri = settings.intuit_redirect_uri
        self.scope = settings.intuit_scope
        self.auth_endpoint = settings.intuit_auth_url
        self.token_endpoint = settings.intuit_token_url
        self._timeout = settings.intuit_timeout_seconds
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    def get_authorization_url(self, state: str) -> str:
        """
        Build the consent URL the user is redirected to.

        Args:
            state: CSRF state token echoed back on the callback

        Returns:
            Complete authorization URL
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "response_type": "code",
            "state": state,
        }
        return f"{self.auth_endpoint}?{urlencode(params)}"

    async def exchange_code(self, auth_code: str) -> dict[str, Any]:
        """
        Exchange an authorization code for an access/refresh token pair.

        Raises:
            QBOAuthError: If the token endpoint refuses the code
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": auth_code,
                "redirect_uri": self.redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        """
        Exchange a refresh token for a new token pair.

        Raises:
            QBOAuthError: If the token endpoint refuses the refresh token
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        grant_type = form["grant_type"]
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }

        try:
            response = await self._client().post(
                self.token_endpoint,
                data=form,
                headers=headers,
                auth=(self.client_id, self.client_secret),
            )
            response.raise_for_status()
            token_data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                "oauth_token_request_failed",
                grant_type=grant_type,
                status_code=e.response.status_code,
                error=e.response.text,
            )
            raise QBOAuthError(
                f"Token request ({grant_type}) failed with status "
                f"{e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("oauth_token_request_error", grant_type=grant_type, error=str(e))
            raise QBOAuthError(f"Token request ({grant_type}) failed: {e}") from e

        if not isinstance(token_data, dict) or "access_token" not in token_data:
            raise QBOAuthError(f"Token response ({grant_type}) has no access_token")

        logger.info(
            "oauth_token_received",
            grant_type=grant_type,
            token_type=token_data.get("token_type"),
            expires_in=token_data.get("expires_in"),
        )
        return token_data
