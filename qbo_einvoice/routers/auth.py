"""
OAuth2 connection flow with QuickBooks.

The ``state`` parameter is a signed, short-lived token bound to an opaque
session cookie, so a callback can only complete the flow that the same
browser started.
"""

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from qbo_einvoice.auth.oauth_state import create_state, new_session_id, verify_state
from qbo_einvoice.connectors.intuit_oauth import QBOAuthError
from qbo_einvoice.dependencies import Services, get_services
from qbo_einvoice.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

SESSION_COOKIE = "qbo_oauth_session"


class StartOAuthResponse(BaseModel):
    """Authorization link for manual connection."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    auth_url: str = Field(serialization_alias="authUrl")
    instructions: str


class SetTokensRequest(BaseModel):
    """Known token pair to install for a realm."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)
    realm_id: str = Field(alias="realmId", min_length=1)


def _authorization_url(services: Services, response: Response, session_id: Optional[str]) -> str:
    session_id = session_id or new_session_id()
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        httponly=True,
        samesite="lax",
        max_age=services.settings.oauth_state_ttl_minutes * 60,
    )
    state = create_state(session_id, services.settings)
    return services.oauth.get_authorization_url(state)


@router.get("/authUri")
async def get_auth_uri(
    response: Response,
    session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    services: Services = Depends(get_services),
) -> str:
    """Authorization URL for the QuickBooks consent screen."""
    auth_url = _authorization_url(services, response, session_id)
    logger.info("oauth_initiated")
    return auth_url


@router.get("/startOAuth", response_model=StartOAuthResponse)
async def start_oauth(
    response: Response,
    session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    services: Services = Depends(get_services),
):
    auth_url = _authorization_url(services, response, session_id)
    logger.info("oauth_initiated")
    return StartOAuthResponse(
        message="Click the link below to authorize with QuickBooks",
        auth_url=auth_url,
        instructions=(
            "After authorization, you will be redirected back and tokens will be "
            "automatically saved."
        ),
    )


@router.get("/callback", response_class=PlainTextResponse)
async def oauth_callback(
    code: str = Query(..., description="Authorization code from Intuit"),
    realm_id: str = Query(..., alias="realmId", description="QuickBooks company ID"),
    state: Optional[str] = Query(default=None, description="State parameter for CSRF protection"),
    session_id: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    services: Services = Depends(get_services),
):
    """
    OAuth2 callback endpoint.
    Exchanges the authorization code and stores the credential for the realm.
    """
    if state and session_id and not verify_state(state, session_id, services.settings):
        logger.warning("oauth_state_mismatch", realm_id=realm_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid OAuth state")

    try:
        await services.credentials.exchange_authorization_code(code, realm_id)
    except QBOAuthError as e:
        logger.error("oauth_callback_failed", realm_id=realm_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Token exchange with Intuit failed",
        ) from e

    response = PlainTextResponse("")
    response.delete_cookie(SESSION_COOKIE)
    return response


@router.post("/setTokens")
async def set_tokens(body: SetTokensRequest, services: Services = Depends(get_services)):
    """Install a token pair directly. Development mode only."""
    if not services.settings.dev_mode:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    services.credentials.inject(body.access_token, body.refresh_token, body.realm_id)
    return {"message": "Tokens set successfully. Webhooks will now fetch full data."}
