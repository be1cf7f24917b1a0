"""
CSRF state tokens for the OAuth2 authorization redirect.
Uses python-jose to sign a short-lived token bound to the browser session.
"""

import secrets
from datetime import timedelta
from typing import Any, Dict

from jose import JWTError, jwt

from qbo_einvoice.config import Settings
from qbo_einvoice.models.credentials import utcnow

STATE_TOKEN_TYPE = "oauth_state"


def new_session_id() -> str:
    """Random identifier stored in the OAuth session cookie."""
    return secrets.token_urlsafe(24)


def create_state(session_id: str, settings: Settings) -> str:
    """
    Create a signed OAuth state token for a session.

    Args:
        session_id: Value of the OAuth session cookie
        settings: Application settings (signing secret, algorithm, lifetime)

    Returns:
        Encoded JWT used as the ``state`` query parameter
    """
    now = utcnow()
    payload: Dict[str, Any] = {
        "sid": session_id,
        "nonce": secrets.token_hex(8),
        "iat": now,
        "exp": now + timedelta(minutes=settings.oauth_state_ttl_minutes),
        "type": STATE_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_state(state: str, session_id: str, settings: Settings) -> bool:
    """
    Check that a state token is authentic, unexpired and bound to the session.
    """
    try:
        payload = jwt.decode(state, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return False

    return payload.get("type") == STATE_TOKEN_TYPE and payload.get("sid") == session_id
