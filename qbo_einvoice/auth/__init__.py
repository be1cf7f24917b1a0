"""Credential lifecycle and OAuth state handling."""

from qbo_einvoice.auth.credentials import CredentialManager
from qbo_einvoice.auth.oauth_state import create_state, new_session_id, verify_state

__all__ = ["CredentialManager", "create_state", "new_session_id", "verify_state"]
