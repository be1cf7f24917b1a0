"""
External system connectors.

Main Components:
    IntuitOAuthClient: Intuit token endpoint (authorization-code and refresh grants)
    QBOClient: QuickBooks Online entity reads, invoice updates, attachment uploads
    FirsClient: FIRS e-invoicing sign/update endpoints
    SupabaseStorageClient: public object storage for QR code images
    WebhookAuthenticator: HMAC-SHA256 verification of Intuit webhooks
"""

from qbo_einvoice.connectors.firs_client import FirsClient
from qbo_einvoice.connectors.intuit_oauth import IntuitOAuthClient, QBOAuthError
from qbo_einvoice.connectors.object_storage import ObjectStorageError, SupabaseStorageClient
from qbo_einvoice.connectors.qbo_client import (
    QBOAPIError,
    QBOClient,
    QBOStaleObjectError,
    UnsupportedEntityError,
)
from qbo_einvoice.connectors.webhook_handler import (
    VerificationOutcome,
    WebhookAuthenticator,
    WebhookVerificationError,
)

__all__ = [
    "FirsClient",
    "IntuitOAuthClient",
    "ObjectStorageError",
    "QBOAPIError",
    "QBOAuthError",
    "QBOClient",
    "QBOStaleObjectError",
    "SupabaseStorageClient",
    "UnsupportedEntityError",
    "VerificationOutcome",
    "WebhookAuthenticator",
    "WebhookVerificationError",
]
