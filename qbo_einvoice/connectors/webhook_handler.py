"""
Webhook authentication for Intuit change notifications.

Intuit signs every webhook body with HMAC-SHA256 keyed by the app's webhook
verifier token and sends the base64 digest in the ``intuit-signature``
header. Verification order:

1. No signature header: unauthenticated
2. HMAC of the exact raw body bytes must equal the header value, even
   when the body is empty
3. Zero-length body with a matching signature: accepted, nothing to process
"""

import base64
import hashlib
import hmac
from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError

from qbo_einvoice.models.notifications import ChangeNotification

logger = structlog.get_logger()

SIGNATURE_HEADER = "intuit-signature"


class WebhookVerificationError(Exception):
    """Raised when a webhook body cannot be interpreted after verification."""

    pass


class VerificationOutcome(str, Enum):
    """Result of checking an inbound webhook."""

    VERIFIED = "verified"
    EMPTY = "empty"
    UNAUTHENTICATED = "unauthenticated"


def compute_signature(raw_body: bytes, verifier_token: str) -> str:
    """Base64-encoded HMAC-SHA256 of ``raw_body`` keyed by ``verifier_token``."""
    digest = hmac.new(
        key=verifier_token.encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class WebhookAuthenticator:
    """
    Verifies Intuit webhook signatures.

    Attributes:
        verifier_token: Webhook verifier token from the Intuit app settings
    """

    def __init__(self, verifier_token: str):
        self.verifier_token = verifier_token

        logger.info(
            "webhook_authenticator_initialized",
            has_verifier_token=bool(verifier_token),
        )

    def verify(self, raw_body: Optional[bytes], signature: Optional[str]) -> VerificationOutcome:
        """
        Check the signature header against the raw request body.

        Args:
            raw_body: Request body exactly as received
            signature: ``intuit-signature`` header value, if any

        Returns:
            VerificationOutcome for the request
        """
        if not signature:
            logger.warning("webhook_signature_missing")
            return VerificationOutcome.UNAUTHENTICATED

        raw_body = raw_body or b""
        expected = compute_signature(raw_body, self.verifier_token)

        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            logger.warning(
                "webhook_signature_mismatch",
                expected_prefix=expected[:8] + "...",
                received_prefix=signature[:8] + "...",
            )
            return VerificationOutcome.UNAUTHENTICATED

        if not raw_body:
            logger.info("webhook_body_empty")
            return VerificationOutcome.EMPTY

        logger.info("webhook_signature_verified")
        return VerificationOutcome.VERIFIED


def parse_notification(raw_body: bytes) -> ChangeNotification:
    """
    Parse a verified webhook body.

    Raises:
        WebhookVerificationError: If the body is not a change notification
    """
    try:
        notification = ChangeNotification.model_validate_json(raw_body)
    except ValidationError as e:
        logger.error("webhook_payload_parse_error", error=str(e))
        raise WebhookVerificationError(f"Failed to parse webhook payload: {e}") from e

    logger.info(
        "webhook_payload_parsed",
        groups=len(notification.event_notifications),
        entities=sum(len(group.entities) for group in notification.event_notifications),
    )
    return notification
