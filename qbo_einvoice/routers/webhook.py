"""
Intuit webhook receiver.

Responses are plain text, matching what Intuit expects:
- 401 ``FORBIDDEN`` when the signature header is missing or wrong
- 200 ``success`` for an empty body whose signature matches
- 200 ``SUCCESS`` once a verified notification has been processed

Only authentication failures change the status code. Everything that goes
wrong after verification ends up in the logs and the audit file.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse

from qbo_einvoice.connectors.webhook_handler import (
    SIGNATURE_HEADER,
    VerificationOutcome,
    WebhookVerificationError,
    parse_notification,
)
from qbo_einvoice.dependencies import Services, get_services
from qbo_einvoice.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(request: Request, services: Services = Depends(get_services)):
    """Verify, enrich and audit an Intuit change notification."""
    raw_body = await request.body()
    outcome = services.authenticator.verify(raw_body, request.headers.get(SIGNATURE_HEADER))

    if outcome is VerificationOutcome.UNAUTHENTICATED:
        return PlainTextResponse("FORBIDDEN", status_code=status.HTTP_401_UNAUTHORIZED)

    if outcome is VerificationOutcome.EMPTY:
        return PlainTextResponse("success")

    try:
        notification = parse_notification(raw_body)
    except WebhookVerificationError:
        # Verified but unreadable: acknowledge so Intuit does not redeliver it.
        return PlainTextResponse("SUCCESS")

    records = await services.enrichment.process(notification)
    logger.info("webhook_processed", records=len(records))

    return PlainTextResponse("SUCCESS")
