"""
FIRS e-invoicing API client.

Each call is a single HTTP request with a fixed timeout. Failures never
raise: a non-2xx response is passed through as the result when it has a
body, anything else becomes a synthesized ``code=500`` result.
"""

from typing import Any, Optional

import httpx
import structlog

from qbo_einvoice.config import Settings
from qbo_einvoice.models.credentials import utcnow
from qbo_einvoice.models.firs import FirsInvoice, SubmissionResult

logger = structlog.get_logger()

SIGN_INVOICE_PATH = "/api/Firs/SignInvoice"
UPDATE_INVOICE_PATH = "/api/Firs/UpdateInvoice/{irn}"


def _result_from_body(body: Any, status_code: int) -> Optional[SubmissionResult]:
    """Coerce a FIRS JSON body into a result, defaulting ``code`` to the HTTP status."""
    if not isinstance(body, dict):
        return None
    payload = dict(body)
    payload.setdefault("code", status_code)
    try:
        return SubmissionResult.model_validate(payload)
    except ValueError:
        return None


def _internal_error(error: Exception) -> SubmissionResult:
    return SubmissionResult(
        code=500,
        message=f"Internal error: {error}",
        timestamp=utcnow().isoformat(),
    )


class FirsClient:
    """
    Client for the FIRS sign and update invoice endpoints.

    Attributes:
        base_url: FIRS API base URL
        timeout: Per-request timeout in seconds
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.firs_api_base_url.rstrip("/")
        self.timeout = settings.firs_timeout_seconds
        self._headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if settings.firs_api_key:
            self._headers["x-api-key"] = settings.firs_api_key
        if settings.firs_api_secret:
            self._headers["x-api-secret"] = settings.firs_api_secret
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    async def submit(self, document: FirsInvoice) -> SubmissionResult:
        """Sign a new invoice (``POST /api/Firs/SignInvoice``)."""
        logger.info("firs_submission_started", irn=document.irn)
        return await self._send("POST", SIGN_INVOICE_PATH, document, document.irn)

    async def update(self, document: FirsInvoice, irn: str) -> SubmissionResult:
        """Update a previously signed invoice (``PATCH /api/Firs/UpdateInvoice/{irn}``)."""
        logger.info("firs_update_started", irn=irn)
        return await self._send("PATCH", UPDATE_INVOICE_PATH.format(irn=irn), document, irn)

    async def _send(self, method: str, path: str, document: FirsInvoice, irn: str) -> SubmissionResult:
        try:
            response = await self._client().request(
                method,
                f"{self.base_url}{path}",
                json=document.model_dump(mode="json"),
                headers=self._headers,
                timeout=self.timeout,
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error(
                "firs_request_failed",
                method=method,
                irn=irn,
                status_code=e.response.status_code,
                error=e.response.text,
            )
            try:
                body = e.response.json()
            except ValueError:
                body = None
            return _result_from_body(body, e.response.status_code) or _internal_error(e)

        except httpx.HTTPError as e:
            logger.error("firs_request_error", method=method, irn=irn, error=str(e))
            return _internal_error(e)

        try:
            body = response.json()
        except ValueError as e:
            logger.error("firs_response_not_json", method=method, irn=irn, error=str(e))
            return _internal_error(e)

        result = _result_from_body(body, response.status_code)
        if result is None:
            return _internal_error(ValueError("Unexpected FIRS response body"))

        logger.info(
            "firs_request_completed",
            method=method,
            irn=irn,
            code=result.code,
            reference=result.reference,
        )
        return result
