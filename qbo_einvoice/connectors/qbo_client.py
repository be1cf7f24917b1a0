"""
QuickBooks Online API client.

Provides the accounting-platform calls the webhook pipeline needs:
- Per-entity-type reads after a change notification
- Invoice read and full update (used for custom field write-back)
- CompanyInfo read (supplier party for FIRS)
- Attachment upload through the multipart /upload endpoint
- Customer creation

The client never refreshes credentials itself. Callers run
``CredentialManager.ensure_valid`` first; the client only reads the current
access token.
"""

import asyncio
import json
from typing import Any, Optional

import httpx
import structlog

from qbo_einvoice.config import Settings
from qbo_einvoice.connectors.intuit_oauth import QBOAuthError
from qbo_einvoice.models.enums import EntityType

logger = structlog.get_logger()


class QBOAPIError(Exception):
    """Raised when a QuickBooks API request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, fault_code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.fault_code = fault_code


class UnsupportedEntityError(QBOAPIError):
    """Raised when an entity type has no read endpoint."""

    pass


class QBOStaleObjectError(QBOAPIError):
    """Raised when an update carries an outdated SyncToken."""

    pass


# Read endpoint per entity type. Every EntityType member must appear here.
READ_ENDPOINTS: dict[EntityType, str] = {
    EntityType.CUSTOMER: "customer",
    EntityType.ITEM: "item",
    EntityType.INVOICE: "invoice",
    EntityType.PAYMENT: "payment",
    EntityType.BILL: "bill",
    EntityType.VENDOR: "vendor",
    EntityType.EMPLOYEE: "employee",
    EntityType.ACCOUNT: "account",
    EntityType.CLASS: "class",
    EntityType.DEPARTMENT: "department",
    EntityType.ESTIMATE: "estimate",
    EntityType.PURCHASE_ORDER: "purchaseorder",
    EntityType.SALES_RECEIPT: "salesreceipt",
    EntityType.TIME_ACTIVITY: "timeactivity",
    EntityType.JOURNAL_ENTRY: "journalentry",
}

STALE_OBJECT_FAULT_CODE = "5010"


def resolve_entity_type(name: str) -> EntityType:
    """
    Map a notification entity name to a known entity type.

    Raises:
        UnsupportedEntityError: If the name is not a readable entity type
    """
    try:
        return EntityType(name)
    except ValueError:
        raise UnsupportedEntityError(f"Unsupported entity type: {name}") from None


def _fault_code(response: httpx.Response) -> Optional[str]:
    """Extract the first QBO Fault error code from an error response."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    errors = (body.get("Fault") or {}).get("Error") or []
    if errors and isinstance(errors[0], dict):
        code = errors[0].get("code")
        return str(code) if code is not None else None
    return None


class QBOClient:
    """
    QuickBooks Online API client.

    Attributes:
        environment: "sandbox" or "production"
        minor_version: API minor version sent with every request
        retry_backoff_seconds: Base delay for exponential backoff on 5xx
    """

    def __init__(
        self,
        settings: Settings,
        credentials,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize QuickBooks Online API client.

        Args:
            settings: Application settings
            credentials: CredentialManager providing the current access token
            http_client: Optional pre-built httpx client (tests inject a mock transport)
        """
        self.environment = settings.intuit_env
        self.base_url = settings.intuit_api_base_url
        self.minor_version = settings.intuit_minor_version
        self.retry_backoff_seconds = 1.0
        self._timeout = settings.intuit_timeout_seconds
        self._credentials = credentials
        self._http_client = http_client

        logger.info("qbo_client_initialized", environment=self.environment)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    def _access_token(self, realm_id: str) -> str:
        credential = self._credentials.get(realm_id)
        if credential is None:
            raise QBOAuthError(f"No access token available for realm {realm_id}")
        return credential.access_token

    async def _make_request(
        self,
        method: str,
        realm_id: str,
        endpoint: str,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
        retry_count: int = 3,
    ) -> dict[str, Any]:
        """
        Make authenticated API request with retry logic.

        Client errors (4xx) are raised immediately; server errors and
        transport failures are retried with exponential backoff.

        Raises:
            QBOAPIError: If request fails after retries
            QBOStaleObjectError: If an update was rejected for a stale SyncToken
            QBOAuthError: If no credential is available for the realm
        """
        url = f"{self.base_url}/v3/company/{realm_id}/{endpoint}"
        query = {"minorversion": self.minor_version, **(params or {})}

        headers = {
            "Authorization": f"Bearer {self._access_token(realm_id)}",
            "Accept": "application/json",
        }
        if files is None:
            headers["Content-Type"] = "application/json"

        for attempt in range(retry_count):
            try:
                response = await self._client().request(
                    method,
                    url,
                    params=query,
                    json=data if files is None else None,
                    files=files,
                    headers=headers,
                )
                response.raise_for_status()

                logger.debug(
                    "qbo_api_request_success",
                    method=method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
                payload = response.json()
                if not isinstance(payload, dict):
                    raise QBOAPIError(
                        f"QuickBooks API error: unexpected response body {response.text[:200]}",
                        status_code=response.status_code,
                    )
                return payload

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.error(
                    "qbo_api_request_failed",
                    method=method,
                    endpoint=endpoint,
                    status_code=status_code,
                    error=e.response.text,
                    attempt=attempt + 1,
                )

                if 400 <= status_code < 500:
                    fault_code = _fault_code(e.response)
                    error_cls = (
                        QBOStaleObjectError
                        if fault_code == STALE_OBJECT_FAULT_CODE
                        else QBOAPIError
                    )
                    raise error_cls(
                        f"QuickBooks API error: {e.response.text}",
                        status_code=status_code,
                        fault_code=fault_code,
                    ) from e

                if attempt < retry_count - 1:
                    wait_time = self.retry_backoff_seconds * 2**attempt
                    logger.info("retrying_request", wait_seconds=wait_time)
                    await asyncio.sleep(wait_time)
                else:
                    raise QBOAPIError(
                        f"QuickBooks API error after {retry_count} attempts: {e.response.text}",
                        status_code=status_code,
                    ) from e

            except (httpx.HTTPError, ValueError) as e:
                logger.error(
                    "qbo_api_request_error",
                    method=method,
                    endpoint=endpoint,
                    error=str(e),
                    attempt=attempt + 1,
                )

                if attempt < retry_count - 1:
                    await asyncio.sleep(self.retry_backoff_seconds * 2**attempt)
                else:
                    raise QBOAPIError(f"QuickBooks API error: {e}") from e

        raise QBOAPIError("QuickBooks API request was not attempted")

    async def get_entity(self, entity_type: str, entity_id: str, realm_id: str) -> dict[str, Any]:
        """
        Retrieve a single entity by ID.

        Args:
            entity_type: Entity name as reported by the webhook (e.g. "Invoice")
            entity_id: QuickBooks entity ID
            realm_id: QuickBooks company ID

        Returns:
            Entity data as dictionary

        Raises:
            UnsupportedEntityError: If the entity type has no read endpoint
            QBOAPIError: If the request fails
        """
        kind = resolve_entity_type(entity_type)
        response = await self._make_request("GET", realm_id, f"{READ_ENDPOINTS[kind]}/{entity_id}")

        logger.info("entity_retrieved", entity_type=kind.value, entity_id=entity_id, realm_id=realm_id)

        entity = response.get(kind.value, {})
        if not isinstance(entity, dict):
            raise QBOAPIError(f"QuickBooks API error: {kind.value} {entity_id} is not an object")
        return entity

    async def get_invoice(self, invoice_id: str, realm_id: str) -> dict[str, Any]:
        return await self.get_entity(EntityType.INVOICE.value, invoice_id, realm_id)

    async def update_invoice(self, invoice: dict[str, Any], realm_id: str) -> dict[str, Any]:
        """
        Full update of an invoice. The body must carry the current SyncToken.

        Raises:
            QBOStaleObjectError: If the SyncToken is out of date
            QBOAPIError: If the update fails otherwise
        """
        response = await self._make_request("POST", realm_id, "invoice", data=invoice)
        return response.get("Invoice", {})

    async def get_company_info(self, realm_id: str) -> dict[str, Any]:
        """Read the CompanyInfo entity of the realm."""
        response = await self._make_request("GET", realm_id, f"companyinfo/{realm_id}")
        return response.get("CompanyInfo", {})

    async def create_customer(self, display_name: str, realm_id: str) -> dict[str, Any]:
        response = await self._make_request(
            "POST", realm_id, "customer", data={"DisplayName": display_name}
        )
        customer = response.get("Customer", {})
        logger.info("customer_created", realm_id=realm_id, customer_id=customer.get("Id"))
        return customer

    async def upload_attachment(
        self,
        entity_type: str,
        entity_id: str,
        content: bytes,
        file_name: str,
        realm_id: str,
        content_type: str = "image/png",
        note: str = "",
    ) -> dict[str, Any]:
        """
        Upload a file and attach it to an entity.

        Uses the multipart /upload endpoint: ``file_metadata_01`` carries the
        Attachable JSON and ``file_content_01`` the file bytes.
        """
        metadata = {
            "AttachableRef": [
                {
                    "IncludeOnSend": True,
                    "EntityRef": {"type": entity_type, "value": entity_id},
                }
            ],
            "Note": note,
            "ContentType": content_type,
            "FileName": file_name,
        }
        files = {
            "file_metadata_01": ("attachment.json", json.dumps(metadata), "application/json"),
            "file_content_01": (file_name, content, content_type),
        }

        response = await self._make_request("POST", realm_id, "upload", files=files, retry_count=1)

        logger.info(
            "attachment_uploaded",
            entity_type=entity_type,
            entity_id=entity_id,
            file_name=file_name,
        )
        return response
