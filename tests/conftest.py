"""
Pytest configuration and shared fixtures for the QBO e-invoicing test suite.

Provides data factories for Intuit payloads, an in-memory store, a settable
clock, and ``FakeUpstream``: one ``httpx.MockTransport`` handler that plays
the Intuit token endpoint, the QuickBooks API, FIRS and Supabase storage.
"""

import base64
import hashlib
import hmac
import json
import os
import re
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import uuid4

import httpx
import pytest

# Set testing environment BEFORE importing the app
_test_dir = tempfile.mkdtemp(prefix="qbo_einvoice_test_")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = os.path.join(_test_dir, "default.duckdb")
os.environ["AUDIT_LOG_PATH"] = os.path.join(_test_dir, "default.csv")
os.environ["LOG_FORMAT"] = "console"


from qbo_einvoice.config import Settings
from qbo_einvoice.connectors.qbo_client import READ_ENDPOINTS
from qbo_einvoice.models.credentials import Credential, RealmBinding
from qbo_einvoice.storage.base import CredentialStore, DuplicateBindingError, RealmBindingStore

VERIFIER_TOKEN = "test-verifier-token"
REALM_ID = "9341453050298827"
FIXED_NOW = datetime(2025, 9, 23, 16, 30, 0, tzinfo=timezone.utc)

INTUIT_TOKEN_HOST = "oauth.platform.intuit.com"
QBO_HOST = "sandbox-quickbooks.api.intuit.com"
FIRS_HOST = "firs.test"
STORAGE_HOST = "storage.test"


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------


def make_credential(
    issued_at: Optional[datetime] = None,
    expires_in: int = 3600,
    access_token: str = "access-token-1",
    refresh_token: Optional[str] = "refresh-token-1",
) -> Credential:
    """Factory function for creating test Credential objects."""
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        issued_at=issued_at or FIXED_NOW,
        expires_in=expires_in,
        x_refresh_token_expires_in=8726400,
    )


def make_token_response(access_token: str = "access-token-2", refresh_token: str = "refresh-token-2") -> dict:
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "expires_in": 3600,
        "x_refresh_token_expires_in": 8726400,
    }


def make_sales_line(
    amount: float = 107.5,
    qty: float = 1,
    item_value: Optional[str] = "1",
    item_name: str = "Consulting",
    description: str = "Consulting services",
) -> dict:
    detail: dict[str, Any] = {"Qty": qty, "UnitPrice": amount / qty if qty else amount}
    if item_value is not None:
        detail["ItemRef"] = {"value": item_value, "name": item_name}
    return {
        "Id": "1",
        "Amount": amount,
        "Description": description,
        "DetailType": "SalesItemLineDetail",
        "SalesItemLineDetail": detail,
    }


def make_invoice(
    invoice_id: str = "145",
    doc_number: Optional[str] = "INV001",
    total: float = 107.5,
    balance: Optional[float] = None,
    txn_date: Optional[str] = "2025-09-23",
    due_date: Optional[str] = "2025-10-23",
    lines: Optional[list] = None,
    sync_token: str = "0",
    **overrides,
) -> dict:
    """Factory function for QuickBooks Invoice entities as returned by the API."""
    invoice: dict[str, Any] = {
        "Id": invoice_id,
        "SyncToken": sync_token,
        "TotalAmt": total,
        "Balance": total if balance is None else balance,
        "CustomerRef": {"value": "58", "name": "Acme Nigeria Ltd"},
        "CurrencyRef": {"value": "NGN", "name": "Nigerian Naira"},
        "Line": lines
        if lines is not None
        else [
            make_sales_line(amount=total),
            {"Amount": total, "DetailType": "SubTotalLineDetail", "SubTotalLineDetail": {}},
        ],
    }
    if doc_number is not None:
        invoice["DocNumber"] = doc_number
    if txn_date is not None:
        invoice["TxnDate"] = txn_date
    if due_date is not None:
        invoice["DueDate"] = due_date
    invoice.update(overrides)
    return invoice


def make_company_info(realm_id: str = REALM_ID) -> dict:
    return {
        "Id": "1",
        "CompanyName": "Sandbox Company_NG_1",
        "Email": {"Address": "accounts@sandbox.ng"},
        "PrimaryPhone": {"FreeFormNumber": "+2348011112222"},
        "CompanyAddr": {
            "Line1": "12 Marina Road",
            "City": "Lagos",
            "PostalCode": "101241",
            "CountrySubDivisionCode": "NG",
        },
    }


def make_binding(realm_id: str = REALM_ID, **overrides) -> RealmBinding:
    defaults = dict(realm_id=realm_id, firs_business_id="bb99420d-d6bb-422c-b371-b9f6d6009aae", tin="12345678-0001")
    defaults.update(overrides)
    return RealmBinding(**defaults)


def make_change(entity_type: str = "Invoice", entity_id: str = "145", operation: str = "Create") -> dict:
    return {
        "name": entity_type,
        "id": entity_id,
        "operation": operation,
        "lastUpdated": "2025-09-23T16:27:46.000Z",
    }


def make_notification(*groups: tuple[str, list[dict]]) -> dict:
    """Webhook body: each group is ``(realm_id, [entity changes])``."""
    return {
        "eventNotifications": [
            {"realmId": realm_id, "dataChangeEvent": {"entities": entities}}
            for realm_id, entities in groups
        ]
    }


def encode_body(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def sign(body: bytes, token: str = VERIFIER_TOKEN) -> str:
    """Base64 HMAC-SHA256, as Intuit computes it."""
    return base64.b64encode(hmac.new(token.encode(), body, hashlib.sha256).digest()).decode()


# ---------------------------------------------------------------------------
# In-memory fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Settable clock passed wherever code accepts ``clock=``."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class MemoryStore(CredentialStore, RealmBindingStore):
    """
    In-memory credential and binding store for unit tests.
    """

    def __init__(self):
        self.credentials: dict[str, Credential] = {}
        self.bindings: dict[str, RealmBinding] = {}
        self.saves = 0

    def load_credential(self, realm_id):
        return self.credentials.get(realm_id)

    def save_credential(self, realm_id, credential):
        self.saves += 1
        self.credentials[realm_id] = credential

    def list_credential_realms(self):
        return list(reversed(self.credentials))

    def create_binding(self, binding):
        if self.get_binding_by_realm(binding.realm_id):
            raise DuplicateBindingError(binding.realm_id)
        created = binding.model_copy(update={"id": str(uuid4()), "created_at": FIXED_NOW, "updated_at": FIXED_NOW})
        self.bindings[created.id] = created
        return created

    def get_binding(self, binding_id):
        return self.bindings.get(binding_id)

    def get_binding_by_realm(self, realm_id):
        return next((b for b in self.bindings.values() if b.realm_id == realm_id), None)

    def list_bindings(self):
        return list(self.bindings.values())

    def update_binding(self, binding_id, changes):
        existing = self.bindings.get(binding_id)
        if existing is None:
            return None
        updated = existing.model_copy(update={k: v for k, v in changes.items() if v is not None})
        self.bindings[binding_id] = updated
        return updated

    def delete_binding(self, binding_id):
        return self.bindings.pop(binding_id, None) is not None


class FakeUpstream:
    """
    Request handler for ``httpx.MockTransport`` covering every outbound API.

    QuickBooks entities live in ``entities[(entity_type, id)]``; invoice
    updates enforce the SyncToken and bump it like QuickBooks does.

    Attributes:
        requests: Every request received, in order
        token_status: HTTP status of the token endpoint
        firs_status / firs_body: Response of the FIRS sign endpoint
        storage_status: HTTP status of the object upload
        fetch_failures: Entity ids whose read returns 500
        malformed_reads: Entity ids whose read returns a JSON array
        stale_updates: Number of upcoming invoice updates to reject with fault 5010
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.entities: dict[tuple[str, str], dict] = {}
        self.company_info = make_company_info()
        self.token_status = 200
        self.token_body = make_token_response()
        self.firs_status = 201
        self.firs_body: dict[str, Any] = {"code": 201, "message": "Invoice signed", "reference": "FIRS-REF-1"}
        self.storage_status = 200
        self.attachment_status = 200
        self.fetch_failures: set[str] = set()
        self.malformed_reads: set[str] = set()
        self.stale_updates = 0
        self._type_by_endpoint = {endpoint: kind.value for kind, endpoint in READ_ENDPOINTS.items()}

    def add_entity(self, entity_type: str, entity: dict) -> None:
        self.entities[(entity_type, str(entity["Id"]))] = entity

    def invoice(self, invoice_id: str) -> dict:
        return self.entities[("Invoice", invoice_id)]

    def sent(self, host: str, method: Optional[str] = None, path_contains: str = "") -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host == host
            and (method is None or r.method == method)
            and path_contains in r.url.path
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        if host == INTUIT_TOKEN_HOST:
            return httpx.Response(self.token_status, json=self.token_body)
        if host == FIRS_HOST:
            return httpx.Response(self.firs_status, json=self.firs_body)
        if host == STORAGE_HOST:
            return httpx.Response(self.storage_status, json={"Key": request.url.path})
        if host == QBO_HOST:
            return self._quickbooks(request)
        return httpx.Response(404, json={"error": f"unknown host {host}"})

    def _quickbooks(self, request: httpx.Request) -> httpx.Response:
        match = re.match(r"^/v3/company/(?P<realm>[^/]+)/(?P<endpoint>[^/]+)(?:/(?P<id>[^/]+))?$", request.url.path)
        if not match:
            return httpx.Response(404)
        endpoint, entity_id = match.group("endpoint"), match.group("id")

        if request.method == "GET" and endpoint == "companyinfo":
            return httpx.Response(200, json={"CompanyInfo": self.company_info})

        if request.method == "GET":
            entity_type = self._type_by_endpoint.get(endpoint)
            if entity_id in self.fetch_failures:
                return httpx.Response(500, text="Internal Server Error")
            if entity_id in self.malformed_reads:
                return httpx.Response(200, json=[1, 2])
            entity = self.entities.get((entity_type, entity_id))
            if entity is None:
                return _fault(400, "610", "Object Not Found")
            return httpx.Response(200, json={entity_type: entity})

        if request.method == "POST" and endpoint == "invoice":
            body = json.loads(request.content)
            current = self.entities[("Invoice", str(body["Id"]))]
            if self.stale_updates > 0 or body.get("SyncToken") != current["SyncToken"]:
                self.stale_updates = max(0, self.stale_updates - 1)
                return _fault(400, "5010", "Stale Object Error")
            updated = {**body, "SyncToken": str(int(current["SyncToken"]) + 1)}
            self.entities[("Invoice", str(body["Id"]))] = updated
            return httpx.Response(200, json={"Invoice": updated})

        if request.method == "POST" and endpoint == "upload":
            if self.attachment_status != 200:
                return _fault(self.attachment_status, "2500", "Upload failed")
            return httpx.Response(200, json={"AttachableResponse": [{"Attachable": {"Id": "5000"}}]})

        if request.method == "POST" and endpoint == "customer":
            body = json.loads(request.content)
            return httpx.Response(200, json={"Customer": {"Id": "58", **body}})

        return httpx.Response(404)


def _fault(status: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(
        status,
        json={"Fault": {"Error": [{"Message": message, "code": code}], "type": "ValidationFault"}},
    )


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at temp files and fake upstream hosts."""
    return Settings(
        intuit_client_id="client-id",
        intuit_client_secret="client-secret",
        intuit_env="sandbox",
        intuit_webhook_verifier_token=VERIFIER_TOKEN,
        firs_api_base_url=f"https://{FIRS_HOST}",
        firs_api_key="firs-key",
        firs_api_secret="firs-secret",
        supabase_url=f"https://{STORAGE_HOST}",
        supabase_key="supabase-key",
        db_path=str(tmp_path / "test.duckdb"),
        audit_log_path=str(tmp_path / "notifications.csv"),
        dev_mode=True,
        testing=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> MemoryStore:
    """Fresh MemoryStore instance for each test."""
    return MemoryStore()


@pytest.fixture
def upstream() -> FakeUpstream:
    """Fake upstream APIs with one stored invoice."""
    fake = FakeUpstream()
    fake.add_entity("Invoice", make_invoice())
    return fake


@pytest.fixture
def http_client(upstream):
    """Async httpx client routed to the fake upstream."""
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def sample_realm_id():
    """Sample QuickBooks realm ID."""
    return REALM_ID
