"""
Unit tests for the notification enrichment engine and invoice submission.

The full service graph is built with ``build_services`` over an in-memory
store and FakeUpstream, so each test drives one notification through
fetch, transform, FIRS submission, write-back and audit.
"""

import asyncio
import csv
import json

import httpx
import pytest

from qbo_einvoice.dependencies import build_services
from qbo_einvoice.models.credentials import utcnow
from qbo_einvoice.models.enums import FetchStatus
from qbo_einvoice.models.notifications import ChangeNotification
from qbo_einvoice.storage.audit_log import AuditLogWriter
from tests.conftest import (
    FIRS_HOST,
    INTUIT_TOKEN_HOST,
    QBO_HOST,
    REALM_ID,
    STORAGE_HOST,
    make_binding,
    make_change,
    make_credential,
    make_invoice,
    make_notification,
)


@pytest.fixture
def services(settings, memory_store, upstream):
    memory_store.credentials[REALM_ID] = make_credential(issued_at=utcnow())
    memory_store.create_binding(make_binding())
    built = build_services(
        settings,
        storage=memory_store,
        audit_log=AuditLogWriter(settings.audit_log_path),
        transport=httpx.MockTransport(upstream),
    )
    built.qbo.retry_backoff_seconds = 0
    return built


def _process(services, *groups):
    notification = ChangeNotification.model_validate(make_notification(*groups))
    return asyncio.run(services.enrichment.process(notification))


def _audit_rows(settings):
    with open(settings.audit_log_path, newline="", encoding="utf-8") as fh:
        return list(csv.DictReader(fh))


class TestClassification:
    def test_fetched_entity_is_success_with_full_data(self, services, upstream):
        upstream.add_entity("Customer", {"Id": "58", "DisplayName": "Acme"})

        (record,) = _process(services, (REALM_ID, [make_change("Customer", "58", "Update")]))

        assert record.fetch_status == FetchStatus.SUCCESS
        assert record.full_data == {"Id": "58", "DisplayName": "Acme"}
        assert record.error_message is None

    def test_delete_is_skipped_and_never_fetched(self, services, upstream):
        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145", "Delete")]))

        assert record.fetch_status == FetchStatus.SKIPPED
        assert upstream.sent(QBO_HOST) == []
        assert upstream.sent(FIRS_HOST) == []

    def test_no_credential_is_skipped(self, services, memory_store, upstream):
        del memory_store.credentials[REALM_ID]

        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145")]))

        assert record.fetch_status == FetchStatus.SKIPPED
        assert upstream.sent(QBO_HOST) == []

    def test_fetch_failure_is_failed_and_batch_continues(self, services, upstream):
        upstream.fetch_failures.add("1")
        upstream.add_entity("Customer", {"Id": "2"})

        records = _process(
            services,
            (REALM_ID, [make_change("Customer", "1"), make_change("Customer", "2")]),
        )

        assert [r.fetch_status for r in records] == [FetchStatus.FAILED, FetchStatus.SUCCESS]
        assert "QuickBooks API error" in records[0].error_message

    def test_non_object_response_is_failed_and_batch_continues(self, services, settings, upstream):
        upstream.malformed_reads.add("1")
        upstream.add_entity("Item", {"Id": "2", "Name": "Consulting"})

        records = _process(
            services,
            (REALM_ID, [make_change("Customer", "1"), make_change("Item", "2", "Update")]),
        )

        assert [r.fetch_status for r in records] == [FetchStatus.FAILED, FetchStatus.SUCCESS]
        assert "unexpected response body" in records[0].error_message
        assert [r["fetchStatus"] for r in _audit_rows(settings)] == ["failed", "success"]

    def test_unexpected_fetch_error_is_failed_and_batch_continues(self, services, settings, upstream, monkeypatch):
        original = services.qbo.get_entity

        async def flaky(entity_type, entity_id, realm_id):
            if entity_id == "1":
                raise RuntimeError("decoder exploded")
            return await original(entity_type, entity_id, realm_id)

        monkeypatch.setattr(services.qbo, "get_entity", flaky)
        upstream.add_entity("Customer", {"Id": "2"})

        records = _process(
            services,
            (REALM_ID, [make_change("Customer", "1"), make_change("Customer", "2")]),
        )

        assert [r.fetch_status for r in records] == [FetchStatus.FAILED, FetchStatus.SUCCESS]
        assert records[0].error_message == "Unexpected error: decoder exploded"
        assert len(_audit_rows(settings)) == 2

    def test_failure_outside_fetch_is_failed_and_audited(self, services, settings, upstream, monkeypatch):
        async def broken(invoice_id, realm_id):
            raise RuntimeError("cancellation handler crashed")

        monkeypatch.setattr(services.submission, "handle_deleted_invoice", broken)
        upstream.add_entity("Customer", {"Id": "58"})

        records = _process(
            services,
            (REALM_ID, [make_change("Invoice", "145", "Delete"), make_change("Customer", "58")]),
        )

        assert [r.fetch_status for r in records] == [FetchStatus.FAILED, FetchStatus.SUCCESS]
        assert records[0].error_message == "Unexpected error: cancellation handler crashed"
        rows = _audit_rows(settings)
        assert [(r["id"], r["fetchStatus"]) for r in rows] == [("145", "failed"), ("58", "success")]

    def test_malformed_token_response_skips_and_still_audits(self, services, settings, memory_store, upstream):
        memory_store.credentials[REALM_ID] = make_credential(issued_at=utcnow(), expires_in=60)
        upstream.token_body = {"access_token": "a", "refresh_token": "r", "expires_in": None}

        (record,) = _process(services, (REALM_ID, [make_change("Customer", "1")]))

        assert record.fetch_status == FetchStatus.SKIPPED
        assert _audit_rows(settings)[0]["fetchStatus"] == "skipped"

    def test_unsupported_entity_is_failed(self, services, upstream):
        (record,) = _process(services, (REALM_ID, [make_change("Widget", "1")]))

        assert record.fetch_status == FetchStatus.FAILED
        assert record.error_message == "Unsupported entity type: Widget"
        assert upstream.sent(QBO_HOST) == []

    def test_expired_credential_is_refreshed_before_fetch(self, services, memory_store, upstream):
        memory_store.credentials[REALM_ID] = make_credential(issued_at=utcnow(), expires_in=60)

        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145", "Merge")]))

        assert record.fetch_status == FetchStatus.SUCCESS
        assert len(upstream.sent(INTUIT_TOKEN_HOST)) == 1
        fetch = upstream.sent(QBO_HOST, "GET", "/invoice/145")[0]
        assert fetch.headers["Authorization"] == "Bearer access-token-2"

    def test_refresh_failure_skips_remaining_entities(self, services, memory_store, upstream):
        memory_store.credentials[REALM_ID] = make_credential(issued_at=utcnow(), expires_in=60)
        upstream.token_status = 400

        records = _process(
            services,
            (REALM_ID, [make_change("Customer", "1"), make_change("Customer", "2")]),
        )

        assert [r.fetch_status for r in records] == [FetchStatus.SKIPPED, FetchStatus.SKIPPED]
        assert len(upstream.sent(INTUIT_TOKEN_HOST)) == 1

    def test_records_keep_receipt_order_across_groups(self, services, upstream, memory_store):
        upstream.add_entity("Customer", {"Id": "1"})

        records = _process(
            services,
            (REALM_ID, [make_change("Customer", "1"), make_change("Bill", "9", "Delete")]),
            ("other-realm", [make_change("Customer", "3")]),
        )

        assert [(r.realm_id, r.id, r.fetch_status) for r in records] == [
            (REALM_ID, "1", FetchStatus.SUCCESS),
            (REALM_ID, "9", FetchStatus.SKIPPED),
            ("other-realm", "3", FetchStatus.SKIPPED),
        ]


class TestInvoiceSubmission:
    def test_created_invoice_is_signed_and_written_back(self, services, upstream):
        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145", "Create")]))

        assert record.fetch_status == FetchStatus.SUCCESS
        (submission,) = upstream.sent(FIRS_HOST, "POST", "/api/Firs/SignInvoice")
        document = json.loads(submission.content)
        assert document["irn"] == "INV001-94019CE5-20250923"
        assert document["business_id"] == "bb99420d-d6bb-422c-b371-b9f6d6009aae"
        assert document["accounting_supplier_party"]["party_name"] == "Sandbox Company_NG_1"

        fields = {f["Name"]: f["StringValue"] for f in upstream.invoice("145")["CustomField"]}
        assert fields["FIRS IRN"] == "INV001-94019CE5-20250923"
        assert fields["E-invoice QRCode"].startswith("https://storage.test/")
        assert len(upstream.sent(QBO_HOST, "POST", "/upload")) == 1

    def test_update_takes_the_create_path(self, services, upstream):
        _process(services, (REALM_ID, [make_change("Invoice", "145", "Update")]))

        (submission,) = upstream.sent(FIRS_HOST)
        document = json.loads(submission.content)
        assert document["payment_status"] == "PENDING"
        assert document["legal_monetary_total"]["payable_amount"] == pytest.approx(107.5)

    def test_code_200_writes_irn_only(self, services, upstream):
        upstream.firs_status = 200
        upstream.firs_body = {"code": 200, "message": "accepted"}

        _process(services, (REALM_ID, [make_change("Invoice", "145")]))

        fields = {f["Name"] for f in upstream.invoice("145")["CustomField"]}
        assert fields == {"FIRS IRN"}
        assert upstream.sent(STORAGE_HOST) == []

    def test_rejected_submission_writes_nothing_back(self, services, upstream):
        upstream.firs_status = 400
        upstream.firs_body = {"code": 400, "message": "invalid TIN"}

        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145")]))

        assert record.fetch_status == FetchStatus.SUCCESS
        assert upstream.sent(QBO_HOST, "POST") == []

    def test_unbound_realm_is_not_submitted(self, services, memory_store, upstream):
        memory_store.bindings.clear()

        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145")]))

        assert record.fetch_status == FetchStatus.SUCCESS
        assert upstream.sent(FIRS_HOST) == []

    @pytest.mark.parametrize("operation", ["Merge", "Void", "Emailed"])
    def test_other_operations_are_fetched_but_not_submitted(self, services, upstream, operation):
        (record,) = _process(services, (REALM_ID, [make_change("Invoice", "145", operation)]))

        assert record.fetch_status == FetchStatus.SUCCESS
        assert upstream.sent(FIRS_HOST) == []

    def test_malformed_invoice_is_contained(self, services, upstream):
        upstream.add_entity("Invoice", make_invoice(invoice_id="146", TotalAmt="N/A"))
        upstream.add_entity("Customer", {"Id": "58"})

        records = _process(
            services,
            (REALM_ID, [make_change("Invoice", "146"), make_change("Customer", "58")]),
        )

        assert [r.fetch_status for r in records] == [FetchStatus.SUCCESS, FetchStatus.SUCCESS]
        assert upstream.sent(FIRS_HOST) == []


class TestAudit:
    def test_whole_batch_is_audited_once(self, services, settings, upstream, monkeypatch):
        calls = []
        original = services.audit_log.append
        monkeypatch.setattr(services.audit_log, "append", lambda records: calls.append(records) or original(records))
        upstream.add_entity("Customer", {"Id": "58", "DisplayName": "Acme"})

        _process(
            services,
            (REALM_ID, [make_change("Customer", "58"), make_change("Invoice", "7", "Delete")]),
        )

        assert len(calls) == 1
        rows = _audit_rows(settings)
        assert [(r["entityType"], r["id"], r["fetchStatus"]) for r in rows] == [
            ("Customer", "58", "success"),
            ("Invoice", "7", "skipped"),
        ]
        assert json.loads(rows[0]["fullDataJSON"]) == {"Id": "58", "DisplayName": "Acme"}
        assert rows[1]["fullDataJSON"] == ""

    def test_failed_row_carries_error_message(self, services, settings, upstream):
        upstream.fetch_failures.add("1")

        _process(services, (REALM_ID, [make_change("Customer", "1")]))

        (row,) = _audit_rows(settings)
        assert row["fetchStatus"] == "failed"
        assert row["errorMessage"].startswith("QuickBooks API error")
