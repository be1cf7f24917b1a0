"""
Service wiring for the FastAPI application.

``build_services`` assembles the whole pipeline once per app; routers reach
it through ``get_services``. Tests pass an ``httpx.MockTransport`` so every
outbound client talks to a fake upstream.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from qbo_einvoice.auth.credentials import CredentialManager
from qbo_einvoice.config import Settings
from qbo_einvoice.connectors.firs_client import FirsClient
from qbo_einvoice.connectors.intuit_oauth import IntuitOAuthClient
from qbo_einvoice.connectors.object_storage import SupabaseStorageClient
from qbo_einvoice.connectors.qbo_client import QBOClient
from qbo_einvoice.connectors.webhook_handler import WebhookAuthenticator
from qbo_einvoice.services.enrichment import NotificationEnrichmentEngine
from qbo_einvoice.services.invoice_submission import InvoiceSubmissionService
from qbo_einvoice.services.qr_code import QRCodeGenerator
from qbo_einvoice.services.reconciler import PostSubmissionReconciler
from qbo_einvoice.storage.audit_log import AuditLogWriter
from qbo_einvoice.storage.duckdb_storage import DuckDBStorage


@dataclass
class Services:
    settings: Settings
    storage: DuckDBStorage
    audit_log: AuditLogWriter
    oauth: IntuitOAuthClient
    credentials: CredentialManager
    qbo: QBOClient
    firs: FirsClient
    object_storage: SupabaseStorageClient
    reconciler: PostSubmissionReconciler
    submission: InvoiceSubmissionService
    enrichment: NotificationEnrichmentEngine
    authenticator: WebhookAuthenticator

    async def aclose(self) -> None:
        for client in (self.oauth, self.qbo, self.firs, self.object_storage):
            await client.aclose()


def build_services(
    settings: Settings,
    storage: Optional[DuckDBStorage] = None,
    audit_log: Optional[AuditLogWriter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    """
    Assemble the webhook pipeline and its collaborators.

    Args:
        settings: Application settings
        storage: Credential and realm binding store (default: DuckDB at ``db_path``)
        audit_log: Audit writer (default: CSV at ``audit_log_path``)
        transport: Optional transport shared by all outbound HTTP clients
    """

    def http_client(timeout: float) -> Optional[httpx.AsyncClient]:
        if transport is None:
            return None
        return httpx.AsyncClient(transport=transport, timeout=timeout)

    storage = storage or DuckDBStorage(db_path=settings.db_path)
    audit_log = audit_log or AuditLogWriter(settings.audit_log_path)

    oauth = IntuitOAuthClient(settings, http_client=http_client(settings.intuit_timeout_seconds))
    credentials = CredentialManager(storage, oauth)
    qbo = QBOClient(settings, credentials, http_client=http_client(settings.intuit_timeout_seconds))
    firs = FirsClient(settings, http_client=http_client(settings.firs_timeout_seconds))
    object_storage = SupabaseStorageClient(settings, http_client=http_client(settings.supabase_timeout_seconds))

    reconciler = PostSubmissionReconciler(
        qbo,
        object_storage,
        QRCodeGenerator(settings.firs_public_key, settings.firs_certificate),
        irn_field_name=settings.irn_custom_field_name,
        qr_field_name=settings.qr_custom_field_name,
        max_attempts=settings.custom_field_max_attempts,
    )
    submission = InvoiceSubmissionService(qbo, firs, storage, reconciler)
    enrichment = NotificationEnrichmentEngine(credentials, qbo, submission, audit_log)

    return Services(
        settings=settings,
        storage=storage,
        audit_log=audit_log,
        oauth=oauth,
        credentials=credentials,
        qbo=qbo,
        firs=firs,
        object_storage=object_storage,
        reconciler=reconciler,
        submission=submission,
        enrichment=enrichment,
        authenticator=WebhookAuthenticator(settings.intuit_webhook_verifier_token),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's service container."""
    return request.app.state.services
