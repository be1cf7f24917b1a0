"""
Notification enrichment engine.

Fans a verified change notification out into one EnrichedRecord per entity
change, strictly in receipt order:

1. Refresh the realm's credential if needed
2. Delete: skipped, never fetched (invoices go to the deletion handler)
3. Credential available: fetch the entity; invoices continue to FIRS
4. No credential: skipped

Any failure while handling one entity marks only that entity ``failed``;
the batch always continues. The whole batch is appended to the audit log
once, after the last entity, on a worker thread.
"""

import structlog
from fastapi.concurrency import run_in_threadpool

from qbo_einvoice.auth.credentials import CredentialManager
from qbo_einvoice.connectors.intuit_oauth import QBOAuthError
from qbo_einvoice.connectors.qbo_client import QBOAPIError, QBOClient
from qbo_einvoice.models.enums import EntityType, FetchStatus, Operation
from qbo_einvoice.models.notifications import ChangeNotification, EnrichedRecord, EntityChange
from qbo_einvoice.services.invoice_submission import InvoiceSubmissionService
from qbo_einvoice.storage.audit_log import AuditLogWriter
from qbo_einvoice.storage.base import StorageError

logger = structlog.get_logger()


class NotificationEnrichmentEngine:
    """
    Turns change notifications into audited, enriched records.

    Attributes:
        credentials: Credential lifecycle manager
        qbo_client: Entity fetcher
        submission: Invoice handling after a successful fetch
        audit_log: Destination for the per-notification batch
    """

    def __init__(
        self,
        credentials: CredentialManager,
        qbo_client: QBOClient,
        submission: InvoiceSubmissionService,
        audit_log: AuditLogWriter,
    ):
        self.credentials = credentials
        self.qbo_client = qbo_client
        self.submission = submission
        self.audit_log = audit_log

    async def process(self, notification: ChangeNotification) -> list[EnrichedRecord]:
        """
        Enrich every entity change of a notification and audit the batch.

        Returns:
            Records in receipt order
        """
        records: list[EnrichedRecord] = []

        for group in notification.event_notifications:
            for change in group.entities:
                try:
                    record = await self.enrich(group.realm_id, change)
                except Exception as e:
                    logger.exception(
                        "entity_enrichment_failed",
                        realm_id=group.realm_id,
                        entity_type=change.entity_type,
                        entity_id=change.id,
                        error=str(e),
                    )
                    record = EnrichedRecord.from_change(group.realm_id, change)
                    record.fetch_status = FetchStatus.FAILED
                    record.error_message = f"Unexpected error: {e}"
                records.append(record)

        try:
            await run_in_threadpool(self.audit_log.append, records)
        except (OSError, StorageError) as e:
            logger.error("audit_log_append_failed", records=len(records), error=str(e))

        logger.info(
            "notification_processed",
            records=len(records),
            success=sum(1 for r in records if r.fetch_status == FetchStatus.SUCCESS),
            failed=sum(1 for r in records if r.fetch_status == FetchStatus.FAILED),
            skipped=sum(1 for r in records if r.fetch_status == FetchStatus.SKIPPED),
        )
        return records

    async def enrich(self, realm_id: str, change: EntityChange) -> EnrichedRecord:
        record = EnrichedRecord.from_change(realm_id, change)
        log = logger.bind(
            realm_id=realm_id,
            entity_type=change.entity_type,
            entity_id=change.id,
            operation=change.operation,
        )

        await self.credentials.ensure_valid(realm_id)

        if change.operation == Operation.DELETE.value:
            log.info("entity_deleted_not_fetched")
            if change.entity_type == EntityType.INVOICE.value:
                await self.submission.handle_deleted_invoice(change.id, realm_id)
            return record

        if self.credentials.get(realm_id) is None:
            log.warning("entity_skipped_no_credential")
            return record

        try:
            entity = await self.qbo_client.get_entity(change.entity_type, change.id, realm_id)
        except (QBOAPIError, QBOAuthError) as e:
            log.error("entity_fetch_failed", error=str(e))
            record.fetch_status = FetchStatus.FAILED
            record.error_message = str(e)
            return record
        except Exception as e:
            log.exception("entity_fetch_unexpected_error", error=str(e))
            record.fetch_status = FetchStatus.FAILED
            record.error_message = f"Unexpected error: {e}"
            return record

        record.fetch_status = FetchStatus.SUCCESS
        record.full_data = entity
        log.info("entity_fetched")

        if change.entity_type == EntityType.INVOICE.value:
            await self.submission.submit_invoice(entity, change.operation, realm_id)

        return record
