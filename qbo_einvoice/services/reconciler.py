"""
Post-submission write-back of FIRS artifacts into the QuickBooks invoice.

After a successful FIRS submission (code in [200, 300)):
1. Write the IRN into the IRN custom field.

Only when FIRS answered 201:
2. Generate the QR code image.
3. Upload the image to object storage.
4. Attach the image to the invoice.
5. Write the storage URL into the QR custom field.

Each write-back step is isolated: a failure is logged and the remaining
steps still run. Nothing is rolled back. Step 5 needs the URL from step 3,
so it is skipped when the upload failed.

Custom field writes are read-modify-write against the invoice. The update
carries the SyncToken that was read; a stale-object rejection triggers a
fresh read and another attempt.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from qbo_einvoice.connectors.intuit_oauth import QBOAuthError
from qbo_einvoice.connectors.object_storage import ObjectStorageError, SupabaseStorageClient
from qbo_einvoice.connectors.qbo_client import QBOAPIError, QBOClient, QBOStaleObjectError
from qbo_einvoice.models.enums import EntityType
from qbo_einvoice.models.firs import SubmissionResult
from qbo_einvoice.services.qr_code import QRCodeError, QRCodeGenerator

logger = structlog.get_logger()

STRING_FIELD_TYPE = "StringType"
QR_ATTACHMENT_NOTE = "QR Code for E-invoice"


def merge_custom_field(invoice: dict[str, Any], name: str, value: str) -> dict[str, Any]:
    """
    Return a copy of ``invoice`` whose CustomField list has ``name`` set to ``value``.

    An existing entry with the same name is replaced; its DefinitionId is kept.
    """
    existing = invoice.get("CustomField") or []
    kept = [field for field in existing if field.get("Name") != name]
    replaced = next((field for field in existing if field.get("Name") == name), {})

    entry = {"Name": name, "Type": STRING_FIELD_TYPE, "StringValue": value}
    if replaced.get("DefinitionId"):
        entry = {"DefinitionId": replaced["DefinitionId"], **entry}

    return {**invoice, "CustomField": [*kept, entry]}


@dataclass
class ReconciliationOutcome:
    """Which write-back steps succeeded for one invoice."""

    irn: str
    irn_field_written: bool = False
    qr_generated: bool = False
    qr_uploaded: bool = False
    attachment_uploaded: bool = False
    qr_field_written: bool = False
    storage_url: Optional[str] = None


class PostSubmissionReconciler:
    """
    Writes the IRN and QR code back into QuickBooks after FIRS accepts an invoice.

    Attributes:
        irn_field_name: Custom field receiving the IRN
        qr_field_name: Custom field receiving the QR image URL
        max_attempts: Read-modify-write attempts per custom field
    """

    def __init__(
        self,
        qbo_client: QBOClient,
        object_storage: SupabaseStorageClient,
        qr_generator: QRCodeGenerator,
        irn_field_name: str = "FIRS IRN",
        qr_field_name: str = "E-invoice QRCode",
        max_attempts: int = 3,
    ):
        self.qbo_client = qbo_client
        self.object_storage = object_storage
        self.qr_generator = qr_generator
        self.irn_field_name = irn_field_name
        self.qr_field_name = qr_field_name
        self.max_attempts = max_attempts

    async def reconcile(
        self,
        invoice: dict[str, Any],
        realm_id: str,
        result: SubmissionResult,
        irn: str,
    ) -> Optional[ReconciliationOutcome]:
        """
        Run the write-back sequence for a submitted invoice.

        Returns:
            Step outcomes, or None when the submission was not successful
        """
        if not result.is_success:
            logger.info("reconciliation_skipped_unsuccessful_submission", code=result.code)
            return None

        invoice_id = str(invoice.get("Id") or "unknown")
        outcome = ReconciliationOutcome(irn=irn)

        outcome.irn_field_written = await self.write_custom_field(
            invoice_id, self.irn_field_name, irn, realm_id
        )

        if not result.allows_qr_code:
            logger.info("qr_code_not_requested", invoice_id=invoice_id, code=result.code)
            return outcome

        try:
            artifact = self.qr_generator.generate(irn, invoice_id, result)
            outcome.qr_generated = True
        except QRCodeError as e:
            logger.error("qr_code_generation_failed", invoice_id=invoice_id, irn=irn, error=str(e))
            return outcome

        try:
            outcome.storage_url = await self.object_storage.upload(
                artifact.image_bytes, artifact.file_name
            )
            artifact.storage_url = outcome.storage_url
            outcome.qr_uploaded = True
        except ObjectStorageError as e:
            logger.error("qr_code_upload_failed", invoice_id=invoice_id, error=str(e))

        try:
            await self.qbo_client.upload_attachment(
                EntityType.INVOICE.value,
                invoice_id,
                artifact.image_bytes,
                artifact.file_name,
                realm_id,
                note=QR_ATTACHMENT_NOTE,
            )
            outcome.attachment_uploaded = True
        except (QBOAPIError, QBOAuthError) as e:
            logger.error("qr_code_attachment_failed", invoice_id=invoice_id, error=str(e))

        if outcome.storage_url:
            outcome.qr_field_written = await self.write_custom_field(
                invoice_id, self.qr_field_name, outcome.storage_url, realm_id
            )
        else:
            logger.warning("qr_custom_field_skipped_no_url", invoice_id=invoice_id)

        logger.info(
            "reconciliation_completed",
            invoice_id=invoice_id,
            irn=irn,
            irn_field_written=outcome.irn_field_written,
            qr_uploaded=outcome.qr_uploaded,
            attachment_uploaded=outcome.attachment_uploaded,
            qr_field_written=outcome.qr_field_written,
        )
        return outcome

    async def write_custom_field(
        self, invoice_id: str, field_name: str, value: str, realm_id: str
    ) -> bool:
        """
        Set a string custom field on an invoice.

        Returns:
            True if the update was accepted
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                current = await self.qbo_client.get_invoice(invoice_id, realm_id)
                if not current:
                    logger.error("custom_field_invoice_missing", invoice_id=invoice_id)
                    return False

                await self.qbo_client.update_invoice(
                    merge_custom_field(current, field_name, value), realm_id
                )
                logger.info(
                    "custom_field_updated",
                    invoice_id=invoice_id,
                    field_name=field_name,
                    sync_token=current.get("SyncToken"),
                    attempt=attempt,
                )
                return True

            except QBOStaleObjectError:
                logger.warning(
                    "custom_field_stale_sync_token",
                    invoice_id=invoice_id,
                    field_name=field_name,
                    attempt=attempt,
                )
            except (QBOAPIError, QBOAuthError) as e:
                logger.error(
                    "custom_field_update_failed",
                    invoice_id=invoice_id,
                    field_name=field_name,
                    error=str(e),
                )
                return False

        logger.error(
            "custom_field_update_conflict_exhausted",
            invoice_id=invoice_id,
            field_name=field_name,
            attempts=self.max_attempts,
        )
        return False
