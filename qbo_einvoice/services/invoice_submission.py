"""
Invoice submission to FIRS.

Runs for every fetched invoice whose change operation is Create or Update:
resolve the realm's FIRS identity, transform, sign, then hand successful
results to the reconciler. Every failure here is logged and contained; the
webhook batch that triggered the submission always continues.
"""

from typing import Any, Optional

import structlog

from qbo_einvoice.connectors.firs_client import FirsClient
from qbo_einvoice.connectors.intuit_oauth import QBOAuthError
from qbo_einvoice.connectors.qbo_client import QBOAPIError, QBOClient
from qbo_einvoice.models.enums import Operation
from qbo_einvoice.models.firs import BusinessConfig, SubmissionResult
from qbo_einvoice.services.invoice_transformer import (
    InvoiceTransformationError,
    supplier_party,
    transform_invoice,
)
from qbo_einvoice.services.reconciler import PostSubmissionReconciler
from qbo_einvoice.storage.base import RealmBindingStore, StorageError

logger = structlog.get_logger()

SUBMITTING_OPERATIONS = frozenset({Operation.CREATE.value, Operation.UPDATE.value})


class InvoiceSubmissionService:
    """Transforms fetched invoices and submits them to FIRS."""

    def __init__(
        self,
        qbo_client: QBOClient,
        firs_client: FirsClient,
        bindings: RealmBindingStore,
        reconciler: PostSubmissionReconciler,
    ):
        self.qbo_client = qbo_client
        self.firs_client = firs_client
        self.bindings = bindings
        self.reconciler = reconciler

    async def business_config(self, realm_id: str) -> Optional[BusinessConfig]:
        """
        FIRS identity for a realm, or None if the realm is not bound.

        Raises:
            QBOAPIError: If CompanyInfo cannot be read
        """
        try:
            binding = self.bindings.get_binding_by_realm(realm_id)
        except StorageError as e:
            logger.error("realm_binding_lookup_failed", realm_id=realm_id, error=str(e))
            return None

        if binding is None:
            return None

        company_info = await self.qbo_client.get_company_info(realm_id)
        return BusinessConfig(
            business_id=binding.firs_business_id,
            tin=binding.tin,
            supplier_party=supplier_party(company_info, binding.tin),
        )

    async def submit_invoice(
        self, invoice: dict[str, Any], operation: str, realm_id: str
    ) -> Optional[SubmissionResult]:
        """
        Submit a fetched invoice to FIRS and reconcile on success.

        Updates take the same path as creates: the document is signed again
        rather than reversed.

        Returns:
            The FIRS result, or None if nothing was submitted
        """
        invoice_id = invoice.get("Id")

        if operation not in SUBMITTING_OPERATIONS:
            logger.info("invoice_submission_not_applicable", invoice_id=invoice_id, operation=operation)
            return None

        try:
            config = await self.business_config(realm_id)
            if config is None:
                logger.warning("invoice_submission_skipped_no_binding", invoice_id=invoice_id, realm_id=realm_id)
                return None

            document = transform_invoice(invoice, config, is_reversal=False)
            logger.info(
                "invoice_transformed",
                invoice_id=invoice_id,
                irn=document.irn,
                lines=len(document.invoice_line),
            )

            result = await self.firs_client.submit(document)
            if not result.is_success:
                logger.error(
                    "invoice_submission_rejected",
                    invoice_id=invoice_id,
                    code=result.code,
                    message=result.message,
                )
                return result

            logger.info("invoice_submitted", invoice_id=invoice_id, code=result.code, reference=result.reference)
            await self.reconciler.reconcile(invoice, realm_id, result, document.irn)
            return result

        except InvoiceTransformationError as e:
            logger.error("invoice_transformation_failed", invoice_id=invoice_id, error=str(e))
        except (QBOAPIError, QBOAuthError) as e:
            logger.error("invoice_submission_upstream_failed", invoice_id=invoice_id, error=str(e))
        except Exception as e:
            logger.exception("invoice_submission_failed", invoice_id=invoice_id, error=str(e))

        return None

    async def handle_deleted_invoice(self, invoice_id: str, realm_id: str) -> None:
        # TODO: submit a reversal document through FirsClient.update once the
        # FIRS cancellation flow is confirmed.
        logger.info("invoice_deleted_cancellation_not_submitted", invoice_id=invoice_id, realm_id=realm_id)
