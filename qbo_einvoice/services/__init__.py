"""
Business logic layer.

Services orchestrate the webhook pipeline:
- enrichment.py: per-entity fetch, classification and audit batching
- invoice_transformer.py: QuickBooks invoice to FIRS document (pure)
- invoice_submission.py: FIRS signing of fetched invoices
- reconciler.py: IRN and QR code write-back into QuickBooks
- qr_code.py: encrypted QR payloads and PNG rendering
"""

from qbo_einvoice.services.enrichment import NotificationEnrichmentEngine
from qbo_einvoice.services.invoice_submission import InvoiceSubmissionService
from qbo_einvoice.services.invoice_transformer import (
    InvoiceTransformationError,
    generate_irn,
    transform_invoice,
)
from qbo_einvoice.services.qr_code import QRCodeError, QRCodeGenerator
from qbo_einvoice.services.reconciler import PostSubmissionReconciler, ReconciliationOutcome

__all__ = [
    "InvoiceSubmissionService",
    "InvoiceTransformationError",
    "NotificationEnrichmentEngine",
    "PostSubmissionReconciler",
    "QRCodeError",
    "QRCodeGenerator",
    "ReconciliationOutcome",
    "generate_irn",
    "transform_invoice",
]
