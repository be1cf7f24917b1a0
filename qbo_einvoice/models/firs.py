"""
FIRS e-invoicing document schema and API result models.

The document shape is fixed: one supplier party, one customer party, one
payment means entry, one tax total with one subtotal, and N invoice lines.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class FirsAddress(BaseModel):
    street_name: str
    city_name: str
    postal_zone: str
    country: str


class FirsParty(BaseModel):
    """Supplier or customer party block."""

    party_name: str
    tin: str
    email: str
    telephone: str
    business_description: str
    postal_address: FirsAddress


class FirsPaymentMeans(BaseModel):
    payment_means_code: str
    payment_due_date: str


class FirsTaxCategory(BaseModel):
    id: str
    percent: float


class FirsTaxSubtotal(BaseModel):
    taxable_amount: float
    tax_amount: float
    tax_category: FirsTaxCategory


class FirsTaxTotal(BaseModel):
    tax_amount: float
    tax_subtotal: list[FirsTaxSubtotal]


class FirsMonetaryTotal(BaseModel):
    line_extension_amount: float
    tax_exclusive_amount: float
    tax_inclusive_amount: float
    payable_amount: float


class FirsItem(BaseModel):
    name: str
    description: str
    sellers_item_identification: str


class FirsPrice(BaseModel):
    price_amount: float
    base_quantity: float
    price_unit: str


class FirsInvoiceLine(BaseModel):
    hsn_code: str
    product_category: str
    discount_rate: float = 0
    discount_amount: float = 0
    fee_rate: float = 0
    fee_amount: float = 0
    invoiced_quantity: float
    line_extension_amount: float
    item: FirsItem
    price: FirsPrice


class FirsInvoice(BaseModel):
    """
    Invoice document in the FIRS e-invoicing schema.

    Built by the invoice transformer and sent to ``/api/Firs/SignInvoice`` or
    ``/api/Firs/UpdateInvoice/{irn}``. Never persisted.
    """

    business_id: str
    irn: str
    issue_date: str
    due_date: str
    issue_time: str
    invoice_type_code: str
    payment_status: str
    note: str
    tax_point_date: str
    document_currency_code: str
    tax_currency_code: str
    accounting_cost: str = ""
    buyer_reference: str = ""
    order_reference: str = ""
    accounting_supplier_party: FirsParty
    accounting_customer_party: FirsParty
    actual_delivery_date: str
    payment_means: list[FirsPaymentMeans]
    payment_terms_note: str = ""
    allowance_charge: list[dict[str, Any]] = Field(default_factory=list)
    tax_total: list[FirsTaxTotal]
    legal_monetary_total: FirsMonetaryTotal
    invoice_line: list[FirsInvoiceLine]


class BusinessConfig(BaseModel):
    """Per-realm FIRS identity used when transforming an invoice."""

    business_id: str
    tin: str
    supplier_party: FirsParty


class FirsApiError(BaseModel):
    field: Optional[str] = None
    message: str = ""


class SubmissionResult(BaseModel):
    """
    Result of a FIRS sign or update call.

    Failures are reported in-band: a ``code`` outside ``[200, 300)`` is a
    failure, ``201`` additionally allows QR code generation.
    """

    model_config = ConfigDict(extra="allow")

    code: int
    message: str = ""
    reference: Optional[str] = None
    irn: Optional[str] = None
    status: Optional[str] = None
    timestamp: Optional[str] = None
    errors: Optional[list[FirsApiError]] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.code < 300

    @property
    def allows_qr_code(self) -> bool:
        return self.code == 201


class QRArtifact(BaseModel):
    """
    Generated QR code for a signed invoice.

    Lives only for the duration of one reconciliation.
    """

    irn: str
    encrypted_payload: Optional[str] = None
    image_bytes: bytes
    file_name: str
    storage_url: Optional[str] = None
