"""
QuickBooks invoice to FIRS e-invoice transformation.

Pure functions: no I/O, the only ambient input is ``now`` (issue date and
issue time fallbacks), which callers may pass explicitly.

Rules:
- Issue date: invoice ``TxnDate``, else today
- Due date: invoice ``DueDate``, else issue date + 30 days
- IRN: ``{DocNumber}-94019CE5-{YYYYMMDD(issue date)}``
- VAT is back-calculated from the gross total at a fixed 7.5 %:
  ``tax = gross * 0.075 / 1.075``, ``net = gross - tax``
- Only ``SalesItemLineDetail`` lines become invoice lines
- A reversal negates every quantity and amount and marks the document
  ``REJECTED`` with a ``CANCELLED:`` note prefix
"""

from datetime import date, datetime, timedelta
from typing import Any, Optional, Union

from qbo_einvoice.models.credentials import utcnow
from qbo_einvoice.models.enums import PaymentStatus
from qbo_einvoice.models.firs import (
    BusinessConfig,
    FirsAddress,
    FirsInvoice,
    FirsInvoiceLine,
    FirsItem,
    FirsMonetaryTotal,
    FirsParty,
    FirsPaymentMeans,
    FirsPrice,
    FirsTaxCategory,
    FirsTaxSubtotal,
    FirsTaxTotal,
)

FIRS_SERVICE_ID = "94019CE5"
VAT_RATE = 0.075
VAT_PERCENT = 7.5
DEFAULT_DUE_DAYS = 30
DEFAULT_CURRENCY = "NGN"

INVOICE_TYPE_COMMERCIAL = "380"
PAYMENT_MEANS_CREDIT_TRANSFER = "30"
TAX_CATEGORY_STANDARD_VAT = "STANDARD_VAT"
SALES_LINE_DETAIL = "SalesItemLineDetail"

HSN_MIN_LENGTH = 2
HSN_MAX_LENGTH = 8


class InvoiceTransformationError(Exception):
    """Raised when a QuickBooks invoice cannot be mapped to a FIRS document."""

    pass


def _to_float(value: Any, field: str) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvoiceTransformationError(f"{field} is not numeric: {value!r}") from None


def format_date(value: Union[str, date, datetime]) -> str:
    """Normalize a date, datetime or ISO string to ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        raise InvoiceTransformationError(f"Invalid date: {value!r}") from None


def add_days(day: str, days: int) -> str:
    return (date.fromisoformat(day) + timedelta(days=days)).isoformat()


def generate_irn(doc_number: str, issue_date: Union[str, date]) -> str:
    """
    Build the invoice reference number.

    >>> generate_irn("INV001", "2025-09-23")
    'INV001-94019CE5-20250923'
    """
    day = issue_date.isoformat() if isinstance(issue_date, date) else issue_date
    return f"{doc_number}-{FIRS_SERVICE_ID}-{day.replace('-', '')}"


def issue_date_for(invoice: dict[str, Any], now: Optional[datetime] = None) -> str:
    return format_date(invoice.get("TxnDate") or (now or utcnow()))


def irn_for(invoice: dict[str, Any], now: Optional[datetime] = None) -> str:
    """IRN for an invoice, using the same issue date rule as the transform."""
    doc_number = invoice.get("DocNumber") or invoice.get("Id")
    if not doc_number:
        raise InvoiceTransformationError("Invoice has neither DocNumber nor Id")
    return generate_irn(str(doc_number), issue_date_for(invoice, now))


def calculate_tax(gross: float) -> tuple[float, float]:
    """
    Split a VAT-inclusive gross amount into (tax, net).

    >>> calculate_tax(107.50)
    (7.5, 100.0)
    """
    tax = round(gross * VAT_RATE / (1 + VAT_RATE), 2)
    return tax, round(gross - tax, 2)


def map_payment_status(balance: Any) -> str:
    return PaymentStatus.PENDING.value if _to_float(balance, "Balance") > 0 else PaymentStatus.PAID.value


def normalize_hsn_code(raw: Optional[str], index: int) -> str:
    """Catalog code between 2 and 8 characters, zero padded when short."""
    code = str(raw) if raw else f"ITEM{index + 1:02d}"
    if len(code) < HSN_MIN_LENGTH:
        code = f"{code}00"
    return code[:HSN_MAX_LENGTH]


def customer_party(customer_ref: Optional[dict[str, Any]]) -> FirsParty:
    # QuickBooks invoices only carry a reference to the customer; contact
    # fields are placeholders until the customer record is fetched.
    return FirsParty(
        party_name=(customer_ref or {}).get("name") or "Customer Name",
        tin="98765432-0001",
        email="customer@example.com",
        telephone="+2347012345678",
        business_description="Customer Business",
        postal_address=FirsAddress(
            street_name="456 Customer Street",
            city_name="Lagos",
            postal_zone="100001",
            country="NG",
        ),
    )


def supplier_party(company_info: dict[str, Any], tin: str) -> FirsParty:
    """Supplier party from a QuickBooks CompanyInfo entity and the bound TIN."""
    address = company_info.get("CompanyAddr") or {}
    name = company_info.get("CompanyName") or "Company Name"
    return FirsParty(
        party_name=name,
        tin=tin,
        email=(company_info.get("Email") or {}).get("Address") or "company@example.com",
        telephone=(company_info.get("PrimaryPhone") or {}).get("FreeFormNumber") or "+2341234567890",
        business_description=name,
        postal_address=FirsAddress(
            street_name=address.get("Line1") or "123 Business Street",
            city_name=address.get("City") or "Lagos",
            postal_zone=address.get("PostalCode") or "100001",
            country=address.get("CountrySubDivisionCode") or "NG",
        ),
    )


def transform_lines(lines: Any, is_reversal: bool = False) -> list[FirsInvoiceLine]:
    if not isinstance(lines, list):
        return []

    sign = -1 if is_reversal else 1
    result = []
    sales_lines = [
        line for line in lines if isinstance(line, dict) and line.get("DetailType") == SALES_LINE_DETAIL
    ]

    for index, line in enumerate(sales_lines):
        detail = line.get(SALES_LINE_DETAIL) or {}
        item_ref = detail.get("ItemRef") or {}

        amount = _to_float(line.get("Amount"), "Line.Amount")
        quantity = _to_float(detail.get("Qty", 1), "Line.Qty")
        unit_price = amount / quantity if quantity > 0 else amount

        result.append(
            FirsInvoiceLine(
                hsn_code=normalize_hsn_code(item_ref.get("value"), index),
                product_category="General Services",
                invoiced_quantity=sign * quantity,
                line_extension_amount=sign * amount,
                item=FirsItem(
                    name=item_ref.get("name") or "Service Item",
                    description=line.get("Description") or "Service description",
                    sellers_item_identification=item_ref.get("value") or f"ITEM-{index + 1}",
                ),
                price=FirsPrice(price_amount=unit_price, base_quantity=1, price_unit="EA"),
            )
        )

    return result


def transform_invoice(
    invoice: dict[str, Any],
    config: BusinessConfig,
    is_reversal: bool = False,
    now: Optional[datetime] = None,
) -> FirsInvoice:
    """
    Map a QuickBooks invoice into the FIRS document schema.

    Args:
        invoice: Invoice entity as returned by the QuickBooks API
        config: FIRS identity of the realm the invoice belongs to
        is_reversal: Negate all amounts and mark the document cancelled
        now: Reference time for date fallbacks and the issue time

    Raises:
        InvoiceTransformationError: If the invoice data is malformed
    """
    if not isinstance(invoice, dict):
        raise InvoiceTransformationError("Invoice payload must be an object")

    now = now or utcnow()
    issue_date = issue_date_for(invoice, now)
    due_date = format_date(invoice["DueDate"]) if invoice.get("DueDate") else add_days(issue_date, DEFAULT_DUE_DAYS)
    irn = irn_for(invoice, now)

    gross = _to_float(invoice.get("TotalAmt"), "TotalAmt")
    tax, net = calculate_tax(gross)
    sign = -1 if is_reversal else 1

    currency = (invoice.get("CurrencyRef") or {}).get("value") or DEFAULT_CURRENCY
    reference = invoice.get("DocNumber") or invoice.get("Id")
    note = invoice.get("PrivateNote") or f"QuickBooks Invoice {reference}"
    payment_status = map_payment_status(invoice.get("Balance"))

    if is_reversal:
        payment_status = PaymentStatus.REJECTED.value
        note = f"CANCELLED: {note}"

    return FirsInvoice(
        business_id=config.business_id,
        irn=irn,
        issue_date=issue_date,
        due_date=due_date,
        issue_time=now.strftime("%H:%M:%S"),
        invoice_type_code=INVOICE_TYPE_COMMERCIAL,
        payment_status=payment_status,
        note=note,
        tax_point_date=issue_date,
        document_currency_code=currency,
        tax_currency_code=currency,
        accounting_supplier_party=config.supplier_party,
        accounting_customer_party=customer_party(invoice.get("CustomerRef")),
        actual_delivery_date=issue_date,
        payment_means=[
            FirsPaymentMeans(
                payment_means_code=PAYMENT_MEANS_CREDIT_TRANSFER,
                payment_due_date=due_date,
            )
        ],
        payment_terms_note=(invoice.get("SalesTermRef") or {}).get("name") or "Net 30 days",
        tax_total=[
            FirsTaxTotal(
                tax_amount=sign * tax,
                tax_subtotal=[
                    FirsTaxSubtotal(
                        taxable_amount=sign * net,
                        tax_amount=sign * tax,
                        tax_category=FirsTaxCategory(
                            id=TAX_CATEGORY_STANDARD_VAT, percent=VAT_PERCENT
                        ),
                    )
                ],
            )
        ],
        legal_monetary_total=FirsMonetaryTotal(
            line_extension_amount=sign * net,
            tax_exclusive_amount=sign * net,
            tax_inclusive_amount=sign * gross,
            payable_amount=sign * gross,
        ),
        invoice_line=transform_lines(invoice.get("Line") or [], is_reversal),
    )
