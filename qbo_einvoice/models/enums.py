"""
Enumeration types for the QuickBooks to FIRS e-invoicing bridge.

All enums inherit from str so they serialize to JSON and compare equal to the
raw strings found in Intuit webhook payloads.
"""

from enum import Enum


class EntityType(str, Enum):
    """
    QuickBooks entity types that can be read back after a change notification.

    This is the closed set of types the entity fetcher knows how to read. A
    notification naming any other type is recorded as a failed fetch.
    """

    CUSTOMER = "Customer"
    ITEM = "Item"
    INVOICE = "Invoice"
    PAYMENT = "Payment"
    BILL = "Bill"
    VENDOR = "Vendor"
    EMPLOYEE = "Employee"
    ACCOUNT = "Account"
    CLASS = "Class"
    DEPARTMENT = "Department"
    ESTIMATE = "Estimate"
    PURCHASE_ORDER = "PurchaseOrder"
    SALES_RECEIPT = "SalesReceipt"
    TIME_ACTIVITY = "TimeActivity"
    JOURNAL_ENTRY = "JournalEntry"


class Operation(str, Enum):
    """Change operations Intuit reports in data change events."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    MERGE = "Merge"
    VOID = "Void"
    EMAILED = "Emailed"


class FetchStatus(str, Enum):
    """
    Outcome of enriching one entity change.

    ``SKIPPED`` means no fetch was attempted (delete, or no usable credential);
    ``FAILED`` means a fetch was attempted and the accounting API refused it.
    """

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class PaymentStatus(str, Enum):
    """FIRS invoice payment status values."""

    PENDING = "PENDING"
    PAID = "PAID"
    REJECTED = "REJECTED"
