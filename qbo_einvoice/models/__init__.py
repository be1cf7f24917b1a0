"""Pydantic models for credentials, notifications and FIRS documents."""

from qbo_einvoice.models.credentials import Credential, RealmBinding
from qbo_einvoice.models.enums import EntityType, FetchStatus, Operation, PaymentStatus
from qbo_einvoice.models.firs import (
    BusinessConfig,
    FirsInvoice,
    FirsParty,
    QRArtifact,
    SubmissionResult,
)
from qbo_einvoice.models.notifications import (
    ChangeNotification,
    EnrichedRecord,
    EntityChange,
    EventGroup,
)

__all__ = [
    "BusinessConfig",
    "ChangeNotification",
    "Credential",
    "EnrichedRecord",
    "EntityChange",
    "EntityType",
    "EventGroup",
    "FetchStatus",
    "FirsInvoice",
    "FirsParty",
    "Operation",
    "PaymentStatus",
    "QRArtifact",
    "RealmBinding",
    "SubmissionResult",
]
