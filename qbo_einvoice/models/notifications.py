"""
Webhook notification models.

Intuit data change payload:

    {
        "eventNotifications": [
            {
                "realmId": "123146096291789",
                "dataChangeEvent": {
                    "entities": [
                        {"name": "Invoice", "id": "145", "operation": "Update",
                         "lastUpdated": "2025-09-23T16:27:46.000Z"}
                    ]
                }
            }
        ]
    }
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from qbo_einvoice.models.enums import FetchStatus


class EntityChange(BaseModel):
    """A single entity change inside a notification."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    entity_type: str = Field(alias="name")
    id: str
    operation: str
    last_updated: str = Field(default="", alias="lastUpdated")


class DataChangeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    entities: list[EntityChange] = Field(default_factory=list)


class EventGroup(BaseModel):
    """All entity changes reported for one realm."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    realm_id: str = Field(alias="realmId")
    data_change_event: DataChangeEvent = Field(
        default_factory=DataChangeEvent, alias="dataChangeEvent"
    )

    @property
    def entities(self) -> list[EntityChange]:
        return self.data_change_event.entities


class ChangeNotification(BaseModel):
    """Complete webhook body, in receipt order."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_notifications: list[EventGroup] = Field(
        default_factory=list, alias="eventNotifications"
    )


class EnrichedRecord(BaseModel):
    """
    One entity change plus the outcome of fetching it.

    Produced by the enrichment engine and consumed by the audit log writer.
    """

    realm_id: str
    entity_type: str
    id: str
    operation: str
    last_updated: str = ""
    fetch_status: FetchStatus = FetchStatus.SKIPPED
    full_data: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None

    @classmethod
    def from_change(cls, realm_id: str, change: EntityChange) -> "EnrichedRecord":
        return cls(
            realm_id=realm_id,
            entity_type=change.entity_type,
            id=change.id,
            operation=change.operation,
            last_updated=change.last_updated,
        )

    def to_audit_row(self) -> dict[str, str]:
        """Flatten into the fixed audit CSV columns."""
        return {
            "realmId": self.realm_id,
            "entityType": self.entity_type,
            "id": self.id,
            "operation": self.operation,
            "lastUpdated": self.last_updated,
            "fetchStatus": self.fetch_status.value,
            "errorMessage": self.error_message or "",
            "fullDataJSON": json.dumps(self.full_data) if self.full_data is not None else "",
        }
