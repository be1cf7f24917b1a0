"""
Abstract storage interfaces.

Two small stores back the webhook pipeline:
- CredentialStore: the current OAuth credential per QuickBooks realm
- RealmBindingStore: the realm to FIRS business identity mapping

Both are implemented by DuckDBStorage; the abstraction lets tests and
alternative deployments swap the backend without touching the pipeline.
"""

from abc import ABC, abstractmethod
from typing import Optional

from qbo_einvoice.models.credentials import Credential, RealmBinding


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


class DuplicateBindingError(StorageError):
    """Raised when a realm already has a binding."""

    pass


class CredentialStore(ABC):
    """
    Durable record of the current credential for each realm.

    Writers replace the whole record; there are no partial updates.
    """

    @abstractmethod
    def load_credential(self, realm_id: str) -> Optional[Credential]:
        """
        Read the stored credential for a realm.

        Args:
            realm_id: QuickBooks company ID

        Returns:
            Stored credential, or None if the realm was never connected

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    def save_credential(self, realm_id: str, credential: Credential) -> None:
        """
        Replace the stored credential for a realm.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def list_credential_realms(self) -> list[str]:
        """Realms that have a stored credential, most recently issued first."""
        pass


class RealmBindingStore(ABC):
    """CRUD access to realm bindings."""

    @abstractmethod
    def create_binding(self, binding: RealmBinding) -> RealmBinding:
        """
        Insert a new binding.

        Raises:
            DuplicateBindingError: If the realm already has a binding
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def get_binding(self, binding_id: str) -> Optional[RealmBinding]:
        pass

    @abstractmethod
    def get_binding_by_realm(self, realm_id: str) -> Optional[RealmBinding]:
        pass

    @abstractmethod
    def list_bindings(self) -> list[RealmBinding]:
        """All bindings, newest first."""
        pass

    @abstractmethod
    def update_binding(self, binding_id: str, changes: dict) -> Optional[RealmBinding]:
        """
        Apply field changes to a binding.

        Returns:
            Updated binding, or None if it does not exist
        """
        pass

    @abstractmethod
    def delete_binding(self, binding_id: str) -> bool:
        """Delete a binding. Returns False if it did not exist."""
        pass
