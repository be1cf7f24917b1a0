"""
Persistence layer.

- DuckDBStorage: OAuth credentials and realm bindings
- AuditLogWriter: append-only CSV of processed webhook entities
"""

from functools import lru_cache

from qbo_einvoice.config import get_settings

from .audit_log import AUDIT_FIELDS, AuditLogWriter
from .base import (
    CredentialStore,
    DuplicateBindingError,
    RealmBindingStore,
    StorageError,
)
from .duckdb_storage import DuckDBStorage


@lru_cache
def get_storage() -> DuckDBStorage:
    """
    Get cached storage backend instance (singleton).

    Returns:
        DuckDBStorage serving both the credential and realm binding stores
    """
    settings = get_settings()
    return DuckDBStorage(db_path=settings.db_path)


@lru_cache
def get_audit_log() -> AuditLogWriter:
    """Get the process-wide audit log writer."""
    return AuditLogWriter(get_settings().audit_log_path)


__all__ = [
    "AUDIT_FIELDS",
    "AuditLogWriter",
    "CredentialStore",
    "DuckDBStorage",
    "DuplicateBindingError",
    "RealmBindingStore",
    "StorageError",
    "get_audit_log",
    "get_storage",
]
