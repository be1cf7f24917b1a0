"""
DuckDB storage implementation for credentials and realm bindings.

Key features:
- Thread-local connections to a single database file
- Idempotent schema creation on first use
- Whole-row upserts for credentials (one row per realm)
- Errors wrapped in StorageError with structured logging
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import uuid4

import duckdb
import structlog

from qbo_einvoice.models.credentials import Credential, RealmBinding, utcnow

from .base import CredentialStore, DuplicateBindingError, RealmBindingStore, StorageError

logger = structlog.get_logger(__name__)

_BINDING_COLUMNS = ("id", "realm_id", "firs_business_id", "tin", "created_at", "updated_at")
_UPDATABLE_BINDING_FIELDS = ("realm_id", "firs_business_id", "tin")


class DuckDBStorage(CredentialStore, RealmBindingStore):
    """
    DuckDB implementation of the credential and realm binding stores.

    Timestamps are stored as ISO-8601 strings so that timezone information
    round-trips exactly.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/qbo_einvoice.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except Exception as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    def _initialize_schema(self) -> None:
        """
        Create tables if they do not exist. Safe to call repeatedly.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS oauth_credentials (
                            realm_id VARCHAR PRIMARY KEY,
                            access_token VARCHAR NOT NULL,
                            refresh_token VARCHAR,
                            token_type VARCHAR NOT NULL,
                            issued_at VARCHAR NOT NULL,
                            expires_in INTEGER NOT NULL,
                            x_refresh_token_expires_in INTEGER
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS realm_bindings (
                            id VARCHAR PRIMARY KEY,
                            realm_id VARCHAR NOT NULL UNIQUE,
                            firs_business_id VARCHAR NOT NULL,
                            tin VARCHAR NOT NULL,
                            created_at VARCHAR NOT NULL,
                            updated_at VARCHAR NOT NULL
                        )
                    """)

                self._initialized = True
                logger.info("duckdb_schema_initialized")

            except Exception as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    # =========================================================================
    # Credentials
    # =========================================================================

    def load_credential(self, realm_id: str) -> Optional[Credential]:
        """Read the stored credential for a realm."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT access_token, refresh_token, token_type, issued_at,
                           expires_in, x_refresh_token_expires_in
                    FROM oauth_credentials
                    WHERE realm_id = ?
                    """,
                    [realm_id],
                ).fetchone()
        except Exception as e:
            logger.error("load_credential_failed", realm_id=realm_id, error=str(e))
            raise StorageError(f"Failed to load credential: {e}") from e

        if row is None:
            return None

        return Credential(
            access_token=row[0],
            refresh_token=row[1],
            token_type=row[2],
            issued_at=datetime.fromisoformat(row[3]),
            expires_in=row[4],
            x_refresh_token_expires_in=row[5],
        )

    def save_credential(self, realm_id: str, credential: Credential) -> None:
        """Replace the stored credential for a realm."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO oauth_credentials (
                        realm_id, access_token, refresh_token, token_type,
                        issued_at, expires_in, x_refresh_token_expires_in
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        realm_id,
                        credential.access_token,
                        credential.refresh_token,
                        credential.token_type,
                        credential.issued_at.isoformat(),
                        credential.expires_in,
                        credential.x_refresh_token_expires_in,
                    ],
                )
            logger.info("credential_saved", realm_id=realm_id)
        except Exception as e:
            logger.error("save_credential_failed", realm_id=realm_id, error=str(e))
            raise StorageError(f"Failed to save credential: {e}") from e

    def list_credential_realms(self) -> list[str]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT realm_id FROM oauth_credentials ORDER BY issued_at DESC"
                ).fetchall()
        except Exception as e:
            logger.error("list_credential_realms_failed", error=str(e))
            raise StorageError(f"Failed to list credentials: {e}") from e
        return [row[0] for row in rows]

    # =========================================================================
    # Realm bindings
    # =========================================================================

    @staticmethod
    def _row_to_binding(row) -> RealmBinding:
        data = dict(zip(_BINDING_COLUMNS, row))
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        return RealmBinding(**data)

    def _fetch_binding(self, where: str, value: str) -> Optional[RealmBinding]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    f"SELECT {', '.join(_BINDING_COLUMNS)} FROM realm_bindings WHERE {where} = ?",
                    [value],
                ).fetchone()
        except Exception as e:
            logger.error("read_binding_failed", where=where, value=value, error=str(e))
            raise StorageError(f"Failed to read realm binding: {e}") from e
        return self._row_to_binding(row) if row else None

    def create_binding(self, binding: RealmBinding) -> RealmBinding:
        if self.get_binding_by_realm(binding.realm_id) is not None:
            raise DuplicateBindingError(
                f"A binding for QuickBooks realm {binding.realm_id} already exists"
            )

        now = utcnow()
        created = binding.model_copy(
            update={"id": str(uuid4()), "created_at": now, "updated_at": now}
        )

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO realm_bindings (
                        id, realm_id, firs_business_id, tin, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        created.id,
                        created.realm_id,
                        created.firs_business_id,
                        created.tin,
                        now.isoformat(),
                        now.isoformat(),
                    ],
                )
        except duckdb.ConstraintException as e:
            raise DuplicateBindingError(str(e)) from e
        except Exception as e:
            logger.error("create_binding_failed", realm_id=binding.realm_id, error=str(e))
            raise StorageError(f"Failed to create realm binding: {e}") from e

        logger.info("realm_binding_created", binding_id=created.id, realm_id=created.realm_id)
        return created

    def get_binding(self, binding_id: str) -> Optional[RealmBinding]:
        return self._fetch_binding("id", binding_id)

    def get_binding_by_realm(self, realm_id: str) -> Optional[RealmBinding]:
        return self._fetch_binding("realm_id", realm_id)

    def list_bindings(self) -> list[RealmBinding]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"SELECT {', '.join(_BINDING_COLUMNS)} FROM realm_bindings "
                    "ORDER BY created_at DESC"
                ).fetchall()
        except Exception as e:
            logger.error("list_bindings_failed", error=str(e))
            raise StorageError(f"Failed to list realm bindings: {e}") from e
        return [self._row_to_binding(row) for row in rows]

    def update_binding(self, binding_id: str, changes: dict) -> Optional[RealmBinding]:
        existing = self.get_binding(binding_id)
        if existing is None:
            return None

        fields = {k: v for k, v in changes.items() if k in _UPDATABLE_BINDING_FIELDS and v is not None}
        if "realm_id" in fields and fields["realm_id"] != existing.realm_id:
            if self.get_binding_by_realm(fields["realm_id"]) is not None:
                raise DuplicateBindingError(
                    f"A binding for QuickBooks realm {fields['realm_id']} already exists"
                )

        updated = existing.model_copy(update={**fields, "updated_at": utcnow()})

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    UPDATE realm_bindings
                    SET realm_id = ?, firs_business_id = ?, tin = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    [
                        updated.realm_id,
                        updated.firs_business_id,
                        updated.tin,
                        updated.updated_at.isoformat(),
                        binding_id,
                    ],
                )
        except Exception as e:
            logger.error("update_binding_failed", binding_id=binding_id, error=str(e))
            raise StorageError(f"Failed to update realm binding: {e}") from e

        logger.info("realm_binding_updated", binding_id=binding_id, fields=sorted(fields))
        return updated

    def delete_binding(self, binding_id: str) -> bool:
        if self.get_binding(binding_id) is None:
            return False
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM realm_bindings WHERE id = ?", [binding_id])
        except Exception as e:
            logger.error("delete_binding_failed", binding_id=binding_id, error=str(e))
            raise StorageError(f"Failed to delete realm binding: {e}") from e

        logger.info("realm_binding_deleted", binding_id=binding_id)
        return True
