"""SQLite-backed local store for allowlist entries and admin config.

Every mutation runs inside a StoreTransaction: the transaction commits only
after the ``with`` block completes, and rolls back on any exception or on
an explicit ``rollback()``.

Example:
    ```python
    store = AllowlistStore("data/allowlist.db")
    store.initialize()

    with store.transaction() as tx:
        tx.insert(AllowedIpEntry(ip="10.0.0.0/8", description="office"))
        remote.upsert_item("10.0.0.0/8", "office")  # failure rolls back the insert
    ```
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path

from allowlist_sync.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    StorageError,
)
from allowlist_sync.matcher import validate_format
from allowlist_sync.models import (
    TIMESTAMP_FORMAT,
    AllowedIpEntry,
    format_timestamp,
    now_timestamp,
)

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "allowed_ips"
CONFIG_TABLE = "config"

_SCHEMA = (
    f"""
    CREATE TABLE IF NOT EXISTS {ENTRIES_TABLE} (
        ip TEXT PRIMARY KEY,
        description TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {CONFIG_TABLE} (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
)


class TransactionState(str, Enum):
    """Lifecycle of a local transaction."""

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return now_timestamp()
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Unparsable timestamp in allowlist row: %r", value)
        return now_timestamp()


def _row_to_entry(row: sqlite3.Row) -> AllowedIpEntry:
    return AllowedIpEntry(
        ip=row["ip"],
        description=row["description"] or "",
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


class StoreTransaction:
    """Mutations executed on an open local transaction.

    Instances are created by AllowlistStore.transaction() and must not
    outlive the ``with`` block.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.state = TransactionState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state == TransactionState.ACTIVE

    def _execute(
        self,
        operation: str,
        sql: str,
        params: dict,
        conflict_ip: str | None = None,
    ) -> sqlite3.Cursor:
        if not self.is_active:
            msg = f"Transaction is {self.state.value}; cannot {operation}"
            raise StorageError(msg, operation=operation, table=ENTRIES_TABLE)
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if conflict_ip is not None:
                msg = f"Allowlist entry already exists: {conflict_ip}"
                raise ConflictError(msg, ip=conflict_ip) from e
            raise StorageError(str(e), operation=operation, table=ENTRIES_TABLE) from e
        except sqlite3.Error as e:
            raise StorageError(str(e), operation=operation, table=ENTRIES_TABLE) from e

    @staticmethod
    def _require_format(entry: AllowedIpEntry) -> None:
        if not validate_format(entry.ip):
            msg = f"Invalid IP format: {entry.ip}"
            raise InvalidInputError(msg, field="ip", value=entry.ip)

    def insert(self, entry: AllowedIpEntry) -> None:
        """Insert a new entry.

        Raises:
            InvalidInputError: If the entry's IP is not an address or CIDR block.
            ConflictError: If an entry with the same IP already exists.
            StorageError: If the database operation fails.
        """
        self._require_format(entry)
        self._execute(
            "insert",
            f"INSERT INTO {ENTRIES_TABLE} (ip, description, created_at, updated_at) "
            "VALUES (:ip, :description, :created_at, :updated_at)",
            entry.to_row(),
            conflict_ip=entry.ip,
        )

    def insert_or_ignore(self, entry: AllowedIpEntry) -> bool:
        """Insert an entry unless its IP is already present.

        Returns:
            True if a row was inserted.

        Raises:
            InvalidInputError: If the entry's IP is not an address or CIDR block.
        """
        self._require_format(entry)
        cursor = self._execute(
            "insert",
            f"INSERT OR IGNORE INTO {ENTRIES_TABLE} (ip, description, created_at, updated_at) "
            "VALUES (:ip, :description, :created_at, :updated_at)",
            entry.to_row(),
        )
        return cursor.rowcount > 0

    def update(
        self,
        ip: str,
        description: str,
        updated_at: datetime | None = None,
    ) -> bool:
        """Update description and updated_at of an existing entry.

        Returns:
            False if no entry has this IP.
        """
        cursor = self._execute(
            "update",
            f"UPDATE {ENTRIES_TABLE} SET description = :description, "
            "updated_at = :updated_at WHERE ip = :ip",
            {
                "ip": ip,
                "description": description,
                "updated_at": format_timestamp(updated_at or now_timestamp()),
            },
        )
        return cursor.rowcount > 0

    def delete(self, ip: str) -> bool:
        """Delete an entry.

        Returns:
            False if no entry has this IP.
        """
        cursor = self._execute(
            "delete",
            f"DELETE FROM {ENTRIES_TABLE} WHERE ip = :ip",
            {"ip": ip},
        )
        return cursor.rowcount > 0

    def rollback(self) -> None:
        """Abandon every change made in this transaction."""
        if not self.is_active:
            return
        try:
            self._conn.rollback()
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="rollback") from e
        finally:
            self.state = TransactionState.ROLLED_BACK
        logger.debug("Rolled back local transaction")

    def commit(self) -> None:
        """Persist every change made in this transaction."""
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="commit") from e
        self.state = TransactionState.COMMITTED


class AllowlistStore:
    """Durable store for allowlist entries and the config table.

    Example:
        ```python
        store = AllowlistStore(":memory:")
        store.initialize({"session_timeout": "86400"})
        store.insert(AllowedIpEntry(ip="127.0.0.1"))
        entries = store.list_entries()
        ```
    """

    def __init__(self, database_path: str | Path) -> None:
        """Open (and create if needed) the SQLite database.

        Args:
            database_path: Database file path, or ``:memory:``.

        Raises:
            StorageError: If the database cannot be opened.
        """
        self.database_path = str(database_path)
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            # Autocommit mode: transactions are opened explicitly with BEGIN.
            self._conn = sqlite3.connect(self.database_path, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="connect") from e
        self._conn.row_factory = sqlite3.Row
        logger.debug("Opened allowlist database %s", self.database_path)

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()

    def initialize(self, config_defaults: dict[str, str] | None = None) -> None:
        """Create tables if missing and seed config defaults.

        Existing config values are never overwritten.

        Args:
            config_defaults: Config keys to create when absent.

        Raises:
            StorageError: If the schema cannot be created.
        """
        try:
            for statement in _SCHEMA:
                self._conn.execute(statement)
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="initialize") from e

        for key, value in (config_defaults or {}).items():
            if self.get_config(key) is None:
                self.set_config(key, value)
                logger.info("Seeded default config '%s'", key)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Open a local transaction.

        Commits when the block completes, unless the transaction was
        explicitly rolled back. Any exception rolls back and propagates.

        Yields:
            The open StoreTransaction.

        Raises:
            StorageError: If the transaction cannot be started or committed.
        """
        try:
            self._conn.execute("BEGIN")
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="begin") from e

        tx = StoreTransaction(self._conn)
        try:
            yield tx
        except BaseException:
            if tx.is_active:
                try:
                    tx.rollback()
                except StorageError:
                    logger.exception("Rollback failed while handling an error")
            raise

        if tx.is_active:
            try:
                tx.commit()
            except StorageError:
                tx.rollback()
                raise

    # =========================================================================
    # Entry Operations
    # =========================================================================

    def insert(self, entry: AllowedIpEntry) -> None:
        """Insert an entry in its own transaction.

        Raises:
            ConflictError: If an entry with the same IP already exists.
            StorageError: If the database operation fails.
        """
        with self.transaction() as tx:
            tx.insert(entry)

    def update(self, ip: str, description: str) -> bool:
        """Update an entry's description in its own transaction.

        Returns:
            False if no entry has this IP.
        """
        with self.transaction() as tx:
            return tx.update(ip, description)

    def delete(self, ip: str) -> bool:
        """Delete an entry in its own transaction.

        Returns:
            False if no entry has this IP.
        """
        with self.transaction() as tx:
            return tx.delete(ip)

    def rename_key(
        self,
        old_ip: str,
        new_ip: str,
        description: str,
        created_at: datetime,
    ) -> bool:
        """Atomically replace the entry for old_ip with one for new_ip.

        The new row keeps created_at and gets a fresh updated_at.

        Returns:
            False (with nothing changed) if old_ip does not exist.

        Raises:
            ConflictError: If new_ip already exists; nothing is changed.
            StorageError: If the database operation fails.
        """
        with self.transaction() as tx:
            return self.rename_in(tx, old_ip, new_ip, description, created_at)

    @staticmethod
    def rename_in(
        tx: StoreTransaction,
        old_ip: str,
        new_ip: str,
        description: str,
        created_at: datetime,
    ) -> bool:
        """Delete-then-insert inside an existing transaction.

        Rolls the transaction back and returns False if old_ip is absent.
        """
        if not tx.delete(old_ip):
            tx.rollback()
            return False
        tx.insert(
            AllowedIpEntry(
                ip=new_ip,
                description=description,
                created_at=created_at,
                updated_at=now_timestamp(),
            )
        )
        return True

    def get(self, ip: str) -> AllowedIpEntry | None:
        """Fetch one entry by IP."""
        try:
            row = self._conn.execute(
                f"SELECT * FROM {ENTRIES_TABLE} WHERE ip = :ip", {"ip": ip}
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="select", table=ENTRIES_TABLE) from e
        return _row_to_entry(row) if row else None

    def exists(self, ip: str) -> bool:
        return self.get(ip) is not None

    def require(self, ip: str) -> AllowedIpEntry:
        """Fetch one entry by IP, failing if it is absent.

        Raises:
            NotFoundError: If no entry has this IP.
        """
        entry = self.get(ip)
        if entry is None:
            msg = f"Allowlist entry not found: {ip}"
            raise NotFoundError(msg, ip=ip)
        return entry

    def list_entries(self) -> list[AllowedIpEntry]:
        """Return all entries ordered by creation time ascending."""
        try:
            rows = self._conn.execute(
                f"SELECT * FROM {ENTRIES_TABLE} ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="select", table=ENTRIES_TABLE) from e
        return [_row_to_entry(row) for row in rows]

    # =========================================================================
    # Config Operations
    # =========================================================================

    def get_config(self, key: str) -> str | None:
        """Read a config value, or None if the key is absent."""
        try:
            row = self._conn.execute(
                f"SELECT value FROM {CONFIG_TABLE} WHERE key = :key", {"key": key}
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="select", table=CONFIG_TABLE) from e
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        """Update a config value, inserting the key if it does not exist."""
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    f"UPDATE {CONFIG_TABLE} SET value = :value WHERE key = :key",
                    {"key": key, "value": value},
                )
                if cursor.rowcount == 0:
                    self._conn.execute(
                        f"INSERT INTO {CONFIG_TABLE} (key, value) VALUES (:key, :value)",
                        {"key": key, "value": value},
                    )
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="upsert", table=CONFIG_TABLE) from e
