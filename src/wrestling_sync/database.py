"""
Database module for the local copy of synced entities using DuckDB.

All entity types share one table; each row holds the entity's fields as
JSON together with the Notion page ID it mirrors and its sync timestamps.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import duckdb

from wrestling_sync.sync.interfaces import EntitySession, LocalStore
from wrestling_sync.sync.models import LocalRecord

logger = logging.getLogger(__name__)


_SELECT_COLUMNS = "record_id, entity_type, external_id, fields, updated_at, last_synced_at"


def _to_record(row) -> LocalRecord:
    return LocalRecord(
        record_id=row[0],
        entity_type=row[1],
        external_id=row[2],
        fields=json.loads(row[3]),
        updated_at=row[4],
        last_synced_at=row[5],
    )


def _dump_fields(fields: Dict[str, Any]) -> str:
    return json.dumps(fields, sort_keys=True, default=str)


class DuckDBEntitySession(EntitySession):
    """
    Store operations for one entity type on a dedicated DuckDB cursor.

    All writes of a session belong to one transaction, opened and finished
    by ``SyncDatabase.session``.
    """

    def __init__(self, cursor: duckdb.DuckDBPyConnection, entity_type: str):
        self.cursor = cursor
        self.entity_type = entity_type

    def find_by_external_id(self, external_id: str) -> Optional[LocalRecord]:
        row = self.cursor.execute(
            f"SELECT {_SELECT_COLUMNS} FROM synced_records "
            "WHERE entity_type = ? AND external_id = ?",
            [self.entity_type, external_id]
        ).fetchone()
        return _to_record(row) if row else None

    def get(self, record_id: str) -> Optional[LocalRecord]:
        row = self.cursor.execute(
            f"SELECT {_SELECT_COLUMNS} FROM synced_records "
            "WHERE entity_type = ? AND record_id = ?",
            [self.entity_type, record_id]
        ).fetchone()
        return _to_record(row) if row else None

    def insert(self, external_id: Optional[str], fields: Dict[str, Any]) -> LocalRecord:
        """
        Insert a new row.

        Args:
            external_id: Notion page ID, or None for rows created locally
            fields: Entity fields

        Returns:
            The stored record

        Raises:
            ValueError: If a row with the same external ID already exists
        """
        if external_id is not None and self.find_by_external_id(external_id) is not None:
            raise ValueError(f"{self.entity_type} record {external_id} already exists")

        now = datetime.now()
        record = LocalRecord(
            record_id=str(uuid.uuid4()),
            entity_type=self.entity_type,
            external_id=external_id,
            fields=dict(fields),
            updated_at=now,
            last_synced_at=now if external_id is not None else None,
        )
        self.cursor.execute(
            "INSERT INTO synced_records "
            "(record_id, entity_type, external_id, fields, updated_at, last_synced_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [record.record_id, record.entity_type, record.external_id,
             _dump_fields(record.fields), record.updated_at, record.last_synced_at]
        )
        logger.debug(f"Inserted {self.entity_type} record {record.record_id} "
                     f"(external ID {external_id})")
        return record

    def update(self, record_id: str, fields: Dict[str, Any]) -> LocalRecord:
        """
        Replace the fields of an existing row and stamp it as synced.

        Raises:
            KeyError: If the row does not exist
        """
        now = datetime.now()
        updated = self.cursor.execute(
            "UPDATE synced_records SET fields = ?, updated_at = ?, last_synced_at = ? "
            "WHERE entity_type = ? AND record_id = ? RETURNING record_id",
            [_dump_fields(fields), now, now, self.entity_type, record_id]
        ).fetchall()
        if not updated:
            raise KeyError(f"No {self.entity_type} record with ID {record_id}")

        record = self.get(record_id)
        logger.debug(f"Updated {self.entity_type} record {record_id}")
        return record

    def list_records(self) -> List[LocalRecord]:
        rows = self.cursor.execute(
            f"SELECT {_SELECT_COLUMNS} FROM synced_records "
            "WHERE entity_type = ? ORDER BY updated_at, record_id",
            [self.entity_type]
        ).fetchall()
        return [_to_record(row) for row in rows]

    def set_external_id(self, record_id: str, external_id: str) -> None:
        existing = self.find_by_external_id(external_id)
        if existing is not None and existing.record_id != record_id:
            raise ValueError(
                f"{self.entity_type} record {external_id} is already linked to {existing.record_id}"
            )
        self.cursor.execute(
            "UPDATE synced_records SET external_id = ? WHERE entity_type = ? AND record_id = ?",
            [external_id, self.entity_type, record_id]
        )

    def mark_synced(self, record_id: str) -> None:
        self.cursor.execute(
            "UPDATE synced_records SET last_synced_at = ? WHERE entity_type = ? AND record_id = ?",
            [datetime.now(), self.entity_type, record_id]
        )


class SyncDatabase(LocalStore):
    """
    Manages the DuckDB database holding the local copy of synced entities.

    Use as a context manager: entering opens the connection and creates the
    schema, leaving closes it. Each session gets its own cursor so that
    concurrent workers never share one.
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize database connection settings.

        Args:
            db_path: Path to the DuckDB database file (":memory:" for a
                throwaway database)
        """
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

    def __enter__(self) -> 'SyncDatabase':
        """
        Context manager entry: open database connection and create schema.

        Raises:
            Exception: If database connection or schema creation fails
        """
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.close()
        except Exception as e:
            logger.warning(f"Error while closing database connection: {e}", exc_info=True)

    def open(self) -> None:
        if self.conn is not None:
            return
        try:
            self.conn = duckdb.connect(str(self.db_path))
            logger.info(f"Connected to database at {self.db_path}")
            self._create_schema()
        except Exception as e:
            logger.error(f"Failed to initialize database at {self.db_path}: {e}", exc_info=True)
            raise

    def _create_schema(self) -> None:
        """
        Create the database schema if it doesn't exist.

        Uniqueness of (entity_type, external_id) is enforced by the sessions.

        Raises:
            RuntimeError: If database connection is not established
        """
        if self.conn is None:
            raise RuntimeError("Database connection not established")

        try:
            create_table_sql = """
            CREATE TABLE IF NOT EXISTS synced_records (
                record_id VARCHAR NOT NULL PRIMARY KEY,
                entity_type VARCHAR NOT NULL,
                external_id VARCHAR,
                fields VARCHAR NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                last_synced_at TIMESTAMP
            )
            """
            self.conn.execute(create_table_sql)
            logger.debug("Database schema created or verified")
        except Exception as e:
            logger.error(f"Failed to create database schema: {e}", exc_info=True)
            raise

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise RuntimeError("Database connection not established")
        return self.conn

    @contextmanager
    def session(self, entity_type: str) -> Iterator[DuckDBEntitySession]:
        """
        Open a session scoped to one entity type.

        The session runs in its own transaction: it is committed when the
        block exits normally and rolled back when an exception escapes it,
        so a failed entity leaves none of its writes behind.

        Raises:
            RuntimeError: If database connection is not established
        """
        cursor = self._require_connection().cursor()
        try:
            cursor.begin()
            try:
                yield DuckDBEntitySession(cursor, entity_type)
            except BaseException:
                logger.warning(f"Rolling back {entity_type} session")
                cursor.rollback()
                raise
            cursor.commit()
        finally:
            cursor.close()

    def get_last_sync_time(self, entity_type: str) -> Optional[datetime]:
        row = self._require_connection().execute(
            "SELECT max(last_synced_at) FROM synced_records WHERE entity_type = ?",
            [entity_type]
        ).fetchone()
        return row[0] if row else None

    def has_record(self, entity_type: str, external_id: str) -> bool:
        row = self._require_connection().execute(
            "SELECT count(*) FROM synced_records WHERE entity_type = ? AND external_id = ?",
            [entity_type, external_id]
        ).fetchone()
        return row[0] > 0

    def count(self, entity_type: Optional[str] = None) -> int:
        """Number of stored rows, optionally of one entity type."""
        conn = self._require_connection()
        if entity_type is None:
            row = conn.execute("SELECT count(*) FROM synced_records").fetchone()
        else:
            row = conn.execute(
                "SELECT count(*) FROM synced_records WHERE entity_type = ?", [entity_type]
            ).fetchone()
        return row[0]

    def get_record(self, entity_type: str, external_id: str) -> Optional[LocalRecord]:
        with self.session(entity_type) as session:
            return session.find_by_external_id(external_id)

    def list_records(self, entity_type: str) -> List[LocalRecord]:
        with self.session(entity_type) as session:
            return session.list_records()

    def update_local_fields(self, entity_type: str, external_id: str,
                            **fields: Any) -> LocalRecord:
        """
        Change fields of a synced row locally, e.g. a wrestler's fan count.

        Raises:
            KeyError: If no row mirrors the given external ID
        """
        with self.session(entity_type) as session:
            record = session.find_by_external_id(external_id)
            if record is None:
                raise KeyError(f"No {entity_type} record {external_id}")
            record.fields.update(fields)
            now = datetime.now()
            session.cursor.execute(
                "UPDATE synced_records SET fields = ?, updated_at = ? WHERE record_id = ?",
                [_dump_fields(record.fields), now, record.record_id]
            )
            return session.get(record.record_id)

    def close(self) -> None:
        """
        Close the database connection.

        This method can be called explicitly or will be called automatically
        when using the context manager.
        """
        if self.conn is not None:
            try:
                self.conn.close()
                logger.debug("Database connection closed")
            except Exception as e:
                logger.warning(f"Error closing database connection: {e}", exc_info=True)
            finally:
                self.conn = None
