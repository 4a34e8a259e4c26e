"""
Repository pattern for data access.

Local durable storage is a namespaced key/value table, the same shape as
browser local storage. The prompt history lives under one namespace as a
JSON array, most recent first.
"""

import json
import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union

from .db import DEFAULT_DB_PATH, get_connection
from .models import PromptRecord

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "prompt_desk.history"
DEFAULT_CAPACITY = 50


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the local_storage table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS local_storage (
                namespace TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class SqliteKeyValueStore:
    """Namespaced string storage backed by a single SQLite table."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        initialize_schema(db_path)

    def get_item(self, namespace: str) -> Optional[str]:
        """Return the payload stored under ``namespace``, or None."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT payload FROM local_storage WHERE namespace = ?",
                (namespace,)
            )
            row = cursor.fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set_item(self, namespace: str, payload: str) -> None:
        """Replace the payload stored under ``namespace``."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO local_storage (namespace, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(namespace) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
            """, (namespace, payload, datetime.now().isoformat()))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


class HistoryStore:
    """Ordered, size-bounded log of completed prompts.

    The whole log is written back to storage on every mutation; a failed
    write raises and leaves the in-memory log unchanged. Reads never fail:
    unreadable or corrupt storage yields an empty log.
    """

    def __init__(
        self,
        store: SqliteKeyValueStore,
        namespace: str = DEFAULT_NAMESPACE,
        capacity: int = DEFAULT_CAPACITY
    ):
        """Initialize the history and load whatever is persisted.

        Args:
            store: Durable key/value storage
            namespace: Storage key holding the serialized log
            capacity: Maximum number of records kept

        Raises:
            ValueError: If capacity is not positive
        """
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self.store = store
        self.namespace = namespace
        self.capacity = capacity
        self._records: List[PromptRecord] = self.load()

    @property
    def records(self) -> List[PromptRecord]:
        """Records ordered most recent first."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def load(self) -> List[PromptRecord]:
        """Read the persisted log.

        Returns:
            Records ordered most recent first, at most ``capacity`` of them.
            An empty list if storage can't be read or parsed.
        """
        try:
            payload = self.store.get_item(self.namespace)
        except sqlite3.Error as e:
            logger.warning("History storage unreadable, starting empty: %s", e)
            return []

        if payload is None:
            return []

        try:
            raw_records = json.loads(payload)
            if not isinstance(raw_records, list):
                raise TypeError("history payload must be a JSON array")
            records = [PromptRecord.from_dict(item) for item in raw_records]
        except (ValueError, KeyError, TypeError, AttributeError, ArithmeticError, RecursionError) as e:
            logger.warning("History in %r is corrupt, starting empty: %s", self.namespace, e)
            return []

        return records[:self.capacity]

    def append(self, record: PromptRecord) -> None:
        """Insert a record at the head, evicting the oldest past capacity."""
        records = ([record] + self._records)[:self.capacity]
        self._persist(records)
        self._records = records

    def clear(self) -> None:
        """Remove every record."""
        self._persist([])
        self._records = []

    def get(self, record_id: str) -> Optional[PromptRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def annotate(
        self,
        record_id: str,
        rating: Optional[int] = None,
        notes: Optional[str] = None
    ) -> PromptRecord:
        """Set the user rating and/or notes on a record.

        Raises:
            KeyError: If no record has this id
            ValueError: If rating is outside 1..5
        """
        for index, record in enumerate(self._records):
            if record.id == record_id:
                updated = record.annotated(rating=rating, notes=notes)
                records = list(self._records)
                records[index] = updated
                self._persist(records)
                self._records = records
                return updated
        raise KeyError(record_id)

    def usage_summary(self) -> Dict[str, Union[int, Decimal]]:
        """Aggregate usage and cost across the retained records."""
        return {
            "total_requests": len(self._records),
            "input_tokens": sum(r.usage.input_tokens for r in self._records),
            "output_tokens": sum(r.usage.output_tokens for r in self._records),
            "total_cost": sum((r.estimated_cost for r in self._records), Decimal("0"))
        }

    def _persist(self, records: List[PromptRecord]) -> None:
        # Memory only changes once the write has gone through
        payload = json.dumps([record.to_dict() for record in records])
        self.store.set_item(self.namespace, payload)
