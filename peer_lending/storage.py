"""
Storage Backend Module

Abstract storage interface with in-memory (testing) and SQLite (persistence)
implementations. Records are JSON documents; monetary values are stored as
Decimal strings.

Transactions serialize writers: begin_transaction() holds the backend lock
until the matching commit() or rollback(), so the read-validate-write
sequences in the funding ledger never interleave.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date, timezone
from enum import Enum
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager


def to_storable(value: Any) -> Any:
    """Convert a record value into a JSON-friendly structure"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: to_storable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storable(item) for item in value]
    return value


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: to_storable(getattr(self, f.name)) for f in fields(self)}

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # Round-trip through JSON to prevent external mutation
            self._table(table)[record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            if record is not None:
                return copy.deepcopy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._table(table).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Take the lock and snapshot the data on the outermost begin"""
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = copy.deepcopy(self._data)
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        """Restore the snapshot; outer levels then only release the lock"""
        if self._depth == 0:
            return
        self._depth -= 1
        if self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Create the table once; DDL is never issued inside a transaction twice"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        if self._depth == 0:
            self._connection.commit()
        self._tables.add(table)

    def _autocommit(self) -> None:
        if self._depth == 0:
            self._connection.commit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(data, default=str), record_id, now, now))
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY created_at")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._autocommit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._autocommit()

    def begin_transaction(self) -> None:
        # The DEFERRED isolation level opens the SQL transaction on the first write
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth == 0:
            self._connection.commit()
        self._lock.release()

    def rollback(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        self._connection.rollback()
        self._tables.clear()
        self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(use_sqlite: Optional[bool] = None, sqlite_path: Optional[str] = None) -> StorageInterface:
    """Build the storage backend selected in configuration"""
    from .config import get_config
    config = get_config()
    if use_sqlite is None:
        use_sqlite = config.use_sqlite
    if use_sqlite:
        return SQLiteStorage(sqlite_path or config.sqlite_path)
    return InMemoryStorage()
