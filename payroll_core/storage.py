"""
Storage Backend Module

Record-oriented storage for loans and installments: an abstract interface plus
in-memory (testing) and SQLite (persistence) implementations. Records are
stored as JSON documents; monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Iterable, Tuple
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import copy
from collections import defaultdict
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager, nullcontext

from .errors import PersistenceError


def _to_storable(value: Any) -> Any:
    """Convert dataclass field values to JSON-friendly primitives"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {key: _to_storable(value) for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    def save_many(self, table: str, records: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        """Save a batch of (record_id, data) pairs; all or nothing"""
        records = list(records)
        with self.atomic():
            for record_id, data in records:
                self.save(table, record_id, data)

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

    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete every record matching filters, returning the number removed"""
        removed = 0
        for record in self.find(table, filters):
            if self.delete(table, record['id']):
                removed += 1
        return removed

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
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    def _transaction_guard(self):
        """Lock held for a whole atomic() block; none by default"""
        return nullcontext()

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Nested blocks join the outermost one. Backends serialize whole blocks
        through _transaction_guard(), so a rollback in one thread never
        discards writes another thread made in the meantime.
        """
        with self._transaction_guard():
            self.begin_transaction()
            try:
                yield
                self.commit()
            except Exception:
                self.rollback()
                raise


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


class InMemoryStorage(StorageInterface):
    """
    Dict-backed storage for tests and the in-process API.

    Records are copied on the way in and out so callers never share state
    with the store. Transactions snapshot every table on the outermost
    begin and restore that snapshot on rollback.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.RLock()
        self._snapshots: List[Dict[str, Dict[str, Dict[str, Any]]]] = []

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # Same JSON normalisation as the SQLite backend
            self._tables[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._tables[table].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return self.find(table, {})

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._tables[table].pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._tables[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables[table].values() if _matches(r, filters)]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables[table])

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table].clear()

    def _transaction_guard(self):
        return self._lock

    def begin_transaction(self) -> None:
        with self._lock:
            # Only the outermost level needs a restore point
            snapshot = copy.deepcopy(self._tables) if not self._snapshots else None
            self._snapshots.append(snapshot)

    def commit(self) -> None:
        with self._lock:
            if self._snapshots:
                self._snapshots.pop()

    def rollback(self) -> None:
        with self._lock:
            if not self._snapshots:
                return
            snapshot = self._snapshots.pop()
            if snapshot is not None:
                self._tables = snapshot

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._in_transaction = False
        self._depth = 0
        self._known_tables = set()
        try:
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row

            # WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open database: {e}", cause=e)

    @contextmanager
    def _guard(self):
        """Serialize access and translate driver errors"""
        with self._lock:
            try:
                yield
            except sqlite3.Error as e:
                raise PersistenceError(f"Database error: {e}", cause=e)

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._known_tables:
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
        if not self._in_transaction:
            self._connection.commit()
            self._known_tables.add(table)

    def _execute(self, table: str, sql: str, params: Tuple = ()) -> sqlite3.Cursor:
        """Run one statement against table; autocommits outside atomic()"""
        self._ensure_table(table)
        cursor = self._connection.execute(sql.format(table=table), params)
        if not self._in_transaction and not sql.lstrip().upper().startswith("SELECT"):
            self._connection.commit()
        return cursor

    def _documents(self, table: str, where: str = "", params: Tuple = ()) -> List[Dict[str, Any]]:
        cursor = self._execute(table, "SELECT data FROM {table} " + where + " ORDER BY created_at", params)
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._guard():
            # Updates keep the row's first created_at so listing order is stable
            self._execute(table, """
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?), ?)
            """, (record_id, json.dumps(data, default=str), record_id, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._guard():
            found = self._documents(table, "WHERE id = ?", (record_id,))
            return found[0] if found else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._guard():
            return self._documents(table)

    def delete(self, table: str, record_id: str) -> bool:
        with self._guard():
            return self._execute(table, "DELETE FROM {table} WHERE id = ?", (record_id,)).rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._guard():
            row = self._execute(table, "SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)).fetchone()
            return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Filters are matched in Python against the decoded JSON documents"""
        with self._guard():
            return [record for record in self._documents(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        with self._guard():
            return self._execute(table, "SELECT COUNT(*) FROM {table}").fetchone()[0]

    def clear_table(self, table: str) -> None:
        with self._guard():
            self._execute(table, "DELETE FROM {table}")

    def _transaction_guard(self):
        return self._lock

    def begin_transaction(self) -> None:
        """Start a database transaction; nested calls join the outer one"""
        with self._lock:
            # isolation_level='DEFERRED' opens the transaction on first write
            self._in_transaction = True
            self._depth += 1

    def commit(self) -> None:
        """Commit once the outermost transaction completes"""
        with self._guard():
            if self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    self._connection.commit()
                    self._in_transaction = False

    def rollback(self) -> None:
        """Rollback once the outermost transaction unwinds"""
        with self._guard():
            if self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    self._connection.rollback()
                    self._in_transaction = False

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
