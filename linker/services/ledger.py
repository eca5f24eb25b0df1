"""
Ledger
======
Append-only record logs behind the correction store.

The store depends only on the ``Ledger`` interface:
    append(record)            — durable before returning, all-or-nothing per record
    scan_newest_first(key)    — iterate records, most recent first, optionally
                                restricted to one bug key
    count() / latest()        — used for statistics

``SqliteLedger`` keeps one table per ledger in a shared SQLite database file
(WAL journal). Each append is its own transaction, so concurrent writers from
independent webhook tasks or processes never interleave into a corrupted list.
Records are pydantic models serialized as JSON.
"""
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Generic, Iterator, List, Optional, Type, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_BUSY_TIMEOUT_SECONDS = 30.0


class Ledger(ABC, Generic[T]):
    """Append-only log of records of one model type."""

    @abstractmethod
    def append(self, record: T, key: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def scan_newest_first(self, key: Optional[str] = None) -> Iterator[T]:
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    def latest(self) -> Optional[T]:
        return next(iter(self.scan_newest_first()), None)


class SqliteLedger(Ledger[T]):
    """
    SQLite-backed ledger.

    Parameters
    ----------
    path : str
        Database file; parent directories are created on first use.
    table : str
        Table name for this ledger (identifier, not user input).
    model : type
        Pydantic model used to decode stored payloads.
    """

    def __init__(self, path: str, table: str, model: Type[T]) -> None:
        if not table.isidentifier():
            raise ValueError(f"Invalid ledger table name: {table!r}")
        self.path = path
        self.table = table
        self.model = model
        self._initialized = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        db_path = os.fspath(self.path)
        parent = os.path.dirname(db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=_BUSY_TIMEOUT_SECONDS)
        try:
            if not self._initialized:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        record_key TEXT,
                        payload TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{self.table}_key ON {self.table}(record_key)"
                )
                conn.commit()
                self._initialized = True
            yield conn
        finally:
            conn.close()

    def append(self, record: T, key: Optional[str] = None) -> None:
        payload = record.model_dump_json()
        with self._connect() as conn:
            with conn:  # commits on success, rolls back on error
                conn.execute(
                    f"INSERT INTO {self.table}(record_key, payload) VALUES (?, ?)",
                    (key, payload),
                )

    def _rows(self, key: Optional[str]) -> List[str]:
        with self._connect() as conn:
            if key is None:
                rows = conn.execute(
                    f"SELECT payload FROM {self.table} ORDER BY id DESC"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT payload FROM {self.table} WHERE record_key = ? ORDER BY id DESC",
                    (key,),
                ).fetchall()
        return [row[0] for row in rows]

    def scan_newest_first(self, key: Optional[str] = None) -> Iterator[T]:
        # Snapshot is read up front so callers never hold a connection open
        for payload in self._rows(key):
            yield self.model.model_validate_json(payload)

    def count(self) -> int:
        with self._connect() as conn:
            (total,) = conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()
        return int(total)

    def latest(self) -> Optional[T]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT payload FROM {self.table} ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return self.model.model_validate_json(row[0]) if row else None
