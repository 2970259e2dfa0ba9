"""
Ledger State Storage Module

Key-value store for balances, counters and totals with an explicit
"absent key reads as zero" contract. Provides an in-memory implementation
(testing, single-process deployments) and SQLite (persistence). Amounts are
persisted as decimal strings so values above 64 bits survive the round trip.

Transactions nest: every begin_transaction opens a savepoint, commit releases
the innermost one and rollback restores the state it captured. Writes are
applied immediately, so reads inside a transaction see them.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple, Union
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
import copy
import sqlite3
import threading

from .logging_config import get_logger


BALANCES = "balances"
DEPOSIT_COUNTS = "deposit_counts"
WITHDRAWAL_COUNTS = "withdrawal_counts"
TOTALS = "totals"

TABLES = (BALANCES, DEPOSIT_COUNTS, WITHDRAWAL_COUNTS, TOTALS)

# Keys in the totals table
AGGREGATE = "aggregate"
DEPOSITS = "deposits"
WITHDRAWALS = "withdrawals"


class LedgerStore(ABC):
    """Abstract interface for ledger state backends"""

    @abstractmethod
    def get(self, table: str, key: str) -> int:
        """Read a value; absent keys read as zero"""
        pass

    @abstractmethod
    def put(self, table: str, key: str, value: int) -> None:
        """Write a value"""
        pass

    @abstractmethod
    def items(self, table: str) -> Dict[str, int]:
        """All stored key/value pairs of a table"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Open a (possibly nested) transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the innermost open transaction"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard everything written since the innermost begin_transaction"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release backend resources"""
        pass

    def keys(self, table: str) -> List[str]:
        """Keys present in a table"""
        return list(self.items(table).keys())

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except BaseException:
            self.rollback()
            raise


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise KeyError(f"Unknown ledger table '{table}'")


# Marks a key that did not exist before the transaction wrote it
_ABSENT = object()


class InMemoryStore(LedgerStore):
    """
    In-memory store; transactions keep an undo log

    Each open transaction records the previous value of every key it writes,
    the first time it writes it. Rollback replays that log, commit folds it
    into the enclosing transaction, so an operation costs only the keys it
    touches.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, int]] = {table: {} for table in TABLES}
        self._undo: List[Dict[Tuple[str, str], Any]] = []
        self._lock = threading.RLock()

    def get(self, table: str, key: str) -> int:
        _check_table(table)
        with self._lock:
            return self._data[table].get(key, 0)

    def put(self, table: str, key: str, value: int) -> None:
        _check_table(table)
        with self._lock:
            if self._undo:
                self._undo[-1].setdefault((table, key), self._data[table].get(key, _ABSENT))
            self._data[table][key] = value

    def items(self, table: str) -> Dict[str, int]:
        _check_table(table)
        with self._lock:
            return dict(self._data[table])

    def begin_transaction(self) -> None:
        with self._lock:
            self._undo.append({})

    def commit(self) -> None:
        with self._lock:
            if not self._undo:
                return
            changes = self._undo.pop()
            if self._undo:
                # The enclosing transaction keeps its own, older previous values
                parent = self._undo[-1]
                for slot, previous in changes.items():
                    parent.setdefault(slot, previous)

    def rollback(self) -> None:
        with self._lock:
            if not self._undo:
                return
            for (table, key), previous in self._undo.pop().items():
                if previous is _ABSENT:
                    self._data[table].pop(key, None)
                else:
                    self._data[table][key] = previous

    @property
    def in_transaction(self) -> bool:
        return bool(self._undo)

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def get_all_data(self) -> Dict[str, Dict[str, int]]:
        """Get all data for debugging/inspection"""
        with self._lock:
            return copy.deepcopy(self._data)


class SQLiteStore(LedgerStore):
    """SQLite store for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are managed explicitly with savepoints
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self.logger = get_logger("vault.storage")

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = FULL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS ledger_state (
                    tbl TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (tbl, key)
                )
            """)

    def get(self, table: str, key: str) -> int:
        _check_table(table)
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM ledger_state WHERE tbl = ? AND key = ?",
                (table, key)
            ).fetchone()
            if row is None:
                return 0
            return int(row['value'])

    def put(self, table: str, key: str, value: int) -> None:
        _check_table(table)
        with self._lock:
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(
                "INSERT OR REPLACE INTO ledger_state (tbl, key, value, updated_at) VALUES (?, ?, ?, ?)",
                (table, key, str(value), now)
            )

    def items(self, table: str) -> Dict[str, int]:
        _check_table(table)
        with self._lock:
            cursor = self._connection.execute(
                "SELECT key, value FROM ledger_state WHERE tbl = ? ORDER BY key",
                (table,)
            )
            return {row['key']: int(row['value']) for row in cursor.fetchall()}

    def _savepoint(self) -> str:
        return f"vault_sp_{self._depth}"

    def begin_transaction(self) -> None:
        with self._lock:
            self._depth += 1
            self._connection.execute(f"SAVEPOINT {self._savepoint()}")

    def commit(self) -> None:
        with self._lock:
            if self._depth == 0:
                return
            self._connection.execute(f"RELEASE SAVEPOINT {self._savepoint()}")
            self._depth -= 1

    def rollback(self) -> None:
        with self._lock:
            if self._depth == 0:
                return
            name = self._savepoint()
            self._connection.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self._connection.execute(f"RELEASE SAVEPOINT {name}")
            self._depth -= 1
            self.logger.debug(f"Rolled back savepoint {name}")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(config) -> LedgerStore:
    """Build the store selected by ``config.storage_backend``"""
    if config.storage_backend == "sqlite":
        return SQLiteStore(config.database_path)
    return InMemoryStore()
