"""
Durable Store Module

Persistence contract consumed by the Ledger, and three implementations with
explicitly different durability guarantees:

- InMemoryStore (transactional): dict-backed, for tests and ephemeral runs
- FlatFileStore (best effort): whole account set rewritten as one JSON file
- SQLiteStore (transactional): accounts and transactions relations

All monetary values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union
from decimal import Decimal, InvalidOperation
from enum import Enum
import sqlite3
import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from contextlib import contextmanager

from .exceptions import PersistenceError, StartupLoadError
from .transactions import TransactionRecord
from .logging_config import get_logger


logger = get_logger("bank_ledger.storage")


class DurabilityGuarantee(Enum):
    """What a store promises when a write fails"""
    BEST_EFFORT = "best_effort"      # Failed writes leave memory ahead of disk
    TRANSACTIONAL = "transactional"  # Each persist call commits or rolls back as a unit


@dataclass
class StoredAccount:
    """Account row plus its ordered history, as read back from a store"""
    account_number: int
    holder_name: str
    pin: str
    balance: Decimal
    history: List[TransactionRecord] = field(default_factory=list)


class DurableStore(ABC):
    """Abstract interface for ledger persistence backends"""

    @property
    @abstractmethod
    def durability(self) -> DurabilityGuarantee:
        """Durability guarantee of this backend"""
        pass

    @abstractmethod
    def load_all_accounts(self) -> List[StoredAccount]:
        """
        Load every account with its history, ordered by account number.

        Raises:
            StartupLoadError: If the store is unreadable or corrupt
        """
        pass

    @abstractmethod
    def persist_account_open(self, account) -> None:
        """Write a new account row plus its OPEN record"""
        pass

    @abstractmethod
    def persist_single_mutation(self, account_number: int, new_balance: Decimal,
                                record: TransactionRecord) -> None:
        """Write an updated balance and append one record for one account"""
        pass

    @abstractmethod
    def persist_transfer_pair(self, from_account_number: int, from_new_balance: Decimal,
                              from_record: TransactionRecord, to_account_number: int,
                              to_new_balance: Decimal, to_record: TransactionRecord) -> None:
        """Write both legs of a transfer as one unit"""
        pass

    @abstractmethod
    def max_account_number(self) -> int:
        """Highest stored account number, 0 if there are none"""
        pass

    @abstractmethod
    def load_transaction_history(self, account_number: int) -> List[TransactionRecord]:
        """Ordered history of one account, empty if the account is unknown"""
        pass

    def close(self) -> None:
        """Release resources held by the store (default no-op)"""
        pass


def _account_to_dict(account) -> Dict[str, Any]:
    return {
        "account_number": account.account_number,
        "holder_name": account.holder_name,
        "pin": account.pin,
        "balance": str(account.balance),
        "history": [record.to_dict() for record in account.history]
    }


def _stored_from_dict(data: Dict[str, Any]) -> StoredAccount:
    return StoredAccount(
        account_number=int(data["account_number"]),
        holder_name=data["holder_name"],
        pin=str(data["pin"]),
        balance=Decimal(str(data["balance"])),
        history=[TransactionRecord.from_dict(item) for item in data.get("history", [])]
    )


class _DictStore(DurableStore):
    """Shared bookkeeping for stores that keep every account in a dict"""

    def __init__(self):
        self._accounts: Dict[int, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def _flush(self) -> None:
        """Hook called after every change"""
        pass

    def _require(self, account_number: int) -> Dict[str, Any]:
        data = self._accounts.get(account_number)
        if data is None:
            raise PersistenceError(f"Account {account_number} is not stored")
        return data

    def persist_account_open(self, account) -> None:
        with self._lock:
            if account.account_number in self._accounts:
                raise PersistenceError(f"Account {account.account_number} already stored")
            self._accounts[account.account_number] = _account_to_dict(account)
            self._flush()

    def persist_single_mutation(self, account_number: int, new_balance: Decimal,
                                record: TransactionRecord) -> None:
        with self._lock:
            data = self._require(account_number)
            data["balance"] = str(new_balance)
            data["history"].append(record.to_dict())
            self._flush()

    def persist_transfer_pair(self, from_account_number: int, from_new_balance: Decimal,
                              from_record: TransactionRecord, to_account_number: int,
                              to_new_balance: Decimal, to_record: TransactionRecord) -> None:
        with self._lock:
            # Validate both sides before touching either
            source = self._require(from_account_number)
            target = self._require(to_account_number)

            source["balance"] = str(from_new_balance)
            source["history"].append(from_record.to_dict())
            target["balance"] = str(to_new_balance)
            target["history"].append(to_record.to_dict())
            self._flush()

    def max_account_number(self) -> int:
        with self._lock:
            return max(self._accounts, default=0)

    def load_transaction_history(self, account_number: int) -> List[TransactionRecord]:
        with self._lock:
            data = self._accounts.get(account_number)
            if data is None:
                return []
            return [TransactionRecord.from_dict(item) for item in data["history"]]

    def _snapshot(self) -> List[StoredAccount]:
        with self._lock:
            return [_stored_from_dict(self._accounts[number]) for number in sorted(self._accounts)]


class InMemoryStore(_DictStore):
    """In-memory store for testing; every persist call is all-or-nothing"""

    @property
    def durability(self) -> DurabilityGuarantee:
        return DurabilityGuarantee.TRANSACTIONAL

    def load_all_accounts(self) -> List[StoredAccount]:
        return self._snapshot()


class FlatFileStore(_DictStore):
    """
    Best-effort store that rewrites the whole account set to one JSON file.

    The in-memory mirror is updated before the file is written, so a failed
    write leaves the mirror (and the Ledger) ahead of the file until the next
    successful write.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def durability(self) -> DurabilityGuarantee:
        return DurabilityGuarantee.BEST_EFFORT

    def load_all_accounts(self) -> List[StoredAccount]:
        with self._lock:
            if not self.path.exists():
                logger.info(f"No account file at {self.path}, starting with an empty store")
                self._accounts = {}
                return []

            try:
                with open(self.path, "r", encoding="utf-8") as handle:
                    payload = json.load(handle)
                accounts = {
                    int(item["account_number"]): item for item in payload["accounts"]
                }
                snapshot = [_stored_from_dict(accounts[number]) for number in sorted(accounts)]
            except (OSError, ValueError, KeyError, TypeError, InvalidOperation) as e:
                raise StartupLoadError(f"Could not load accounts from {self.path}: {e}") from e

            self._accounts = accounts
            return snapshot

    def _flush(self) -> None:
        payload = {
            "accounts": [self._accounts[number] for number in sorted(self._accounts)]
        }
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Error saving accounts to {self.path}: {e}") from e


class SQLiteStore(DurableStore):
    """SQLite store; every persist call is a single transaction"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection: Optional[sqlite3.Connection] = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level='DEFERRED'
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

        self._ensure_schema()

    @property
    def durability(self) -> DurabilityGuarantee:
        return DurabilityGuarantee.TRANSACTIONAL

    def _ensure_schema(self) -> None:
        with self._lock:
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_number INTEGER PRIMARY KEY,
                    holder_name TEXT NOT NULL,
                    pin TEXT NOT NULL,
                    balance TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_number INTEGER NOT NULL REFERENCES accounts(account_number),
                    kind TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    balance_after TEXT NOT NULL,
                    ts TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_transactions_account
                ON transactions(account_number, ts, id)
            """)
            self._connection.commit()

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise PersistenceError(f"SQLite store {self.db_path} is closed")
        return self._connection

    @contextmanager
    def _transaction(self):
        """Commit on success, roll back on any failure"""
        with self._lock:
            connection = self._conn()
            try:
                yield connection
                connection.commit()
            except sqlite3.Error as e:
                connection.rollback()
                raise PersistenceError(f"SQLite write failed: {e}") from e
            except Exception:
                connection.rollback()
                raise

    @staticmethod
    def _insert_record(connection: sqlite3.Connection, account_number: int,
                       record: TransactionRecord) -> None:
        connection.execute("""
            INSERT INTO transactions (account_number, kind, amount, balance_after, ts)
            VALUES (?, ?, ?, ?, ?)
        """, (account_number, record.kind.value, str(record.amount),
              str(record.balance_after), record.timestamp.isoformat(timespec="microseconds")))

    @staticmethod
    def _update_balance(connection: sqlite3.Connection, account_number: int,
                        new_balance: Decimal) -> None:
        cursor = connection.execute(
            "UPDATE accounts SET balance = ? WHERE account_number = ?",
            (str(new_balance), account_number)
        )
        if cursor.rowcount == 0:
            raise PersistenceError(f"Account {account_number} is not stored")

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TransactionRecord:
        return TransactionRecord.from_dict({
            "kind": row["kind"],
            "amount": row["amount"],
            "balance_after": row["balance_after"],
            "timestamp": row["ts"]
        })

    def load_all_accounts(self) -> List[StoredAccount]:
        try:
            with self._lock:
                connection = self._conn()
                account_rows = connection.execute("""
                    SELECT account_number, holder_name, pin, balance
                    FROM accounts ORDER BY account_number
                """).fetchall()
                transaction_rows = connection.execute("""
                    SELECT account_number, kind, amount, balance_after, ts
                    FROM transactions ORDER BY ts, id
                """).fetchall()

            accounts: Dict[int, StoredAccount] = {}
            for row in account_rows:
                accounts[row["account_number"]] = StoredAccount(
                    account_number=row["account_number"],
                    holder_name=row["holder_name"],
                    pin=row["pin"],
                    balance=Decimal(row["balance"])
                )
            for row in transaction_rows:
                stored = accounts.get(row["account_number"])
                if stored is not None:
                    stored.history.append(self._row_to_record(row))
            return list(accounts.values())
        except (sqlite3.Error, PersistenceError, ValueError, InvalidOperation) as e:
            raise StartupLoadError(f"Could not load accounts from {self.db_path}: {e}") from e

    def persist_account_open(self, account) -> None:
        record = account.last_record
        with self._transaction() as connection:
            connection.execute("""
                INSERT INTO accounts (account_number, holder_name, pin, balance)
                VALUES (?, ?, ?, ?)
            """, (account.account_number, account.holder_name, account.pin, str(account.balance)))
            self._insert_record(connection, account.account_number, record)

    def persist_single_mutation(self, account_number: int, new_balance: Decimal,
                                record: TransactionRecord) -> None:
        with self._transaction() as connection:
            self._update_balance(connection, account_number, new_balance)
            self._insert_record(connection, account_number, record)

    def persist_transfer_pair(self, from_account_number: int, from_new_balance: Decimal,
                              from_record: TransactionRecord, to_account_number: int,
                              to_new_balance: Decimal, to_record: TransactionRecord) -> None:
        with self._transaction() as connection:
            self._update_balance(connection, from_account_number, from_new_balance)
            self._update_balance(connection, to_account_number, to_new_balance)
            self._insert_record(connection, from_account_number, from_record)
            self._insert_record(connection, to_account_number, to_record)

    def max_account_number(self) -> int:
        try:
            with self._lock:
                row = self._conn().execute(
                    "SELECT MAX(account_number) AS max_number FROM accounts"
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not read max account number: {e}") from e
        return row["max_number"] or 0

    def load_transaction_history(self, account_number: int) -> List[TransactionRecord]:
        try:
            with self._lock:
                rows = self._conn().execute("""
                    SELECT kind, amount, balance_after, ts FROM transactions
                    WHERE account_number = ? ORDER BY ts, id
                """, (account_number,)).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not load history for {account_number}: {e}") from e
        return [self._row_to_record(row) for row in rows]

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_store(config) -> DurableStore:
    """
    Build the store selected by config.store_backend.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = config.store_backend.lower()
    if backend == "sqlite":
        return SQLiteStore(config.database_path)
    if backend == "flatfile":
        return FlatFileStore(config.flat_file_path)
    if backend == "memory":
        return InMemoryStore()
    raise ValueError(f"Unknown store backend '{config.store_backend}'")
