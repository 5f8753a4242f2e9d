"""
Tests for durable store backends

Covers the store contract for every backend, all-or-nothing transfer
writes on the transactional backends, and corrupt-file handling.
"""

import pytest
import json
import sqlite3
import tempfile
from decimal import Decimal
from pathlib import Path

from bank_ledger.accounts import Account
from bank_ledger.config import LedgerConfig
from bank_ledger.exceptions import PersistenceError, StartupLoadError
from bank_ledger.storage import (
    DurabilityGuarantee, FlatFileStore, InMemoryStore, SQLiteStore, create_store
)
from bank_ledger.transactions import TransactionKind


@pytest.fixture(params=["memory", "flatfile", "sqlite"])
def store(request, tmp_path):
    """Every backend, freshly created"""
    if request.param == "memory":
        backend = InMemoryStore()
    elif request.param == "flatfile":
        backend = FlatFileStore(tmp_path / "data" / "accounts.json")
    else:
        backend = SQLiteStore(tmp_path / "ledger.db")
    yield backend
    backend.close()


def reopen(store):
    """Open a second store on the same persistent location"""
    if isinstance(store, FlatFileStore):
        return FlatFileStore(store.path)
    return SQLiteStore(store.db_path)


class TestStoreContract:
    """Behaviour shared by every backend"""

    def test_empty_store(self, store):
        assert store.load_all_accounts() == []
        assert store.max_account_number() == 0
        assert store.load_transaction_history(1001) == []

    def test_open_and_load(self, store):
        account = Account.open(1001, "Alice", "0042", "500")
        store.persist_account_open(account)

        loaded = store.load_all_accounts()
        assert len(loaded) == 1
        assert loaded[0].account_number == 1001
        assert loaded[0].holder_name == "Alice"
        assert loaded[0].pin == "0042"
        assert loaded[0].balance == Decimal("500.00")
        assert loaded[0].history == account.history
        assert store.max_account_number() == 1001

    def test_single_mutation(self, store):
        account = Account.open(1001, "Alice", "1234", "500")
        store.persist_account_open(account)

        record = account.deposit("100")
        store.persist_single_mutation(1001, record.balance_after, record)

        loaded = store.load_all_accounts()[0]
        assert loaded.balance == Decimal("600.00")
        assert [r.kind for r in store.load_transaction_history(1001)] == [
            TransactionKind.OPEN, TransactionKind.DEPOSIT
        ]

    def test_single_mutation_unknown_account(self, store):
        account = Account.open(1001, "Alice", "1234", "500")
        record = account.deposit("1")
        with pytest.raises(PersistenceError):
            store.persist_single_mutation(1001, record.balance_after, record)

    def test_transfer_pair(self, store):
        source = Account.open(1001, "Alice", "1234", "500")
        target = Account.open(1002, "Bob", "4321", "0")
        store.persist_account_open(source)
        store.persist_account_open(target)

        debit = source.transfer_out("200")
        credit = target.transfer_in("200")
        store.persist_transfer_pair(1001, debit.balance_after, debit,
                                    1002, credit.balance_after, credit)

        loaded = {s.account_number: s for s in store.load_all_accounts()}
        assert loaded[1001].balance == Decimal("300.00")
        assert loaded[1002].balance == Decimal("200.00")
        assert store.load_transaction_history(1001)[-1] == debit
        assert store.load_transaction_history(1002)[-1] == credit

    def test_self_transfer_pair(self, store):
        account = Account.open(1001, "Alice", "1234", "500")
        store.persist_account_open(account)

        debit = account.transfer_out("50")
        credit = account.transfer_in("50")
        store.persist_transfer_pair(1001, debit.balance_after, debit,
                                    1001, credit.balance_after, credit)

        loaded = store.load_all_accounts()[0]
        assert loaded.balance == Decimal("500.00")
        assert [r.kind for r in loaded.history][-2:] == [
            TransactionKind.TRANSFER_OUT, TransactionKind.TRANSFER_IN
        ]

    def test_duplicate_open_rejected(self, store):
        store.persist_account_open(Account.open(1001, "Alice", "1234", "1"))
        with pytest.raises(PersistenceError):
            store.persist_account_open(Account.open(1001, "Mallory", "0000", "1"))

    def test_accounts_ordered_by_number(self, store):
        for number in (1003, 1001, 1002):
            store.persist_account_open(Account.open(number, f"Holder {number}", "1", "0"))
        assert [s.account_number for s in store.load_all_accounts()] == [1001, 1002, 1003]


class TestDurability:
    """Test declared durability guarantees"""

    def test_declared_guarantees(self, tmp_path):
        assert InMemoryStore().durability is DurabilityGuarantee.TRANSACTIONAL
        assert SQLiteStore().durability is DurabilityGuarantee.TRANSACTIONAL
        assert FlatFileStore(tmp_path / "a.json").durability is DurabilityGuarantee.BEST_EFFORT

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_transfer_pair_with_missing_side_writes_nothing(self, backend):
        store = InMemoryStore() if backend == "memory" else SQLiteStore()
        source = Account.open(1001, "Alice", "1234", "500")
        store.persist_account_open(source)

        ghost = Account.open(1002, "Nobody", "0", "0")
        debit = source.transfer_out("100")
        credit = ghost.transfer_in("100")

        with pytest.raises(PersistenceError):
            store.persist_transfer_pair(1001, debit.balance_after, debit,
                                        1002, credit.balance_after, credit)

        loaded = store.load_all_accounts()[0]
        assert loaded.balance == Decimal("500.00")
        assert len(store.load_transaction_history(1001)) == 1
        store.close()


class TestPersistentBackends:
    """Test reopening file-backed stores"""

    @pytest.mark.parametrize("backend", ["flatfile", "sqlite"])
    def test_data_survives_reopen(self, backend, tmp_path):
        if backend == "flatfile":
            store = FlatFileStore(tmp_path / "accounts.json")
        else:
            store = SQLiteStore(tmp_path / "ledger.db")

        account = Account.open(1001, "Alice", "1234", "10")
        store.persist_account_open(account)
        record = account.withdraw("2.50")
        store.persist_single_mutation(1001, record.balance_after, record)
        store.close()

        reopened = reopen(store)
        loaded = reopened.load_all_accounts()
        assert loaded[0].balance == Decimal("7.50")
        assert loaded[0].history == account.history
        assert reopened.max_account_number() == 1001
        reopened.close()

    def test_flat_file_is_json(self, tmp_path):
        path = tmp_path / "accounts.json"
        store = FlatFileStore(path)
        store.persist_account_open(Account.open(1001, "Alice", "1234", "5"))

        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["accounts"][0]["account_number"] == 1001
        assert payload["accounts"][0]["balance"] == "5.00"

    def test_corrupt_flat_file_raises_startup_error(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StartupLoadError):
            FlatFileStore(path).load_all_accounts()

    def test_corrupt_sqlite_raises_startup_error(self, tmp_path):
        db_path = tmp_path / "ledger.db"
        store = SQLiteStore(db_path)
        store.persist_account_open(Account.open(1001, "Alice", "1234", "5"))
        store.close()

        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE accounts SET balance = 'garbage'")
        conn.commit()
        conn.close()

        with pytest.raises(StartupLoadError):
            SQLiteStore(db_path).load_all_accounts()

    def test_flat_file_write_failure_keeps_mirror(self, tmp_path):
        store = FlatFileStore(tmp_path / "accounts.json")
        account = Account.open(1001, "Alice", "1234", "5")
        store.persist_account_open(account)

        def failing_flush():
            raise PersistenceError("disk full")

        store._flush = failing_flush
        record = account.deposit("1")
        with pytest.raises(PersistenceError):
            store.persist_single_mutation(1001, record.balance_after, record)

        assert len(store.load_transaction_history(1001)) == 2

    def test_closed_sqlite_store_raises(self):
        store = SQLiteStore()
        store.close()
        with pytest.raises(PersistenceError):
            store.persist_account_open(Account.open(1001, "Alice", "1234", "5"))


class TestCreateStore:
    """Test backend selection from config"""

    def test_backends(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            base = Path(temp_dir)
            sqlite_store = create_store(LedgerConfig(store_backend="sqlite",
                                                     database_path=str(base / "x.db")))
            flat_store = create_store(LedgerConfig(store_backend="flatfile",
                                                   flat_file_path=str(base / "x.json")))
            memory_store = create_store(LedgerConfig(store_backend="memory"))

            assert isinstance(sqlite_store, SQLiteStore)
            assert isinstance(flat_store, FlatFileStore)
            assert isinstance(memory_store, InMemoryStore)
            sqlite_store.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown store backend"):
            create_store(LedgerConfig(store_backend="postgres"))
