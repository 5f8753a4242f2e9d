"""
Account Module

A balance-holding entity with a PIN and an append-only history. Every
mutation changes the balance and appends exactly one TransactionRecord under
the account's lock, so readers never observe one without the other.
"""

from decimal import Decimal
import hmac
import threading
from typing import Any, Iterable, List, Optional, Union

from .exceptions import InvalidAmountError
from .transactions import (
    MAX_BALANCE, TransactionKind, TransactionRecord, ZERO,
    next_timestamp, normalize_amount, replay_history, require_positive
)


class Account:
    """
    Bank account with linearizable balance mutations.

    The lock is re-entrant so the Ledger can hold it across a mutation and
    the durable write that follows, while the account's own methods take it
    again.
    """

    def __init__(self, account_number: int, holder_name: str, pin: Union[str, int],
                 history: List[TransactionRecord]):
        if not history or history[0].kind != TransactionKind.OPEN:
            raise ValueError("Account history must start with an OPEN record")

        self._account_number = account_number
        self._holder_name = holder_name
        self._pin = str(pin)
        self._history: List[TransactionRecord] = list(history)
        self._balance: Decimal = self._history[-1].balance_after
        self.lock = threading.RLock()

    @classmethod
    def open(cls, account_number: int, holder_name: str, pin: Union[str, int],
             initial_deposit: Any = ZERO) -> 'Account':
        """
        Create a new account with its OPEN record.

        Raises:
            InvalidAmountError: If initial_deposit is negative
        """
        amount = normalize_amount(initial_deposit)
        if amount < ZERO:
            raise InvalidAmountError(f"Initial deposit cannot be negative, got {amount}")

        record = TransactionRecord(
            kind=TransactionKind.OPEN,
            amount=amount,
            balance_after=amount,
            timestamp=next_timestamp()
        )
        return cls(account_number, holder_name, pin, [record])

    @classmethod
    def restore(cls, account_number: int, holder_name: str, pin: Union[str, int],
                balance: Decimal, history: Iterable[TransactionRecord]) -> 'Account':
        """
        Rebuild an account loaded from a durable store.

        Rows stored without any transaction records get a synthetic OPEN
        record carrying the stored balance.
        """
        history = list(history)
        if not history:
            history = [TransactionRecord(
                kind=TransactionKind.OPEN,
                amount=balance,
                balance_after=balance,
                timestamp=next_timestamp()
            )]
        replay_history(history)
        account = cls(account_number, holder_name, pin, history)
        if account._balance != balance:
            raise ValueError(
                f"Account {account_number}: stored balance {balance} does not match "
                f"history balance {account._balance}"
            )
        return account

    @property
    def account_number(self) -> int:
        return self._account_number

    @property
    def holder_name(self) -> str:
        return self._holder_name

    @property
    def pin(self) -> str:
        return self._pin

    @property
    def balance(self) -> Decimal:
        with self.lock:
            return self._balance

    @property
    def history(self) -> List[TransactionRecord]:
        """Copy of the history; mutating it does not affect the account"""
        with self.lock:
            return list(self._history)

    @property
    def last_record(self) -> TransactionRecord:
        with self.lock:
            return self._history[-1]

    def check_pin(self, attempt: Union[str, int]) -> bool:
        """Constant-time equality test against the stored PIN"""
        return hmac.compare_digest(str(attempt).encode(), self._pin.encode())

    def _append(self, kind: TransactionKind, amount: Decimal) -> TransactionRecord:
        # Caller holds self.lock
        new_balance = self._balance + amount * kind.sign
        record = TransactionRecord(
            kind=kind,
            amount=amount,
            balance_after=new_balance,
            timestamp=next_timestamp(self._history[-1].timestamp)
        )
        self._history.append(record)
        self._balance = new_balance
        return record

    def _debit(self, kind: TransactionKind, amount: Any) -> Optional[TransactionRecord]:
        amount = require_positive(amount)
        with self.lock:
            if amount > self._balance:
                return None
            return self._append(kind, amount)

    def _credit(self, kind: TransactionKind, amount: Any) -> TransactionRecord:
        amount = require_positive(amount)
        with self.lock:
            if self._balance + amount > MAX_BALANCE:
                raise InvalidAmountError(
                    f"Amount {amount} would take account {self._account_number} past {MAX_BALANCE}"
                )
            return self._append(kind, amount)

    def deposit(self, amount: Any) -> TransactionRecord:
        """
        Increase the balance and append a DEPOSIT record.

        Raises:
            InvalidAmountError: If amount <= 0 or the new balance would exceed MAX_BALANCE
        """
        return self._credit(TransactionKind.DEPOSIT, amount)

    def withdraw(self, amount: Any) -> Optional[TransactionRecord]:
        """
        Decrease the balance and append a WITHDRAW record.

        Returns:
            The new record, or None if the withdrawal was declined for
            insufficient funds (no state change)

        Raises:
            InvalidAmountError: If amount <= 0
        """
        return self._debit(TransactionKind.WITHDRAW, amount)

    def transfer_out(self, amount: Any) -> Optional[TransactionRecord]:
        """Debit leg of a transfer; same contract as withdraw()"""
        return self._debit(TransactionKind.TRANSFER_OUT, amount)

    def transfer_in(self, amount: Any) -> TransactionRecord:
        """Credit leg of a transfer; cannot be declined"""
        return self._credit(TransactionKind.TRANSFER_IN, amount)

    def discard_last(self, record: TransactionRecord) -> None:
        """
        Undo the newest mutation after a failed durable write.

        Raises:
            ValueError: If record is not the newest record, or is the OPEN record
        """
        with self.lock:
            if len(self._history) < 2 or self._history[-1] is not record:
                raise ValueError(f"Record is not the newest mutation of account {self._account_number}")
            self._history.pop()
            self._balance = self._history[-1].balance_after

    def summary(self) -> str:
        return f"Account{{{self._account_number}}} {self._holder_name} - Rs.{self.balance:.2f}"

    def __repr__(self) -> str:
        return f"Account(account_number={self._account_number}, holder_name='{self._holder_name}')"
