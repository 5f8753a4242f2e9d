"""
Transaction Record Module

Immutable records of balance-affecting events. An account's history is an
append-only sequence of these records; replaying it in order reproduces the
account balance. All monetary values are Decimal, never float.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from enum import Enum

from .exceptions import InvalidAmountError


CENTS = Decimal('0.01')
ZERO = Decimal('0.00')
# Bounds stay inside the 28-digit default Decimal context
MAX_AMOUNT = Decimal('1000000000000.00')
MAX_BALANCE = Decimal('1000000000000000000000.00')


class TransactionKind(Enum):
    """Kinds of balance-affecting events"""
    OPEN = "OPEN"                  # Opening deposit, always first
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    TRANSFER_OUT = "TRANSFER_OUT"  # Debit leg of a transfer
    TRANSFER_IN = "TRANSFER_IN"    # Credit leg of a transfer

    @property
    def sign(self) -> int:
        """+1 for kinds that increase the balance, -1 for those that decrease it"""
        if self in (TransactionKind.WITHDRAW, TransactionKind.TRANSFER_OUT):
            return -1
        return 1


def normalize_amount(value: Any) -> Decimal:
    """
    Convert a caller-supplied amount to a Decimal rounded to cents.

    Floats go through str() so 0.1 becomes Decimal('0.10') rather than its
    binary expansion.

    Raises:
        InvalidAmountError: If the value is not a finite number, or its
            magnitude exceeds MAX_AMOUNT
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"Invalid amount: {value!r}")
    if not value.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if abs(value) > MAX_AMOUNT:
        raise InvalidAmountError(f"Amount exceeds maximum of {MAX_AMOUNT}: {value}")
    try:
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(f"Invalid amount: {value!r}")


def require_positive(value: Any) -> Decimal:
    """Normalize an amount and reject anything <= 0"""
    amount = normalize_amount(value)
    if amount <= ZERO:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
    return amount


def next_timestamp(previous: Optional[datetime] = None) -> datetime:
    """Current UTC time, clamped so it never precedes the previous record"""
    now = datetime.now(timezone.utc)
    if previous is not None and now < previous:
        return previous
    return now


@dataclass(frozen=True)
class TransactionRecord:
    """
    One immutable entry in an account's history.

    balance_after is the account balance immediately following this event.
    """
    kind: TransactionKind
    amount: Decimal
    balance_after: Decimal
    timestamp: datetime

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign of its effect on the balance"""
        return self.amount * self.kind.sign

    def describe(self) -> str:
        """Human-readable one-line rendering used for history display"""
        ts = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"{ts} | {self.kind.value} | Rs.{self.amount:.2f} | Balance: Rs.{self.balance_after:.2f}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "kind": self.kind.value,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
            "timestamp": self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRecord':
        """Create instance from dictionary"""
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            kind=TransactionKind(data["kind"]),
            amount=Decimal(str(data["amount"])),
            balance_after=Decimal(str(data["balance_after"])),
            timestamp=timestamp
        )


def replay_history(records: Iterable[TransactionRecord]) -> Decimal:
    """
    Fold a history into the balance it implies, validating every step.

    Args:
        records: History in append order, starting with the OPEN record

    Returns:
        The balance after the last record

    Raises:
        ValueError: If the history is empty, does not start with OPEN, or a
            record's balance_after does not follow from its predecessor
    """
    balance: Optional[Decimal] = None

    for index, record in enumerate(records):
        if index == 0:
            if record.kind != TransactionKind.OPEN:
                raise ValueError(f"History must start with OPEN, got {record.kind.value}")
            expected = record.amount
        else:
            if record.kind == TransactionKind.OPEN:
                raise ValueError(f"OPEN record at position {index}")
            expected = balance + record.signed_amount

        if record.balance_after != expected:
            raise ValueError(
                f"Record {index} ({record.kind.value}) has balance_after "
                f"{record.balance_after}, expected {expected}"
            )
        balance = expected

    if balance is None:
        raise ValueError("History is empty")
    return balance
