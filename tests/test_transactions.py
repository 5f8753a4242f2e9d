"""
Test suite for transaction records

Tests amount normalisation, record immutability and history replay.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta
from dataclasses import FrozenInstanceError

from bank_ledger.exceptions import InvalidAmountError
from bank_ledger.transactions import (
    MAX_AMOUNT, TransactionKind, TransactionRecord, normalize_amount, require_positive,
    next_timestamp, replay_history
)


NOW = datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


def make_record(kind, amount, balance_after, offset=0):
    return TransactionRecord(
        kind=kind,
        amount=Decimal(amount),
        balance_after=Decimal(balance_after),
        timestamp=NOW + timedelta(seconds=offset)
    )


class TestAmounts:
    """Test amount parsing and validation"""

    def test_normalize_rounds_to_cents(self):
        assert normalize_amount("10.005") == Decimal("10.01")
        assert normalize_amount(7) == Decimal("7.00")
        assert normalize_amount(Decimal("3.1")) == Decimal("3.10")

    def test_float_goes_through_str(self):
        assert normalize_amount(0.1) == Decimal("0.10")

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity", None, True])
    def test_invalid_values_rejected(self, value):
        with pytest.raises(InvalidAmountError):
            normalize_amount(value)

    @pytest.mark.parametrize("value", ["1e30", "-1e30", "1000000000000.01", Decimal("9" * 40)])
    def test_out_of_range_values_rejected(self, value):
        with pytest.raises(InvalidAmountError):
            normalize_amount(value)

    def test_maximum_amount_accepted(self):
        assert normalize_amount(MAX_AMOUNT) == MAX_AMOUNT

    @pytest.mark.parametrize("value", [0, "0.00", "-5", "0.001"])
    def test_require_positive_rejects_non_positive(self, value):
        with pytest.raises(InvalidAmountError, match="must be positive"):
            require_positive(value)

    def test_invalid_amount_is_value_error(self):
        with pytest.raises(ValueError):
            require_positive("-1")


class TestTransactionRecord:
    """Test TransactionRecord behaviour"""

    def test_kind_signs(self):
        assert TransactionKind.OPEN.sign == 1
        assert TransactionKind.DEPOSIT.sign == 1
        assert TransactionKind.TRANSFER_IN.sign == 1
        assert TransactionKind.WITHDRAW.sign == -1
        assert TransactionKind.TRANSFER_OUT.sign == -1

    def test_record_is_immutable(self):
        record = make_record(TransactionKind.DEPOSIT, "100.00", "600.00")
        with pytest.raises(FrozenInstanceError):
            record.amount = Decimal("1.00")

    def test_dict_conversion(self):
        record = make_record(TransactionKind.TRANSFER_OUT, "25.50", "74.50")
        data = record.to_dict()

        assert data == {
            "kind": "TRANSFER_OUT",
            "amount": "25.50",
            "balance_after": "74.50",
            "timestamp": NOW.isoformat()
        }
        assert TransactionRecord.from_dict(data) == record

    def test_naive_timestamp_loaded_as_utc(self):
        record = TransactionRecord.from_dict({
            "kind": "DEPOSIT",
            "amount": "1.00",
            "balance_after": "1.00",
            "timestamp": "2024-01-15 10:30:00"
        })
        assert record.timestamp == NOW

    def test_describe(self):
        record = make_record(TransactionKind.DEPOSIT, "100", "600")
        assert record.describe() == "2024-01-15 10:30:00 | DEPOSIT | Rs.100.00 | Balance: Rs.600.00"

    def test_next_timestamp_never_goes_backwards(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert next_timestamp(future) == future
        assert next_timestamp(NOW) > NOW


class TestReplayHistory:
    """Test that histories reproduce balances"""

    def test_replay_valid_history(self):
        history = [
            make_record(TransactionKind.OPEN, "500.00", "500.00", 0),
            make_record(TransactionKind.DEPOSIT, "100.00", "600.00", 1),
            make_record(TransactionKind.WITHDRAW, "50.00", "550.00", 2),
            make_record(TransactionKind.TRANSFER_OUT, "150.00", "400.00", 3),
            make_record(TransactionKind.TRANSFER_IN, "20.00", "420.00", 4),
        ]
        assert replay_history(history) == Decimal("420.00")

    def test_zero_open_is_valid(self):
        assert replay_history([make_record(TransactionKind.OPEN, "0", "0")]) == Decimal("0")

    def test_empty_history_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            replay_history([])

    def test_must_start_with_open(self):
        with pytest.raises(ValueError, match="must start with OPEN"):
            replay_history([make_record(TransactionKind.DEPOSIT, "1", "1")])

    def test_second_open_rejected(self):
        with pytest.raises(ValueError, match="OPEN record at position 1"):
            replay_history([
                make_record(TransactionKind.OPEN, "1", "1"),
                make_record(TransactionKind.OPEN, "1", "2"),
            ])

    def test_inconsistent_balance_after_rejected(self):
        with pytest.raises(ValueError, match="expected 600.00"):
            replay_history([
                make_record(TransactionKind.OPEN, "500.00", "500.00"),
                make_record(TransactionKind.DEPOSIT, "100.00", "650.00"),
            ])
