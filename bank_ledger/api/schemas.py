"""
Pydantic schemas for API requests and responses
"""

from typing import List
from pydantic import BaseModel, Field

from ..accounts import Account
from ..transactions import TransactionRecord


class CreateAccountRequest(BaseModel):
    holder_name: str = Field(..., min_length=1)
    pin: str = Field(..., description="Credential used to log in")
    initial_deposit: str = Field("0", description="Decimal amount as string")


class LoginRequest(BaseModel):
    pin: str


class AmountRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")


class TransferRequest(BaseModel):
    to_account_number: int
    amount: str = Field(..., description="Decimal amount as string")


class AccountModel(BaseModel):
    account_number: int
    holder_name: str
    balance: str
    summary: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            account_number=account.account_number,
            holder_name=account.holder_name,
            balance=str(account.balance),
            summary=account.summary()
        )


class TransactionRecordModel(BaseModel):
    kind: str
    amount: str
    balance_after: str
    timestamp: str
    display: str

    @classmethod
    def from_record(cls, record: TransactionRecord) -> 'TransactionRecordModel':
        return cls(
            kind=record.kind.value,
            amount=str(record.amount),
            balance_after=str(record.balance_after),
            timestamp=record.timestamp.isoformat(),
            display=record.describe()
        )


class HistoryResponse(BaseModel):
    account_number: int
    transactions: List[TransactionRecordModel]
