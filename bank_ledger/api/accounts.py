"""
Account endpoints

Each route maps onto exactly one Ledger operation. Routes are plain
functions so the blocking ledger runs on FastAPI's worker threads.
"""

from typing import List
from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import authenticated_account, get_ledger
from .schemas import (
    AccountModel, AmountRequest, CreateAccountRequest, HistoryResponse,
    LoginRequest, TransactionRecordModel, TransferRequest
)
from ..accounts import Account
from ..exceptions import (
    AccountNotFoundError, InvalidAmountError, LockTimeoutError, PersistenceError
)
from ..ledger import Ledger


router = APIRouter()

UNAVAILABLE = (PersistenceError, LockTimeoutError)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    ledger: Ledger = Depends(get_ledger)
):
    """Open a new account"""
    try:
        account = ledger.create_account(request.holder_name, request.pin, request.initial_deposit)
    except InvalidAmountError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UNAVAILABLE as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "account_number": account.account_number,
        "balance": str(account.balance),
        "message": "Account created successfully"
    }


@router.get("", response_model=List[AccountModel])
def list_accounts(ledger: Ledger = Depends(get_ledger)):
    """List all accounts (read-only, no credentials)"""
    return [AccountModel.from_account(account) for account in ledger.list_accounts()]


@router.post("/{account_number}/login")
def login(
    account_number: int,
    request: LoginRequest,
    ledger: Ledger = Depends(get_ledger)
):
    """Check an account number and PIN pair"""
    account = ledger.authenticate(account_number, request.pin)
    if account is None:
        raise HTTPException(status_code=401, detail="Invalid account number or PIN")
    return {"message": f"Welcome, {account.holder_name}", **AccountModel.from_account(account).dict()}


@router.get("/{account_number}/balance")
def get_balance(account: Account = Depends(authenticated_account)):
    """Current balance"""
    return {"account_number": account.account_number, "balance": str(account.balance)}


@router.post("/{account_number}/deposit")
def deposit(
    request: AmountRequest,
    account: Account = Depends(authenticated_account),
    ledger: Ledger = Depends(get_ledger)
):
    """Deposit into the authenticated account"""
    try:
        ok = ledger.deposit(account.account_number, request.amount)
    except InvalidAmountError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UNAVAILABLE as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not ok:
        raise HTTPException(status_code=503, detail="Deposit could not be saved")
    return {"balance": str(account.balance), "message": "Deposit successful"}


@router.post("/{account_number}/withdraw")
def withdraw(
    request: AmountRequest,
    account: Account = Depends(authenticated_account),
    ledger: Ledger = Depends(get_ledger)
):
    """Withdraw from the authenticated account"""
    try:
        ok = ledger.withdraw(account.account_number, request.amount)
    except InvalidAmountError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UNAVAILABLE as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not ok:
        raise HTTPException(status_code=409, detail="Insufficient funds or withdrawal failed")
    return {"balance": str(account.balance), "message": "Withdrawal successful"}


@router.post("/{account_number}/transfer")
def transfer(
    request: TransferRequest,
    account: Account = Depends(authenticated_account),
    ledger: Ledger = Depends(get_ledger)
):
    """Transfer from the authenticated account to another account"""
    try:
        ledger.require_account(request.to_account_number)
        ok = ledger.transfer(account.account_number, request.to_account_number, request.amount)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Destination: {e}")
    except InvalidAmountError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UNAVAILABLE as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not ok:
        raise HTTPException(status_code=409, detail="Transfer failed (insufficient funds?)")
    return {"balance": str(account.balance), "message": "Transfer successful"}


@router.get("/{account_number}/history", response_model=HistoryResponse)
def get_history(
    account: Account = Depends(authenticated_account),
    ledger: Ledger = Depends(get_ledger)
):
    """Transaction history, oldest first"""
    records = ledger.get_history(account.account_number)
    return HistoryResponse(
        account_number=account.account_number,
        transactions=[TransactionRecordModel.from_record(record) for record in records]
    )
