"""
Ledger dependency for the API routes
"""

import threading
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..accounts import Account
from ..config import get_config
from ..exceptions import AccountNotFoundError
from ..ledger import Ledger
from ..logging_config import setup_logging
from ..storage import create_store


_ledger: Optional[Ledger] = None
_ledger_lock = threading.Lock()


def get_ledger() -> Ledger:
    """Ledger shared by every request, built from config on first use"""
    global _ledger
    with _ledger_lock:
        if _ledger is None:
            config = get_config()
            setup_logging(config.log_level, log_format=config.log_format)
            _ledger = Ledger(create_store(config), config)
        return _ledger


def authenticated_account(
    account_number: int,
    x_account_pin: str = Header(..., description="PIN of the account in the path"),
    ledger: Ledger = Depends(get_ledger)
) -> Account:
    """Resolve the path account and check the PIN header"""
    try:
        ledger.require_account(account_number)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    account = ledger.authenticate(account_number, x_account_pin)
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid PIN")
    return account
