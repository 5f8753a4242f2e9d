"""
Ledger Exceptions

Error taxonomy for the ledger engine. Insufficient funds is deliberately
absent: a declined withdrawal or transfer is a normal outcome reported as
False, never raised.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors"""
    pass


class InvalidAmountError(LedgerError, ValueError):
    """Raised when an amount is not a positive decimal (or negative for opening deposits)"""
    pass


class AccountNotFoundError(LedgerError):
    """Raised when an operation references an unknown account number"""
    
    def __init__(self, account_number: int):
        super().__init__(f"Account {account_number} not found")
        self.account_number = account_number


class PersistenceError(LedgerError):
    """Raised when the durable store is unreachable or rejects a write"""
    pass


class StartupLoadError(PersistenceError):
    """Raised when the durable store cannot be read at startup"""
    pass


class LockTimeoutError(LedgerError):
    """Raised when an account lock could not be acquired in time"""
    pass
