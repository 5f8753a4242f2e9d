"""
Ledger Engine

Owns the set of accounts, allocates account numbers and is the only
component allowed to commit changes that touch more than one account or
that must reach the durable store.

Locking rules:
- Account creation and registry reads are serialized by one registry lock.
- Single-account operations hold that account's lock across the in-memory
  mutation and the durable write.
- Transfers take both account locks in ascending account-number order,
  whichever side is source or destination, then debit before credit.
"""

from decimal import Decimal
from contextlib import ExitStack, contextmanager
from typing import Any, Callable, Dict, List, Optional, Union
import threading

from .accounts import Account
from .config import LedgerConfig, get_config
from .exceptions import (
    AccountNotFoundError, InvalidAmountError, LockTimeoutError, PersistenceError
)
from .logging_config import get_logger, log_action
from .storage import DurabilityGuarantee, DurableStore
from .transactions import TransactionRecord, ZERO, require_positive


class Ledger:
    """
    Account ledger backed by a durable store.

    Construct once at process start and share the instance with every
    caller; construction loads existing accounts from the store.
    """

    def __init__(self, store: DurableStore, config: Optional[LedgerConfig] = None):
        self.store = store
        self.config = config or get_config()
        self.logger = get_logger("bank_ledger.ledger")

        self._accounts: Dict[int, Account] = {}
        self._registry_lock = threading.Lock()
        self._next_account_number = self.config.first_account_number

        self._load()

    def _load(self) -> None:
        """Populate the registry from the store and seed the number counter"""
        accounts: Dict[int, Account] = {}
        try:
            for stored in self.store.load_all_accounts():
                accounts[stored.account_number] = Account.restore(
                    stored.account_number, stored.holder_name, stored.pin,
                    stored.balance, stored.history
                )
        except (PersistenceError, ValueError) as e:
            # Start with an empty ledger
            log_action(
                self.logger, "warning",
                f"Could not load existing accounts, starting fresh: {e}",
                action="startup_load_failed"
            )
            accounts = {}

        try:
            store_max = self.store.max_account_number()
        except PersistenceError as e:
            self.logger.warning(f"Could not read max account number: {e}")
            store_max = 0

        highest = max([store_max, *accounts.keys()], default=0)
        with self._registry_lock:
            self._accounts = accounts
            self._next_account_number = max(self.config.first_account_number, highest + 1)

        self.logger.info(
            f"Ledger loaded {len(accounts)} accounts, next account number "
            f"{self._next_account_number}, durability {self.durability.value}"
        )

    @property
    def durability(self) -> DurabilityGuarantee:
        return self.store.durability

    @property
    def next_account_number(self) -> int:
        with self._registry_lock:
            return self._next_account_number

    @contextmanager
    def _locked(self, *accounts: Account):
        """Hold the locks of the given accounts, acquired in ascending number order"""
        unique = {account.account_number: account for account in accounts}
        timeout = self.config.lock_timeout_seconds

        with ExitStack() as stack:
            for number in sorted(unique):
                lock = unique[number].lock
                if not lock.acquire(timeout=-1 if timeout is None else timeout):
                    raise LockTimeoutError(f"Timed out waiting for account {number}")
                stack.callback(lock.release)
            yield

    def _persist(self, action: str, resource: str, write: Callable[[], None],
                 undo: Callable[[], None]) -> bool:
        """
        Run a durable write for an in-memory mutation that already happened.

        Transactional stores roll the mutation back on failure; best-effort
        stores keep it and only warn.

        Returns:
            True if the operation should be reported as committed
        """
        try:
            write()
        except PersistenceError as e:
            if self.durability is DurabilityGuarantee.TRANSACTIONAL:
                undo()
                log_action(self.logger, "error", f"{action} rolled back: {e}",
                           action=action, resource=resource)
                return False
            log_action(self.logger, "warning", f"{action} kept in memory but not saved: {e}",
                       action=action, resource=resource)
        return True

    def _not_found(self, action: str, account_number: int) -> bool:
        log_action(self.logger, "info", f"{action} failed: account {account_number} not found",
                   action=action, resource=f"account:{account_number}")
        return False

    def create_account(self, holder_name: str, pin: Union[str, int],
                       initial_deposit: Any = ZERO) -> Account:
        """
        Open a new account with the next account number.

        Args:
            holder_name: Account holder's name
            pin: Credential checked on login
            initial_deposit: Opening balance, zero or positive

        Returns:
            The registered Account

        Raises:
            InvalidAmountError: If initial_deposit is negative
            PersistenceError: If a transactional store rejected the write; the
                account number is not consumed
        """
        with self._registry_lock:
            number = self._next_account_number
            account = Account.open(number, holder_name, pin, initial_deposit)

            try:
                self.store.persist_account_open(account)
            except PersistenceError as e:
                if self.durability is DurabilityGuarantee.TRANSACTIONAL:
                    log_action(self.logger, "error", f"create_account failed: {e}",
                               action="create_account", resource=f"account:{number}")
                    raise
                log_action(self.logger, "warning",
                           f"create_account kept in memory but not saved: {e}",
                           action="create_account", resource=f"account:{number}")

            self._next_account_number = number + 1
            self._accounts[number] = account

        log_action(self.logger, "info", f"Account {number} opened",
                   action="create_account", resource=f"account:{number}",
                   extra={"initial_deposit": str(account.balance)})
        return account

    def find_account(self, account_number: int) -> Optional[Account]:
        with self._registry_lock:
            return self._accounts.get(account_number)

    def require_account(self, account_number: int) -> Account:
        """
        Look up an account that the caller expects to exist.

        Raises:
            AccountNotFoundError: If no account has this number
        """
        account = self.find_account(account_number)
        if account is None:
            raise AccountNotFoundError(account_number)
        return account

    def authenticate(self, account_number: int, pin: Union[str, int]) -> Optional[Account]:
        """Return the account if the PIN matches, None otherwise"""
        account = self.find_account(account_number)
        if account is None or not account.check_pin(pin):
            log_action(self.logger, "info", f"Login failed for account {account_number}",
                       action="login", resource=f"account:{account_number}")
            return None
        return account

    def get_balance(self, account_number: int) -> Optional[Decimal]:
        account = self.find_account(account_number)
        return account.balance if account else None

    def deposit(self, account_number: int, amount: Any) -> bool:
        """
        Deposit into an account.

        Returns:
            False if the account is unknown or a transactional write failed

        Raises:
            InvalidAmountError: If amount is not positive or is out of range
        """
        amount = require_positive(amount)
        account = self.find_account(account_number)
        if account is None:
            return self._not_found("deposit", account_number)

        resource = f"account:{account_number}"
        with self._locked(account):
            record = account.deposit(amount)
            committed = self._persist(
                "deposit", resource,
                lambda: self.store.persist_single_mutation(account_number, record.balance_after, record),
                lambda: account.discard_last(record)
            )

        if committed:
            log_action(self.logger, "info", f"Deposited {amount} into {account_number}",
                       action="deposit", resource=resource,
                       extra={"amount": str(amount), "balance_after": str(record.balance_after)})
        return committed

    def withdraw(self, account_number: int, amount: Any) -> bool:
        """
        Withdraw from an account.

        Returns:
            False if the account is unknown, funds are insufficient, or a
            transactional write failed

        Raises:
            InvalidAmountError: If amount <= 0
        """
        amount = require_positive(amount)
        account = self.find_account(account_number)
        if account is None:
            return self._not_found("withdraw", account_number)

        resource = f"account:{account_number}"
        with self._locked(account):
            record = account.withdraw(amount)
            if record is None:
                log_action(self.logger, "info", f"Withdrawal of {amount} from {account_number} declined",
                           action="withdraw", resource=resource)
                return False
            committed = self._persist(
                "withdraw", resource,
                lambda: self.store.persist_single_mutation(account_number, record.balance_after, record),
                lambda: account.discard_last(record)
            )

        if committed:
            log_action(self.logger, "info", f"Withdrew {amount} from {account_number}",
                       action="withdraw", resource=resource,
                       extra={"amount": str(amount), "balance_after": str(record.balance_after)})
        return committed

    def transfer(self, from_account_number: int, to_account_number: int, amount: Any) -> bool:
        """
        Move funds between two accounts: both sides change or neither does.

        A transfer from an account to itself is allowed unless
        config.allow_self_transfer is off; it records TRANSFER_OUT then
        TRANSFER_IN and leaves the balance unchanged.

        Returns:
            False if either account is unknown, the source has insufficient
            funds, self-transfer is disabled, or a transactional write failed

        Raises:
            InvalidAmountError: If amount is not positive or is out of range
        """
        amount = require_positive(amount)
        source = self.find_account(from_account_number)
        target = self.find_account(to_account_number)
        if source is None:
            return self._not_found("transfer", from_account_number)
        if target is None:
            return self._not_found("transfer", to_account_number)

        resource = f"account:{from_account_number}->account:{to_account_number}"
        if source is target and not self.config.allow_self_transfer:
            log_action(self.logger, "warning", f"Self-transfer on {from_account_number} rejected",
                       action="transfer", resource=resource)
            return False

        with self._locked(source, target):
            debit = source.transfer_out(amount)
            if debit is None:
                log_action(self.logger, "info",
                           f"Transfer of {amount} from {from_account_number} declined",
                           action="transfer", resource=resource)
                return False
            try:
                credit = target.transfer_in(amount)
            except InvalidAmountError:
                source.discard_last(debit)
                raise

            def undo() -> None:
                target.discard_last(credit)
                source.discard_last(debit)

            committed = self._persist(
                "transfer", resource,
                lambda: self.store.persist_transfer_pair(
                    from_account_number, debit.balance_after, debit,
                    to_account_number, credit.balance_after, credit
                ),
                undo
            )

        if committed:
            log_action(self.logger, "info",
                       f"Transferred {amount} from {from_account_number} to {to_account_number}",
                       action="transfer", resource=resource, extra={"amount": str(amount)})
        return committed

    def list_accounts(self) -> List[Account]:
        """Snapshot of all accounts ordered by account number"""
        with self._registry_lock:
            return [self._accounts[number] for number in sorted(self._accounts)]

    def get_history(self, account_number: int) -> List[TransactionRecord]:
        """
        History of one account as recorded by the durable store.

        Falls back to the in-memory history if the store cannot be read.
        """
        account = self.find_account(account_number)
        if account is None:
            return []
        try:
            return self.store.load_transaction_history(account_number)
        except PersistenceError as e:
            self.logger.warning(f"Could not load history for {account_number} from store: {e}")
            return account.history

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> 'Ledger':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
