"""
Custodial Ledger Engine

Single-asset balance accounting with two immutable limits: the bank cap
(ceiling on the aggregate held value) and the withdrawal limit (ceiling on
any single withdrawal).

Every state-mutating operation runs under the reentrancy guard and inside
one storage transaction. Withdrawals commit their bookkeeping before the
transfer boundary is called, and roll all of it back if the transfer does
not land, so the ledger never shows a debit without a delivered payout or
a payout without a debit.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from .errors import (
    CapacityExceeded, InsufficientBalance, InvalidAmount, InvalidConfiguration,
    LedgerIntegrityError, LimitExceeded, TransferFailed, VaultError, ZeroAmount
)
from .events import EventDispatcher, deposited_event, withdrawn_event
from .guard import ReentrancyGuard, nonreentrant
from .logging_config import get_logger, log_action
from .storage import (
    AGGREGATE, BALANCES, DEPOSIT_COUNTS, DEPOSITS, TOTALS, WITHDRAWAL_COUNTS,
    WITHDRAWALS, InMemoryStore, LedgerStore
)
from .transfer import TransferBoundary


@dataclass(frozen=True)
class DepositReceipt:
    """Result of a committed deposit"""
    account: str
    amount: int
    new_balance: int


@dataclass(frozen=True)
class WithdrawalReceipt:
    """Result of a committed and delivered withdrawal"""
    account: str
    amount: int
    remaining_balance: int


@dataclass(frozen=True)
class VaultStatistics:
    """Vault-wide totals"""
    total_balance: int
    deposit_count: int
    withdrawal_count: int


@dataclass(frozen=True)
class UserStatistics:
    """Per-account totals"""
    balance: int
    deposit_count: int
    withdrawal_count: int


def _is_amount(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_amount(amount: Any) -> None:
    if not _is_amount(amount) or amount < 0:
        raise InvalidAmount(amount)


def _check_limit(field: str, value: Any) -> int:
    if not _is_amount(value) or value <= 0:
        raise InvalidConfiguration(field, value)
    return value


class CustodialLedger:
    """
    Owns per-account balances, the aggregate balance and the operation
    counters. Nothing outside this class writes to its store.
    """

    def __init__(
        self,
        withdrawal_limit: int,
        bank_cap: int,
        transfer: TransferBoundary,
        store: Optional[LedgerStore] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        guard: Optional[ReentrancyGuard] = None
    ):
        # Validate before any state exists
        self._withdrawal_limit = _check_limit("withdrawal_limit", withdrawal_limit)
        self._bank_cap = _check_limit("bank_cap", bank_cap)

        self.transfer = transfer
        self.store = store if store is not None else InMemoryStore()
        self.event_dispatcher = event_dispatcher if event_dispatcher is not None else EventDispatcher()
        self._guard = guard if guard is not None else ReentrancyGuard()
        self.logger = get_logger("vault.ledger")

    @classmethod
    def from_config(
        cls,
        config,
        transfer: TransferBoundary,
        store: Optional[LedgerStore] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ) -> 'CustodialLedger':
        """Build a ledger from a VaultConfig"""
        return cls(
            withdrawal_limit=config.withdrawal_limit,
            bank_cap=config.bank_cap,
            transfer=transfer,
            store=store,
            event_dispatcher=event_dispatcher
        )

    @property
    def withdrawal_limit(self) -> int:
        return self._withdrawal_limit

    @property
    def bank_cap(self) -> int:
        return self._bank_cap

    @property
    def guard(self) -> ReentrancyGuard:
        return self._guard

    @property
    def total_balance(self) -> int:
        """Aggregate value held across all accounts"""
        return self.store.get(TOTALS, AGGREGATE)

    # Mutating operations

    @nonreentrant
    def deposit(self, caller: str, amount: int) -> DepositReceipt:
        """
        Credit the value attached to the call to the caller's balance

        Args:
            caller: Account identity supplied by the transport
            amount: Value attached to the call

        Returns:
            DepositReceipt with the caller's new balance

        Raises:
            InvalidAmount: If amount is not a non-negative integer
            ZeroAmount: If amount is zero
            CapacityExceeded: If the deposit would take the vault over its cap
            ReentrancyDetected: If another guarded operation is in flight
        """
        return self._credit(caller, amount, "deposit")

    @nonreentrant
    def receive(self, caller: str, amount: int) -> DepositReceipt:
        """Unsolicited value transfer; accepted exactly like a deposit"""
        return self._credit(caller, amount, "receive")

    @nonreentrant
    def withdraw(self, caller: str, amount: int) -> WithdrawalReceipt:
        """
        Debit the caller's balance and send the value to the caller

        Bookkeeping is written before the transfer boundary is called. If the
        transfer reports failure or raises, the whole storage transaction is
        rolled back and TransferFailed is raised.

        Args:
            caller: Account identity supplied by the transport
            amount: Value to withdraw

        Returns:
            WithdrawalReceipt with the caller's remaining balance

        Raises:
            InvalidAmount: If amount is not a non-negative integer
            ZeroAmount: If amount is zero
            LimitExceeded: If amount is above the withdrawal limit
            InsufficientBalance: If amount is above the caller's balance
            TransferFailed: If the value could not be delivered
            ReentrancyDetected: If another guarded operation is in flight
        """
        try:
            _check_amount(amount)
            if amount == 0:
                raise ZeroAmount("withdraw")
            if amount > self._withdrawal_limit:
                raise LimitExceeded(amount, self._withdrawal_limit)
            available = self.get_balance(caller)
            if amount > available:
                raise InsufficientBalance(amount, available)
        except VaultError as e:
            self._log_rejection("withdraw", caller, e)
            raise

        remaining = available - amount
        try:
            with self.store.atomic():
                self.store.put(BALANCES, caller, remaining)
                self.store.put(TOTALS, AGGREGATE, self.store.get(TOTALS, AGGREGATE) - amount)
                self.store.put(TOTALS, WITHDRAWALS, self.store.get(TOTALS, WITHDRAWALS) + 1)
                self.store.put(WITHDRAWAL_COUNTS, caller, self.store.get(WITHDRAWAL_COUNTS, caller) + 1)

                self._send(caller, amount)
        except TransferFailed as e:
            log_action(
                self.logger, "error", f"Withdrawal rolled back: {e.message}",
                account=caller, action="withdraw", resource=f"account:{caller}",
                extra={"amount": amount, "balance": available, "reason": e.reason}
            )
            raise

        log_action(
            self.logger, "info", "Withdrawal completed",
            account=caller, action="withdraw", resource=f"account:{caller}",
            extra={"amount": amount, "remaining_balance": remaining,
                   "aggregate": self.total_balance}
        )
        self.event_dispatcher.publish(withdrawn_event(caller, amount, remaining))

        return WithdrawalReceipt(account=caller, amount=amount, remaining_balance=remaining)

    # Pure reads

    def get_balance(self, account: str) -> int:
        """Balance of an account; accounts without history read as zero"""
        return self.store.get(BALANCES, account)

    def get_vault_statistics(self) -> VaultStatistics:
        """Aggregate balance and global operation counters"""
        return VaultStatistics(
            total_balance=self.store.get(TOTALS, AGGREGATE),
            deposit_count=self.store.get(TOTALS, DEPOSITS),
            withdrawal_count=self.store.get(TOTALS, WITHDRAWALS)
        )

    def get_user_statistics(self, account: str) -> UserStatistics:
        """Balance and operation counters of one account"""
        return UserStatistics(
            balance=self.store.get(BALANCES, account),
            deposit_count=self.store.get(DEPOSIT_COUNTS, account),
            withdrawal_count=self.store.get(WITHDRAWAL_COUNTS, account)
        )

    def is_deposit_allowed(self, amount: int) -> bool:
        """
        True if depositing ``amount`` keeps the vault within its cap.
        This is the exact check deposit applies.
        """
        _check_amount(amount)
        return self.total_balance + amount <= self._bank_cap

    def remaining_capacity(self) -> int:
        """Value that can still be deposited before the cap is reached"""
        return self._bank_cap - self.total_balance

    def max_withdrawal(self, account: str) -> int:
        """Largest single withdrawal the account could make right now"""
        return min(self.get_balance(account), self._withdrawal_limit)

    def accounts(self) -> List[str]:
        """Accounts with any history, including those now at zero"""
        return sorted(self.store.keys(BALANCES))

    def verify_integrity(self) -> bool:
        """
        Check the ledger invariants against the stored state

        Raises:
            LedgerIntegrityError: Naming the first invariant found broken
        """
        balances = self.store.items(BALANCES)
        aggregate = self.store.get(TOTALS, AGGREGATE)

        negative = {account: value for account, value in balances.items() if value < 0}
        if negative:
            raise LedgerIntegrityError("Negative account balances", accounts=sorted(negative))

        balance_sum = sum(balances.values())
        if balance_sum != aggregate:
            raise LedgerIntegrityError(
                "Sum of account balances does not match aggregate balance",
                balance_sum=balance_sum, aggregate=aggregate
            )

        if not 0 <= aggregate <= self._bank_cap:
            raise LedgerIntegrityError(
                "Aggregate balance outside [0, bank_cap]",
                aggregate=aggregate, cap=self._bank_cap
            )

        for table, total_key in ((DEPOSIT_COUNTS, DEPOSITS), (WITHDRAWAL_COUNTS, WITHDRAWALS)):
            per_account = sum(self.store.items(table).values())
            global_count = self.store.get(TOTALS, total_key)
            if per_account != global_count:
                raise LedgerIntegrityError(
                    f"Per-account {total_key} counters do not match the global counter",
                    per_account=per_account, global_count=global_count
                )

        return True

    # Internals

    def _credit(self, caller: str, amount: int, operation: str) -> DepositReceipt:
        try:
            _check_amount(amount)
            if amount == 0:
                raise ZeroAmount(operation)
            if not self.is_deposit_allowed(amount):
                raise CapacityExceeded(self.total_balance + amount, self._bank_cap)
        except VaultError as e:
            self._log_rejection(operation, caller, e)
            raise

        with self.store.atomic():
            new_balance = self.store.get(BALANCES, caller) + amount
            self.store.put(BALANCES, caller, new_balance)
            self.store.put(TOTALS, AGGREGATE, self.store.get(TOTALS, AGGREGATE) + amount)
            self.store.put(TOTALS, DEPOSITS, self.store.get(TOTALS, DEPOSITS) + 1)
            self.store.put(DEPOSIT_COUNTS, caller, self.store.get(DEPOSIT_COUNTS, caller) + 1)

        log_action(
            self.logger, "info", "Deposit credited",
            account=caller, action=operation, resource=f"account:{caller}",
            extra={"amount": amount, "new_balance": new_balance,
                   "aggregate": self.total_balance}
        )
        self.event_dispatcher.publish(deposited_event(caller, amount, new_balance))

        return DepositReceipt(account=caller, amount=amount, new_balance=new_balance)

    def _send(self, destination: str, amount: int) -> None:
        """Call the transfer boundary; any failure becomes TransferFailed"""
        try:
            delivered = self.transfer.send(destination, amount)
        except Exception as e:
            raise TransferFailed(destination, amount, reason=f"{type(e).__name__}: {e}") from e

        if not delivered:
            raise TransferFailed(destination, amount, reason="transfer reported failure")

    def _log_rejection(self, operation: str, caller: str, error: VaultError) -> None:
        log_action(
            self.logger, "warning", f"{operation} rejected: {error.message}",
            account=caller, action=operation, resource=f"account:{caller}",
            extra={"error": type(error).__name__, **error.context}
        )
