"""
Call Gateway Module

Routes calls delivered by the transport to ledger operations. A call
carries the caller identity, an operation name, the value attached to the
call and keyword arguments.

Routing rules:
- no operation name: unsolicited value transfer, credited like a deposit
  and reported as ``receive``; ``receive`` itself is not a routable name
- ``deposit``: payable, the amount is the attached value
- every other known operation is non-payable and rejects attached value
- unknown operation names are rejected without touching state
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict, is_dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from .errors import InvalidArguments, NonPayableOperation, ReentrancyDetected, UnknownOperation
from .ledger import CustodialLedger
from .logging_config import get_logger, log_action


@dataclass
class Call:
    """A single call delivered by the transport"""
    caller: str
    operation: Optional[str] = None
    value: int = 0
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CallResult:
    """Outcome of a routed call"""
    operation: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self.value) if is_dataclass(self.value) else self.value
        return {"operation": self.operation, "result": result}


class VaultGateway:
    """
    Dispatch table in front of a CustodialLedger

    Top-level submissions are serialized with a re-entrant lock so the ledger
    only ever sees one top-level operation at a time, even behind a threaded
    server. Reads go through the same lock, so other threads only ever see
    committed state. A call issued from inside a transfer on the same thread
    passes the lock and is stopped by the ledger's reentrancy guard; one
    arriving on another thread while the guard is held is rejected with
    ReentrancyDetected instead of waiting for the transfer to finish.
    """

    RECEIVE = "receive"
    # Seconds between checks of the guard while waiting for the lock
    ADMISSION_POLL = 0.01

    def __init__(self, ledger: CustodialLedger):
        self.ledger = ledger
        self._lock = threading.RLock()
        self.logger = get_logger("vault.gateway")
        self._routes: Dict[str, Callable[[Call], Any]] = {
            "deposit": self._deposit,
            "withdraw": self._withdraw,
            "get_balance": self._get_balance,
            "get_vault_statistics": self._get_vault_statistics,
            "get_user_statistics": self._get_user_statistics,
            "is_deposit_allowed": self._is_deposit_allowed,
        }
        self._payable = {"deposit", self.RECEIVE}

    @property
    def operations(self):
        """Names of the routable operations"""
        return sorted(self._routes)

    def submit(self, call: Call) -> CallResult:
        """
        Route a call to the ledger

        Raises:
            UnknownOperation: If the operation name is not routable
            NonPayableOperation: If value is attached to a non-payable operation
            InvalidArguments: If a required argument is missing or malformed
            ReentrancyDetected: If another thread calls in while a guarded
                operation is in flight
            VaultError: Whatever the ledger raises for the routed operation
        """
        operation = call.operation or self.RECEIVE

        if call.operation and call.operation not in self._routes:
            self._log_rejected(call, call.operation, "unknown operation")
            raise UnknownOperation(call.operation)

        if call.value and operation not in self._payable:
            self._log_rejected(call, operation, "value attached to non-payable operation")
            raise NonPayableOperation(operation, call.value)

        with self._admitted(call, operation):
            if operation == self.RECEIVE:
                value = self.ledger.receive(call.caller, call.value)
            else:
                value = self._routes[operation](call)

        return CallResult(operation=operation, value=value)

    @contextmanager
    def _admitted(self, call: Call, operation: str) -> Iterator[None]:
        """
        Hold the gateway lock for one call

        The owning thread always re-acquires, so a call from inside a
        transfer reaches the ledger and its guard. Other threads wait while
        the ledger is idle or serving a read, but are turned away as soon
        as a guarded operation is in flight, since that operation may be
        waiting on them.
        """
        acquired = self._lock.acquire(blocking=False)
        while not acquired:
            if self.ledger.guard.locked:
                self._log_rejected(call, operation, "guarded operation in flight on another thread")
                raise ReentrancyDetected(operation)
            acquired = self._lock.acquire(timeout=self.ADMISSION_POLL)
        try:
            yield
        finally:
            self._lock.release()

    def _deposit(self, call: Call):
        self._no_arguments(call, "deposit")
        return self.ledger.deposit(call.caller, call.value)

    def _withdraw(self, call: Call):
        return self.ledger.withdraw(call.caller, self._argument(call, "withdraw", "amount"))

    def _get_balance(self, call: Call):
        return self.ledger.get_balance(self._account(call, "get_balance"))

    def _get_vault_statistics(self, call: Call):
        self._no_arguments(call, "get_vault_statistics")
        return self.ledger.get_vault_statistics()

    def _get_user_statistics(self, call: Call):
        return self.ledger.get_user_statistics(self._account(call, "get_user_statistics"))

    def _is_deposit_allowed(self, call: Call):
        return self.ledger.is_deposit_allowed(self._argument(call, "is_deposit_allowed", "amount"))

    @staticmethod
    def _argument(call: Call, operation: str, name: str) -> Any:
        if name not in call.arguments:
            raise InvalidArguments(operation, f"missing argument '{name}'")
        unexpected = set(call.arguments) - {name}
        if unexpected:
            raise InvalidArguments(operation, f"unexpected arguments {sorted(unexpected)}")
        return call.arguments[name]

    def _account(self, call: Call, operation: str) -> str:
        # Reads default to the caller's own account
        if not call.arguments:
            return call.caller
        account = self._argument(call, operation, "account")
        if not isinstance(account, str) or not account:
            raise InvalidArguments(operation, "account must be a non-empty string")
        return account

    @staticmethod
    def _no_arguments(call: Call, operation: str) -> None:
        if call.arguments:
            raise InvalidArguments(operation, f"takes no arguments, got {sorted(call.arguments)}")

    def _log_rejected(self, call: Call, operation: str, reason: str) -> None:
        log_action(
            self.logger, "warning", f"Call rejected: {reason}",
            account=call.caller, action=operation,
            extra={"value": call.value, "arguments": sorted(call.arguments)}
        )
