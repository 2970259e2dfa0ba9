"""
Vault Error Taxonomy

Every failure the vault reports derives from VaultError and carries the
offending values, both as attributes and in a ``context`` dict, so the
caller (or the HTTP layer) can report exactly what was rejected.

Three families:
- validation errors: bad caller input, never retried
- integrity errors: an attempted protocol violation or a broken invariant
- external dependency errors: the transfer boundary did not deliver
"""

from typing import Any, Dict, Optional


class VaultError(Exception):
    """Base class for all vault errors"""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by the API error handler"""
        return {
            "error": type(self).__name__,
            "detail": self.message,
            "context": self.context
        }


class VaultValidationError(VaultError):
    """Caller supplied input that the vault refuses"""


class VaultIntegrityError(VaultError):
    """Protocol violation or broken ledger invariant"""


class ExternalDependencyError(VaultError):
    """An external collaborator failed"""


class ZeroAmount(VaultValidationError):
    """Raised when a deposit or withdrawal carries no value"""

    def __init__(self, operation: str = "operation"):
        super().__init__(f"{operation} amount must be greater than zero", operation=operation)
        self.operation = operation


class InvalidAmount(VaultValidationError):
    """Raised when an amount is negative or not an integer"""

    def __init__(self, amount: Any):
        super().__init__(f"Amount must be a non-negative integer, got {amount!r}", amount=repr(amount))
        self.amount = amount


class LimitExceeded(VaultValidationError):
    """Raised when a single withdrawal is above the withdrawal limit"""

    def __init__(self, amount: int, limit: int):
        super().__init__(
            f"Withdrawal of {amount} exceeds the per-withdrawal limit of {limit}",
            amount=amount, limit=limit
        )
        self.amount = amount
        self.limit = limit


class InsufficientBalance(VaultValidationError):
    """Raised when a withdrawal is above the caller's balance"""

    def __init__(self, amount: int, available: int):
        super().__init__(
            f"Withdrawal of {amount} exceeds available balance of {available}",
            amount=amount, available=available
        )
        self.amount = amount
        self.available = available


class CapacityExceeded(VaultValidationError):
    """Raised when a deposit would push the aggregate balance over the bank cap"""

    def __init__(self, would_be_total: int, cap: int):
        super().__init__(
            f"Deposit would bring vault total to {would_be_total}, above capacity {cap}",
            would_be_total=would_be_total, cap=cap
        )
        self.would_be_total = would_be_total
        self.cap = cap


class InvalidConfiguration(VaultValidationError):
    """Raised at construction when a limit is zero, negative or not an integer"""

    def __init__(self, field: str, value: Any):
        super().__init__(f"{field} must be a positive integer, got {value!r}", field=field, value=repr(value))
        self.field = field
        self.value = value


class NonPayableOperation(VaultValidationError):
    """Raised when value is attached to an operation that does not accept it"""

    def __init__(self, operation: str, value: int):
        super().__init__(f"Operation '{operation}' does not accept value (got {value})",
                         operation=operation, value=value)
        self.operation = operation
        self.value = value


class UnknownOperation(VaultValidationError):
    """Raised for any operation name the vault does not recognize"""

    def __init__(self, operation: str):
        super().__init__(f"Unknown operation '{operation}'", operation=operation)
        self.operation = operation


class InvalidArguments(VaultValidationError):
    """Raised when a routed call is missing an argument or carries a malformed one"""

    def __init__(self, operation: str, problem: str):
        super().__init__(f"Invalid arguments for '{operation}': {problem}",
                         operation=operation, problem=problem)
        self.operation = operation
        self.problem = problem


class ReentrancyDetected(VaultIntegrityError):
    """Raised when a guarded operation is entered while another one is in flight"""

    def __init__(self, operation: str = "operation"):
        super().__init__(f"Reentrant call to '{operation}' rejected", operation=operation)
        self.operation = operation


class LedgerIntegrityError(VaultIntegrityError):
    """Raised when the stored ledger state violates a ledger invariant"""


class TransferFailed(ExternalDependencyError):
    """Raised when the transfer boundary did not deliver a withdrawal"""

    def __init__(self, destination: str, amount: int, reason: Optional[str] = None):
        message = f"Transfer of {amount} to {destination} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, destination=destination, amount=amount, reason=reason)
        self.destination = destination
        self.amount = amount
        self.reason = reason
