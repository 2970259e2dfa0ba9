"""
Reentrancy Guard Module

Single-flag critical section around operations that both mutate ledger
state and call out through the transfer boundary. Entering while busy is
rejected immediately; the flag is released on every exit path.
"""

from contextlib import contextmanager
from functools import wraps
from typing import Callable, Iterator, Optional

from .errors import ReentrancyDetected
from .logging_config import get_logger


class ReentrancyGuard:
    """
    Busy/idle flag checked and set synchronously.

    This is not a thread lock. A second entry, whether from the same call
    stack or anywhere else, is rejected with ReentrancyDetected rather than
    queued.
    """

    def __init__(self):
        self._busy = False
        self._holder: Optional[str] = None
        self.logger = get_logger("vault.guard")

    @property
    def locked(self) -> bool:
        """True while a guarded operation is in flight"""
        return self._busy

    @property
    def holder(self) -> Optional[str]:
        """Name of the operation currently holding the guard"""
        return self._holder

    @contextmanager
    def enter(self, operation: str = "operation") -> Iterator[None]:
        """
        Run the body as a guarded critical section

        Args:
            operation: Name of the operation entering, used in the error

        Raises:
            ReentrancyDetected: If another guarded operation is in flight
        """
        if self._busy:
            self.logger.warning(
                f"Reentrant call to {operation} rejected while {self._holder} is in flight"
            )
            raise ReentrancyDetected(operation)

        self._busy = True
        self._holder = operation
        try:
            yield
        finally:
            self._busy = False
            self._holder = None


def nonreentrant(method: Callable) -> Callable:
    """Run a method under the instance's ``_guard``"""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._guard.enter(method.__name__):
            return method(self, *args, **kwargs)

    return wrapper
