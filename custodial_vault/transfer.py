"""
Transfer Boundary Module

The primitive that moves value out of the vault to a caller. The ledger
treats ``send`` as able to re-enter it and as able to fail either by
returning False or by raising.

Implementations:
- RecordingTransfer: in-process outbox for tests and single-process setups
- HttpPayoutTransfer: REST client for an external payout service
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

import httpx

logger = logging.getLogger("vault.transfer")

# Raised before any byte of the request reached the payout service
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout, httpx.UnsupportedProtocol)


class TransferBoundary(ABC):
    """Moves value to a destination and reports whether it landed"""

    @abstractmethod
    def send(self, destination: str, amount: int) -> bool:
        """
        Deliver ``amount`` to ``destination``

        Returns:
            True if the value was delivered, False otherwise
        """
        pass


@dataclass
class Payout:
    """A delivered transfer"""
    destination: str
    amount: int
    payout_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RecordingTransfer(TransferBoundary):
    """
    In-process transfer boundary that records every delivered payout

    ``on_send`` runs before delivery is reported, with the destination and
    amount, which is how tests model a recipient that calls back into the
    vault. If the hook raises, the exception escapes ``send``.
    """

    def __init__(self, on_send: Optional[Callable[[str, int], None]] = None):
        self.on_send = on_send
        self.accepting = True
        self.payouts: List[Payout] = []
        self.attempts = 0
        self._fail_next = 0

    def fail_next(self, count: int = 1) -> None:
        """Report failure for the next ``count`` sends"""
        self._fail_next += count

    def send(self, destination: str, amount: int) -> bool:
        self.attempts += 1
        if self.on_send is not None:
            self.on_send(destination, amount)

        if self._fail_next > 0:
            self._fail_next -= 1
            logger.info(f"Payout of {amount} to {destination} refused (scripted failure)")
            return False
        if not self.accepting:
            return False

        self.payouts.append(Payout(destination=destination, amount=amount))
        return True

    def total_sent(self, destination: Optional[str] = None) -> int:
        """Sum of delivered payouts, optionally for one destination"""
        return sum(p.amount for p in self.payouts
                   if destination is None or p.destination == destination)


def _accepted(response: httpx.Response) -> bool:
    # Bodies that are empty or not a JSON object carry no verdict
    try:
        body = response.json()
    except ValueError:
        return True
    if not isinstance(body, dict):
        return True
    return body.get("accepted", True) is not False


class HttpPayoutTransfer(TransferBoundary):
    """REST client for an external payout service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        lookup_attempts: int = 3
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self.lookup_attempts = lookup_attempts
        self.unresolved: List[Payout] = []
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, destination: str, amount: int) -> bool:
        """
        POST the payout and report whether it landed

        A refusal before the request left (connection errors, 4xx answers)
        or an explicit ``"accepted": false`` is a failure. When the request
        may have reached the service but no usable answer came back (read
        timeouts, dropped connections, 5xx), the payout is looked up by its
        id instead of being assumed lost. If the lookup is inconclusive too,
        the payout is treated as delivered and kept in ``unresolved`` for
        reconciliation, so the ledger never restores a balance whose value
        may already have left.
        """
        payout_id = str(uuid.uuid4())
        headers = {"Idempotency-Key": payout_id, **self._auth_headers()}

        try:
            start = time.time()
            response = self._client.post(
                f"{self.base_url}/payouts",
                json={
                    "payout_id": payout_id,
                    "destination": destination,
                    # Amounts can exceed what JSON consumers parse as a double
                    "amount": str(amount)
                },
                headers=headers
            )
            latency_ms = (time.time() - start) * 1000
        except NOT_SENT_ERRORS as e:
            logger.error(f"Payout service unreachable for payout {payout_id}: {e}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"No answer for payout {payout_id} ({type(e).__name__}: {e}), looking it up")
            return self._resolve(payout_id, destination, amount)

        if response.is_server_error:
            logger.warning(f"Payout service returned {response.status_code} for payout {payout_id}, looking it up")
            return self._resolve(payout_id, destination, amount)

        if not response.is_success:
            logger.warning(f"Payout service returned {response.status_code} for payout {payout_id}: {response.text}")
            return False

        if not _accepted(response):
            logger.warning(f"Payout {payout_id} rejected by payout service")
            return False

        logger.debug(f"Payout {payout_id} of {amount} to {destination} accepted in {latency_ms:.1f}ms")
        return True

    def lookup(self, payout_id: str) -> Optional[bool]:
        """
        Ask the payout service what became of a payout

        Returns:
            True if it was carried out, False if the service never received
            it or refused it, None if the service gave no usable answer
        """
        try:
            response = self._client.get(f"{self.base_url}/payouts/{payout_id}", headers=self._auth_headers())
        except httpx.HTTPError as e:
            logger.warning(f"Lookup of payout {payout_id} failed: {e}")
            return None

        if response.status_code == 404:
            return False
        if not response.is_success:
            return None
        return _accepted(response)

    def _resolve(self, payout_id: str, destination: str, amount: int) -> bool:
        for _ in range(self.lookup_attempts):
            outcome = self.lookup(payout_id)
            if outcome is not None:
                logger.info(f"Payout {payout_id} resolved by lookup: {'delivered' if outcome else 'not delivered'}")
                return outcome

        self.unresolved.append(Payout(destination=destination, amount=amount, payout_id=payout_id))
        logger.error(
            f"Outcome of payout {payout_id} of {amount} to {destination} unknown; "
            f"keeping the debit pending reconciliation"
        )
        return True

    def _auth_headers(self) -> dict:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def health_check(self) -> bool:
        """Check if the payout service is healthy"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()


def create_transfer(config) -> TransferBoundary:
    """Build the transfer boundary selected by configuration"""
    if config.payout_url:
        return HttpPayoutTransfer(
            base_url=config.payout_url,
            timeout=config.payout_timeout,
            api_key=config.payout_api_key,
            lookup_attempts=config.payout_lookup_attempts
        )
    return RecordingTransfer()
