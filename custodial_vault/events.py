"""
Event System Module

Publish/subscribe dispatcher for vault events. The ledger publishes an
event only after an operation's state has committed, so subscribers never
observe a deposit or withdrawal that was later rolled back.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class VaultEvent(Enum):
    """Events emitted by the vault ledger"""
    DEPOSITED = "vault.deposited"
    WITHDRAWN = "vault.withdrawn"


@dataclass
class EventPayload:
    """Payload for vault events"""
    event_type: VaultEvent
    account: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe form used by the events endpoint"""
        return {
            'event_type': self.event_type.value,
            'account': self.account,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Inverse of to_dict"""
        return cls(
            event_type=VaultEvent(data['event_type']),
            account=data['account'],
            data=data['data'],
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


def deposited_event(account: str, amount: int, new_balance: int) -> EventPayload:
    """Credit committed to ``account``"""
    return EventPayload(
        event_type=VaultEvent.DEPOSITED,
        account=account,
        data={"amount": amount, "new_balance": new_balance}
    )


def withdrawn_event(account: str, amount: int, remaining_balance: int) -> EventPayload:
    """Debit committed and payout delivered to ``account``"""
    return EventPayload(
        event_type=VaultEvent.WITHDRAWN,
        account=account,
        data={"amount": amount, "remaining_balance": remaining_balance}
    )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[VaultEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("vault.events")

    def subscribe(self, event_type: VaultEvent, handler: Callable) -> None:
        """Call ``handler`` for every event of ``event_type``"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Call ``handler`` for every event"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: VaultEvent, handler: Callable) -> None:
        with self._lock:
            if event_type in self._handlers:
                try:
                    self._handlers[event_type].remove(handler)
                    self.logger.debug(f"Unsubscribed handler {_handler_name(handler)} from {event_type.value}")
                except ValueError:
                    self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def unsubscribe_all(self, handler: Callable) -> None:
        with self._lock:
            try:
                self._global_handlers.remove(handler)
                self.logger.debug(f"Unsubscribed global handler {_handler_name(handler)}")
            except ValueError:
                self.logger.warning(f"Global handler {_handler_name(handler)} was not subscribed")

    def publish(self, event: EventPayload) -> None:
        """Deliver ``event`` to its subscribers, then to the catch-all handlers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for account:{event.account}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the operation that already committed
                self.logger.error(f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
            self.logger.debug("Event handlers cleared")

    def get_handler_count(self, event_type: Optional[VaultEvent] = None) -> int:
        """Handlers registered for ``event_type``, or in total when omitted"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            total += len(self._global_handlers)
            return total


class EventLog:
    """Subscriber that keeps every published event in order"""

    def __init__(self, max_events: Optional[int] = None):
        self.max_events = max_events
        self._events: List[EventPayload] = []
        self._lock = RLock()

    def __call__(self, event: EventPayload) -> None:
        with self._lock:
            self._events.append(event)
            if self.max_events and len(self._events) > self.max_events:
                del self._events[:len(self._events) - self.max_events]

    def attach(self, dispatcher: EventDispatcher) -> 'EventLog':
        """Subscribe this log to every event of ``dispatcher``"""
        dispatcher.subscribe_all(self)
        return self

    @property
    def events(self) -> List[EventPayload]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: VaultEvent) -> List[EventPayload]:
        with self._lock:
            return [e for e in self._events if e.event_type == event_type]

    def __len__(self) -> int:
        return len(self._events)
