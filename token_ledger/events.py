"""
Ledger Notification Module

Notifications emitted by the ledger for external observers and indexers,
plus a publish/subscribe dispatcher the host uses to fan them out.
The ledger itself never calls observers: it returns the notifications
it emitted and the host publishes them.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .accounts import AccountId


class LedgerEventType(Enum):
    """Kinds of notification the ledger emits"""
    TRANSFER = "token.transfer"
    APPROVAL = "token.approval"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_event_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TransferEvent:
    """
    Value moved between accounts.
    from_account is None only for the initial issuance at construction.
    """
    from_account: Optional[AccountId]
    to_account: Optional[AccountId]
    value: int
    timestamp: datetime = field(default_factory=_utcnow, compare=False)
    event_id: str = field(default_factory=_new_event_id, compare=False)

    event_type = LedgerEventType.TRANSFER

    def topics(self) -> List[Optional[str]]:
        """Indexed fields an observer can filter on"""
        return [
            self.from_account.hex if self.from_account else None,
            self.to_account.hex if self.to_account else None,
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'event_id': self.event_id,
            'from': self.from_account.hex if self.from_account else None,
            'to': self.to_account.hex if self.to_account else None,
            'value': str(self.value),
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferEvent':
        return cls(
            from_account=AccountId.from_hex(data['from']) if data.get('from') else None,
            to_account=AccountId.from_hex(data['to']) if data.get('to') else None,
            value=int(data['value']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            event_id=data['event_id'],
        )


@dataclass(frozen=True)
class ApprovalEvent:
    """Owner set the allowance of spender to value"""
    owner: AccountId
    spender: AccountId
    value: int
    timestamp: datetime = field(default_factory=_utcnow, compare=False)
    event_id: str = field(default_factory=_new_event_id, compare=False)

    event_type = LedgerEventType.APPROVAL

    def topics(self) -> List[Optional[str]]:
        return [self.owner.hex, self.spender.hex]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'event_id': self.event_id,
            'owner': self.owner.hex,
            'spender': self.spender.hex,
            'value': str(self.value),
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApprovalEvent':
        return cls(
            owner=AccountId.from_hex(data['owner']),
            spender=AccountId.from_hex(data['spender']),
            value=int(data['value']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            event_id=data['event_id'],
        )


LedgerEvent = Union[TransferEvent, ApprovalEvent]


def event_from_dict(data: Dict[str, Any]) -> LedgerEvent:
    """Rebuild a notification from its serialized form"""
    event_type = LedgerEventType(data['event_type'])
    if event_type == LedgerEventType.TRANSFER:
        return TransferEvent.from_dict(data)
    return ApprovalEvent.from_dict(data)


def _handler_name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))


class EventDispatcher:
    """Publish/subscribe fan-out of ledger notifications to host observers"""

    def __init__(self):
        self._handlers: Dict[LedgerEventType, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("token_ledger.events")

    def subscribe(self, event_type: LedgerEventType, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to every event type"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: LedgerEventType, handler: Callable) -> None:
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
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

    def publish(self, event: LedgerEvent) -> None:
        """
        Deliver one notification to its subscribers.
        Observer failures are logged; the ledger operation has already completed.
        """
        with self._lock:
            self.logger.debug(f"Publishing {event.event_type.value} event {event.event_id}")

            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)
            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    self.logger.error(
                        f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}"
                    )

    def publish_all(self, events: List[LedgerEvent]) -> None:
        """Deliver notifications in emission order"""
        for event in events:
            self.publish(event)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
            self.logger.info("All event handlers cleared")

    def get_handler_count(self, event_type: Optional[LedgerEventType] = None) -> int:
        """Count handlers for one event type, or all handlers"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)
