"""
Token Service

Host-side wrapper around TokenLedger. Supplies what the ledger expects
from its environment: one operation at a time (a single lock over both
maps), durable state through LedgerRepository, and delivery of emitted
notifications to observers.
"""

from typing import Callable, List, Optional, Tuple
import threading

from .accounts import AccountId
from .events import EventDispatcher, LedgerEvent
from .ledger import TokenLedger, LedgerError, DEFAULT_AMOUNT_BITS
from .repository import LedgerRepository
from .storage import StorageInterface
from .logging_config import get_logger, log_action


class LedgerAlreadyInitializedError(RuntimeError):
    """A ledger already exists in this storage"""


class LedgerNotInitializedError(RuntimeError):
    """No ledger has been created in this storage yet"""


class TokenService:
    """
    Runs ledger operations for authenticated callers

    Each command runs under the service lock. Touched entries are written
    inside one storage transaction; if that write fails the in-memory state
    is reloaded from storage before the error propagates, so memory never
    runs ahead of what was persisted.
    """

    def __init__(
        self,
        storage: StorageInterface,
        dispatcher: Optional[EventDispatcher] = None,
        log_events: bool = True
    ):
        self.storage = storage
        self.repository = LedgerRepository(storage)
        self.dispatcher = dispatcher or EventDispatcher()
        self.log_events = log_events
        self.logger = get_logger("token_ledger.service")
        self._lock = threading.RLock()
        self._ledger: Optional[TokenLedger] = None

        if self.repository.is_initialized():
            self._ledger = self.repository.load()
            self.logger.info(f"Loaded token ledger with total supply {self._ledger.total_supply()}")

    @property
    def is_initialized(self) -> bool:
        return self._ledger is not None

    def create(
        self,
        initial_supply: int,
        creator: AccountId,
        amount_bits: int = DEFAULT_AMOUNT_BITS
    ) -> List[LedgerEvent]:
        """
        Create the ledger, assigning the whole supply to creator

        Raises:
            LedgerAlreadyInitializedError: If storage already holds a ledger
            AmountOutOfRangeError: If initial_supply does not fit amount_bits
        """
        with self._lock:
            if self._ledger is not None or self.repository.is_initialized():
                raise LedgerAlreadyInitializedError("Token ledger already created")

            ledger, events = TokenLedger.construct(initial_supply, creator, amount_bits=amount_bits)
            self.repository.save_state(ledger)
            self._ledger = ledger

            log_action(
                self.logger, "info", f"Token ledger created with supply {initial_supply}",
                caller=creator.hex, action="construct", resource="token",
                extra={"initial_supply": str(initial_supply), "amount_bits": amount_bits}
            )
            self._publish(events)
            return events

    # Queries

    def total_supply(self) -> int:
        with self._lock:
            return self._require_ledger().total_supply()

    def balance_of(self, account: AccountId) -> int:
        with self._lock:
            return self._require_ledger().balance_of(account)

    def allowance_of(self, owner: AccountId, spender: AccountId) -> int:
        with self._lock:
            return self._require_ledger().allowance_of(owner, spender)

    # Commands

    def transfer(self, caller: AccountId, to: AccountId, value: int) -> List[LedgerEvent]:
        return self._execute(
            "transfer", caller,
            lambda ledger: ledger.transfer(caller, to, value),
            accounts=[caller, to],
            pairs=[],
            details={"to": to.hex, "value": str(value)}
        )

    def approve(self, caller: AccountId, spender: AccountId, value: int) -> List[LedgerEvent]:
        return self._execute(
            "approve", caller,
            lambda ledger: ledger.approve(caller, spender, value),
            accounts=[],
            pairs=[(caller, spender)],
            details={"spender": spender.hex, "value": str(value)}
        )

    def transfer_from(
        self,
        caller: AccountId,
        from_account: AccountId,
        to: AccountId,
        value: int
    ) -> List[LedgerEvent]:
        return self._execute(
            "transfer_from", caller,
            lambda ledger: ledger.transfer_from(caller, from_account, to, value),
            accounts=[from_account, to],
            pairs=[(from_account, caller)],
            details={"from": from_account.hex, "to": to.hex, "value": str(value)}
        )

    def _execute(
        self,
        action: str,
        caller: AccountId,
        command: Callable[[TokenLedger], List[LedgerEvent]],
        accounts: List[AccountId],
        pairs: List[Tuple[AccountId, AccountId]],
        details: dict
    ) -> List[LedgerEvent]:
        with self._lock:
            ledger = self._require_ledger()

            try:
                events = command(ledger)
            except LedgerError as e:
                log_action(
                    self.logger, "warning", f"Rejected {action}: {e}",
                    caller=caller.hex, action=action, resource="token",
                    error_code=e.code, extra=details
                )
                raise

            try:
                with self.storage.atomic():
                    self.repository.save_balances(ledger, accounts)
                    self.repository.save_allowances(ledger, pairs)
            except Exception as e:
                self.logger.exception(f"Failed to persist {action}; reloading ledger state from storage")
                try:
                    self._ledger = self.repository.load()
                except Exception as reload_error:
                    # In-memory state may be ahead of storage; refuse to serve it
                    self._ledger = None
                    self.logger.critical(f"Could not reload ledger after failed {action}: {reload_error}")
                    raise e from reload_error
                raise

            log_action(
                self.logger, "info", f"Completed {action}",
                caller=caller.hex, action=action, resource="token", extra=details
            )
            self._publish(events)
            return events

    def _publish(self, events: List[LedgerEvent]) -> None:
        if self.log_events:
            for event in events:
                self.logger.info(f"Emitted {event.event_type.value}", extra={"extra": event.to_dict()})
        self.dispatcher.publish_all(events)

    def _require_ledger(self) -> TokenLedger:
        if self._ledger is None:
            raise LedgerNotInitializedError("Token ledger has not been created")
        return self._ledger
