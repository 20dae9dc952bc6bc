"""
Token Ledger

A fixed-supply fungible token ledger with direct transfers and
delegated (approve / transfer-from) spending, conserving total supply
across every operation.
"""

from .accounts import AccountId
from .events import TransferEvent, ApprovalEvent, LedgerEventType, EventDispatcher
from .ledger import (
    TokenLedger, LedgerError, InsufficientBalanceError,
    InsufficientAllowanceError, AmountOutOfRangeError
)

__version__ = "1.0.0"
