"""
Token Ledger Engine

Fixed-supply fungible token ledger: balances, direct transfers and the
approve / transfer-on-behalf allowance mechanism.

Conservation rule: the sum of all balances always equals total supply.
Every command either applies all of its mutations and returns the
notifications it emitted, or raises and leaves state untouched.
"""

from typing import Dict, List, Optional, Tuple

from .accounts import AccountId
from .events import LedgerEvent, TransferEvent, ApprovalEvent


DEFAULT_AMOUNT_BITS = 32


class LedgerError(ValueError):
    """Recoverable rejection of a ledger command; state is unchanged"""
    code = "ledger_error"


class InsufficientBalanceError(LedgerError):
    """Source balance is lower than the requested value"""
    code = "insufficient_balance"

    def __init__(self, account: AccountId, balance: int, requested: int):
        self.account = account
        self.balance = balance
        self.requested = requested
        super().__init__(f"Insufficient balance: available {balance}, requested {requested}")


class InsufficientAllowanceError(LedgerError):
    """Spender's remaining allowance is lower than the requested value"""
    code = "insufficient_allowance"

    def __init__(self, owner: AccountId, spender: AccountId, allowance: int, requested: int):
        self.owner = owner
        self.spender = spender
        self.allowance = allowance
        self.requested = requested
        super().__init__(f"Insufficient allowance: approved {allowance}, requested {requested}")


class AmountOutOfRangeError(ValueError):
    """Amount is not an unsigned integer of the ledger's width (caller contract violation)"""


class TokenLedger:
    """
    Ledger state plus the operations over it.

    Not synchronised: callers must deliver one operation at a time
    (TokenService puts a single lock around it for concurrent hosts).
    """

    def __init__(
        self,
        total_supply: int,
        balances: Optional[Dict[AccountId, int]] = None,
        allowances: Optional[Dict[Tuple[AccountId, AccountId], int]] = None,
        amount_bits: int = DEFAULT_AMOUNT_BITS
    ):
        if amount_bits <= 0:
            raise ValueError("amount_bits must be positive")

        self.amount_bits = amount_bits
        self.max_amount = (1 << amount_bits) - 1
        self._total_supply = self._check_amount(total_supply, "total_supply")
        self._balances: Dict[AccountId, int] = {
            account: self._check_amount(amount, "balance")
            for account, amount in (balances or {}).items()
        }
        self._allowances: Dict[Tuple[AccountId, AccountId], int] = {
            pair: self._check_amount(amount, "allowance")
            for pair, amount in (allowances or {}).items()
        }

        held = sum(self._balances.values())
        if held != self._total_supply:
            raise ValueError(f"Balances sum to {held} but total supply is {self._total_supply}")

    @classmethod
    def construct(
        cls,
        initial_supply: int,
        creator: AccountId,
        amount_bits: int = DEFAULT_AMOUNT_BITS
    ) -> Tuple['TokenLedger', List[LedgerEvent]]:
        """
        Create a ledger whose entire supply belongs to creator

        Args:
            initial_supply: Fixed total supply
            creator: Authenticated identity of the creating caller
            amount_bits: Width of the unsigned amount type

        Returns:
            The new ledger and the issuance Transfer notification

        Raises:
            AmountOutOfRangeError: If initial_supply does not fit the width
        """
        ledger = cls(
            total_supply=initial_supply,
            balances={creator: initial_supply},
            amount_bits=amount_bits
        )
        return ledger, [TransferEvent(from_account=None, to_account=creator, value=initial_supply)]

    # Queries

    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, account: AccountId) -> int:
        return self._balances.get(account, 0)

    def allowance_of(self, owner: AccountId, spender: AccountId) -> int:
        return self._allowances.get((owner, spender), 0)

    def balances(self) -> Dict[AccountId, int]:
        """Copy of every stored balance (zero entries included)"""
        return dict(self._balances)

    def allowances(self) -> Dict[Tuple[AccountId, AccountId], int]:
        """Copy of every stored allowance (zero entries included)"""
        return dict(self._allowances)

    # Commands

    def transfer(self, caller: AccountId, to: AccountId, value: int) -> List[LedgerEvent]:
        """Move value from the caller's own balance to another account"""
        return self._transfer_from_to(caller, to, value)

    def approve(self, caller: AccountId, spender: AccountId, value: int) -> List[LedgerEvent]:
        """
        Set spender's allowance over caller's balance to exactly value.

        This overwrites, it does not add: any unspent remainder of the previous
        allowance is discarded. There is no compare-and-set, so a spender can
        race a re-approval by spending the old allowance first (the known
        approve/transferFrom front-running issue of this token family). That
        behaviour is kept as is; clients that care should approve 0 first.
        """
        value = self._check_amount(value)
        self._allowances[(caller, spender)] = value
        return [ApprovalEvent(owner=caller, spender=spender, value=value)]

    def transfer_from(
        self,
        caller: AccountId,
        from_account: AccountId,
        to: AccountId,
        value: int
    ) -> List[LedgerEvent]:
        """
        Move value out of from_account on its behalf, spending caller's allowance

        The allowance is checked before any balance is touched and is only
        decremented once the balance transfer has succeeded.

        Raises:
            InsufficientAllowanceError: If allowance(from_account, caller) < value
            InsufficientBalanceError: If from_account holds less than value
        """
        value = self._check_amount(value)
        allowed = self.allowance_of(from_account, caller)
        if allowed < value:
            raise InsufficientAllowanceError(from_account, caller, allowed, value)

        events = self._transfer_from_to(from_account, to, value)
        self._allowances[(from_account, caller)] = allowed - value
        return events

    def _transfer_from_to(self, from_account: AccountId, to: AccountId, value: int) -> List[LedgerEvent]:
        value = self._check_amount(value)
        from_balance = self.balance_of(from_account)
        if from_balance < value:
            raise InsufficientBalanceError(from_account, from_balance, value)

        # Read the destination after the debit so a self-transfer nets to zero
        self._balances[from_account] = from_balance - value
        to_balance = self.balance_of(to) + value
        if to_balance > self.max_amount:
            # Unreachable while balances sum to total_supply
            self._balances[from_account] = from_balance
            raise OverflowError(f"Balance of {to!r} would exceed {self.amount_bits}-bit range")
        self._balances[to] = to_balance

        return [TransferEvent(from_account=from_account, to_account=to, value=value)]

    def _check_amount(self, value: int, name: str = "value") -> int:
        # bool is an int subclass but never a valid amount
        if isinstance(value, bool) or not isinstance(value, int):
            raise AmountOutOfRangeError(f"{name} must be an integer, got {type(value).__name__}")
        if value < 0 or value > self.max_amount:
            raise AmountOutOfRangeError(f"{name} {value} outside unsigned {self.amount_bits}-bit range")
        return value
