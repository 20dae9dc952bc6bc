"""
Test suite for ledger module

Tests the token ledger engine: construction, transfers and allowances.
CRITICAL: Validates that balances always sum to total supply and that a
rejected command never changes state.
"""

import random

import pytest

from token_ledger.accounts import AccountId
from token_ledger.events import TransferEvent, ApprovalEvent
from token_ledger.ledger import (
    TokenLedger, LedgerError, InsufficientBalanceError,
    InsufficientAllowanceError, AmountOutOfRangeError
)


SUPPLY = 4294967000

ALICE = AccountId.filled(0x01)
BOB = AccountId.filled(0x00)
CAROL = AccountId.filled(0x02)
SPENDER = AccountId.filled(0x03)


@pytest.fixture
def ledger():
    """Ledger with the whole supply held by ALICE"""
    ledger, _ = TokenLedger.construct(SUPPLY, ALICE)
    return ledger


def assert_conserved(ledger: TokenLedger):
    assert sum(ledger.balances().values()) == ledger.total_supply()


class TestConstruction:
    """Test ledger creation"""

    def test_total_supply_is_initial_supply(self, ledger):
        assert ledger.total_supply() == SUPPLY

    def test_creator_holds_whole_supply(self, ledger):
        assert ledger.balance_of(ALICE) == SUPPLY
        assert ledger.balance_of(BOB) == 0
        assert ledger.balance_of(CAROL) == 0

    def test_construction_emits_issuance_transfer(self):
        """Issuance is reported as a transfer with no source"""
        _, events = TokenLedger.construct(SUPPLY, ALICE)

        assert events == [TransferEvent(from_account=None, to_account=ALICE, value=SUPPLY)]
        assert events[0].from_account is None

    def test_zero_supply(self):
        ledger, events = TokenLedger.construct(0, ALICE)

        assert ledger.total_supply() == 0
        assert ledger.balance_of(ALICE) == 0
        assert events[0].value == 0

    def test_supply_must_fit_width(self):
        with pytest.raises(AmountOutOfRangeError):
            TokenLedger.construct(2 ** 32, ALICE)

        ledger, _ = TokenLedger.construct(2 ** 32, ALICE, amount_bits=64)
        assert ledger.total_supply() == 2 ** 32

    def test_max_supply_for_width(self):
        ledger, _ = TokenLedger.construct(2 ** 32 - 1, ALICE)
        assert ledger.balance_of(ALICE) == 2 ** 32 - 1

    def test_negative_supply_rejected(self):
        with pytest.raises(AmountOutOfRangeError):
            TokenLedger.construct(-1, ALICE)

    def test_non_integer_supply_rejected(self):
        with pytest.raises(AmountOutOfRangeError, match="must be an integer"):
            TokenLedger.construct(10.5, ALICE)
        with pytest.raises(AmountOutOfRangeError):
            TokenLedger.construct(True, ALICE)

    def test_restore_requires_conserved_balances(self):
        """Rebuilding from stored state checks the conservation rule"""
        with pytest.raises(ValueError, match="total supply"):
            TokenLedger(total_supply=100, balances={ALICE: 60, BOB: 30})

        restored = TokenLedger(
            total_supply=100,
            balances={ALICE: 60, BOB: 40},
            allowances={(ALICE, SPENDER): 5}
        )
        assert restored.balance_of(BOB) == 40
        assert restored.allowance_of(ALICE, SPENDER) == 5

    def test_invalid_width_rejected(self):
        with pytest.raises(ValueError, match="amount_bits"):
            TokenLedger(total_supply=0, amount_bits=0)


class TestQueries:
    """Test read-only queries"""

    def test_absent_allowance_is_zero(self, ledger):
        assert ledger.allowance_of(ALICE, SPENDER) == 0
        assert ledger.allowance_of(SPENDER, ALICE) == 0

    def test_queries_do_not_create_entries(self, ledger):
        ledger.balance_of(BOB)
        ledger.allowance_of(ALICE, BOB)

        assert BOB not in ledger.balances()
        assert ledger.allowances() == {}

    def test_snapshots_are_copies(self, ledger):
        balances = ledger.balances()
        balances[BOB] = 1000

        assert ledger.balance_of(BOB) == 0


class TestTransfer:
    """Test direct transfers from the caller's balance"""

    def test_transfer_whole_supply(self, ledger):
        assert ledger.balance_of(BOB) == 0

        ledger.transfer(ALICE, BOB, SUPPLY)

        assert ledger.balance_of(BOB) == SUPPLY
        assert ledger.balance_of(ALICE) == 0
        assert_conserved(ledger)

    def test_transfer_moves_value(self, ledger):
        events = ledger.transfer(ALICE, BOB, 10)

        assert ledger.balance_of(ALICE) == SUPPLY - 10
        assert ledger.balance_of(BOB) == 10
        assert events == [TransferEvent(from_account=ALICE, to_account=BOB, value=10)]

    def test_insufficient_balance_is_no_op(self, ledger):
        ledger.transfer(ALICE, BOB, 10)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.transfer(BOB, CAROL, 11)

        assert exc_info.value.code == "insufficient_balance"
        assert exc_info.value.balance == 10
        assert exc_info.value.requested == 11
        assert ledger.balance_of(BOB) == 10
        assert ledger.balance_of(CAROL) == 0
        assert CAROL not in ledger.balances()

    def test_account_without_balance_cannot_send(self, ledger):
        with pytest.raises(InsufficientBalanceError):
            ledger.transfer(BOB, ALICE, 1)

    def test_zero_transfer_from_empty_account(self, ledger):
        """Zero is never more than the balance, so it succeeds and still notifies"""
        events = ledger.transfer(BOB, CAROL, 0)

        assert events == [TransferEvent(from_account=BOB, to_account=CAROL, value=0)]
        assert ledger.balance_of(BOB) == 0
        assert ledger.balance_of(CAROL) == 0

    def test_self_transfer_keeps_balance(self, ledger):
        events = ledger.transfer(ALICE, ALICE, 500)

        assert ledger.balance_of(ALICE) == SUPPLY
        assert events == [TransferEvent(from_account=ALICE, to_account=ALICE, value=500)]

    def test_self_transfer_requires_balance(self, ledger):
        ledger.transfer(ALICE, BOB, 5)

        with pytest.raises(InsufficientBalanceError):
            ledger.transfer(BOB, BOB, 6)
        assert ledger.balance_of(BOB) == 5

    def test_ledger_errors_are_value_errors(self, ledger):
        with pytest.raises(ValueError):
            ledger.transfer(BOB, ALICE, 1)
        with pytest.raises(LedgerError):
            ledger.transfer(BOB, ALICE, 1)

    def test_out_of_range_value_is_contract_error(self, ledger):
        with pytest.raises(AmountOutOfRangeError):
            ledger.transfer(ALICE, BOB, -1)
        with pytest.raises(AmountOutOfRangeError):
            ledger.transfer(ALICE, BOB, 2 ** 32)

        assert ledger.balance_of(ALICE) == SUPPLY


class TestApprove:
    """Test allowance approval"""

    def test_approve_sets_allowance(self, ledger):
        events = ledger.approve(ALICE, SPENDER, 1000000)

        assert ledger.allowance_of(ALICE, SPENDER) == 1000000
        assert events == [ApprovalEvent(owner=ALICE, spender=SPENDER, value=1000000)]

    def test_approve_overwrites(self, ledger):
        ledger.approve(ALICE, SPENDER, 100)
        ledger.approve(ALICE, SPENDER, 30)

        assert ledger.allowance_of(ALICE, SPENDER) == 30

    def test_approve_discards_unspent_remainder(self, ledger):
        ledger.approve(ALICE, SPENDER, 100)
        ledger.transfer_from(SPENDER, ALICE, BOB, 40)
        ledger.approve(ALICE, SPENDER, 10)

        assert ledger.allowance_of(ALICE, SPENDER) == 10

    def test_approve_without_balance(self, ledger):
        """Approval does not look at the owner's balance"""
        ledger.approve(BOB, SPENDER, 500)
        assert ledger.allowance_of(BOB, SPENDER) == 500

    def test_allowance_is_directional(self, ledger):
        ledger.approve(ALICE, SPENDER, 50)

        assert ledger.allowance_of(SPENDER, ALICE) == 0

    def test_approve_self(self, ledger):
        """Original token test: creator approves itself"""
        ledger.approve(ALICE, ALICE, 1000000)
        assert ledger.allowance_of(ALICE, ALICE) == 1000000

    def test_approve_does_not_touch_balances(self, ledger):
        ledger.approve(ALICE, SPENDER, SUPPLY)
        assert ledger.balances() == {ALICE: SUPPLY}


class TestTransferFrom:
    """Test delegated transfers"""

    def test_documented_scenario(self, ledger):
        ledger.approve(ALICE, SPENDER, 1000000)

        events = ledger.transfer_from(SPENDER, ALICE, BOB, 69)

        assert events == [TransferEvent(from_account=ALICE, to_account=BOB, value=69)]
        assert ledger.balance_of(BOB) == 69
        assert ledger.balance_of(ALICE) == 4294966931
        assert ledger.allowance_of(ALICE, SPENDER) == 999931
        assert_conserved(ledger)

    def test_spend_exact_allowance(self, ledger):
        ledger.approve(ALICE, SPENDER, 50)
        ledger.transfer_from(SPENDER, ALICE, CAROL, 50)

        assert ledger.allowance_of(ALICE, SPENDER) == 0
        with pytest.raises(InsufficientAllowanceError):
            ledger.transfer_from(SPENDER, ALICE, CAROL, 1)

    def test_insufficient_allowance_is_no_op(self, ledger):
        ledger.approve(ALICE, SPENDER, 10)

        with pytest.raises(InsufficientAllowanceError) as exc_info:
            ledger.transfer_from(SPENDER, ALICE, BOB, 11)

        assert exc_info.value.code == "insufficient_allowance"
        assert exc_info.value.allowance == 10
        assert ledger.allowance_of(ALICE, SPENDER) == 10
        assert ledger.balance_of(ALICE) == SUPPLY
        assert ledger.balance_of(BOB) == 0

    def test_allowance_checked_before_balance(self, ledger):
        """An owner with no funds still reports the allowance shortfall first"""
        ledger.approve(BOB, SPENDER, 5)

        with pytest.raises(InsufficientAllowanceError):
            ledger.transfer_from(SPENDER, BOB, CAROL, 6)

    def test_failed_balance_keeps_allowance(self, ledger):
        ledger.transfer(ALICE, BOB, 20)
        ledger.approve(BOB, SPENDER, 100)

        with pytest.raises(InsufficientBalanceError):
            ledger.transfer_from(SPENDER, BOB, CAROL, 21)

        assert ledger.allowance_of(BOB, SPENDER) == 100
        assert ledger.balance_of(BOB) == 20
        assert ledger.balance_of(CAROL) == 0

    def test_no_allowance(self, ledger):
        with pytest.raises(InsufficientAllowanceError):
            ledger.transfer_from(SPENDER, ALICE, SPENDER, 1)

    def test_owner_needs_allowance_for_own_transfer_from(self, ledger):
        """transfer_from by the owner is still delegated spending"""
        with pytest.raises(InsufficientAllowanceError):
            ledger.transfer_from(ALICE, ALICE, BOB, 1)

        ledger.approve(ALICE, ALICE, 1000000)
        ledger.transfer_from(ALICE, ALICE, BOB, 69)
        assert ledger.balance_of(BOB) == 69

    def test_spender_can_pay_itself(self, ledger):
        ledger.approve(ALICE, SPENDER, 10)
        ledger.transfer_from(SPENDER, ALICE, SPENDER, 10)

        assert ledger.balance_of(SPENDER) == 10

    def test_allowances_are_per_spender(self, ledger):
        ledger.approve(ALICE, SPENDER, 10)
        ledger.approve(ALICE, CAROL, 20)

        ledger.transfer_from(CAROL, ALICE, BOB, 15)

        assert ledger.allowance_of(ALICE, SPENDER) == 10
        assert ledger.allowance_of(ALICE, CAROL) == 5


class TestArithmetic:
    """Test fixed-width arithmetic guards"""

    def test_overflow_is_contract_error(self):
        """Only reachable with a ledger rebuilt from inconsistent state"""
        ledger = TokenLedger(total_supply=255, balances={ALICE: 200, BOB: 55}, amount_bits=8)
        # Force an inconsistent state the public operations cannot produce
        ledger._balances[BOB] = 250

        with pytest.raises(OverflowError):
            ledger.transfer(ALICE, BOB, 10)

        assert ledger.balance_of(ALICE) == 200
        assert ledger.balance_of(BOB) == 250

    def test_configurable_width(self):
        big = 2 ** 100
        ledger, _ = TokenLedger.construct(big, ALICE, amount_bits=128)
        ledger.transfer(ALICE, BOB, big - 1)

        assert ledger.balance_of(ALICE) == 1
        assert ledger.max_amount == 2 ** 128 - 1


class TestConservation:
    """Randomised operation sequences never break the ledger invariants"""

    def test_random_operations_conserve_supply(self):
        rng = random.Random(1234)
        accounts = [AccountId.filled(i) for i in range(6)]
        ledger, _ = TokenLedger.construct(10000, accounts[0])

        for _ in range(2000):
            op = rng.choice(["transfer", "approve", "transfer_from"])
            a, b, c = (rng.choice(accounts) for _ in range(3))
            value = rng.randint(0, 3000)

            before_balances = ledger.balances()
            before_allowances = ledger.allowances()
            try:
                if op == "transfer":
                    ledger.transfer(a, b, value)
                elif op == "approve":
                    ledger.approve(a, b, value)
                else:
                    ledger.transfer_from(a, b, c, value)
            except LedgerError:
                # Rejected commands leave state exactly as it was
                assert ledger.balances() == before_balances
                assert ledger.allowances() == before_allowances

            assert_conserved(ledger)
            assert all(balance >= 0 for balance in ledger.balances().values())
            assert ledger.total_supply() == 10000
