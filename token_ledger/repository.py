"""
Ledger Persistence

Maps TokenLedger state onto three storage tables:

    token_meta   "token"            -> total supply and amount width
    balances     <account hex>      -> balance
    allowances   <owner>:<spender>  -> remaining allowance

Zero values are written rather than deleted; absence and zero mean the same.
"""

from typing import Dict, Iterable, Tuple

from .accounts import AccountId
from .ledger import TokenLedger
from .storage import StorageInterface


META_TABLE = "token_meta"
BALANCES_TABLE = "balances"
ALLOWANCES_TABLE = "allowances"
META_RECORD_ID = "token"


def allowance_key(owner: AccountId, spender: AccountId) -> str:
    return f"{owner.hex}:{spender.hex}"


class LedgerRepository:
    """Reads and writes ledger state through a StorageInterface"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def is_initialized(self) -> bool:
        return self.storage.exists(META_TABLE, META_RECORD_ID)

    def save_state(self, ledger: TokenLedger) -> None:
        """Write the full state; used once, when the ledger is created"""
        with self.storage.atomic():
            self.storage.save(META_TABLE, META_RECORD_ID, {
                'total_supply': str(ledger.total_supply()),
                'amount_bits': ledger.amount_bits,
            })
            self.save_balances(ledger, ledger.balances().keys())
            self.save_allowances(ledger, ledger.allowances().keys())

    def save_balances(self, ledger: TokenLedger, accounts: Iterable[AccountId]) -> None:
        for account in accounts:
            self.storage.save(BALANCES_TABLE, account.hex, {
                'account': account.hex,
                'balance': str(ledger.balance_of(account)),
            })

    def save_allowances(self, ledger: TokenLedger, pairs: Iterable[Tuple[AccountId, AccountId]]) -> None:
        for owner, spender in pairs:
            self.storage.save(ALLOWANCES_TABLE, allowance_key(owner, spender), {
                'owner': owner.hex,
                'spender': spender.hex,
                'allowance': str(ledger.allowance_of(owner, spender)),
            })

    def load(self) -> TokenLedger:
        """
        Rebuild the ledger from storage

        Raises:
            LookupError: If no ledger has been created in this storage
            ValueError: If stored balances violate conservation
        """
        meta = self.storage.load(META_TABLE, META_RECORD_ID)
        if meta is None:
            raise LookupError("No token ledger found in storage")

        balances: Dict[AccountId, int] = {
            AccountId.from_hex(record['account']): int(record['balance'])
            for record in self.storage.load_all(BALANCES_TABLE)
        }
        allowances: Dict[Tuple[AccountId, AccountId], int] = {
            (AccountId.from_hex(record['owner']), AccountId.from_hex(record['spender'])): int(record['allowance'])
            for record in self.storage.load_all(ALLOWANCES_TABLE)
        }

        return TokenLedger(
            total_supply=int(meta['total_supply']),
            balances=balances,
            allowances=allowances,
            amount_bits=int(meta['amount_bits'])
        )
