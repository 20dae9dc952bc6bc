"""
Account Identifier Module

Opaque, fixed-size account identities. The ledger relies only on equality,
ordering and hashing; the hex form is used at the edges (storage, HTTP, logs).
"""

from dataclasses import dataclass


ACCOUNT_ID_LENGTH = 32  # bytes


@dataclass(frozen=True, order=True)
class AccountId:
    """
    Immutable 32-byte account identity.
    Authentication happens in the host before an AccountId reaches the ledger.
    """
    raw: bytes

    def __post_init__(self):
        if isinstance(self.raw, (bytearray, memoryview)):
            object.__setattr__(self, 'raw', bytes(self.raw))

        if not isinstance(self.raw, bytes):
            raise TypeError(f"AccountId requires bytes, got {type(self.raw).__name__}")

        if len(self.raw) != ACCOUNT_ID_LENGTH:
            raise ValueError(f"AccountId must be exactly {ACCOUNT_ID_LENGTH} bytes, got {len(self.raw)}")

    @classmethod
    def from_hex(cls, value: str) -> 'AccountId':
        """Parse a 64-character hex string (an optional 0x prefix is accepted)"""
        text = value.strip()
        if text.startswith(("0x", "0X")):
            text = text[2:]

        if len(text) != ACCOUNT_ID_LENGTH * 2:
            raise ValueError(f"Account identifier must be {ACCOUNT_ID_LENGTH * 2} hex characters")

        try:
            return cls(bytes.fromhex(text))
        except ValueError:
            raise ValueError(f"Account identifier is not valid hex: {value!r}")

    @classmethod
    def filled(cls, byte: int) -> 'AccountId':
        """Identity made of one repeated byte, e.g. AccountId.filled(0x01)"""
        if not 0 <= byte <= 0xFF:
            raise ValueError("Fill byte must be in range 0-255")
        return cls(bytes([byte]) * ACCOUNT_ID_LENGTH)

    @property
    def hex(self) -> str:
        return self.raw.hex()

    def short(self) -> str:
        """Abbreviated form for log lines"""
        return f"{self.hex[:8]}..{self.hex[-4:]}"

    def __str__(self) -> str:
        return self.hex

    def __repr__(self) -> str:
        return f"AccountId({self.short()})"
