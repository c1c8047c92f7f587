"""Monetary amounts in millisatoshis and transaction output references."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

MSAT_PER_SAT = 1000
TXID_LENGTH = 32


@dataclass(frozen=True, order=True)
class Amount:
    """A non-negative amount of money counted in millisatoshis."""

    milli_sat: int

    ZERO: ClassVar["Amount"]

    def __post_init__(self) -> None:
        if isinstance(self.milli_sat, bool) or not isinstance(self.milli_sat, int):
            raise TypeError(f"milli_sat must be an int, got {type(self.milli_sat).__name__}")
        if self.milli_sat < 0:
            raise ValueError(f"amount may not be negative: {self.milli_sat} msat")

    @classmethod
    def from_sat(cls, sats: int) -> "Amount":
        """Build an amount from whole satoshis."""
        return cls(sats * MSAT_PER_SAT)

    @classmethod
    def from_msat(cls, msats: int) -> "Amount":
        """Build an amount from millisatoshis."""
        return cls(msats)

    def __add__(self, other: object) -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.milli_sat + other.milli_sat)

    def __sub__(self, other: object) -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.milli_sat - other.milli_sat)

    def __mul__(self, factor: object) -> "Amount":
        if isinstance(factor, bool) or not isinstance(factor, int):
            return NotImplemented
        return Amount(self.milli_sat * factor)

    __rmul__ = __mul__

    def __floordiv__(self, other: object) -> int:
        if not isinstance(other, Amount):
            return NotImplemented
        return self.milli_sat // other.milli_sat

    def __mod__(self, other: object) -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.milli_sat % other.milli_sat)

    def __str__(self) -> str:
        return f"{self.milli_sat} msat"


Amount.ZERO = Amount(0)


@dataclass(frozen=True, order=True)
class OutPoint:
    """Identifies one output of a transaction by its id and output index."""

    txid: bytes
    out_idx: int

    def __post_init__(self) -> None:
        if not isinstance(self.txid, (bytes, bytearray)):
            raise TypeError("txid must be bytes")
        if len(self.txid) != TXID_LENGTH:
            raise ValueError(f"txid must be {TXID_LENGTH} bytes, got {len(self.txid)}")
        object.__setattr__(self, "txid", bytes(self.txid))
        if isinstance(self.out_idx, bool) or not isinstance(self.out_idx, int) or self.out_idx < 0:
            raise ValueError(f"invalid output index: {self.out_idx!r}")

    def __str__(self) -> str:
        return f"{self.txid.hex()}:{self.out_idx}"