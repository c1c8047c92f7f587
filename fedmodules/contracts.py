"""Lightning contracts: accounts, incoming and outgoing payment contracts and their outcomes."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .amount import Amount, OutPoint

HASH_LENGTH = 32
KEY_LENGTH = 32


def _bytes32(value: object, name: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise TypeError(f"{name} must be bytes, got {type(value).__name__}")
    if len(value) != HASH_LENGTH:
        raise ValueError(f"{name} must be {HASH_LENGTH} bytes, got {len(value)}")
    return bytes(value)


def _compact_size(length: int) -> bytes:
    """Variable-length integer prefix used for byte strings."""
    if length < 0xFD:
        return bytes([length])
    if length <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", length)
    if length <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", length)
    return b"\xff" + struct.pack("<Q", length)


def _encode_bytes(data: bytes) -> bytes:
    return _compact_size(len(data)) + data


@dataclass(frozen=True)
class _Hash32:
    value: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _bytes32(self.value, type(self).__name__))

    def __bytes__(self) -> bytes:
        return self.value

    def __str__(self) -> str:
        return self.value.hex()


@dataclass(frozen=True)
class ContractId(_Hash32):
    """The hash identifying a Lightning contract."""


@dataclass(frozen=True)
class OfferId(_Hash32):
    """The hash identifying an incoming contract offer."""


@dataclass(frozen=True)
class AccountContract:
    """Money held in an account locked by a public key."""

    key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _bytes32(self.key, "key"))

    def encode(self) -> bytes:
        return self.key

    def contract_id(self) -> ContractId:
        return ContractId(hashlib.sha256(self.encode()).digest())


@dataclass(frozen=True)
class OutgoingPreimage:
    """The preimage that unlocks an outgoing contract before its timelock."""

    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _bytes32(self.data, "preimage"))


@dataclass(frozen=True)
class OutgoingContract:
    """Funds a gateway may claim by proving payment, or the user reclaims after the timelock."""

    hash: bytes
    gateway_key: bytes
    timelock: int
    user_key: bytes
    invoice: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", _bytes32(self.hash, "hash"))
        object.__setattr__(self, "gateway_key", _bytes32(self.gateway_key, "gateway_key"))
        object.__setattr__(self, "user_key", _bytes32(self.user_key, "user_key"))
        if (
            isinstance(self.timelock, bool)
            or not isinstance(self.timelock, int)
            or not 0 <= self.timelock <= 0xFFFFFFFF
        ):
            raise ValueError(f"timelock must be a 32-bit unsigned integer, got {self.timelock!r}")
        if not isinstance(self.invoice, str):
            raise TypeError("invoice must be a string")

    def encode(self) -> bytes:
        return b"".join(
            (
                self.hash,
                self.gateway_key,
                struct.pack("<I", self.timelock),
                self.user_key,
                _encode_bytes(self.invoice.encode("utf-8")),
            )
        )

    def contract_id(self) -> ContractId:
        return ContractId(hashlib.sha256(self.encode()).digest())


@dataclass(frozen=True)
class Preimage:
    """Preimage of an incoming contract: a public key chosen by the offer's creator."""

    key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _bytes32(self.key, "preimage key"))


class _DecryptionState(Enum):
    PENDING = "pending"
    SOME = "some"
    INVALID = "invalid"


@dataclass(frozen=True)
class DecryptedPreimage:
    """Outcome of preimage decryption: pending, a valid preimage, or invalid."""

    state: _DecryptionState
    preimage: Optional[Preimage] = None

    def __post_init__(self) -> None:
        if not isinstance(self.state, _DecryptionState):
            raise TypeError("state must be a decryption state")
        if self.state is _DecryptionState.SOME:
            if not isinstance(self.preimage, Preimage):
                raise TypeError("a decrypted preimage needs a Preimage")
        elif self.preimage is not None:
            raise ValueError(f"a {self.state.value} decryption carries no preimage")

    @classmethod
    def pending(cls) -> "DecryptedPreimage":
        return cls(_DecryptionState.PENDING)

    @classmethod
    def invalid(cls) -> "DecryptedPreimage":
        return cls(_DecryptionState.INVALID)

    @classmethod
    def some(cls, preimage: Preimage) -> "DecryptedPreimage":
        return cls(_DecryptionState.SOME, preimage)

    @property
    def is_pending(self) -> bool:
        return self.state is _DecryptionState.PENDING

    @property
    def is_invalid(self) -> bool:
        return self.state is _DecryptionState.INVALID

    @property
    def is_some(self) -> bool:
        return self.state is _DecryptionState.SOME


@dataclass(frozen=True)
class EncryptedPreimage:
    """A threshold-encrypted preimage, held as its serialized ciphertext."""

    ciphertext: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.ciphertext, (bytes, bytearray)):
            raise TypeError("ciphertext must be bytes")
        object.__setattr__(self, "ciphertext", bytes(self.ciphertext))


@dataclass(frozen=True)
class PreimageDecryptionShare:
    """One peer's share for decrypting an encrypted preimage, held serialized."""

    share: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.share, (bytes, bytearray)):
            raise TypeError("share must be bytes")
        object.__setattr__(self, "share", bytes(self.share))


@dataclass(frozen=True)
class IncomingContractOffer:
    """An offer to sell the preimage of a payment hash for an amount."""

    amount: Amount
    hash: bytes
    encrypted_preimage: EncryptedPreimage

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Amount):
            raise TypeError("amount must be an Amount")
        object.__setattr__(self, "hash", _bytes32(self.hash, "hash"))
        if not isinstance(self.encrypted_preimage, EncryptedPreimage):
            raise TypeError("encrypted_preimage must be an EncryptedPreimage")

    def id(self) -> OfferId:
        return OfferId(self.hash)


@dataclass(frozen=True)
class IncomingContract:
    """A contract through which a gateway buys the preimage of a payment hash."""

    hash: bytes
    encrypted_preimage: EncryptedPreimage
    decrypted_preimage: DecryptedPreimage
    gateway_key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", _bytes32(self.hash, "hash"))
        object.__setattr__(self, "gateway_key", _bytes32(self.gateway_key, "gateway_key"))
        if not isinstance(self.encrypted_preimage, EncryptedPreimage):
            raise TypeError("encrypted_preimage must be an EncryptedPreimage")
        if not isinstance(self.decrypted_preimage, DecryptedPreimage):
            raise TypeError("decrypted_preimage must be a DecryptedPreimage")

    def contract_id(self) -> ContractId:
        return ContractId(self.hash)


@dataclass(frozen=True)
class FundedIncomingContract:
    """An incoming contract together with the out point that funded it."""

    contract: IncomingContract
    out_point: OutPoint = field()

    def __post_init__(self) -> None:
        if not isinstance(self.contract, IncomingContract):
            raise TypeError("contract must be an IncomingContract")
        if not isinstance(self.out_point, OutPoint):
            raise TypeError("out_point must be an OutPoint")

    def contract_id(self) -> ContractId:
        return self.contract.contract_id()


@dataclass(frozen=True)
class AccountContractOutcome:
    """Outcome of an account contract; carries nothing."""


@dataclass(frozen=True)
class OutgoingContractOutcome:
    """Outcome of an outgoing contract; carries nothing."""


Contract = Union[AccountContract, IncomingContract, OutgoingContract]
FundedContract = Union[AccountContract, FundedIncomingContract, OutgoingContract]
ContractOutcome = Union[AccountContractOutcome, DecryptedPreimage, OutgoingContractOutcome]

_IDENTIFIABLE = (AccountContract, IncomingContract, OutgoingContract, FundedIncomingContract)


def contract_id(contract: Union[Contract, FundedContract]) -> ContractId:
    """Return the id of a contract, funded or not."""
    if not isinstance(contract, _IDENTIFIABLE):
        raise TypeError(f"not a contract: {type(contract).__name__}")
    return contract.contract_id()


def to_outcome(contract: Contract) -> ContractOutcome:
    """The initial outcome recorded when a contract is accepted."""
    if isinstance(contract, AccountContract):
        return AccountContractOutcome()
    if isinstance(contract, IncomingContract):
        return DecryptedPreimage.pending()
    if isinstance(contract, OutgoingContract):
        return OutgoingContractOutcome()
    raise TypeError(f"not a contract: {type(contract).__name__}")


def to_funded(contract: Contract, out_point: OutPoint) -> FundedContract:
    """Convert a contract into the form stored once it has been funded."""
    if isinstance(contract, IncomingContract):
        return FundedIncomingContract(contract, out_point)
    if isinstance(contract, (AccountContract, OutgoingContract)):
        return contract
    raise TypeError(f"not a contract: {type(contract).__name__}")