"""Configuration, transaction items, outcomes and errors of the Lightning module."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Optional, Protocol, Tuple, Union

from .amount import Amount, OutPoint
from .contracts import (
    AccountContract,
    ContractId,
    ContractOutcome,
    DecryptedPreimage,
    FundedIncomingContract,
    IncomingContract,
    IncomingContractOffer,
    OfferId,
    OutgoingContract,
    OutgoingContractOutcome,
    AccountContractOutcome,
    OutgoingPreimage,
    PreimageDecryptionShare,
)

X_ONLY_KEY_LENGTH = 32
COMPRESSED_KEY_LENGTH = 33

_CONTRACTS = (AccountContract, IncomingContract, OutgoingContract)
_FUNDED_CONTRACTS = (AccountContract, FundedIncomingContract, OutgoingContract)
_OUTCOMES = (AccountContractOutcome, DecryptedPreimage, OutgoingContractOutcome)


class _PublicKeyShare(Protocol):
    def verify_decryption_share(self, share: bytes, ciphertext: bytes) -> bool: ...


class _PublicKeySet(Protocol):
    def public_key(self) -> Hashable: ...

    def public_key_share(self, index: int) -> _PublicKeyShare: ...

    def verify_ciphertext(self, ciphertext: bytes) -> bool: ...

    def decrypt(self, shares: Iterable[Tuple[int, bytes]], ciphertext: bytes) -> bytes: ...


class _SecretKeyShare(Protocol):
    def public_key_share(self) -> _PublicKeyShare: ...

    def decrypt_share(self, ciphertext: bytes) -> Optional[bytes]: ...


def _key(value: object, name: str, length: int) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise TypeError(f"{name} must be bytes, got {type(value).__name__}")
    if len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")
    return bytes(value)


def _require(value: object, kind: Union[type, Tuple[type, ...]], name: str) -> None:
    if not isinstance(value, kind):
        raise TypeError(f"{name} has the wrong type: {type(value).__name__}")


@dataclass(frozen=True)
class FeeConsensus:
    """Fees charged for spending from and funding contracts."""

    contract_input: Amount = Amount.ZERO
    contract_output: Amount = Amount.ZERO

    def __post_init__(self) -> None:
        _require(self.contract_input, Amount, "contract_input")
        _require(self.contract_output, Amount, "contract_output")


@dataclass(frozen=True)
class LightningModuleClientConfig:
    """What clients need to know: the federation's threshold public key and the fees."""

    threshold_pub_key: Any
    fee_consensus: FeeConsensus = field(default_factory=FeeConsensus)


@dataclass(frozen=True)
class LightningModuleConfig:
    """A federation member's Lightning module configuration.

    ``threshold_pub_keys`` is a threshold public key set offering ``public_key()``,
    ``public_key_share(index)``, ``verify_ciphertext(ciphertext)`` and
    ``decrypt(shares, ciphertext)``; ``threshold_sec_key`` is this member's secret key
    share offering ``public_key_share()`` and ``decrypt_share(ciphertext)``.
    """

    threshold_pub_keys: _PublicKeySet
    threshold_sec_key: _SecretKeyShare
    threshold: int
    fee_consensus: FeeConsensus = field(default_factory=FeeConsensus)

    def __post_init__(self) -> None:
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            raise TypeError("threshold must be an int")
        if self.threshold < 1:
            raise ValueError(f"threshold must be at least 1, got {self.threshold}")
        _require(self.fee_consensus, FeeConsensus, "fee_consensus")

    def __repr__(self) -> str:
        return (
            f"LightningModuleConfig(threshold_pub_keys={self.threshold_pub_keys!r}, "
            f"threshold_sec_key=<hidden>, threshold={self.threshold}, "
            f"fee_consensus={self.fee_consensus!r})"
        )

    def to_client_config(self) -> LightningModuleClientConfig:
        return LightningModuleClientConfig(
            threshold_pub_key=self.threshold_pub_keys.public_key(),
            fee_consensus=self.fee_consensus,
        )

    def validate_config(self, identity: int) -> None:
        """Raise ValueError unless the secret key share belongs to this peer's public share."""
        if self.threshold_sec_key.public_key_share() != self.threshold_pub_keys.public_key_share(
            identity
        ):
            raise ValueError("Lightning private key doesn't match pubkey share")


@dataclass(frozen=True)
class ContractInput:
    """Spends an amount from a contract account, optionally with a preimage witness."""

    contract_id: ContractId
    amount: Amount
    witness: Optional[OutgoingPreimage] = None

    def __post_init__(self) -> None:
        _require(self.contract_id, ContractId, "contract_id")
        _require(self.amount, Amount, "amount")
        if self.witness is not None:
            _require(self.witness, OutgoingPreimage, "witness")


@dataclass(frozen=True)
class ContractOutput:
    """Locks an amount in a contract."""

    amount: Amount
    contract: Union[AccountContract, IncomingContract, OutgoingContract]

    def __post_init__(self) -> None:
        _require(self.amount, Amount, "amount")
        _require(self.contract, _CONTRACTS, "contract")


ContractOrOfferOutput = Union[ContractOutput, IncomingContractOffer]


@dataclass(frozen=True)
class ContractAccount:
    """The funds held by a funded contract."""

    amount: Amount
    contract: Union[AccountContract, FundedIncomingContract, OutgoingContract]

    def __post_init__(self) -> None:
        _require(self.amount, Amount, "amount")
        _require(self.contract, _FUNDED_CONTRACTS, "contract")


@dataclass(frozen=True)
class ContractOutputOutcome:
    """Outcome of a contract output."""

    id: ContractId
    outcome: ContractOutcome

    def __post_init__(self) -> None:
        _require(self.id, ContractId, "id")
        _require(self.outcome, _OUTCOMES, "outcome")


@dataclass(frozen=True)
class OfferOutputOutcome:
    """Outcome of an offer output."""

    id: OfferId

    def __post_init__(self) -> None:
        _require(self.id, OfferId, "id")


OutputOutcome = Union[ContractOutputOutcome, OfferOutputOutcome]


@dataclass(frozen=True)
class LightningGateway:
    """A registered gateway: its mint key, Lightning node key and API address."""

    mint_pub_key: bytes
    node_pub_key: bytes
    api: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "mint_pub_key", _key(self.mint_pub_key, "mint_pub_key", X_ONLY_KEY_LENGTH)
        )
        node_key = _key(self.node_pub_key, "node_pub_key", COMPRESSED_KEY_LENGTH)
        if node_key[0] not in (2, 3):
            raise ValueError("node_pub_key must be a compressed public key")
        object.__setattr__(self, "node_pub_key", node_key)
        _require(self.api, str, "api")


@dataclass(frozen=True)
class DecryptionShareCI:
    """Consensus item carrying a peer's decryption share for a contract's preimage."""

    contract_id: ContractId
    share: PreimageDecryptionShare

    def __post_init__(self) -> None:
        _require(self.contract_id, ContractId, "contract_id")
        _require(self.share, PreimageDecryptionShare, "share")


@dataclass(frozen=True)
class InputMeta:
    """Amount an input spends and the keys that must sign the transaction."""

    amount: Amount
    keys: Tuple[bytes, ...]

    def __post_init__(self) -> None:
        _require(self.amount, Amount, "amount")
        object.__setattr__(self, "keys", tuple(self.keys))


class LightningModuleError(Exception):
    """Base class of the errors raised when validating Lightning inputs and outputs."""

    def __init__(self, message: str, *values: object) -> None:
        self._values = values
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LightningModuleError):
            return NotImplemented
        return type(self) is type(other) and self._values == other._values

    def __hash__(self) -> int:
        return hash((type(self), self._values))


class UnknownContract(LightningModuleError):
    def __init__(self, contract_id: ContractId) -> None:
        self.contract_id = contract_id
        super().__init__(f"The the input contract {contract_id} does not exist", contract_id)


class InsufficientFunds(LightningModuleError):
    def __init__(self, available: Amount, requested: Amount) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"The input contract has too little funds, got {available}, input spends {requested}",
            available,
            requested,
        )


class MissingPreimage(LightningModuleError):
    def __init__(self) -> None:
        super().__init__("An outgoing LN contract spend did not provide a preimage")


class InvalidPreimage(LightningModuleError):
    def __init__(self) -> None:
        super().__init__("An outgoing LN contract spend provided a wrong preimage")


class ContractNotReady(LightningModuleError):
    def __init__(self) -> None:
        super().__init__("Incoming contract not ready to be spent yet, decryption in progress")


class ZeroOutput(LightningModuleError):
    def __init__(self) -> None:
        super().__init__("Output contract value may not be zero unless it's an offer output")


class InvalidEncryptedPreimage(LightningModuleError):
    def __init__(self) -> None:
        super().__init__("Offer contains invalid threshold-encrypted data")


class InsufficientIncomingFunding(LightningModuleError):
    def __init__(self, needed: Amount, got: Amount) -> None:
        self.needed = needed
        self.got = got
        super().__init__(
            "The incoming LN account requires more funding according to the offer "
            f"(need {needed} got {got})",
            needed,
            got,
        )


class NoOffer(LightningModuleError):
    def __init__(self, payment_hash: bytes) -> None:
        self.payment_hash = bytes(payment_hash)
        super().__init__(
            f"No offer found for payment hash {self.payment_hash.hex()}", self.payment_hash
        )