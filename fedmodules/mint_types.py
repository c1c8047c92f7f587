"""Configuration, coins, signature messages, audit keys and errors of the mint module."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, Iterable, Iterator, Optional, Protocol, Sequence, Tuple

from .amount import Amount, OutPoint
from .tiered import Tiered, TieredMulti, TieredMultiZip

NONCE_KEY_LENGTH = 32
_LENGTH_PREFIX = struct.Struct("<Q")


class BlindSignatureScheme(Protocol):
    """Threshold blind signature operations the mint relies on.

    Keys, messages, shares and signatures are opaque hashable values of the scheme.
    Peer indices passed to ``combine_valid_shares`` are the peers' ids.
    """

    def to_pub_key_share(self, secret_key_share: Any) -> Hashable: ...

    def aggregate(self, public_key_shares: Sequence[Any], threshold: int) -> Hashable: ...

    def sign_blinded_msg(self, blinded_message: Any, secret_key_share: Any) -> Hashable: ...

    def verify_blind_share(
        self, blinded_message: Any, share: Any, public_key_share: Any
    ) -> bool: ...

    def combine_valid_shares(
        self, shares: Iterable[Tuple[int, Any]], threshold: int
    ) -> Hashable: ...

    def message_from_bytes(self, data: bytes) -> Hashable: ...

    def verify(self, message: Any, signature: Any, public_key: Any) -> bool: ...


def _require(value: object, kind: Any, name: str) -> None:
    if not isinstance(value, kind):
        raise TypeError(f"{name} has the wrong type: {type(value).__name__}")


@dataclass(frozen=True)
class FeeConsensus:
    """Absolute fees for issuing and spending a coin."""

    coin_issuance_abs: Amount = Amount.ZERO
    coin_spend_abs: Amount = Amount.ZERO

    def __post_init__(self) -> None:
        _require(self.coin_issuance_abs, Amount, "coin_issuance_abs")
        _require(self.coin_spend_abs, Amount, "coin_spend_abs")


@dataclass(frozen=True)
class MintClientConfig:
    """Aggregate public key per amount tier, and the fees."""

    tbs_pks: Tiered
    fee_consensus: FeeConsensus = field(default_factory=FeeConsensus)

    def __post_init__(self) -> None:
        _require(self.tbs_pks, Tiered, "tbs_pks")
        _require(self.fee_consensus, FeeConsensus, "fee_consensus")


@dataclass(frozen=True)
class MintConfig:
    """A federation member's mint configuration.

    ``tbs_sks`` holds this member's secret key share per tier; ``peer_tbs_pks`` holds
    every peer's public key shares per tier, keyed by peer id.
    """

    tbs_sks: Tiered
    peer_tbs_pks: dict
    fee_consensus: FeeConsensus = field(default_factory=FeeConsensus)
    threshold: int = 1

    def __post_init__(self) -> None:
        _require(self.tbs_sks, Tiered, "tbs_sks")
        if not isinstance(self.peer_tbs_pks, dict):
            raise TypeError("peer_tbs_pks must be a dict of peer id to Tiered")
        for keys in self.peer_tbs_pks.values():
            _require(keys, Tiered, "peer_tbs_pks value")
        object.__setattr__(self, "peer_tbs_pks", dict(sorted(self.peer_tbs_pks.items())))
        _require(self.fee_consensus, FeeConsensus, "fee_consensus")
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            raise TypeError("threshold must be an int")
        if self.threshold < 1:
            raise ValueError(f"threshold must be at least 1, got {self.threshold}")

    def __repr__(self) -> str:
        return (
            f"MintConfig(tbs_sks=<hidden>, peer_tbs_pks={self.peer_tbs_pks!r}, "
            f"fee_consensus={self.fee_consensus!r}, threshold={self.threshold})"
        )

    def to_client_config(self, scheme: BlindSignatureScheme) -> MintClientConfig:
        """Aggregate the peers' public key shares of every tier."""
        if not self.peer_tbs_pks:
            raise ValueError("no peer public keys to aggregate")
        zipped = TieredMultiZip(keys.items() for keys in self.peer_tbs_pks.values())
        tbs_pks = Tiered(
            (amount, scheme.aggregate(list(keys), self.threshold)) for amount, keys in zipped
        )
        return MintClientConfig(tbs_pks=tbs_pks, fee_consensus=self.fee_consensus)

    def validate_config(self, identity: int, scheme: BlindSignatureScheme) -> None:
        """Raise ValueError unless our secret shares match our listed public shares."""
        if identity not in self.peer_tbs_pks:
            raise ValueError(f"peer {identity} has no public key shares")
        derived = self.tbs_sks.map_values(scheme.to_pub_key_share).as_map()
        listed = self.peer_tbs_pks[identity].as_map()
        if derived != listed:
            raise ValueError("Mint private key doesn't match pubkey share")


@dataclass(frozen=True)
class CoinNonce:
    """A unique coin nonce, which is also the x-only public key of the coin's spend key."""

    key: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.key, (bytes, bytearray)):
            raise TypeError("nonce key must be bytes")
        if len(self.key) != NONCE_KEY_LENGTH:
            raise ValueError(f"nonce key must be {NONCE_KEY_LENGTH} bytes, got {len(self.key)}")
        object.__setattr__(self, "key", bytes(self.key))

    def to_bytes(self) -> bytes:
        """Length-prefixed serialization of the key."""
        return _LENGTH_PREFIX.pack(len(self.key)) + self.key

    @classmethod
    def from_bytes(cls, data: bytes) -> "CoinNonce":
        """Parse what to_bytes produced; raise ValueError on malformed input."""
        data = bytes(data)
        if len(data) < _LENGTH_PREFIX.size:
            raise ValueError("coin nonce data too short")
        (length,) = _LENGTH_PREFIX.unpack_from(data)
        body = data[_LENGTH_PREFIX.size:]
        if length != len(body):
            raise ValueError(f"coin nonce length prefix {length} does not match {len(body)} bytes")
        return cls(body)


@dataclass(frozen=True)
class Coin:
    """A coin nonce with the federation's threshold signature over it."""

    nonce: CoinNonce
    signature: Hashable

    def __post_init__(self) -> None:
        _require(self.nonce, CoinNonce, "nonce")

    def verify(self, scheme: BlindSignatureScheme, public_key: Any) -> bool:
        """Check the signature under the mint's aggregate key of the coin's tier."""
        message = scheme.message_from_bytes(self.nonce.key)
        return bool(scheme.verify(message, self.signature, public_key))

    def spend_key(self) -> bytes:
        """The nonce as the public key of the spend key."""
        return self.nonce.key


@dataclass(frozen=True)
class BlindToken:
    """A blinded message to be signed by the mint."""

    blinded_message: Hashable


@dataclass(frozen=True)
class SignRequest:
    """Request to blind sign blinded messages of several tiers."""

    messages: TieredMulti

    def __post_init__(self) -> None:
        _require(self.messages, TieredMulti, "messages")

    def to_blind_tokens(self) -> TieredMulti:
        return TieredMulti.from_items(
            (amount, BlindToken(message)) for amount, message in self.messages.iter_items()
        )


@dataclass(frozen=True)
class PartialSigResponse:
    """One peer's blind signature shares: (blinded message, share) per item."""

    shares: TieredMulti

    def __post_init__(self) -> None:
        _require(self.shares, TieredMulti, "shares")


@dataclass(frozen=True)
class SigResponse:
    """The combined blind signatures of a sign request."""

    signatures: TieredMulti

    def __post_init__(self) -> None:
        _require(self.signatures, TieredMulti, "signatures")


@dataclass(frozen=True)
class PartiallySignedRequest:
    """Consensus item: a peer's signature shares for the output at out_point."""

    out_point: OutPoint
    partial_signature: PartialSigResponse

    def __post_init__(self) -> None:
        _require(self.out_point, OutPoint, "out_point")
        _require(self.partial_signature, PartialSigResponse, "partial_signature")


class _AuditKind(Enum):
    ISSUANCE = "issuance"
    ISSUANCE_TOTAL = "issuance_total"
    REDEMPTION = "redemption"
    REDEMPTION_TOTAL = "redemption_total"


@dataclass(frozen=True)
class MintAuditItemKey:
    """Identifies an issued or redeemed amount, or one of the running totals."""

    kind: _AuditKind
    reference: Optional[Hashable] = None

    def __post_init__(self) -> None:
        _require(self.kind, _AuditKind, "kind")
        needs_reference = self.kind in (_AuditKind.ISSUANCE, _AuditKind.REDEMPTION)
        if needs_reference != (self.reference is not None):
            raise ValueError(f"invalid reference for audit item {self.kind.value}")

    @classmethod
    def issuance(cls, out_point: OutPoint) -> "MintAuditItemKey":
        _require(out_point, OutPoint, "out_point")
        return cls(_AuditKind.ISSUANCE, out_point)

    @classmethod
    def issuance_total(cls) -> "MintAuditItemKey":
        return cls(_AuditKind.ISSUANCE_TOTAL)

    @classmethod
    def redemption(cls, nonce: CoinNonce) -> "MintAuditItemKey":
        _require(nonce, CoinNonce, "nonce")
        return cls(_AuditKind.REDEMPTION, nonce)

    @classmethod
    def redemption_total(cls) -> "MintAuditItemKey":
        return cls(_AuditKind.REDEMPTION_TOTAL)

    @property
    def is_issuance(self) -> bool:
        return self.kind in (_AuditKind.ISSUANCE, _AuditKind.ISSUANCE_TOTAL)

    @property
    def is_redemption(self) -> bool:
        return not self.is_issuance


class PeerErrorType(Enum):
    """Ways a peer's signature share can be faulty."""

    INVALID_SIGNATURE = "invalid_signature"
    DIFFERENT_STRUCTURE_SIG_SHARE = "different_structure_sig_share"
    DIFFERENT_NONCE = "different_nonce"
    INVALID_AMOUNT_TIER = "invalid_amount_tier"


@dataclass
class MintShareErrors:
    """Peers that delivered faulty shares, with what was wrong."""

    errors: list = field(default_factory=list)

    def __iter__(self) -> Iterator[Tuple[int, PeerErrorType]]:
        return iter(self.errors)

    def __contains__(self, item: object) -> bool:
        return item in self.errors

    def __len__(self) -> int:
        return len(self.errors)

    def __bool__(self) -> bool:
        return bool(self.errors)


class _ValueError(Exception):
    def __init__(self, message: str, *values: object) -> None:
        self._values = values
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _ValueError):
            return NotImplemented
        return type(self) is type(other) and self._values == other._values

    def __hash__(self) -> int:
        return hash((type(self), self._values))


class CombineError(_ValueError):
    """Base class of the errors combining signature shares."""


class TooFewShares(CombineError):
    def __init__(self, peers: Iterable[int], threshold: int) -> None:
        self.peers = list(peers)
        self.threshold = threshold
        super().__init__(
            f"Too few shares to begin the combination: got {self.peers!r} need {threshold}",
            tuple(self.peers),
            threshold,
        )


class TooFewValidShares(CombineError):
    def __init__(self, valid: int, total: int, threshold: int) -> None:
        self.valid = valid
        self.total = total
        self.threshold = threshold
        super().__init__(
            f"Too few valid shares, only {valid} of {total} (required minimum {threshold}) "
            "provided shares were valid",
            valid,
            total,
            threshold,
        )


class NoOwnContribution(CombineError):
    def __init__(self) -> None:
        super().__init__(
            "We could not find our own contribution in the provided shares, "
            "so we have no validation reference"
        )


class MultiplePeerContributions(CombineError):
    def __init__(self, peer: int, count: int) -> None:
        self.peer = peer
        self.count = count
        super().__init__(f"Peer {peer} contributed {count} shares, 1 expected", peer, count)


class MintError(_ValueError):
    """Base class of the errors validating mint inputs and outputs."""


class InvalidCoin(MintError):
    def __init__(self) -> None:
        super().__init__("One of the supplied coins had an invalid mint signature")


class TooFewCoins(MintError):
    def __init__(self, reissuing: Amount, got: Amount) -> None:
        self.reissuing = reissuing
        self.got = got
        super().__init__(
            f"Insufficient coin value: reissuing {reissuing} but only got {got} in coins",
            reissuing,
            got,
        )


class SpentCoin(MintError):
    def __init__(self) -> None:
        super().__init__("One of the supplied coins was already spent previously")


class InvalidAmountTier(MintError):
    def __init__(self, amount: Amount) -> None:
        self.amount = amount
        super().__init__(
            f"One of the coins had an invalid amount not issued by the mint: {amount}", amount
        )


class InvalidSignature(MintError):
    def __init__(self) -> None:
        super().__init__("One of the coins had an invalid signature")