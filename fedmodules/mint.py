"""Federated mint member: blind signs coin requests, verifies and redeems coins."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Tuple

from .amount import Amount, OutPoint
from .lightning_types import InputMeta
from .mint_types import (
    BlindSignatureScheme,
    BlindToken,
    Coin,
    CombineError,
    InvalidAmountTier,
    InvalidSignature,
    MintAuditItemKey,
    MintConfig,
    MintShareErrors,
    MultiplePeerContributions,
    NoOwnContribution,
    PartialSigResponse,
    PartiallySignedRequest,
    PeerErrorType,
    SigResponse,
    SpentCoin,
    TooFewShares,
    TooFewValidShares,
)
from .store import Batch, DbPrefix, MemoryDatabase
from .tiered import InvalidAmountTierError, TieredMulti, TieredMultiZip

log = logging.getLogger(__name__)

# Marker stored for every spent coin nonce.
_SPENT = ()


class _Pending:
    """Output status of an issuance that is accepted but not yet fully signed."""

    _instance: Optional["_Pending"] = None

    def __new__(cls) -> "_Pending":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PENDING"


PENDING = _Pending()


def _nonce_key(nonce) -> tuple:
    return (DbPrefix.COIN_NONCE, nonce)


def _proposed_key(out_point: OutPoint) -> tuple:
    return (DbPrefix.PROPOSED_PARTIAL_SIG, out_point)


def _received_key(out_point: OutPoint, peer: int) -> tuple:
    return (DbPrefix.RECEIVED_PARTIAL_SIG, out_point, peer)


def _outcome_key(out_point: OutPoint) -> tuple:
    return (DbPrefix.OUTPUT_OUTCOME, out_point)


def _audit_key(item: MintAuditItemKey) -> tuple:
    return (DbPrefix.MINT_AUDIT_ITEM, item)


@dataclass
class VerificationCache:
    """Coins whose signatures were found valid, with the tier they are valid for."""

    valid_coins: dict = field(default_factory=dict)


class Mint:
    """One federation member's mint.

    Writes go into the batch passed to each step; reads come from the database.
    """

    def __init__(self, cfg: MintConfig, db: MemoryDatabase, scheme: BlindSignatureScheme) -> None:
        if len(cfg.tbs_sks) == 0:
            raise ValueError("the mint needs at least one amount tier")
        if not all(pks.structural_eq(cfg.tbs_sks) for pks in cfg.peer_tbs_pks.values()):
            raise ValueError("amount tiers of secret and public keys are inconsistent")

        own_public = cfg.tbs_sks.map_values(scheme.to_pub_key_share)
        our_id = next((peer for peer, pks in cfg.peer_tbs_pks.items() if pks == own_public), None)
        if our_id is None:
            raise ValueError("Own key not found among pub keys.")

        zipped = TieredMultiZip(pks.items() for pks in cfg.peer_tbs_pks.values())
        self._pub_key = {
            amount: scheme.aggregate(list(keys), cfg.threshold) for amount, keys in zipped
        }
        self.cfg = cfg
        self.db = db
        self.scheme = scheme
        self.our_id = our_id
        self._sec_key = cfg.tbs_sks
        self._pub_key_shares = cfg.peer_tbs_pks

    def pub_key(self) -> dict:
        """Aggregate public key per amount tier."""
        return dict(self._pub_key)

    # Consensus

    def consensus_proposal(self) -> list[PartiallySignedRequest]:
        """Our signature shares that still have to be broadcast."""
        return [
            PartiallySignedRequest(out_point=key[1], partial_signature=psig)
            for key, psig in self.db.find_by_prefix(DbPrefix.PROPOSED_PARTIAL_SIG)
        ]

    def begin_consensus_epoch(
        self, batch: Batch, consensus_items: Iterable[Tuple[int, PartiallySignedRequest]]
    ) -> None:
        """Record the signature shares peers agreed on in this epoch."""
        for peer, item in consensus_items:
            self.process_partial_signature(
                batch, peer, item.out_point, item.partial_signature
            )

    def end_consensus_epoch(self, consensus_peers: Iterable[int], batch: Batch) -> list[int]:
        """Combine signature shares where possible, roll up the audit; return peers to drop."""
        consensus_peers = set(consensus_peers)
        grouped: dict[OutPoint, list[Tuple[int, PartialSigResponse]]] = {}
        for key, psig in self.db.find_by_prefix(DbPrefix.RECEIVED_PARTIAL_SIG):
            _, request_id, peer = key
            grouped.setdefault(request_id, []).append((peer, psig))

        issuance_batches: list[Batch] = []
        dropped: list[int] = []
        for issuance_id, shares in grouped.items():
            sub = Batch()
            our_contribution = self.db.get(_proposed_key(issuance_id))
            try:
                signature, errors = self.combine(our_contribution, shares)
            except CombineError as error:
                for peer, kind in error.share_errors:
                    log.error("Dropping %s for %s", peer, kind)
                    dropped.append(peer)
                if isinstance(error, TooFewShares):
                    for peer in sorted(consensus_peers - set(error.peers)):
                        log.error("Dropping %s for not contributing shares", peer)
                        dropped.append(peer)
                else:
                    log.warning("Could not combine shares: %s", error)
            else:
                for peer, kind in errors:
                    log.error("Dropping %s for %s", peer, kind)
                    dropped.append(peer)
                log.debug("Successfully combined signature shares for %s", issuance_id)
                for peer, _ in shares:
                    sub.delete(_received_key(issuance_id, peer))
                sub.delete(_proposed_key(issuance_id))
                sub.insert(_outcome_key(issuance_id), signature)
            issuance_batches.append(sub)

        issuances = Amount.ZERO
        redemptions = Amount.ZERO
        for key, amount in self.db.find_by_prefix(DbPrefix.MINT_AUDIT_ITEM):
            if key[1].is_issuance:
                issuances += amount
            else:
                redemptions += amount
            batch.delete(key)
        batch.insert(_audit_key(MintAuditItemKey.issuance_total()), issuances)
        batch.insert(_audit_key(MintAuditItemKey.redemption_total()), redemptions)

        for sub in issuance_batches:
            batch.extend(sub)
        return dropped

    # Inputs

    def build_verification_cache(self, inputs: Iterable[TieredMulti]) -> VerificationCache:
        """Verify the signatures of all coins of the given inputs."""
        valid_coins: dict[Coin, Amount] = {}
        for coins in inputs:
            for amount, coin in coins.iter_items():
                key = self._pub_key.get(amount)
                if key is not None and coin.verify(self.scheme, key):
                    valid_coins[coin] = amount
        return VerificationCache(valid_coins)

    def validate_input(self, cache: VerificationCache, coins: TieredMulti) -> InputMeta:
        """Check that every coin is validly signed for its tier and unspent."""
        for amount, coin in coins.iter_items():
            if cache.valid_coins.get(coin) != amount:
                raise InvalidSignature()
            if self.db.get(_nonce_key(coin.nonce)) is not None:
                raise SpentCoin()
        return InputMeta(
            amount=coins.total_amount(),
            keys=tuple(coin.spend_key() for _, coin in coins.iter_items()),
        )

    def apply_input(self, batch: Batch, coins: TieredMulti, cache: VerificationCache) -> InputMeta:
        """Validate coins and mark them spent."""
        meta = self.validate_input(cache, coins)
        for amount, coin in coins.iter_items():
            batch.insert_new(_nonce_key(coin.nonce), _SPENT)
            batch.insert_new(_audit_key(MintAuditItemKey.redemption(coin.nonce)), amount)
        return meta

    # Outputs

    def validate_output(self, output: TieredMulti) -> Amount:
        """Check that every tier is known and return the total amount requested."""
        for amount, _ in output.iter_items():
            if amount not in self._pub_key:
                raise InvalidAmountTier(amount)
        return output.total_amount()

    def apply_output(self, batch: Batch, output: TieredMulti, out_point: OutPoint) -> Amount:
        """Sign the blind tokens and propose our signature shares."""
        partial_sig = self.blind_sign(output)
        total = output.total_amount()
        batch.insert_new(_proposed_key(out_point), partial_sig)
        batch.insert_new(_audit_key(MintAuditItemKey.issuance(out_point)), total)
        return total

    def output_status(self, out_point: OutPoint) -> Any:
        """The final SigResponse, PENDING while signing is under way, or None if unknown."""
        final_sig = self.db.get(_outcome_key(out_point))
        if final_sig is not None:
            return final_sig
        we_proposed = self.db.get(_proposed_key(out_point)) is not None
        was_consensus_outcome = any(
            key[1] == out_point
            for key, _ in self.db.find_by_prefix(DbPrefix.RECEIVED_PARTIAL_SIG)
        )
        if we_proposed or was_consensus_outcome:
            return PENDING
        return None

    def audit(self) -> list[Tuple[tuple, int]]:
        """Issued amounts as liabilities (negative), redeemed amounts as assets, in msat."""
        return [
            (key, -amount.milli_sat if key[1].is_issuance else amount.milli_sat)
            for key, amount in self.db.find_by_prefix(DbPrefix.MINT_AUDIT_ITEM)
        ]

    # Signing

    def blind_sign(self, output: TieredMulti) -> PartialSigResponse:
        """Sign each blind token with our key share of its tier."""

        def sign(amount: Amount, token: BlindToken):
            sec_key = self._sec_key.tier(amount)
            message = token.blinded_message
            return message, self.scheme.sign_blinded_msg(message, sec_key)

        try:
            return PartialSigResponse(output.map(sign))
        except InvalidAmountTierError as error:
            raise InvalidAmountTier(error.amount) from None

    def combine(
        self,
        our_contribution: Optional[PartialSigResponse],
        partial_sigs: Iterable[Tuple[int, PartialSigResponse]],
    ) -> Tuple[SigResponse, MintShareErrors]:
        """Combine peers' signature shares into blind signatures.

        Returns the signatures and the faulty shares that were left out. Raises a
        CombineError, whose ``share_errors`` lists the faulty shares found so far.
        """
        partial_sigs = list(partial_sigs)
        peer_errors: list[Tuple[int, PeerErrorType]] = []

        def fail(error: CombineError) -> CombineError:
            error.share_errors = MintShareErrors(peer_errors)
            return error

        threshold = self.cfg.threshold
        if len(partial_sigs) < threshold:
            raise fail(TooFewShares([peer for peer, _ in partial_sigs], threshold))

        counts = Counter(peer for peer, _ in partial_sigs)
        duplicate = next(((peer, n) for peer, n in counts.items() if n > 1), None)
        if duplicate is not None:
            raise fail(MultiplePeerContributions(*duplicate))

        if our_contribution is None:
            raise fail(NoOwnContribution())

        reference_msgs = [msg for _, (msg, _) in our_contribution.shares.iter_items()]

        usable = []
        for peer, psig in partial_sigs:
            if psig.shares.structural_eq(our_contribution.shares):
                usable.append((peer, psig))
            else:
                log.warning("Peer %s proposed a sig share of wrong structure", peer)
                peer_errors.append((peer, PeerErrorType.DIFFERENT_STRUCTURE_SIG_SHARE))
        log.debug("After length filtering %d sig shares are left.", len(usable))

        if not usable:
            raise fail(TooFewValidShares(0, 0, threshold))

        peer_ids = [peer for peer, _ in usable]
        zipped = TieredMultiZip(psig.shares.iter_items() for _, psig in usable)
        signatures = []
        for (amount, shares), ref_msg in zip(zipped, reference_msgs):
            valid = []
            for (msg, sig), peer in zip(shares, peer_ids):
                peer_keys = self._pub_key_shares.get(peer)
                amount_key = peer_keys.get(amount) if peer_keys is not None else None
                if amount_key is None:
                    peer_errors.append((peer, PeerErrorType.INVALID_AMOUNT_TIER))
                elif msg != ref_msg:
                    peer_errors.append((peer, PeerErrorType.DIFFERENT_NONCE))
                elif not self.scheme.verify_blind_share(msg, sig, amount_key):
                    peer_errors.append((peer, PeerErrorType.INVALID_SIGNATURE))
                else:
                    valid.append((peer, sig))
            if len(valid) < threshold:
                raise fail(TooFewValidShares(len(valid), len(usable), threshold))
            signatures.append((amount, self.scheme.combine_valid_shares(valid, threshold)))

        return SigResponse(TieredMulti.from_items(signatures)), MintShareErrors(peer_errors)

    def process_partial_signature(
        self, batch: Batch, peer: int, output_id: OutPoint, partial_sig: PartialSigResponse
    ) -> None:
        """Record a peer's signature share unless the issuance is already finalized."""
        if self.db.get(_outcome_key(output_id)) is not None:
            log.debug("Received sig share for finalized issuance %s, ignoring", output_id)
            return
        log.debug("Received sig share from %s for issuance %s", peer, output_id)
        batch.insert_new(_received_key(output_id, peer), partial_sig)