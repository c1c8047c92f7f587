"""The Lightning module: contract accounts, preimage offers and threshold preimage decryption."""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from typing import Callable, Iterable, Optional, Tuple

from .amount import Amount, OutPoint
from .contracts import (
    AccountContract,
    ContractId,
    DecryptedPreimage,
    EncryptedPreimage,
    FundedIncomingContract,
    IncomingContract,
    IncomingContractOffer,
    OutgoingContract,
    Preimage,
    PreimageDecryptionShare,
    to_funded,
    to_outcome,
)
from .lightning_types import (
    ContractAccount,
    ContractInput,
    ContractNotReady,
    ContractOutput,
    ContractOutputOutcome,
    DecryptionShareCI,
    InputMeta,
    InsufficientFunds,
    InsufficientIncomingFunding,
    InvalidEncryptedPreimage,
    InvalidPreimage,
    LightningGateway,
    LightningModuleConfig,
    MissingPreimage,
    NoOffer,
    OfferOutputOutcome,
    UnknownContract,
    ZeroOutput,
)
from .store import Batch, DbPrefix, MemoryDatabase

log = logging.getLogger(__name__)

PREIMAGE_LENGTH = 32

# Field prime of secp256k1, used to check that a preimage is a valid x-only public key.
_FIELD_PRIME = 2**256 - 2**32 - 977


def _is_valid_x_only_key(data: bytes) -> bool:
    x = int.from_bytes(data, "big")
    if x >= _FIELD_PRIME:
        return False
    y_squared = (pow(x, 3, _FIELD_PRIME) + 7) % _FIELD_PRIME
    return pow(y_squared, (_FIELD_PRIME - 1) // 2, _FIELD_PRIME) in (0, 1)


def _contract_key(contract_id: ContractId) -> tuple:
    return (DbPrefix.CONTRACT, contract_id)


def _offer_key(payment_hash: bytes) -> tuple:
    return (DbPrefix.OFFER, bytes(payment_hash))


def _propose_share_key(contract_id: ContractId) -> tuple:
    return (DbPrefix.PROPOSE_DECRYPTION_SHARE, contract_id)


def _agreed_share_key(contract_id: ContractId, peer: int) -> tuple:
    return (DbPrefix.AGREED_DECRYPTION_SHARE, contract_id, peer)


def _contract_update_key(out_point: OutPoint) -> tuple:
    return (DbPrefix.CONTRACT_UPDATE, out_point)


def _gateway_key(node_pub_key: bytes) -> tuple:
    return (DbPrefix.LIGHTNING_GATEWAY, bytes(node_pub_key))


class LightningModule:
    """Account system locking funds in account, incoming and outgoing contracts.

    Writes go into the batch passed to each step; reads come from the database, so a
    step sees the effects of earlier steps only once their batches have been applied.
    ``block_height`` is a callable returning the current consensus block height.
    """

    def __init__(
        self,
        cfg: LightningModuleConfig,
        db: MemoryDatabase,
        block_height: Callable[[], int],
    ) -> None:
        self.cfg = cfg
        self.db = db
        self._block_height = block_height

    # Consensus

    def consensus_proposal(self) -> list[DecryptionShareCI]:
        """Our decryption shares that still have to be broadcast."""
        return [
            DecryptionShareCI(contract_id=key[1], share=share)
            for key, share in self.db.find_by_prefix(DbPrefix.PROPOSE_DECRYPTION_SHARE)
        ]

    def begin_consensus_epoch(
        self, batch: Batch, consensus_items: Iterable[Tuple[int, DecryptionShareCI]]
    ) -> None:
        """Record the decryption shares peers agreed on in this epoch."""
        for peer, item in consensus_items:
            log.debug("process decryption share from peer %s", peer)
            batch.insert_new(_agreed_share_key(item.contract_id, peer), item.share)

    def end_consensus_epoch(self, consensus_peers: Iterable[int], batch: Batch) -> list[int]:
        """Decrypt preimages with enough valid shares; return peers that contributed none."""
        consensus_peers = set(consensus_peers)
        grouped: dict[ContractId, list[Tuple[int, PreimageDecryptionShare]]] = {}
        for key, share in self.db.find_by_prefix(DbPrefix.AGREED_DECRYPTION_SHARE):
            _, contract_id, peer = key
            grouped.setdefault(contract_id, []).append((peer, share))

        bad_peers: list[int] = []
        for contract_id, shares in grouped.items():
            peers = [peer for peer, _ in shares]
            account = self.get_contract_account(contract_id)
            if account is None or not isinstance(account.contract, FundedIncomingContract):
                log.warning("Received decryption share for non-existent incoming contract")
                for peer in peers:
                    batch.delete(_agreed_share_key(contract_id, peer))
                continue

            funded = account.contract
            incoming = funded.contract
            valid_shares = {
                peer: share
                for peer, share in shares
                if self._validate_decryption_share(peer, share, incoming.encrypted_preimage)
            }

            for peer in sorted(consensus_peers - valid_shares.keys()):
                bad_peers.append(peer)
                log.warning("%s did not contribute valid decryption shares", peer)

            if len(valid_shares) < self.cfg.threshold:
                log.warning(
                    "Too few decryption shares: %d valid, %d needed",
                    len(valid_shares),
                    self.cfg.threshold,
                )
                continue

            if not incoming.decrypted_preimage.is_pending:
                log.warning("Tried to decrypt the same preimage twice, this should not happen.")
                continue

            try:
                preimage = self.cfg.threshold_pub_keys.decrypt(
                    [(peer, share.share) for peer, share in valid_shares.items()],
                    incoming.encrypted_preimage.ciphertext,
                )
            except Exception:
                log.error("Failed to decrypt preimage for hash %s", incoming.hash.hex())
                continue

            batch.delete(_propose_share_key(contract_id))
            for peer in peers:
                batch.delete(_agreed_share_key(contract_id, peer))

            decrypted = self._classify_preimage(bytes(preimage), incoming.hash)
            log.debug("decrypted preimage: %r", decrypted)

            updated_contract = dataclasses.replace(incoming, decrypted_preimage=decrypted)
            updated_account = ContractAccount(
                amount=account.amount,
                contract=FundedIncomingContract(updated_contract, funded.out_point),
            )
            batch.insert(_contract_key(contract_id), updated_account)

            outcome_key = _contract_update_key(funded.out_point)
            outcome = self.db.get(outcome_key)
            if not isinstance(outcome, ContractOutputOutcome) or not isinstance(
                outcome.outcome, DecryptedPreimage
            ):
                raise RuntimeError("expected the outcome of an incoming contract")
            batch.insert(outcome_key, dataclasses.replace(outcome, outcome=decrypted))

        return bad_peers

    # Inputs

    def validate_input(self, contract_input: ContractInput) -> InputMeta:
        """Check that an input may spend from its contract and return the keys that must sign."""
        account = self.get_contract_account(contract_input.contract_id)
        if account is None:
            raise UnknownContract(contract_input.contract_id)
        if account.amount < contract_input.amount:
            raise InsufficientFunds(account.amount, contract_input.amount)

        contract = account.contract
        if isinstance(contract, OutgoingContract):
            if contract.timelock > self._block_height():
                if contract_input.witness is None:
                    raise MissingPreimage()
                preimage_hash = hashlib.sha256(contract_input.witness.data).digest()
                if preimage_hash != contract.hash:
                    raise InvalidPreimage()
                pub_key = contract.gateway_key
            else:
                pub_key = contract.user_key
        elif isinstance(contract, AccountContract):
            pub_key = contract.key
        else:
            decrypted = contract.contract.decrypted_preimage
            if decrypted.is_pending:
                raise ContractNotReady()
            if decrypted.is_some:
                pub_key = decrypted.preimage.key
            else:
                pub_key = contract.contract.gateway_key

        return InputMeta(amount=contract_input.amount, keys=(pub_key,))

    def apply_input(self, batch: Batch, contract_input: ContractInput) -> InputMeta:
        """Validate an input and deduct the spent amount from its contract account."""
        meta = self.validate_input(contract_input)
        key = _contract_key(contract_input.contract_id)
        account = self.db.get(key)
        if account is None:
            raise RuntimeError("contract account vanished after validation")
        batch.insert(key, dataclasses.replace(account, amount=account.amount - meta.amount))
        return meta

    # Outputs

    def validate_output(self, output) -> Amount:
        """Check an output and return the amount it locks."""
        if isinstance(output, ContractOutput):
            contract = output.contract
            if isinstance(contract, IncomingContract):
                offer = self.db.get(_offer_key(contract.hash))
                if offer is None:
                    raise NoOffer(contract.hash)
                if output.amount < offer.amount:
                    raise InsufficientIncomingFunding(offer.amount, output.amount)
            if output.amount == Amount.ZERO:
                raise ZeroOutput()
            return output.amount
        if isinstance(output, IncomingContractOffer):
            if not self.cfg.threshold_pub_keys.verify_ciphertext(
                output.encrypted_preimage.ciphertext
            ):
                raise InvalidEncryptedPreimage()
            return Amount.ZERO
        raise TypeError(f"not a Lightning output: {type(output).__name__}")

    def apply_output(self, batch: Batch, output, out_point: OutPoint) -> Amount:
        """Validate an output and record the funded contract or the offer."""
        amount = self.validate_output(output)

        if isinstance(output, ContractOutput):
            contract = output.contract
            cid = contract.contract_id()
            key = _contract_key(cid)
            existing = self.db.get(key)
            if existing is not None:
                account = dataclasses.replace(existing, amount=existing.amount + amount)
            else:
                account = ContractAccount(amount=amount, contract=to_funded(contract, out_point))
            batch.insert(key, account)
            batch.insert_new(
                _contract_update_key(out_point),
                ContractOutputOutcome(id=cid, outcome=to_outcome(contract)),
            )

            if isinstance(contract, IncomingContract):
                offer = self.db.get(_offer_key(contract.hash))
                if offer is None:
                    raise RuntimeError("offer exists if output is valid")
                share = self.cfg.threshold_sec_key.decrypt_share(
                    contract.encrypted_preimage.ciphertext
                )
                if share is None:
                    raise RuntimeError("could not create a decryption share for the preimage")
                batch.insert_new(_propose_share_key(cid), PreimageDecryptionShare(share))
                batch.delete(_offer_key(offer.hash))
        else:
            batch.insert_new(_contract_update_key(out_point), OfferOutputOutcome(id=output.id()))
            batch.insert_new(_offer_key(output.hash), output)

        return amount

    def output_status(self, out_point: OutPoint):
        """The recorded outcome of an output, or None if unknown."""
        return self.db.get(_contract_update_key(out_point))

    def audit(self) -> list[Tuple[tuple, int]]:
        """Liabilities of the module: each contract account as a negative msat balance."""
        return [
            (key, -account.amount.milli_sat)
            for key, account in self.db.find_by_prefix(DbPrefix.CONTRACT)
        ]

    # Queries

    def get_offer(self, payment_hash: bytes) -> Optional[IncomingContractOffer]:
        return self.db.get(_offer_key(payment_hash))

    def get_offers(self) -> list[IncomingContractOffer]:
        return [offer for _, offer in self.db.find_by_prefix(DbPrefix.OFFER)]

    def get_contract_account(self, contract_id: ContractId) -> Optional[ContractAccount]:
        return self.db.get(_contract_key(contract_id))

    def list_gateways(self) -> list[LightningGateway]:
        return [gateway for _, gateway in self.db.find_by_prefix(DbPrefix.LIGHTNING_GATEWAY)]

    def register_gateway(self, gateway: LightningGateway) -> None:
        self.db.insert(_gateway_key(gateway.node_pub_key), gateway)

    # Helpers

    def _validate_decryption_share(
        self, peer: int, share: PreimageDecryptionShare, message: EncryptedPreimage
    ) -> bool:
        return bool(
            self.cfg.threshold_pub_keys.public_key_share(peer).verify_decryption_share(
                share.share, message.ciphertext
            )
        )

    @staticmethod
    def _classify_preimage(preimage: bytes, payment_hash: bytes) -> DecryptedPreimage:
        if len(preimage) != PREIMAGE_LENGTH:
            return DecryptedPreimage.invalid()
        if hashlib.sha256(preimage).digest() != payment_hash:
            return DecryptedPreimage.invalid()
        if not _is_valid_x_only_key(preimage):
            return DecryptedPreimage.invalid()
        return DecryptedPreimage.some(Preimage(preimage))