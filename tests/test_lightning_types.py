import dataclasses

import pytest

from fedmodules.amount import Amount, OutPoint
from fedmodules.contracts import (
    AccountContract,
    ContractId,
    DecryptedPreimage,
    EncryptedPreimage,
    IncomingContract,
    OfferId,
    OutgoingPreimage,
    PreimageDecryptionShare,
)
from fedmodules.lightning_types import (
    ContractAccount,
    ContractInput,
    ContractNotReady,
    ContractOutput,
    ContractOutputOutcome,
    DecryptionShareCI,
    FeeConsensus,
    InputMeta,
    InsufficientFunds,
    InsufficientIncomingFunding,
    InvalidEncryptedPreimage,
    InvalidPreimage,
    LightningGateway,
    LightningModuleClientConfig,
    LightningModuleConfig,
    LightningModuleError,
    MissingPreimage,
    NoOffer,
    OfferOutputOutcome,
    UnknownContract,
    ZeroOutput,
)


class FakeShare:
    def __init__(self, index):
        self.index = index

    def __eq__(self, other):
        return isinstance(other, FakeShare) and other.index == self.index

    def verify_decryption_share(self, share, ciphertext):
        return True


class FakeKeySet:
    def public_key(self):
        return "federation-key"

    def public_key_share(self, index):
        return FakeShare(index)

    def verify_ciphertext(self, ciphertext):
        return True

    def decrypt(self, shares, ciphertext):
        return ciphertext


class FakeSecretShare:
    def __init__(self, index):
        self.index = index

    def public_key_share(self):
        return FakeShare(self.index)

    def decrypt_share(self, ciphertext):
        return bytes([self.index])


KEY_A = bytes([1] * 32)
KEY_B = bytes([2] * 32)


def make_config(index=0, threshold=3):
    return LightningModuleConfig(FakeKeySet(), FakeSecretShare(index), threshold)


def test_fee_consensus_defaults_to_zero():
    fees = FeeConsensus()
    assert fees.contract_input == Amount.ZERO
    assert fees.contract_output == Amount.ZERO


def test_to_client_config_uses_aggregate_key_and_fees():
    fees = FeeConsensus(Amount.from_sat(1), Amount.from_sat(2))
    cfg = LightningModuleConfig(FakeKeySet(), FakeSecretShare(1), 3, fees)
    client = cfg.to_client_config()
    assert client == LightningModuleClientConfig("federation-key", fees)


def test_validate_config_accepts_matching_identity():
    cfg = make_config(index=2)
    cfg.validate_config(2)
    assert cfg.threshold_sec_key.public_key_share() == cfg.threshold_pub_keys.public_key_share(2)


def test_validate_config_rejects_other_identity():
    with pytest.raises(ValueError, match="Lightning private key doesn't match pubkey share"):
        make_config(index=2).validate_config(1)


def test_config_rejects_zero_threshold():
    with pytest.raises(ValueError):
        make_config(threshold=0)


def test_config_repr_hides_secret():
    assert "hidden" in repr(make_config())


def test_contract_input_fields_and_validation():
    cid = AccountContract(KEY_A).contract_id()
    witness = OutgoingPreimage(bytes([42] * 32))
    contract_input = ContractInput(cid, Amount.from_sat(42), witness)
    assert contract_input.witness == witness
    assert ContractInput(cid, Amount.from_sat(42)).witness is None
    with pytest.raises(TypeError):
        ContractInput(cid, 42)


def test_contract_output_requires_unfunded_contract():
    contract = AccountContract(KEY_A)
    output = ContractOutput(Amount.from_sat(42), contract)
    assert output.contract.contract_id() == contract.contract_id()
    with pytest.raises(TypeError):
        ContractOutput(Amount.from_sat(1), "not a contract")


def test_contract_account_is_immutable_and_replaceable():
    account = ContractAccount(Amount.from_sat(42), AccountContract(KEY_A))
    with pytest.raises(dataclasses.FrozenInstanceError):
        account.amount = Amount.ZERO
    spent = dataclasses.replace(account, amount=account.amount - Amount.from_sat(42))
    assert spent.amount == Amount.ZERO
    assert spent.contract == account.contract


def test_contract_account_rejects_unfunded_incoming():
    incoming = IncomingContract(
        KEY_A, EncryptedPreimage(b"cipher"), DecryptedPreimage.pending(), KEY_B
    )
    with pytest.raises(TypeError):
        ContractAccount(Amount.from_sat(1), incoming)


def test_output_outcomes():
    cid = ContractId(KEY_A)
    outcome = ContractOutputOutcome(cid, DecryptedPreimage.pending())
    assert outcome.outcome.is_pending
    assert OfferOutputOutcome(OfferId(KEY_A)) == OfferOutputOutcome(OfferId(KEY_A))
    with pytest.raises(TypeError):
        ContractOutputOutcome(cid, "done")


def test_lightning_gateway_key_checks():
    node_key = bytes([2]) + bytes([7] * 32)
    gateway = LightningGateway(KEY_A, node_key, "")
    assert gateway.node_pub_key == node_key
    with pytest.raises(ValueError):
        LightningGateway(KEY_A, bytes([5]) + bytes([7] * 32), "")
    with pytest.raises(ValueError):
        LightningGateway(KEY_A, KEY_B, "")


def test_decryption_share_item():
    item = DecryptionShareCI(ContractId(KEY_A), PreimageDecryptionShare(b"share"))
    assert item.share.share == b"share"
    with pytest.raises(TypeError):
        DecryptionShareCI(ContractId(KEY_A), b"share")


def test_input_meta_keys_become_tuple():
    meta = InputMeta(Amount.from_sat(42), [KEY_A])
    assert meta.keys == (KEY_A,)


def test_error_messages():
    assert str(MissingPreimage()) == "An outgoing LN contract spend did not provide a preimage"
    assert str(ZeroOutput()) == "Output contract value may not be zero unless it's an offer output"
    assert str(InvalidEncryptedPreimage()) == "Offer contains invalid threshold-encrypted data"
    assert str(NoOffer(KEY_A)) == "No offer found for payment hash " + KEY_A.hex()


def test_errors_compare_by_type_and_values():
    a, b = Amount.from_sat(1), Amount.from_sat(2)
    assert InsufficientFunds(a, b) == InsufficientFunds(a, b)
    assert InsufficientFunds(a, b) != InsufficientFunds(b, a)
    assert InsufficientFunds(a, b) != InsufficientIncomingFunding(a, b)
    assert MissingPreimage() == MissingPreimage()
    assert InvalidPreimage() != MissingPreimage()
    assert len({ContractNotReady(), ContractNotReady()}) == 1


def test_errors_are_lightning_errors():
    cid = ContractId(KEY_A)
    with pytest.raises(LightningModuleError) as info:
        raise UnknownContract(cid)
    assert info.value.contract_id == cid
    assert str(cid) in str(info.value)


def test_out_point_usable_in_funded_account():
    from fedmodules.contracts import to_funded

    incoming = IncomingContract(
        KEY_A, EncryptedPreimage(b"cipher"), DecryptedPreimage.pending(), KEY_B
    )
    out_point = OutPoint(bytes(32), 1)
    account = ContractAccount(Amount.from_sat(42), to_funded(incoming, out_point))
    assert account.contract.out_point == out_point