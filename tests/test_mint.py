import hashlib
import random

import pytest

from fedmodules.amount import Amount, OutPoint
from fedmodules.mint import PENDING, Mint, VerificationCache
from fedmodules.mint_types import (
    BlindToken,
    Coin,
    CoinNonce,
    InvalidAmountTier,
    InvalidSignature,
    MintConfig,
    MultiplePeerContributions,
    NoOwnContribution,
    PartialSigResponse,
    PeerErrorType,
    SigResponse,
    SpentCoin,
    TooFewShares,
)
from fedmodules.store import Batch, MemoryDatabase
from fedmodules.tiered import Tiered, TieredMulti

P = 2**61 - 1
MINTS = 5
MAX_EVIL = 1
THRESHOLD = MINTS - MAX_EVIL
TIER = Amount.from_sat(1)


def _interpolate(points):
    xs = [peer + 1 for peer, _ in points]
    total = 0
    for peer, value in points:
        x = peer + 1
        num, den = 1, 1
        for xj in xs:
            if xj != x:
                num = num * (-xj) % P
                den = den * (x - xj) % P
        total = (total + value * num * pow(den, P - 2, P)) % P
    return total


class ToyScheme:
    """Insecure linear threshold scheme, sufficient to exercise the mint."""

    def to_pub_key_share(self, sk):
        return sk

    def aggregate(self, shares, threshold):
        return _interpolate(list(enumerate(shares))[:threshold])

    def sign_blinded_msg(self, msg, sk):
        return msg * sk % P

    def verify_blind_share(self, msg, share, pk):
        return share == msg * pk % P

    def combine_valid_shares(self, shares, threshold):
        return _interpolate(list(shares)[:threshold])

    def message_from_bytes(self, data):
        return int.from_bytes(hashlib.sha256(data).digest(), "big") % P or 1

    def verify(self, message, sig, pk):
        return sig == message * pk % P


SCHEME = ToyScheme()


def blind(message, rng):
    r = rng.randrange(1, P)
    return r, message * r % P


def unblind(r, sig):
    return sig * pow(r, P - 2, P) % P


def build_configs(seed, tiers=(TIER,)):
    rng = random.Random(seed)
    shares = {}
    for tier in tiers:
        coeffs = [rng.randrange(1, P) for _ in range(THRESHOLD)]
        shares[tier] = [
            sum(c * pow(i + 1, k, P) for k, c in enumerate(coeffs)) % P for i in range(MINTS)
        ]
    peer_pks = {peer: Tiered({t: shares[t][peer] for t in tiers}) for peer in range(MINTS)}
    configs = [
        MintConfig(
            tbs_sks=Tiered({t: shares[t][peer] for t in tiers}),
            peer_tbs_pks=dict(peer_pks),
            threshold=THRESHOLD,
        )
        for peer in range(MINTS)
    ]
    return configs


def build_mints(seed=1):
    return [Mint(cfg, MemoryDatabase(), SCHEME) for cfg in build_configs(seed)]


@pytest.fixture
def issuance():
    mints = build_mints()
    rng = random.Random(7)
    nonce = SCHEME.message_from_bytes(b"test coin")
    bkey, bmsg = blind(nonce, rng)
    tokens = TieredMulti({TIER: [BlindToken(bmsg), BlindToken(bmsg)]})
    psigs = [(peer, mint.blind_sign(tokens)) for peer, mint in enumerate(mints)]
    return mints, nonce, bkey, psigs


def with_replaced(psig, index, msg=None, sig=None):
    items = list(psig.shares.get(TIER))
    old_msg, old_sig = items[index]
    items[index] = (old_msg if msg is None else msg, old_sig if sig is None else sig)
    return PartialSigResponse(TieredMulti({TIER: items}))


def test_combine_happy_path(issuance):
    mints, nonce, bkey, psigs = issuance
    pk = mints[0].pub_key()[TIER]
    result, errors = mints[0].combine(psigs[0][1], psigs)
    assert len(errors) == 0
    assert result.signatures.total_amount() == Amount.from_sat(2)
    for _, bsig in result.signatures.iter_items():
        assert SCHEME.verify(nonce, unblind(bkey, bsig), pk)


def test_combine_with_threshold_shares(issuance):
    mints, nonce, bkey, psigs = issuance
    pk = mints[0].pub_key()[TIER]
    result, errors = mints[0].combine(psigs[0][1], psigs[:THRESHOLD])
    assert len(errors) == 0
    for _, bsig in result.signatures.iter_items():
        assert SCHEME.verify(nonce, unblind(bkey, bsig), pk)


def test_combine_too_few_shares(issuance):
    mints, _, _, psigs = issuance
    few = psigs[: THRESHOLD - 1]
    with pytest.raises(TooFewShares) as info:
        mints[0].combine(psigs[0][1], few)
    assert info.value == TooFewShares([peer for peer, _ in few], THRESHOLD)
    assert len(info.value.share_errors) == 0


def test_combine_without_own_share(issuance):
    mints, _, _, psigs = issuance
    with pytest.raises(NoOwnContribution) as info:
        mints[0].combine(None, psigs[1:])
    assert len(info.value.share_errors) == 0


def test_combine_multiple_peer_contributions(issuance):
    mints, _, _, psigs = issuance
    with pytest.raises(MultiplePeerContributions) as info:
        mints[0].combine(psigs[0][1], psigs + [psigs[0]])
    assert info.value == MultiplePeerContributions(0, 2)
    assert len(info.value.share_errors) == 0


def test_combine_wrong_structure(issuance):
    mints, _, _, psigs = issuance
    changed = [
        (peer, PartialSigResponse(TieredMulti({TIER: psig.shares.get(TIER)[:-1]})))
        if peer == 1
        else (peer, psig)
        for peer, psig in psigs
    ]
    result, errors = mints[0].combine(psigs[0][1], changed)
    assert result.signatures.item_count() == 2
    assert (1, PeerErrorType.DIFFERENT_STRUCTURE_SIG_SHARE) in errors


def test_combine_invalid_signature(issuance):
    mints, _, _, psigs = issuance
    foreign_sig = psigs[0][1].shares.get(TIER)[0][1]
    changed = [
        (peer, with_replaced(psig, 0, sig=foreign_sig)) if peer == 2 else (peer, psig)
        for peer, psig in psigs
    ]
    result, errors = mints[0].combine(psigs[0][1], changed)
    assert result.signatures.item_count() == 2
    assert (2, PeerErrorType.INVALID_SIGNATURE) in errors


def test_combine_different_nonce(issuance):
    mints, _, _, psigs = issuance
    _, other_msg = blind(SCHEME.message_from_bytes(b"test"), random.Random(3))
    changed = [
        (peer, with_replaced(psig, 0, msg=other_msg)) if peer == 3 else (peer, psig)
        for peer, psig in psigs
    ]
    result, errors = mints[0].combine(psigs[0][1], changed)
    assert result.signatures.item_count() == 2
    assert (3, PeerErrorType.DIFFERENT_NONCE) in errors


def test_new_fails_without_own_pub_key():
    first = build_configs(11)
    second = build_configs(22)
    cfg = MintConfig(
        tbs_sks=first[0].tbs_sks, peer_tbs_pks=second[0].peer_tbs_pks, threshold=MAX_EVIL
    )
    with pytest.raises(ValueError, match="Own key not found among pub keys."):
        Mint(cfg, MemoryDatabase(), SCHEME)


def test_new_fails_without_tiers():
    cfg = MintConfig(tbs_sks=Tiered(), peer_tbs_pks={0: Tiered()}, threshold=1)
    with pytest.raises(ValueError):
        Mint(cfg, MemoryDatabase(), SCHEME)


def test_blind_sign_unknown_tier():
    mint = build_mints()[0]
    with pytest.raises(InvalidAmountTier) as info:
        mint.blind_sign(TieredMulti({Amount.from_sat(7): [BlindToken(5)]}))
    assert info.value == InvalidAmountTier(Amount.from_sat(7))


def test_validate_output():
    mint = build_mints()[0]
    good = TieredMulti({TIER: [BlindToken(1), BlindToken(2), BlindToken(3)]})
    assert mint.validate_output(good) == Amount.from_sat(3)
    bad = TieredMulti({TIER: [BlindToken(1)], Amount.from_sat(7): [BlindToken(2)]})
    with pytest.raises(InvalidAmountTier) as info:
        mint.validate_output(bad)
    assert info.value == InvalidAmountTier(Amount.from_sat(7))


def _issue(mints, out_point, output, contributing):
    for mint in mints:
        batch = Batch()
        mint.apply_output(batch, output, out_point)
        mint.db.apply_batch(batch)
    items = [(peer, mints[peer].consensus_proposal()[0]) for peer in contributing]
    for mint in mints:
        batch = Batch()
        mint.begin_consensus_epoch(batch, items)
        mint.db.apply_batch(batch)
    dropped = []
    for mint in mints:
        batch = Batch()
        dropped.append(mint.end_consensus_epoch(set(range(MINTS)), batch))
        mint.db.apply_batch(batch)
    return dropped


def test_full_issuance_and_spend():
    mints = build_mints()
    rng = random.Random(5)
    nonce_key = bytes(range(32))
    message = SCHEME.message_from_bytes(nonce_key)
    bkey, bmsg = blind(message, rng)
    output = TieredMulti({TIER: [BlindToken(bmsg)]})
    out_point = OutPoint(b"\x01" * 32, 0)

    assert mints[0].output_status(out_point) is None
    dropped = _issue(mints, out_point, output, range(MINTS))
    assert dropped == [[] for _ in mints]

    status = mints[0].output_status(out_point)
    assert isinstance(status, SigResponse)
    [(amount, bsig)] = list(status.signatures.iter_items())
    assert amount == TIER
    signature = unblind(bkey, bsig)

    audit = mints[0].audit()
    assert sum(value for _, value in audit) == -TIER.milli_sat

    coins = TieredMulti({TIER: [Coin(CoinNonce(nonce_key), signature)]})
    cache = mints[0].build_verification_cache([coins])
    meta = mints[0].validate_input(cache, coins)
    assert meta.amount == TIER
    assert meta.keys == (nonce_key,)

    batch = Batch()
    mints[0].apply_input(batch, coins, cache)
    mints[0].db.apply_batch(batch)
    with pytest.raises(SpentCoin):
        mints[0].validate_input(cache, coins)
    assert sum(value for _, value in mints[0].audit()) == 0


def test_invalid_coin_signature():
    mint = build_mints()[0]
    coins = TieredMulti({TIER: [Coin(CoinNonce(b"\x02" * 32), 12345)]})
    cache = mint.build_verification_cache([coins])
    assert cache == VerificationCache({})
    with pytest.raises(InvalidSignature):
        mint.validate_input(cache, coins)


def test_pending_and_dropped_peers():
    mints = build_mints()
    _, bmsg = blind(SCHEME.message_from_bytes(b"coin"), random.Random(9))
    output = TieredMulti({TIER: [BlindToken(bmsg)]})
    out_point = OutPoint(b"\x03" * 32, 1)
    dropped = _issue(mints, out_point, output, [0, 1, 2])
    assert dropped[0] == [3, 4]
    assert mints[0].output_status(out_point) is PENDING


def test_share_for_finalized_issuance_is_ignored():
    mints = build_mints()
    _, bmsg = blind(SCHEME.message_from_bytes(b"again"), random.Random(4))
    output = TieredMulti({TIER: [BlindToken(bmsg)]})
    out_point = OutPoint(b"\x04" * 32, 0)
    _issue(mints, out_point, output, range(MINTS))
    psig = mints[1].blind_sign(output)
    batch = Batch()
    mints[0].process_partial_signature(batch, 1, out_point, psig)
    mints[0].db.apply_batch(batch)
    assert mints[0].end_consensus_epoch(set(range(MINTS)), Batch()) == []
    assert isinstance(mints[0].output_status(out_point), SigResponse)