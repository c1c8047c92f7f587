# fedmodules

Building blocks for a federated e-cash system. The package has collections of
coins sorted by amount tier, Lightning contracts, and two consensus modules
(a mint and a Lightning module) that keep their state in a simple in-memory
key-value store.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `fedmodules.amount`: `Amount`, a non-negative value in millisatoshis
  (`Amount.from_sat`, `Amount.from_msat`, `Amount.ZERO`, arithmetic and
  ordering), and `OutPoint`, a 32-byte transaction id with an output index.
- `fedmodules.tiered`: `Tiered` holds one value per amount tier;
  `TieredMulti` holds any number of items per tier and offers
  `total_amount`, `item_count`, `structural_eq`, `iter_items`, `map`,
  `check_tiers`, `select_coins` and `represent_amount`; `TieredMultiZip`
  walks several structurally equal collections in step.
  `InvalidAmountTierError` is raised for unknown tiers.
- `fedmodules.store`: `MemoryDatabase` (`get`, `insert`, `delete`,
  `find_by_prefix`, `apply_batch`), `Batch` (`insert`, `insert_new`,
  `delete`, `extend`), the `DbPrefix` key spaces, and `KeyExistsError`,
  raised when `insert_new` meets an existing key. A batch is applied
  all-or-nothing.
- `fedmodules.contracts`: `AccountContract`, `OutgoingContract`,
  `IncomingContract`, `FundedIncomingContract`, `IncomingContractOffer`,
  `DecryptedPreimage` (pending, some, invalid), `ContractId`, `OfferId`, and
  the helpers `contract_id`, `to_outcome` and `to_funded`.
- `fedmodules.lightning_types`: configuration (`LightningModuleConfig`,
  `LightningModuleClientConfig`, `FeeConsensus`), inputs and outputs
  (`ContractInput`, `ContractOutput`), stored state (`ContractAccount`,
  `ContractOutputOutcome`, `OfferOutputOutcome`, `LightningGateway`), the
  consensus item `DecryptionShareCI`, `InputMeta`, and the
  `LightningModuleError` family (`UnknownContract`, `InsufficientFunds`,
  `MissingPreimage`, `InvalidPreimage`, `ContractNotReady`, `ZeroOutput`,
  `InvalidEncryptedPreimage`, `InsufficientIncomingFunding`, `NoOffer`).
- `fedmodules.lightning`: `LightningModule`, which validates and applies
  contract inputs and outputs, registers offers and gateways, collects
  decryption shares and, at the end of an epoch, decrypts preimages of funded
  incoming contracts.
- `fedmodules.mint_types`: `MintConfig`, `MintClientConfig`, `FeeConsensus`,
  coins (`CoinNonce`, `Coin`, `BlindToken`), signing messages
  (`SignRequest`, `PartialSigResponse`, `SigResponse`,
  `PartiallySignedRequest`), `MintAuditItemKey`, `PeerErrorType`,
  `MintShareErrors`, the `CombineError` family and the `MintError` family,
  and the `BlindSignatureScheme` protocol.
- `fedmodules.mint`: `Mint`, which blind-signs tokens, combines peers'
  signature shares, verifies and redeems coins, and keeps audit totals;
  `VerificationCache`; and `PENDING`, the output status of an issuance that
  is accepted but not yet fully signed.

## Example

```python
from fedmodules.amount import Amount
from fedmodules.tiered import TieredMulti

wallet = TieredMulti.from_items(
    [(Amount.from_sat(1), "a"), (Amount.from_sat(5), "b"), (Amount.from_sat(5), "c")]
)
print(wallet.total_amount())                 # 11000 msat
spend = wallet.select_coins(Amount.from_sat(6))
print(spend.total_amount())                  # 6000 msat
print(wallet.select_coins(Amount.from_sat(100)))  # None: not enough
```

## Driving a module

Each step of a module writes into a `Batch` and reads from the
`MemoryDatabase`; a step sees the effects of earlier steps only once their
batches have been applied with `apply_batch`. A consensus round looks like:

1. `consensus_proposal()` gives the items this member wants to broadcast.
2. `begin_consensus_epoch(batch, items)` records the `(peer, item)` pairs
   agreed on.
3. `apply_input` and `apply_output` process a transaction's parts.
4. `end_consensus_epoch(peers, batch)` combines signatures (mint) or decrypts
   preimages (Lightning) and returns the peers that misbehaved.

`output_status(out_point)` reports the outcome of an output, and `audit()`
returns `(key, msat)` pairs, liabilities negative.

Validation failures are raised as exceptions: `LightningModuleError`
subclasses from the Lightning module, `MintError` subclasses from the mint.
`Mint.combine` raises a `CombineError` carrying the faulty shares found so far
in its `share_errors` attribute.

## What the package does not do

- It has no cryptography of its own for threshold schemes. `Mint` takes a
  `BlindSignatureScheme` object, and `LightningModuleConfig` takes threshold
  key set and secret key share objects; the caller supplies them.
- It does not generate federation configurations or keys.
- It has no network layer, API server or consensus engine; the caller runs
  the rounds described above.
- `LightningModule` learns the block height only from the `block_height`
  callable it is given.
- Storage is in memory only; nothing is written to disk.
- There is no command-line program.