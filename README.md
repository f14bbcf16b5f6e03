# medtrace

Track medicines from manufacturer to patient. `medtrace` keeps a ledger of
organizations, production batches, individual drugs and the transfers that
move drugs between organizations. Every record is stored as JSON in a
key-value world state, with composite-key indexes linking owners, batches,
transfers and drugs.

## Install

```
pip install medtrace
```

The package has no runtime dependencies. For the tests:

```
pip install "medtrace[test]"
pytest
```

## Modules

- `medtrace.models` – the records (`Organization`, `Batch`, `Drug`,
  `Transfer`) and the request payloads (`CreateBatch`, `UpdateBatch`,
  `CreateTransfer`, `ProcessTransfer`) as dataclasses. Records have
  `to_json()`, which returns compact JSON as `bytes`; every class has the
  class method `from_json(data)`, which takes JSON text, bytes or an already
  decoded mapping and matches keys case-insensitively. Timestamps use RFC 3339
  via `format_time` and `parse_time`.
- `medtrace.ledger` – `WorldState`, an in-memory key-value store with
  `get_state`, `put_state`, `create_composite_key`, `split_composite_key`,
  `get_state_by_partial_composite_key` and `get_state_by_range`;
  `TransactionContext`, pairing a world state with the caller's MSP ID; and
  `LedgerError`.
- `medtrace.contract` – `SmartContract`, the transactions, `ContractError`,
  and `format_model_id`.

## Concepts

- `Organization` – a manufacturer, distributor, pharmacy or patient.
  `init_ledger` stores four of them: `Org1` (PharmaCorp, Manufacturer),
  `Org2` (SehatDistribusi, Distributor), `Org3` (ApotekSehat, Pharmacy) and
  `Org4` (Pasien, Patient).
- `Batch` – a production run. Only an organization of type `Manufacturer` may
  create or update one. Creating a batch also creates the requested number of
  `Drug` records with sequential IDs: `format_model_id` gives
  `B0000000000000001`, `D0000000000000001`, `T0000000000000001` and so on.
- `Transfer` – a sender offers drugs it owns to a receiver. The drugs are
  marked as transferred and cannot be offered again until the receiver acts.
  `accept_transfer` (which needs a `ReceiveDate`) marks the transfer accepted
  and moves the drugs to the receiver; `reject_transfer` makes the drugs
  available again to the sender. Only the receiver may accept or reject.

The calling organization is taken from `TransactionContext.msp_id` with a
trailing `MSP` removed, so `Org1MSP` acts as `Org1`.

## Usage

```python
import json
from medtrace.contract import SmartContract
from medtrace.ledger import TransactionContext, WorldState

contract = SmartContract()
state = WorldState()

manufacturer = TransactionContext(state, "Org1MSP")
contract.init_ledger(manufacturer)

batch = contract.create_batch(manufacturer, json.dumps({
    "Amount": 3,
    "DrugName": "Paracetamol",
    "ProductionDate": "2025-01-01T00:00:00Z",
    "ExpiryDate": "2027-01-01T00:00:00Z",
}))
drugs = contract.get_drugs_by_batch(manufacturer, batch.id)

transfer = contract.create_transfer(manufacturer, json.dumps({
    "DrugsID": [d.id for d in drugs],
    "ReceiverID": "Org2",
    "TransferDate": "2025-02-01T00:00:00Z",
}))

distributor = TransactionContext(state, "Org2MSP")
contract.accept_transfer(distributor, json.dumps({
    "transferID": transfer.id,
    "ReceiveDate": "2025-02-03T00:00:00Z",
}))
print([d.id for d in contract.get_my_drugs(distributor)])
print([t.id for t in contract.get_my_in_transfers(distributor)])
```

Other queries: `get_drug`, `get_batch`, `batch_exists`, `get_all_batches`,
`update_batch`, `get_organization`, `get_all_organizations`,
`get_my_avail_drugs` (the caller's drugs not in a pending transfer),
`get_transfer`, `get_my_out_transfers` and `get_my_transfers` (outgoing
followed by incoming).

Points to keep in mind:

- The owner index only grows: after a transfer is accepted the drugs are
  indexed under the receiver, but their entries under the sender stay, so
  `get_my_drugs` for the sender still lists them (with the receiver as
  `owner_id`).
- `reject_transfer` returns the transfer with `is_accepted` false but does not
  rewrite the stored transfer record.

Failures such as a missing record, a drug that is already in transit or not
owned by the sender, a non-manufacturer creating a batch, or a malformed
request raise `medtrace.contract.ContractError`. `WorldState` itself raises
`LedgerError` for invalid keys. Transactions log through the
`medtrace.contract` logger.

## What it does not do

The world state lives in memory only: nothing is persisted, shared between
processes or replicated to other nodes. Caller identity is just the
`msp_id` string given to `TransactionContext`; no certificates are checked.
There is no command-line program or network service; the contract is used
from Python code.