import json
from datetime import datetime, timezone

import pytest

from medtrace.contract import ContractError, SmartContract, format_model_id
from medtrace.ledger import TransactionContext, WorldState

PRODUCED = "2024-01-01T00:00:00Z"
EXPIRES = "2026-01-01T00:00:00Z"


@pytest.fixture
def contract():
    return SmartContract()


@pytest.fixture
def state(contract):
    world = WorldState()
    contract.init_ledger(TransactionContext(state=world))
    return world


def as_org(state, org_id):
    return TransactionContext(state=state, msp_id=f"{org_id}MSP")


def batch_request(amount, name="Paracetamol"):
    return json.dumps(
        {
            "Amount": amount,
            "DrugName": name,
            "ExpiryDate": EXPIRES,
            "ProductionDate": PRODUCED,
        }
    )


def transfer_request(receiver, drug_ids):
    return json.dumps(
        {"DrugsID": drug_ids, "ReceiverID": receiver, "TransferDate": PRODUCED}
    )


def process_request(transfer_id):
    return json.dumps({"transferID": transfer_id, "ReceiveDate": EXPIRES})


def test_format_model_id_pads_to_sixteen_digits():
    assert format_model_id("D", 1) == "D0000000000000001"


def test_init_ledger_stores_organizations(contract, state):
    orgs = contract.get_all_organizations(TransactionContext(state=state))
    assert [org.name for org in orgs] == [
        "PharmaCorp", "SehatDistribusi", "ApotekSehat", "Pasien",
    ]
    assert [org.id for org in orgs] == ["Org1", "Org2", "Org3", "Org4"]
    assert orgs[0].type == "Manufacturer"
    assert orgs[0].location == "Switzerland"


def test_get_organization_missing(contract, state):
    with pytest.raises(ContractError, match="organization Org9 does not exist"):
        contract.get_organization(TransactionContext(state=state), "Org9")


def test_create_batch_creates_drugs(contract, state):
    ctx = as_org(state, "Org1")
    batch = contract.create_batch(ctx, batch_request(3))
    assert batch.id == format_model_id("B", 1)
    assert batch.manufacturer_name == "PharmaCorp"
    assert batch.manufacture_location == "Switzerland"
    assert batch.production_date == datetime(2024, 1, 1, tzinfo=timezone.utc)
    drugs = contract.get_drugs_by_batch(ctx, batch.id)
    assert [d.id for d in drugs] == [format_model_id("D", n) for n in (1, 2, 3)]
    assert all(d.owner_id == "Org1" and d.batch_id == batch.id for d in drugs)
    assert contract.get_batch(ctx, batch.id) == batch


def test_drug_numbering_continues_across_batches(contract, state):
    ctx = as_org(state, "Org1")
    contract.create_batch(ctx, batch_request(2))
    second = contract.create_batch(ctx, batch_request(2))
    assert second.id == format_model_id("B", 2)
    ids = [d.id for d in contract.get_drugs_by_batch(ctx, second.id)]
    assert ids == [format_model_id("D", 3), format_model_id("D", 4)]


def test_empty_batch_does_not_consume_drug_ids(contract, state):
    ctx = as_org(state, "Org1")
    empty = contract.create_batch(ctx, batch_request(0))
    assert contract.get_drugs_by_batch(ctx, empty.id) == []
    full = contract.create_batch(ctx, batch_request(1))
    ids = [d.id for d in contract.get_drugs_by_batch(ctx, full.id)]
    assert ids == [format_model_id("D", 1)]


def test_create_batch_requires_manufacturer(contract, state):
    with pytest.raises(ContractError, match="only manufacturers can create batches"):
        contract.create_batch(as_org(state, "Org2"), batch_request(1))


def test_create_batch_requires_identity(contract, state):
    with pytest.raises(ContractError, match="failed to get MSP ID"):
        contract.create_batch(TransactionContext(state=state), batch_request(1))


def test_create_batch_rejects_bad_counter(contract, state):
    state.put_state("LatestID_B", b"garbage")
    with pytest.raises(ContractError, match="failed to generate batch ID"):
        contract.create_batch(as_org(state, "Org1"), batch_request(1))


def test_create_batch_rejects_bad_json(contract, state):
    with pytest.raises(ContractError, match="failed to unmarshal request"):
        contract.create_batch(as_org(state, "Org1"), "{not json")


def test_get_all_batches_and_exists(contract, state):
    ctx = as_org(state, "Org1")
    first = contract.create_batch(ctx, batch_request(1, "A"))
    second = contract.create_batch(ctx, batch_request(1, "B"))
    assert contract.get_all_batches(ctx) == [first, second]
    assert contract.batch_exists(ctx, first.id) is True
    assert contract.batch_exists(ctx, format_model_id("B", 3)) is False


def test_update_batch(contract, state):
    ctx = as_org(state, "Org1")
    batch = contract.create_batch(ctx, batch_request(1))
    updated = contract.update_batch(
        ctx,
        json.dumps(
            {
                "ID": batch.id,
                "DrugName": "Ibuprofen",
                "ExpiryDate": EXPIRES,
                "ProductionDate": PRODUCED,
            }
        ),
    )
    assert updated.drug_name == "Ibuprofen"
    assert updated.manufacturer_name == batch.manufacturer_name
    assert contract.get_batch(ctx, batch.id) == updated


def test_update_batch_errors(contract, state):
    payload = json.dumps({"ID": "B9", "DrugName": "X"})
    with pytest.raises(ContractError, match="only manufacturers can update batches"):
        contract.update_batch(as_org(state, "Org3"), payload)
    with pytest.raises(ContractError, match="batch B9 does not exist"):
        contract.update_batch(as_org(state, "Org1"), payload)


def test_get_drug_missing(contract, state):
    with pytest.raises(ContractError, match="drug D1 does not exist"):
        contract.get_drug(TransactionContext(state=state), "D1")


def _make_transfer(contract, state, amount=2):
    sender = as_org(state, "Org1")
    batch = contract.create_batch(sender, batch_request(amount))
    ids = [d.id for d in contract.get_drugs_by_batch(sender, batch.id)]
    transfer = contract.create_transfer(sender, transfer_request("Org2", ids))
    return transfer, ids


def test_create_transfer_marks_drugs(contract, state):
    transfer, ids = _make_transfer(contract, state)
    sender = as_org(state, "Org1")
    receiver = as_org(state, "Org2")
    assert transfer.id == format_model_id("T", 1)
    assert transfer.sender_id == "Org1"
    assert transfer.receiver_id == "Org2"
    assert transfer.is_accepted is False
    assert all(contract.get_drug(sender, i).is_transferred for i in ids)
    assert contract.get_my_avail_drugs(sender) == []
    assert len(contract.get_my_drugs(sender)) == len(ids)
    assert contract.get_my_out_transfers(sender) == [transfer]
    assert contract.get_my_in_transfers(receiver) == [transfer]
    assert contract.get_my_in_transfers(sender) == []


def test_create_transfer_rejects_already_transferred(contract, state):
    _, ids = _make_transfer(contract, state)
    with pytest.raises(ContractError, match="has already been transferred"):
        contract.create_transfer(as_org(state, "Org1"), transfer_request("Org3", ids))


def test_create_transfer_rejects_foreign_drug(contract, state):
    sender = as_org(state, "Org1")
    batch = contract.create_batch(sender, batch_request(1))
    ids = [d.id for d in contract.get_drugs_by_batch(sender, batch.id)]
    other = as_org(state, "Org2")
    with pytest.raises(ContractError, match="does not belong to the sender"):
        contract.create_transfer(other, transfer_request("Org3", ids))
    assert contract.get_my_out_transfers(other) == []
    assert contract.get_drug(sender, ids[0]).is_transferred is False


def test_create_transfer_requires_receiver(contract, state):
    request = json.dumps({"DrugsID": [], "TransferDate": PRODUCED})
    with pytest.raises(ContractError, match="ReceiverID"):
        contract.create_transfer(as_org(state, "Org1"), request)


def test_accept_transfer_moves_ownership(contract, state):
    transfer, ids = _make_transfer(contract, state)
    receiver = as_org(state, "Org2")
    accepted = contract.accept_transfer(receiver, process_request(transfer.id))
    assert accepted.is_accepted is True
    assert accepted.receive_date == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert contract.get_transfer(receiver, transfer.id) == accepted
    for drug_id in ids:
        drug = contract.get_drug(receiver, drug_id)
        assert drug.owner_id == "Org2"
        assert drug.transfer_id == transfer.id
        assert drug.is_transferred is False
    assert [d.id for d in contract.get_my_avail_drugs(receiver)] == ids


def test_accept_transfer_only_by_receiver(contract, state):
    transfer, _ = _make_transfer(contract, state)
    with pytest.raises(ContractError, match="only the receiver can accept the transfer"):
        contract.accept_transfer(as_org(state, "Org3"), process_request(transfer.id))


def test_accept_missing_transfer(contract, state):
    with pytest.raises(ContractError, match="transfer T1 does not exist"):
        contract.accept_transfer(as_org(state, "Org2"), process_request("T1"))


def test_reject_transfer_releases_drugs(contract, state):
    transfer, ids = _make_transfer(contract, state)
    receiver = as_org(state, "Org2")
    rejected = contract.reject_transfer(receiver, process_request(transfer.id))
    assert rejected.is_accepted is False
    sender = as_org(state, "Org1")
    for drug_id in ids:
        drug = contract.get_drug(sender, drug_id)
        assert drug.owner_id == "Org1"
        assert drug.is_transferred is False
    assert [d.id for d in contract.get_my_avail_drugs(sender)] == ids
    assert contract.get_my_avail_drugs(receiver) == []


def test_get_my_transfers_lists_outgoing_then_incoming(contract, state):
    incoming, ids = _make_transfer(contract, state)
    middle = as_org(state, "Org2")
    contract.accept_transfer(middle, process_request(incoming.id))
    outgoing = contract.create_transfer(middle, transfer_request("Org3", ids[:1]))
    transfers = contract.get_my_transfers(middle)
    assert [t.id for t in transfers] == [outgoing.id, incoming.id]
    assert transfers[0].sender_id == "Org2"
    assert transfers[1].is_accepted is True