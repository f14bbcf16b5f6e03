"""Drug supply-chain contract: batches, drugs, organizations and transfers."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from typing import Any, TypeVar

from medtrace.ledger import LedgerError, TransactionContext
from medtrace.models import (
    Batch,
    CreateBatch,
    CreateTransfer,
    Drug,
    Organization,
    ProcessTransfer,
    Transfer,
    UpdateBatch,
)

logger = logging.getLogger(__name__)

OWNER_DRUG_INDEX = "owner~drug"
BATCH_DRUG_INDEX = "batch~drug"
SENDER_TRANSFER_INDEX = "sender~transfer"
RECEIVER_TRANSFER_INDEX = "receiver~transfer"
TRANSFER_DRUG_INDEX = "transfer~drug"

BATCH_KEY = "B"
TRANSFER_KEY = "T"
DRUG_KEY = "D"

MANUFACTURER = "Manufacturer"

_INDEX_VALUE = b"\x00"
_INTEGER = re.compile(r"[+-]?\d+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_SEED_ORGANIZATIONS = (
    Organization(id="Org1", location="Switzerland", name="PharmaCorp", type="Manufacturer"),
    Organization(id="Org2", location="Indonesia", name="SehatDistribusi", type="Distributor"),
    Organization(id="Org3", location="Indonesia", name="ApotekSehat", type="Pharmacy"),
    Organization(id="Org4", location="Indonesia", name="Pasien", type="Patient"),
)

_T = TypeVar("_T")


class ContractError(Exception):
    """Raised when a contract transaction fails."""


def format_model_id(model_key: str, number: int) -> str:
    """Build a record ID from its key letter and a zero-padded sequence number."""
    return f"{model_key}{number:016d}"


def _decode(model: Callable[[Any], _T], data: Any, context: str | None = None) -> _T:
    try:
        return model(data)
    except ValueError as exc:
        message = str(exc) if context is None else f"{context}: {exc}"
        raise ContractError(message) from exc


def _latest_id_key(model_key: str) -> str:
    return f"LatestID_{model_key}"


def _parse_counter(raw: bytes) -> int:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"invalid counter value {raw!r}") from exc
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"parsing {text!r}: invalid syntax")
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"parsing {text!r}: value out of range")
    return number


class SmartContract:
    """Transactions over the world state of a drug tracing ledger."""

    # -- organizations ---------------------------------------------------

    def init_ledger(self, ctx: TransactionContext) -> None:
        """Store the fixed set of participating organizations."""
        for org in _SEED_ORGANIZATIONS:
            self._put(ctx, org.id, org.to_json(), "failed to put to world state")

    def get_organization(self, ctx: TransactionContext, org_id: str) -> Organization:
        """Read one organization by ID."""
        raw = ctx.state.get_state(org_id)
        if raw is None:
            raise ContractError(f"organization {org_id} does not exist")
        return _decode(Organization.from_json, raw)

    def get_all_organizations(self, ctx: TransactionContext) -> list[Organization]:
        """Return every organization, in key order."""
        entries = self._range(ctx, "Org", "Org~", None)
        return [_decode(Organization.from_json, value) for _, value in entries]

    def _get_org(self, ctx: TransactionContext) -> Organization:
        if ctx.msp_id is None:
            raise ContractError("failed to get MSP ID: no client identity")
        org_id = ctx.msp_id.removesuffix("MSP")
        try:
            return self.get_organization(ctx, org_id)
        except ContractError as exc:
            raise ContractError(f"failed to get organization: {exc}") from exc

    # -- drugs -----------------------------------------------------------

    def create_drug(
        self, ctx: TransactionContext, owner_id: str, batch_id: str, drug_id: str
    ) -> str:
        """Store a new drug of a batch, owned by owner_id, and index it."""
        drug = Drug(batch_id=batch_id, id=drug_id, owner_id=owner_id)
        self._put(ctx, drug_id, drug.to_json(), "failed to put drug to world state")
        batch_index_key = self._composite_key(ctx, BATCH_DRUG_INDEX, [batch_id, drug_id])
        try:
            self._set_drug_owner(ctx, drug_id, owner_id)
        except ContractError as exc:
            raise ContractError(f"failed to set drug owner: {exc}") from exc
        self._put(
            ctx, batch_index_key, _INDEX_VALUE,
            "failed to put batch-drug index to world state",
        )
        return drug_id

    def get_drug(self, ctx: TransactionContext, drug_id: str) -> Drug:
        """Read one drug by ID."""
        raw = ctx.state.get_state(drug_id)
        if raw is None:
            raise ContractError(f"drug {drug_id} does not exist")
        return _decode(Drug.from_json, raw)

    def get_my_drugs(self, ctx: TransactionContext) -> list[Drug]:
        """Return every drug indexed under the caller's organization."""
        return self._filtered_drugs(ctx, lambda drug: True)

    def get_my_avail_drugs(self, ctx: TransactionContext) -> list[Drug]:
        """Return the caller's drugs that are not part of a pending transfer."""
        return self._filtered_drugs(ctx, lambda drug: not drug.is_transferred)

    def get_drugs_by_batch(self, ctx: TransactionContext, batch_id: str) -> list[Drug]:
        """Return every drug of a batch."""
        return [
            self._get_drug_wrapped(ctx, drug_id)
            for drug_id in self._indexed_ids(ctx, BATCH_DRUG_INDEX, batch_id, "drugs")
        ]

    def _filtered_drugs(
        self, ctx: TransactionContext, keep: Callable[[Drug], bool]
    ) -> list[Drug]:
        org = self._get_org_wrapped(ctx)
        drugs = (
            self._get_drug_wrapped(ctx, drug_id)
            for drug_id in self._indexed_ids(ctx, OWNER_DRUG_INDEX, org.id, "drugs")
        )
        return [drug for drug in drugs if keep(drug)]

    def _get_drug_wrapped(self, ctx: TransactionContext, drug_id: str) -> Drug:
        try:
            return self.get_drug(ctx, drug_id)
        except ContractError as exc:
            raise ContractError(f"failed to get drug: {exc}") from exc

    def _set_drug_owner(self, ctx: TransactionContext, drug_id: str, owner_id: str) -> str:
        key = self._composite_key(ctx, OWNER_DRUG_INDEX, [owner_id, drug_id])
        self._put(ctx, key, _INDEX_VALUE, "failed to put owner-drug index to world state")
        return drug_id

    # -- transfers -------------------------------------------------------

    def create_transfer(self, ctx: TransactionContext, req: Any) -> Transfer:
        """Send drugs owned by the caller to another organization."""
        org = self._get_org(ctx)
        request = _decode(CreateTransfer.from_json, req)
        if request.receiver_id is None:
            raise ContractError("transfer request has no ReceiverID")
        if request.transfer_date is None:
            raise ContractError("transfer request has no TransferDate")
        if any(drug_id is None for drug_id in request.drugs_id):
            raise ContractError("transfer request holds a null drug ID")

        drugs = []
        for drug_id in request.drugs_id:
            drug = self.get_drug(ctx, drug_id)
            if drug.is_transferred:
                raise ContractError(f"drug {drug_id} has already been transferred")
            if drug.owner_id != org.id:
                raise ContractError(f"drug {drug_id} does not belong to the sender")
            drugs.append(drug)

        transfer_id, _ = self._generate_model_id(ctx, TRANSFER_KEY)
        sender_key = self._composite_key(ctx, SENDER_TRANSFER_INDEX, [org.id, transfer_id])
        receiver_key = self._composite_key(
            ctx, RECEIVER_TRANSFER_INDEX, [request.receiver_id, transfer_id]
        )
        drug_keys = [
            self._composite_key(ctx, TRANSFER_DRUG_INDEX, [transfer_id, drug.id])
            for drug in drugs
        ]

        transfer = Transfer(
            id=transfer_id,
            is_accepted=False,
            receiver_id=request.receiver_id,
            sender_id=org.id,
            transfer_date=request.transfer_date,
        )
        self._put(ctx, transfer_id, transfer.to_json())
        self._put(ctx, sender_key, _INDEX_VALUE)
        self._put(ctx, receiver_key, _INDEX_VALUE)
        for drug, index_key in zip(drugs, drug_keys):
            drug.is_transferred = True
            self._put(ctx, drug.id, drug.to_json())
            self._put(ctx, index_key, _INDEX_VALUE)
        logger.info("Drugs transferred: %s", request.drugs_id)
        return transfer

    def get_transfer(self, ctx: TransactionContext, transfer_id: str) -> Transfer:
        """Read one transfer by ID."""
        raw = ctx.state.get_state(transfer_id)
        if raw is None:
            raise ContractError(f"transfer {transfer_id} does not exist")
        return _decode(Transfer.from_json, raw, "failed to unmarshal transfer")

    def get_my_out_transfers(self, ctx: TransactionContext) -> list[Transfer]:
        """Return the transfers the caller has sent."""
        return self._my_transfers(ctx, incoming=False)

    def get_my_in_transfers(self, ctx: TransactionContext) -> list[Transfer]:
        """Return the transfers addressed to the caller."""
        return self._my_transfers(ctx, incoming=True)

    def get_my_transfers(self, ctx: TransactionContext) -> list[Transfer]:
        """Return the caller's outgoing transfers followed by its incoming ones."""
        try:
            outgoing = self._my_transfers(ctx, incoming=False)
        except ContractError as exc:
            raise ContractError(f"failed to get out transfers: {exc}") from exc
        try:
            incoming = self._my_transfers(ctx, incoming=True)
        except ContractError as exc:
            raise ContractError(f"failed to get in transfers: {exc}") from exc
        return outgoing + incoming

    def accept_transfer(self, ctx: TransactionContext, req: Any) -> Transfer:
        """Accept an incoming transfer, taking ownership of its drugs."""
        transfer, org, request = self._validated_process(ctx, req)
        if request.receive_date is None:
            raise ContractError("transfer request has no ReceiveDate")
        transfer.is_accepted = True
        transfer.receive_date = request.receive_date
        self._put(
            ctx, transfer.id, transfer.to_json(), "failed to put transfer to world state"
        )

        accepted = []
        for drug_id in self._indexed_ids(
            ctx, TRANSFER_DRUG_INDEX, transfer.id, "transferred drugs"
        ):
            drug = self._get_drug_wrapped(ctx, drug_id)
            drug.is_transferred = False
            drug.owner_id = org.id
            drug.transfer_id = transfer.id
            try:
                self._set_drug_owner(ctx, drug.id, org.id)
            except ContractError as exc:
                raise ContractError(f"failed to set drug owner: {exc}") from exc
            self._put(ctx, drug.id, drug.to_json(), "failed to put drug to world state")
            accepted.append(drug.id)
        logger.info("Drugs accepted: %s", accepted)
        return transfer

    def reject_transfer(self, ctx: TransactionContext, req: Any) -> Transfer:
        """Reject an incoming transfer, releasing its drugs back to the sender."""
        transfer, _, _ = self._validated_process(ctx, req)
        transfer.is_accepted = False

        rejected = []
        for drug_id in self._indexed_ids(
            ctx, TRANSFER_DRUG_INDEX, transfer.id, "transferred drugs"
        ):
            drug = self._get_drug_wrapped(ctx, drug_id)
            drug.is_transferred = False
            self._put(ctx, drug.id, drug.to_json(), "failed to put drug to world state")
            rejected.append(drug.id)
        logger.info("Drugs rejected: %s", rejected)
        return transfer

    def _my_transfers(self, ctx: TransactionContext, incoming: bool) -> list[Transfer]:
        org = self._get_org_wrapped(ctx)
        index = RECEIVER_TRANSFER_INDEX if incoming else SENDER_TRANSFER_INDEX
        transfers = []
        for transfer_id in self._indexed_ids(ctx, index, org.id, "transferred drugs"):
            try:
                transfers.append(self.get_transfer(ctx, transfer_id))
            except ContractError as exc:
                raise ContractError(f"failed to get transfer: {exc}") from exc
        return transfers

    def _validated_process(
        self, ctx: TransactionContext, req: Any
    ) -> tuple[Transfer, Organization, ProcessTransfer]:
        try:
            org = self._get_org_wrapped(ctx)
            request = _decode(
                ProcessTransfer.from_json, req, "failed to unmarshal request"
            )
            try:
                transfer = self.get_transfer(ctx, request.transfer_id)
            except ContractError as exc:
                raise ContractError(f"failed to get transfer: {exc}") from exc
            if org.id != transfer.receiver_id:
                raise ContractError("only the receiver can accept the transfer")
        except ContractError as exc:
            raise ContractError(f"failed to validate process transfer: {exc}") from exc
        return transfer, org, request

    # -- batches ---------------------------------------------------------

    def create_batch(self, ctx: TransactionContext, req: Any) -> Batch:
        """Create a batch and its drugs; only manufacturers may do this."""
        try:
            org = self._get_org(ctx)
        except ContractError as exc:
            raise self._logged(f"failed to get organization ID: {exc}") from exc
        if org.type != MANUFACTURER:
            raise self._logged("only manufacturers can create batches")
        try:
            request = _decode(CreateBatch.from_json, req, "failed to unmarshal request")
        except ContractError as exc:
            raise self._logged(str(exc)) from exc

        try:
            batch_id, _ = self._generate_model_id(ctx, BATCH_KEY)
        except ContractError as exc:
            raise self._logged(f"failed to generate batch ID: {exc}") from exc

        batch = Batch(
            drug_name=request.drug_name,
            expiry_date=request.expiry_date,
            id=batch_id,
            manufacturer_name=org.name,
            manufacture_location=org.location,
            production_date=request.production_date,
        )
        try:
            self._put(ctx, batch.id, batch.to_json(), "failed to put batch to world state")
        except ContractError as exc:
            raise self._logged(str(exc)) from exc

        try:
            _, first_drug = self._generate_model_id(ctx, DRUG_KEY)
        except ContractError as exc:
            raise self._logged(f"failed to generate drug ID: {exc}") from exc

        created = []
        for number in range(first_drug, first_drug + max(request.amount, 0)):
            try:
                created.append(
                    self.create_drug(
                        ctx, org.id, batch.id, format_model_id(DRUG_KEY, number)
                    )
                )
            except ContractError as exc:
                raise self._logged(f"failed to create drug: {exc}") from exc
        logger.info("Drugs created: %s", created)

        try:
            self._save_model_id(ctx, DRUG_KEY, first_drug - 1 + request.amount)
        except ContractError as exc:
            raise self._logged(f"failed to save drug ID: {exc}") from exc
        return batch

    def get_batch(self, ctx: TransactionContext, batch_id: str) -> Batch:
        """Read one batch by ID."""
        raw = ctx.state.get_state(batch_id)
        if raw is None:
            raise ContractError(f"batch {batch_id} does not exist")
        return _decode(Batch.from_json, raw, "failed to unmarshal batch")

    def update_batch(self, ctx: TransactionContext, req: Any) -> Batch:
        """Change a batch's drug name and dates; only manufacturers may do this."""
        try:
            org = self._get_org(ctx)
        except ContractError as exc:
            raise ContractError(f"failed to get organization ID: {exc}") from exc
        if org.type != MANUFACTURER:
            raise ContractError("only manufacturers can update batches")
        request = _decode(UpdateBatch.from_json, req, "failed to unmarshal request")
        try:
            batch = self.get_batch(ctx, request.id)
        except ContractError as exc:
            raise ContractError(f"failed to get batch: {exc}") from exc
        batch.drug_name = request.drug_name
        batch.expiry_date = request.expiry_date
        batch.production_date = request.production_date
        self._put(ctx, batch.id, batch.to_json(), "failed to put batch to world state")
        return batch

    def get_all_batches(self, ctx: TransactionContext) -> list[Batch]:
        """Return every batch, in key order."""
        entries = self._range(ctx, BATCH_KEY, BATCH_KEY + "~", "failed to get batches")
        return [_decode(Batch.from_json, value) for _, value in entries]

    def batch_exists(self, ctx: TransactionContext, batch_id: str) -> bool:
        """Tell whether anything is stored under batch_id."""
        return ctx.state.get_state(batch_id) is not None

    # -- identifiers -----------------------------------------------------

    def _generate_model_id(self, ctx: TransactionContext, model_key: str) -> tuple[str, int]:
        key = _latest_id_key(model_key)
        raw = ctx.state.get_state(key)
        latest = 0
        if raw is not None:
            try:
                latest = _parse_counter(raw)
            except ValueError as exc:
                raise ContractError(f"failed to parse latest ID number: {exc}") from exc
        number = latest + 1
        self._put(ctx, key, str(number).encode(), "failed to store new latest ID")
        return format_model_id(model_key, number), number

    def _save_model_id(self, ctx: TransactionContext, model_key: str, number: int) -> None:
        self._put(ctx, _latest_id_key(model_key), str(number).encode())

    # -- world state helpers ---------------------------------------------

    @staticmethod
    def _logged(message: str) -> ContractError:
        logger.error("error: %s", message)
        return ContractError(message)

    def _get_org_wrapped(self, ctx: TransactionContext) -> Organization:
        try:
            return self._get_org(ctx)
        except ContractError as exc:
            raise ContractError(f"failed to get organization ID: {exc}") from exc

    @staticmethod
    def _put(
        ctx: TransactionContext, key: str, value: bytes, context: str | None = None
    ) -> None:
        try:
            ctx.state.put_state(key, value)
        except LedgerError as exc:
            message = str(exc) if context is None else f"{context}: {exc}"
            raise ContractError(message) from exc

    @staticmethod
    def _composite_key(
        ctx: TransactionContext, object_type: str, attributes: list[str]
    ) -> str:
        try:
            return ctx.state.create_composite_key(object_type, attributes)
        except LedgerError as exc:
            raise ContractError(f"failed to create composite key: {exc}") from exc

    @staticmethod
    def _range(
        ctx: TransactionContext, start: str, end: str, context: str | None
    ) -> list[tuple[str, bytes]]:
        try:
            return list(ctx.state.get_state_by_range(start, end))
        except LedgerError as exc:
            message = str(exc) if context is None else f"{context}: {exc}"
            raise ContractError(message) from exc

    @staticmethod
    def _indexed_ids(
        ctx: TransactionContext, index: str, owner: str, what: str
    ) -> Iterator[str]:
        """Yield the second attribute of every index entry under owner."""
        try:
            entries = ctx.state.get_state_by_partial_composite_key(index, [owner])
        except LedgerError as exc:
            raise ContractError(f"failed to get {what}: {exc}") from exc
        for key, _ in entries:
            try:
                _, parts = ctx.state.split_composite_key(key)
            except LedgerError as exc:
                raise ContractError(f"failed to split composite key: {exc}") from exc
            if len(parts) > 1:
                yield parts[1]