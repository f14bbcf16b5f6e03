"""Ledger records and request payloads, with their JSON wire format."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, NamedTuple, TypeVar

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_TIME_PATTERN = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d+))?"
    r"(Z|[+-]\d{2}:\d{2})"
)

# Characters escaped in encoded strings so that documents are safe inside HTML.
_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def format_time(value: datetime) -> str:
    """Format a timestamp as RFC 3339 with trailing fractional zeros removed."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    hours, rest = divmod(abs(total), 3600)
    return f"{text}{sign}{hours:02d}:{rest // 60:02d}"


def parse_time(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; fractions beyond microseconds are dropped."""
    match = _TIME_PATTERN.fullmatch(text)
    if match is None:
        raise ValueError(f"cannot parse {text!r} as an RFC 3339 time")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    if zone == "Z":
        tz = timezone.utc
    else:
        zone_hours, zone_minutes = int(zone[1:3]), int(zone[4:6])
        if zone_hours >= 24 or zone_minutes >= 60:
            raise ValueError(f"time zone offset out of range in {text!r}")
        delta = timedelta(hours=zone_hours, minutes=zone_minutes)
        if zone[0] == "-":
            delta = -delta
        tz = timezone.utc if not delta else timezone(delta)
    microsecond = int((fraction or "")[:6].ljust(6, "0"))
    return datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second), microsecond, tzinfo=tz,
    )


class _Unchanged:
    """Marks a JSON null that leaves a non-nullable field at its current value."""


_UNCHANGED = _Unchanged()


def _type_error(value: Any, key: str, expected: str) -> ValueError:
    return ValueError(
        f"cannot unmarshal {type(value).__name__} into field {key} of type {expected}"
    )


def _decode_str(value: Any, key: str) -> Any:
    if value is None:
        return _UNCHANGED
    if not isinstance(value, str):
        raise _type_error(value, key, "string")
    return value


def _decode_bool(value: Any, key: str) -> Any:
    if value is None:
        return _UNCHANGED
    if not isinstance(value, bool):
        raise _type_error(value, key, "bool")
    return value


def _decode_int(value: Any, key: str) -> Any:
    if value is None:
        return _UNCHANGED
    if isinstance(value, bool) or not isinstance(value, int):
        raise _type_error(value, key, "int")
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"number {value} overflows field {key}")
    return value


def _decode_time(value: Any, key: str) -> Any:
    if value is None:
        return _UNCHANGED
    if not isinstance(value, str):
        raise _type_error(value, key, "time")
    return parse_time(value)


def _decode_optional_str(value: Any, key: str) -> Any:
    return None if value is None else _decode_str(value, key)


def _decode_optional_time(value: Any, key: str) -> Any:
    return None if value is None else _decode_time(value, key)


def _decode_optional_str_list(value: Any, key: str) -> Any:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _type_error(value, key, "list")
    return [_decode_optional_str(item, key) for item in value]


def _identity(value: Any) -> Any:
    return value


class _Field(NamedTuple):
    attr: str
    key: str
    decode: Callable[[Any, str], Any]
    encode: Callable[[Any], Any] = _identity


_T = TypeVar("_T")


def _match(fields: tuple[_Field, ...], key: str) -> _Field | None:
    for spec in fields:
        if spec.key == key:
            return spec
    folded = key.casefold()
    for spec in fields:
        if spec.key.casefold() == folded:
            return spec
    return None


def _decode(cls: type[_T], data: Any) -> _T:
    """Build an instance of cls from JSON, matching keys case-insensitively."""
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    if isinstance(data, str):
        data = json.loads(data)
    instance = cls()
    if data is None:
        return instance
    if not isinstance(data, Mapping):
        raise ValueError(
            f"cannot unmarshal {type(data).__name__} into {cls.__name__}"
        )
    fields: tuple[_Field, ...] = getattr(cls, "_fields")
    for key, value in data.items():
        spec = _match(fields, key)
        if spec is None:
            continue
        decoded = spec.decode(value, spec.key)
        if decoded is not _UNCHANGED:
            setattr(instance, spec.attr, decoded)
    return instance


def _encode(record: Any) -> bytes:
    """Encode a record as compact JSON, fields in their declared order."""
    document = {
        spec.key: spec.encode(getattr(record, spec.attr)) for spec in record._fields
    }
    text = json.dumps(document, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


@dataclass
class Organization:
    """A participant in the supply chain."""

    id: str = ""
    location: str = ""
    name: str = ""
    type: str = ""

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("id", "ID", _decode_str),
        _Field("location", "Location", _decode_str),
        _Field("name", "Name", _decode_str),
        _Field("type", "Type", _decode_str),
    )

    def to_json(self) -> bytes:
        """Encode as compact JSON, fields in their declared order."""
        return _encode(self)

    @classmethod
    def from_json(cls, data) -> Organization:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class Drug:
    """A single traceable unit of a batch."""

    batch_id: str = ""
    id: str = ""
    is_transferred: bool = False
    owner_id: str = ""
    transfer_id: str = ""

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("batch_id", "BatchID", _decode_str),
        _Field("id", "ID", _decode_str),
        _Field("is_transferred", "isTransferred", _decode_bool),
        _Field("owner_id", "OwnerID", _decode_str),
        _Field("transfer_id", "TransferID", _decode_str),
    )

    def to_json(self) -> bytes:
        """Encode as compact JSON, fields in their declared order."""
        return _encode(self)

    @classmethod
    def from_json(cls, data) -> Drug:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class Batch:
    """A production batch of one drug."""

    drug_name: str = ""
    expiry_date: datetime = _ZERO_TIME
    id: str = ""
    manufacturer_name: str = ""
    manufacture_location: str = ""
    production_date: datetime = _ZERO_TIME

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("drug_name", "DrugName", _decode_str),
        _Field("expiry_date", "ExpiryDate", _decode_time, format_time),
        _Field("id", "ID", _decode_str),
        _Field("manufacturer_name", "ManufacturerName", _decode_str),
        _Field("manufacture_location", "ManufactureLocation", _decode_str),
        _Field("production_date", "ProductionDate", _decode_time, format_time),
    )

    def to_json(self) -> bytes:
        """Encode as compact JSON, fields in their declared order."""
        return _encode(self)

    @classmethod
    def from_json(cls, data) -> Batch:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class Transfer:
    """A shipment of drugs from one organization to another."""

    id: str = ""
    is_accepted: bool = False
    receive_date: datetime = _ZERO_TIME
    receiver_id: str = ""
    sender_id: str = ""
    transfer_date: datetime = _ZERO_TIME

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("id", "ID", _decode_str),
        _Field("is_accepted", "isAccepted", _decode_bool),
        _Field("receive_date", "ReceiveDate", _decode_time, format_time),
        _Field("receiver_id", "ReceiverID", _decode_str),
        _Field("sender_id", "SenderID", _decode_str),
        _Field("transfer_date", "TransferDate", _decode_time, format_time),
    )

    def to_json(self) -> bytes:
        """Encode as compact JSON, fields in their declared order."""
        return _encode(self)

    @classmethod
    def from_json(cls, data) -> Transfer:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class CreateBatch:
    """Request to create a batch with a number of drugs."""

    amount: int = 0
    drug_name: str = ""
    expiry_date: datetime = _ZERO_TIME
    id: str = ""
    production_date: datetime = _ZERO_TIME

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("amount", "Amount", _decode_int),
        _Field("drug_name", "DrugName", _decode_str),
        _Field("expiry_date", "ExpiryDate", _decode_time),
        _Field("id", "ID", _decode_str),
        _Field("production_date", "ProductionDate", _decode_time),
    )

    @classmethod
    def from_json(cls, data) -> CreateBatch:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class CreateTransfer:
    """Request to send drugs to another organization."""

    drugs_id: list[str | None] = field(default_factory=list)
    receiver_id: str | None = None
    sender_id: str | None = None
    transfer_date: datetime | None = None

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("drugs_id", "DrugsID", _decode_optional_str_list),
        _Field("receiver_id", "ReceiverID", _decode_optional_str),
        _Field("sender_id", "SenderID", _decode_optional_str),
        _Field("transfer_date", "TransferDate", _decode_optional_time),
    )

    @classmethod
    def from_json(cls, data) -> CreateTransfer:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class ProcessTransfer:
    """Request to accept or reject an incoming transfer."""

    receive_date: datetime | None = None
    transfer_id: str = ""

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("receive_date", "ReceiveDate", _decode_optional_time),
        _Field("transfer_id", "transferID", _decode_str),
    )

    @classmethod
    def from_json(cls, data) -> ProcessTransfer:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)


@dataclass
class UpdateBatch:
    """Request to change the descriptive data of a batch."""

    drug_name: str = ""
    expiry_date: datetime = _ZERO_TIME
    id: str = ""
    production_date: datetime = _ZERO_TIME

    _fields: ClassVar[tuple[_Field, ...]] = (
        _Field("drug_name", "DrugName", _decode_str),
        _Field("expiry_date", "ExpiryDate", _decode_time),
        _Field("id", "ID", _decode_str),
        _Field("production_date", "ProductionDate", _decode_time),
    )

    @classmethod
    def from_json(cls, data) -> UpdateBatch:
        """Build an instance from a JSON document (text, bytes or decoded mapping)."""
        return _decode(cls, data)