"""An in-memory world state with composite-key indexes and range queries."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

_MIN_RUNE = "\x00"
_MAX_RUNE = "\U0010ffff"
_EMPTY_KEY_SUBSTITUTE = "\x01"


class LedgerError(Exception):
    """Raised when the world state rejects a key or a query."""


def _validate_component(text: str) -> None:
    for position, char in enumerate(text):
        if char in (_MIN_RUNE, _MAX_RUNE):
            raise LedgerError(
                f"input contains unicode U+{ord(char):04X} starting at position "
                f"[{position}]. U+0000 and U+10FFFF are not allowed in the input "
                "attribute of a composite key"
            )


def _validate_simple_key(key: str) -> None:
    if key.startswith(_MIN_RUNE):
        raise LedgerError(
            f"first character of the key [{key!r}] contains a null character "
            "which is not allowed"
        )


class WorldState:
    """Key-value store holding the ledger's current state."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def get_state(self, key: str) -> bytes | None:
        """Return the value stored under key, or None when there is none."""
        return self._data.get(key)

    def put_state(self, key: str, value: bytes) -> None:
        """Store value under key."""
        if not key:
            raise LedgerError("key must not be an empty string")
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"value must be bytes, not {type(value).__name__}")
        self._data[key] = bytes(value)

    def create_composite_key(self, object_type: str, attributes: Iterable[str]) -> str:
        """Join an object type and attributes into one index key."""
        _validate_component(object_type)
        parts = [_MIN_RUNE, object_type, _MIN_RUNE]
        for attribute in attributes:
            _validate_component(attribute)
            parts += [attribute, _MIN_RUNE]
        return "".join(parts)

    def split_composite_key(self, key: str) -> tuple[str, list[str]]:
        """Split an index key back into its object type and attributes."""
        if len(key) < 2 or not key.startswith(_MIN_RUNE) or not key.endswith(_MIN_RUNE):
            raise LedgerError(f"{key!r} is not a composite key")
        object_type, *attributes = key[1:-1].split(_MIN_RUNE)
        return object_type, attributes

    def get_state_by_partial_composite_key(
        self, object_type: str, attributes: Iterable[str]
    ) -> Iterator[tuple[str, bytes]]:
        """Iterate, in key order, over index entries that begin with the given parts."""
        prefix = self.create_composite_key(object_type, attributes)
        return self._scan(prefix, prefix + _MAX_RUNE)

    def get_state_by_range(
        self, start_key: str, end_key: str
    ) -> Iterator[tuple[str, bytes]]:
        """Iterate, in key order, over simple keys from start_key up to end_key.

        An empty start begins at the first simple key; an empty end is unbounded.
        """
        _validate_simple_key(start_key)
        _validate_simple_key(end_key)
        return self._scan(start_key or _EMPTY_KEY_SUBSTITUTE, end_key or None)

    def _scan(self, start: str, end: str | None) -> Iterator[tuple[str, bytes]]:
        selected = sorted(
            (key, value)
            for key, value in self._data.items()
            if key >= start and (end is None or key < end)
        )
        return iter(selected)


@dataclass
class TransactionContext:
    """What one invocation sees: the world state and the caller's MSP identity."""

    state: WorldState = field(default_factory=WorldState)
    msp_id: str | None = None