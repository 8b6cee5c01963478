"""
Placeholder identifiers for records the server has not numbered yet.

The remote spreadsheet assigns identifiers sequentially. A record created
locally is therefore sent with the sentinel id ``0`` and stored under that
same key in the optimistic snapshot; once the server answers with the
canonical row, the reconciler swaps the placeholder for it. Only one write is
in flight at a time, so at most one fresh placeholder exists per table.

Inside the engine an identifier is the tagged union ``Pending | Assigned``;
it collapses to ``0`` / ``> 0`` only when written to the wire.

Example:
    >>> key_from_wire(0)
    Pending()
    >>> key_from_wire(12).to_wire()
    12
    >>> is_placeholder(allocate_optimistic_id())
    True
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Union

from ems_sync.core.snapshot.models import Record

PENDING_ID = 0


@dataclass(frozen=True)
class Pending:
    """Identifier not yet assigned by the server."""

    def to_wire(self) -> int:
        return PENDING_ID


@dataclass(frozen=True)
class Assigned:
    """Identifier assigned by the server."""

    value: int

    def __post_init__(self) -> None:
        if self.value <= PENDING_ID:
            raise ValueError(f"Assigned identifiers must be positive, got {self.value}")

    def to_wire(self) -> int:
        return self.value


EntityKey = Union[Pending, Assigned]


def key_from_wire(value: int | None) -> EntityKey:
    """Lift a wire identifier (``None`` counts as unset) into the tagged form."""
    if value is None or value == PENDING_ID:
        return Pending()
    return Assigned(value)


def is_placeholder(entity_id: int | None) -> bool:
    """Whether an identifier still awaits server assignment."""
    return isinstance(key_from_wire(entity_id), Pending)


def allocate_optimistic_id() -> int:
    """
    Identifier to give a record created locally.

    Always the sentinel: the server numbers new rows.
    """
    return Pending().to_wire()


def allocate_local_id(records: Sequence[Record]) -> int:
    """
    Identifier for a record created with no server to number it.

    Offline, nothing will ever replace a placeholder, so the next free id of
    the table is used directly: one past the highest assigned id.
    """
    highest = max((r.entity_id for r in records if r.entity_id), default=PENDING_ID)
    return highest + 1


def find_placeholder(records: Sequence[Record]) -> int | None:
    """
    Index of the record a server-assigned row should replace.

    The optimistic apply appends new rows, so when stale placeholders from an
    earlier failed create are still around, the last one belongs to the
    current write.

    Only rows holding the sentinel itself qualify; a row whose id cell is
    simply blank is left alone.

    Returns:
        List index, or None if no record holds a placeholder id
    """
    for index in range(len(records) - 1, -1, -1):
        if records[index].entity_id == PENDING_ID:
            return index
    return None


__all__ = [
    "PENDING_ID",
    "Assigned",
    "EntityKey",
    "Pending",
    "allocate_local_id",
    "allocate_optimistic_id",
    "find_placeholder",
    "is_placeholder",
    "key_from_wire",
]
