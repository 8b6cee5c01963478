"""
Identity allocation for newly created records.

Public API:
    - PENDING_ID: the sentinel id (0) carried by records awaiting the server
    - is_placeholder: check whether an id is still pending
    - allocate_optimistic_id: id to give a locally created record
    - allocate_local_id: next free id when running without a server
    - find_placeholder: locate the row a canonical record should replace
    - Pending / Assigned / key_from_wire: tagged identifier form
"""

from ems_sync.core.ids.allocator import (
    PENDING_ID,
    Assigned,
    EntityKey,
    Pending,
    allocate_local_id,
    allocate_optimistic_id,
    find_placeholder,
    is_placeholder,
    key_from_wire,
)

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
