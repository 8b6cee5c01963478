"""
Reference integrity report.

Foreign keys may dangle for a while (a department deleted in another
session, a branch not yet synced). They are tolerated and reported, never
repaired.
"""

from __future__ import annotations

from dataclasses import dataclass

from ems_sync.core.ids.allocator import is_placeholder
from ems_sync.core.snapshot.models import EntityKind, Snapshot

# (holder table, attribute, column, referenced table)
REFERENCES: tuple[tuple[EntityKind, str, str, EntityKind], ...] = (
    (EntityKind.OFFICE, "department_id", "Department_ID", EntityKind.DEPARTMENT),
    (EntityKind.OFFICE, "custodian_id", "User_ID", EntityKind.USER),
    (EntityKind.BRANCH, "bank_id", "Bank_ID", EntityKind.BANK),
    (EntityKind.EMPLOYEE, "department_id", "Department_ID", EntityKind.DEPARTMENT),
    (EntityKind.EMPLOYEE, "office_id", "Office_ID", EntityKind.OFFICE),
    (EntityKind.EMPLOYEE, "post_id", "Post_ID", EntityKind.POST),
    (EntityKind.EMPLOYEE, "pay_id", "Pay_ID", EntityKind.PAYSCALE),
    (EntityKind.EMPLOYEE, "bank_id", "Bank_ID", EntityKind.BANK),
    (EntityKind.EMPLOYEE, "branch_id", "Branch_ID", EntityKind.BRANCH),
)


@dataclass(frozen=True)
class DanglingReference:
    """A foreign key that names a row not present in the snapshot."""

    kind: EntityKind
    record_id: int | None
    column: str
    target: EntityKind
    target_id: int

    def __str__(self) -> str:
        return f"{self.kind.value} {self.record_id}: {self.column}={self.target_id} not in {self.target.table}"


def find_dangling_references(snapshot: Snapshot) -> list[DanglingReference]:
    """
    List every declared reference that does not resolve.

    Unset (None) and pending (0) references are not reported.
    """
    known: dict[EntityKind, set[int | None]] = {
        kind: {record.entity_id for record in snapshot.table(kind)} for kind in EntityKind
    }
    dangling: list[DanglingReference] = []
    for kind, attr, column, target in REFERENCES:
        for record in snapshot.table(kind):
            value = getattr(record, attr)
            if is_placeholder(value) or value in known[target]:
                continue
            dangling.append(DanglingReference(kind, record.entity_id, column, target, value))
    return dangling


__all__ = ["REFERENCES", "DanglingReference", "find_dangling_references"]
