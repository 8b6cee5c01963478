"""
Role-filtered views of a snapshot.

Everything here is a pure function of ``(snapshot, identity)``: no caching,
no I/O, so a view is always recomputed from its current inputs.

Visibility rules:
    - An administrator sees every employee and every post.
    - Any other user sees the employees of the offices they are custodian
      of, and the posts in their post selection.
    - Without an identity nothing is visible.
"""

from __future__ import annotations

from ems_sync.core.snapshot.models import (
    BankBranch,
    Employee,
    Identity,
    Office,
    Post,
    Snapshot,
)


def custodied_offices(snapshot: Snapshot, user_id: int) -> list[Office]:
    """Offices whose custodian is ``user_id``."""
    return [office for office in snapshot.offices if office.custodian_id == user_id]


def offices_in_department(snapshot: Snapshot, department_id: int) -> list[Office]:
    return [office for office in snapshot.offices if office.department_id == department_id]


def branches_for_bank(snapshot: Snapshot, bank_id: int) -> list[BankBranch]:
    return [branch for branch in snapshot.branches if branch.bank_id == bank_id]


def project_employees(snapshot: Snapshot, identity: Identity | None) -> list[Employee]:
    """
    Employees visible to ``identity``.

    Example:
        >>> clerk = Identity(user_id=7, user_type="NORMAL")
        >>> [e.employee_id for e in project_employees(snapshot, clerk)]
        [11, 13]
    """
    if identity is None:
        return []
    if identity.is_admin:
        return list(snapshot.employees)
    office_ids = {office.office_id for office in custodied_offices(snapshot, identity.user_id)}
    office_ids.discard(None)
    return [employee for employee in snapshot.employees if employee.office_id in office_ids]


def project_posts(snapshot: Snapshot, identity: Identity | None) -> list[Post]:
    """Posts visible to ``identity``, in table order."""
    if identity is None:
        return []
    if identity.is_admin:
        return list(snapshot.posts)
    selected = snapshot.post_selection(identity.user_id)
    return [post for post in snapshot.posts if post.post_id in selected]


def is_office_finalized(snapshot: Snapshot, office_id: int | None) -> bool:
    if office_id is None:
        return False
    for office in snapshot.offices:
        if office.office_id == office_id:
            return office.is_finalized
    return False


def can_delete_office(snapshot: Snapshot, office_id: int) -> bool:
    """An office can be deleted only while no employee is assigned to it."""
    return not any(employee.office_id == office_id for employee in snapshot.employees)


def is_employee_locked(snapshot: Snapshot, employee: Employee, identity: Identity | None) -> bool:
    """
    Whether ``identity`` may no longer edit ``employee``.

    A finalized office freezes its employees for everyone but administrators.
    """
    if identity is not None and identity.is_admin:
        return False
    return is_office_finalized(snapshot, employee.office_id)


__all__ = [
    "branches_for_bank",
    "can_delete_office",
    "custodied_offices",
    "is_employee_locked",
    "is_office_finalized",
    "offices_in_department",
    "project_employees",
    "project_posts",
]
