"""Derived, read-only views of a snapshot."""

from ems_sync.core.views.integrity import DanglingReference, find_dangling_references
from ems_sync.core.views.projector import (
    branches_for_bank,
    can_delete_office,
    custodied_offices,
    is_employee_locked,
    is_office_finalized,
    offices_in_department,
    project_employees,
    project_posts,
)

__all__ = [
    "DanglingReference",
    "branches_for_bank",
    "can_delete_office",
    "custodied_offices",
    "find_dangling_references",
    "is_employee_locked",
    "is_office_finalized",
    "offices_in_department",
    "project_employees",
    "project_posts",
]
