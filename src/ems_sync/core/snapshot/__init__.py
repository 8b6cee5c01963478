"""
Snapshot models and the sanitizer that produces them.

Example:
    >>> from ems_sync.core.snapshot import sanitize
    >>> snap = sanitize({"posts": [{"Post_ID": "3", "Post_Name": "Clerk"}]})
    >>> snap.posts[0].post_id
    3
"""

from ems_sync.core.snapshot.models import (
    ENTITY_MODELS,
    Bank,
    BankBranch,
    Department,
    Employee,
    EntityAction,
    EntityKind,
    Identity,
    Office,
    Payscale,
    Post,
    Record,
    Role,
    Snapshot,
    User,
)
from ems_sync.core.snapshot.sanitize import (
    parse_post_ids,
    sanitize,
    sanitize_post_selections,
    sanitize_record,
)

__all__ = [
    "ENTITY_MODELS",
    "Bank",
    "BankBranch",
    "Department",
    "Employee",
    "EntityAction",
    "EntityKind",
    "Identity",
    "Office",
    "Payscale",
    "Post",
    "Record",
    "Role",
    "Snapshot",
    "User",
    "parse_post_ids",
    "sanitize",
    "sanitize_post_selections",
    "sanitize_record",
]
