"""
Sanitizer for remote snapshots.

The remote document comes straight out of a spreadsheet: identifiers arrive
as strings or floats, roles in any case, and the post-selection relation in
whatever shape the last writer left it (real arrays, JSON text, comma lists,
bare scalars). This module is the only place that deals with that; the rest
of the engine works on the typed ``Snapshot`` it produces.

The pass is pure and total. A value that cannot be coerced is skipped for
that one field and logged at debug level; nothing raises.

Example:
    >>> snap = sanitize({
    ...     "users": [{"User_ID": "7", "User_Type": "Admin"}],
    ...     "employees": [],
    ...     "userPostSelections": {"7": "[1, 2]"},
    ... })
    >>> snap.users[0].user_id, snap.users[0].user_type.value
    (7, 'ADMIN')
    >>> sorted(snap.user_post_selections[7])
    [1, 2]
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from ems_sync.core.snapshot.models import (
    POST_SELECTIONS_KEY,
    EntityKind,
    Record,
    Role,
    Snapshot,
)

logger = logging.getLogger(__name__)

# Identifier columns that do not follow the <Entity>_ID naming.
ID_ALIASES = frozenset(
    {
        "ac_no",
        "bank_id",
        "user_id",
        "post_id",
        "pay_id",
        "department_id",
        "office_id",
        "branch_id",
        "employee_id",
    }
)

ROLE_FIELDS = frozenset({"user_type", "role"})

_QUOTES = "'\""


def is_id_field(name: str) -> bool:
    """Whether a column holds an identifier that must be an integer."""
    lowered = name.strip().lower()
    return lowered.endswith("_id") or lowered in ID_ALIASES


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_id(value: Any) -> int:
    """
    Parse a loosely typed identifier into a non-negative integer.

    Numbers are floored, so ``"12.0"`` and ``12.7`` both give 12.

    Args:
        value: Raw cell value

    Returns:
        The identifier as an int

    Raises:
        ValueError: If the value is not a finite, non-negative number
    """
    if isinstance(value, bool):
        raise ValueError(f"boolean is not an identifier: {value!r}")
    if isinstance(value, int):
        number: float = value
    elif isinstance(value, float):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            number = float(text)
    else:
        raise ValueError(f"unsupported identifier type: {type(value).__name__}")

    if isinstance(number, float):
        if not math.isfinite(number):
            raise ValueError(f"identifier is not finite: {value!r}")
        number = math.floor(number)
    if number < 0:
        raise ValueError(f"identifier is negative: {value!r}")
    return int(number)


def try_coerce_id(value: Any) -> int | None:
    """Like ``coerce_id`` but returns None for blanks and bad values."""
    if is_blank(value):
        return None
    try:
        return coerce_id(value)
    except (TypeError, ValueError):
        return None


def normalize_role(value: Any) -> Any:
    """Map admin/normal spellings onto ``Role``; anything else passes through."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "admin":
            return Role.ADMIN
        if lowered == "normal":
            return Role.NORMAL
    return value


def _clean_fields(raw: Mapping[Any, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            continue
        if is_id_field(key) and not is_blank(value):
            try:
                value = coerce_id(value)
            except (TypeError, ValueError) as e:
                logger.debug("Skipping field %s: %s", key, e)
                continue
        elif key.strip().lower() in ROLE_FIELDS:
            value = normalize_role(value)
        cleaned[key] = value
    return cleaned


def _validate_lenient(model: type[Record], fields: dict[str, Any]) -> Record | None:
    # Drop whichever fields the model rejects and try again; each round
    # removes at least one field, so this terminates.
    while True:
        try:
            return model.model_validate(fields)
        except ValidationError as exc:
            rejected = {
                err["loc"][0]
                for err in exc.errors()
                if err.get("loc") and err["loc"][0] in fields
            }
            if not rejected:
                logger.warning("Dropping unusable %s record: %s", model.__name__, exc)
                return None
            logger.debug("Skipping %s fields %s", model.__name__, sorted(map(str, rejected)))
            fields = {k: v for k, v in fields.items() if k not in rejected}


def sanitize_record(kind: EntityKind, raw: Any) -> Record | None:
    """
    Sanitize one loosely typed row into the record type of ``kind``.

    Args:
        kind: Target entity table
        raw: Row as received (expected to be a mapping)

    Returns:
        Typed record, or None if ``raw`` is not a usable row
    """
    if isinstance(raw, Record):
        raw = raw.to_wire(include_attachments=True)
    if not isinstance(raw, Mapping):
        logger.debug("Skipping non-mapping %s row: %r", kind.value, raw)
        return None
    return _validate_lenient(kind.model, _clean_fields(raw))


def sanitize_table(kind: EntityKind, rows: Any) -> list[Record]:
    if not isinstance(rows, list):
        if rows is not None:
            logger.debug("Table %s is not a list, treating as empty", kind.table)
        return []
    records = []
    for row in rows:
        record = sanitize_record(kind, row)
        if record is not None:
            records.append(record)
    return records


def _iter_post_ids(value: Any) -> Iterator[int]:
    if isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from _iter_post_ids(item)
        return

    if isinstance(value, str):
        text = value.strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
            yield from _iter_post_ids(text[1:-1])
            return

        tokens: list[str] | None = None
        if text.startswith("[") and text.endswith("]"):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                yield from _iter_post_ids(parsed)
                return
            tokens = text[1:-1].split(",")
        elif "," in text:
            tokens = text.split(",")

        # Every token is shorter than text, so the recursion is bounded.
        if tokens is not None:
            for token in tokens:
                yield from _iter_post_ids(token)
            return

    number = try_coerce_id(value)
    if number is not None:
        yield number


def parse_post_ids(value: Any) -> frozenset[int]:
    """
    Parse one user's post selection in any of its stored encodings.

    Accepts nested arrays, JSON array text, bracketed text that is not valid
    JSON, comma separated text and bare scalars. Invalid tokens are dropped.

    Example:
        >>> sorted(parse_post_ids("[1,2,3]")) == sorted(parse_post_ids("1,2,3")) == [1, 2, 3]
        True
        >>> parse_post_ids(2)
        frozenset({2})
    """
    return frozenset(_iter_post_ids(value))


def sanitize_post_selections(raw: Any) -> dict[int, frozenset[int]]:
    """
    Sanitize the user -> posts relation.

    Accepts a mapping keyed by user id, or a list of sheet rows carrying
    ``User_ID`` and ``Post_IDs`` (rows for the same user are merged).
    """
    pairs: list[tuple[Any, Any]] = []
    if isinstance(raw, Mapping):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        for row in raw:
            if isinstance(row, Mapping):
                pairs.append((row.get("User_ID"), row.get("Post_IDs", row.get("Post_ID"))))
    elif raw is not None:
        logger.debug("Ignoring post selections of type %s", type(raw).__name__)

    selections: dict[int, frozenset[int]] = {}
    for key, value in pairs:
        user_id = try_coerce_id(key)
        if user_id is None:
            logger.debug("Skipping post selection for invalid user key %r", key)
            continue
        selections[user_id] = selections.get(user_id, frozenset()) | parse_post_ids(value)
    return selections


def sanitize(raw: Any) -> Snapshot:
    """
    Turn an untrusted remote document into a typed ``Snapshot``.

    Missing or malformed tables become empty, so callers never see an
    absent table. Running the result through ``sanitize`` again returns an
    equal snapshot.

    Args:
        raw: Decoded JSON document, or an existing ``Snapshot``

    Returns:
        A fully typed snapshot
    """
    if isinstance(raw, Snapshot):
        raw = raw.to_wire()
    if not isinstance(raw, Mapping):
        logger.warning("Remote snapshot is not an object (%s), using empty snapshot", type(raw).__name__)
        return Snapshot()

    tables = {kind.table: sanitize_table(kind, raw.get(kind.table)) for kind in EntityKind}
    return Snapshot(
        **tables,
        user_post_selections=sanitize_post_selections(raw.get(POST_SELECTIONS_KEY)),
    )


__all__ = [
    "ID_ALIASES",
    "coerce_id",
    "is_id_field",
    "normalize_role",
    "parse_post_ids",
    "sanitize",
    "sanitize_post_selections",
    "sanitize_record",
    "sanitize_table",
    "try_coerce_id",
]
