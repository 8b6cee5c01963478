"""
Typed records for the employee register.

Every table of the remote spreadsheet maps to a pydantic record. Python
attributes are snake_case; the sheet column names (``User_ID``,
``Office_Name``, ...) are the field aliases used on the wire and in the
local cache. Unknown columns are kept as extra fields so a round trip
through the engine never loses data.

Identifier fields hold non-negative integers. The value ``0`` is the
placeholder for "not yet assigned by the server" (see
``ems_sync.core.ids.allocator``).

Example:
    >>> office = Office.model_validate({"Office_ID": 4, "Office_Name": "North", "User_ID": 7})
    >>> office.custodian_id
    7
    >>> office.to_wire()
    {'Office_ID': 4, 'Office_Name': 'North', 'User_ID': 7}
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Annotated, Any, ClassVar, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _blank_as_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# A sheet cell left empty reads as "unset", never as 0.
RecordId = Annotated[Optional[int], BeforeValidator(_blank_as_none)]


class Role(str, Enum):
    """Canonical user roles."""

    ADMIN = "ADMIN"
    NORMAL = "NORMAL"


class EntityKind(str, Enum):
    """The entity tables held in a snapshot."""

    USER = "user"
    DEPARTMENT = "department"
    OFFICE = "office"
    BANK = "bank"
    BRANCH = "branch"
    POST = "post"
    PAYSCALE = "payscale"
    EMPLOYEE = "employee"

    @property
    def model(self) -> type[Record]:
        """Record class stored in this table."""
        return ENTITY_MODELS[self]

    @property
    def table(self) -> str:
        """Snapshot/wire key of this table (e.g. ``"branches"``)."""
        return self.model.table

    @property
    def upsert_action(self) -> EntityAction:
        return EntityAction(f"upsert{self.value.capitalize()}")

    @property
    def delete_action(self) -> EntityAction:
        return EntityAction(f"delete{self.value.capitalize()}")


class EntityAction(str, Enum):
    """Write actions understood by the remote endpoint."""

    UPSERT_USER = "upsertUser"
    DELETE_USER = "deleteUser"
    UPSERT_DEPARTMENT = "upsertDepartment"
    DELETE_DEPARTMENT = "deleteDepartment"
    UPSERT_OFFICE = "upsertOffice"
    DELETE_OFFICE = "deleteOffice"
    UPSERT_BANK = "upsertBank"
    DELETE_BANK = "deleteBank"
    UPSERT_BRANCH = "upsertBranch"
    DELETE_BRANCH = "deleteBranch"
    UPSERT_POST = "upsertPost"
    DELETE_POST = "deletePost"
    UPSERT_PAYSCALE = "upsertPayscale"
    DELETE_PAYSCALE = "deletePayscale"
    UPSERT_EMPLOYEE = "upsertEmployee"
    DELETE_EMPLOYEE = "deleteEmployee"
    UPDATE_USER_POST_SELECTIONS = "updateUserPostSelections"

    @property
    def is_upsert(self) -> bool:
        return self.value.startswith("upsert")

    @property
    def is_delete(self) -> bool:
        return self.value.startswith("delete")

    @property
    def kind(self) -> EntityKind | None:
        """Entity table touched by this action, None for relation updates."""
        for kind in EntityKind:
            if self in (kind.upsert_action, kind.delete_action):
                return kind
        return None


class Record(BaseModel):
    """
    Base class for one row of an entity table.

    Subclasses declare which table they live in and which column holds
    their identifier.
    """

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    kind: ClassVar[EntityKind]
    table: ClassVar[str]
    id_field: ClassVar[str]
    id_attr: ClassVar[str]

    @property
    def entity_id(self) -> int | None:
        """Value of this record's identifier column."""
        value: int | None = getattr(self, self.id_attr)
        return value

    def with_id(self, value: int) -> Record:
        """Return a copy carrying a different identifier."""
        return self.model_copy(update={self.id_attr: value})

    def to_wire(self, *, include_attachments: bool = False) -> dict[str, Any]:
        """
        Serialize with sheet column names, as sent to and cached from the endpoint.

        Args:
            include_attachments: Also emit transient upload payloads
                (only meaningful for employees).
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class User(Record):
    kind: ClassVar[EntityKind] = EntityKind.USER
    table: ClassVar[str] = "users"
    id_field: ClassVar[str] = "User_ID"
    id_attr: ClassVar[str] = "user_id"

    user_id: RecordId = Field(default=None, alias="User_ID")
    user_name: Optional[str] = Field(default=None, alias="User_Name")
    user_type: Union[Role, str, None] = Field(default=None, alias="User_Type")
    created_at: Optional[str] = Field(default=None, alias="Created_At")
    updated_at: Optional[str] = Field(default=None, alias="Updated_At")

    @property
    def is_admin(self) -> bool:
        return self.user_type == Role.ADMIN


class Department(Record):
    kind: ClassVar[EntityKind] = EntityKind.DEPARTMENT
    table: ClassVar[str] = "departments"
    id_field: ClassVar[str] = "Department_ID"
    id_attr: ClassVar[str] = "department_id"

    department_id: RecordId = Field(default=None, alias="Department_ID")
    department_name: Optional[str] = Field(default=None, alias="Department_Name")


class Office(Record):
    """An office belongs to a department and is custodied by one user."""

    kind: ClassVar[EntityKind] = EntityKind.OFFICE
    table: ClassVar[str] = "offices"
    id_field: ClassVar[str] = "Office_ID"
    id_attr: ClassVar[str] = "office_id"

    office_id: RecordId = Field(default=None, alias="Office_ID")
    office_name: Optional[str] = Field(default=None, alias="Office_Name")
    department_id: RecordId = Field(default=None, alias="Department_ID")
    custodian_id: RecordId = Field(default=None, alias="User_ID")
    block: Optional[str] = Field(default=None, alias="Block")
    ac_no: RecordId = Field(default=None, alias="AC_No")
    finalized: Optional[str] = Field(default=None, alias="Finalized")

    @property
    def is_finalized(self) -> bool:
        return str(self.finalized or "").strip().lower() == "yes"


class Bank(Record):
    kind: ClassVar[EntityKind] = EntityKind.BANK
    table: ClassVar[str] = "banks"
    id_field: ClassVar[str] = "Bank_ID"
    id_attr: ClassVar[str] = "bank_id"

    bank_id: RecordId = Field(default=None, alias="Bank_ID")
    bank_name: Optional[str] = Field(default=None, alias="Bank_Name")


class BankBranch(Record):
    kind: ClassVar[EntityKind] = EntityKind.BRANCH
    table: ClassVar[str] = "branches"
    id_field: ClassVar[str] = "Branch_ID"
    id_attr: ClassVar[str] = "branch_id"

    branch_id: RecordId = Field(default=None, alias="Branch_ID")
    branch_name: Optional[str] = Field(default=None, alias="Branch_Name")
    bank_id: RecordId = Field(default=None, alias="Bank_ID")
    ifsc_code: Optional[str] = Field(default=None, alias="IFSC_Code")


class Post(Record):
    kind: ClassVar[EntityKind] = EntityKind.POST
    table: ClassVar[str] = "posts"
    id_field: ClassVar[str] = "Post_ID"
    id_attr: ClassVar[str] = "post_id"

    post_id: RecordId = Field(default=None, alias="Post_ID")
    post_name: Optional[str] = Field(default=None, alias="Post_Name")


class Payscale(Record):
    kind: ClassVar[EntityKind] = EntityKind.PAYSCALE
    table: ClassVar[str] = "payscales"
    id_field: ClassVar[str] = "Pay_ID"
    id_attr: ClassVar[str] = "pay_id"

    pay_id: RecordId = Field(default=None, alias="Pay_ID")
    pay_name: Optional[str] = Field(default=None, alias="Pay_Name")


class Employee(Record):
    """
    The aggregate employee record.

    ``photo_data`` and ``file_data`` hold base64 uploads that travel with a
    single write. They are excluded from every dump, so they never reach
    local state or the cache.
    """

    kind: ClassVar[EntityKind] = EntityKind.EMPLOYEE
    table: ClassVar[str] = "employees"
    id_field: ClassVar[str] = "Employee_ID"
    id_attr: ClassVar[str] = "employee_id"

    employee_id: RecordId = Field(default=None, alias="Employee_ID")
    employee_name: Optional[str] = Field(default=None, alias="Employee_Name")
    employee_surname: Optional[str] = Field(default=None, alias="Employee_Surname")
    dob: Optional[str] = Field(default=None, alias="DOB")
    gender: Optional[str] = Field(default=None, alias="Gender")
    mobile: Optional[str] = Field(default=None, alias="Mobile")
    epic: Optional[str] = Field(default=None, alias="EPIC")
    service_type: Optional[str] = Field(default=None, alias="Service_Type")

    department_id: RecordId = Field(default=None, alias="Department_ID")
    office_id: RecordId = Field(default=None, alias="Office_ID")
    post_id: RecordId = Field(default=None, alias="Post_ID")
    pay_id: RecordId = Field(default=None, alias="Pay_ID")
    bank_id: RecordId = Field(default=None, alias="Bank_ID")
    branch_id: RecordId = Field(default=None, alias="Branch_ID")
    acc_no: Optional[str] = Field(default=None, alias="ACC_No")
    ifsc_code: Optional[str] = Field(default=None, alias="IFSC_Code")

    active: Optional[str] = Field(default=None, alias="Active")
    da_reason: Optional[str] = Field(default=None, alias="DA_Reason")
    da_doc: Optional[str] = Field(default=None, alias="DA_Doc")

    photo_data: Optional[str] = Field(default=None, alias="photoData", exclude=True)
    file_data: Optional[str] = Field(default=None, alias="fileData", exclude=True)

    @property
    def is_active(self) -> bool:
        return str(self.active or "Yes").strip().lower() != "no"

    @property
    def has_attachments(self) -> bool:
        return bool(self.photo_data or self.file_data)

    def without_attachments(self) -> Employee:
        return self.model_copy(update={"photo_data": None, "file_data": None})

    def to_wire(self, *, include_attachments: bool = False) -> dict[str, Any]:
        data = super().to_wire()
        if include_attachments:
            if self.photo_data:
                data["photoData"] = self.photo_data
            if self.file_data:
                data["fileData"] = self.file_data
        return data


ENTITY_MODELS: dict[EntityKind, type[Record]] = {
    EntityKind.USER: User,
    EntityKind.DEPARTMENT: Department,
    EntityKind.OFFICE: Office,
    EntityKind.BANK: Bank,
    EntityKind.BRANCH: BankBranch,
    EntityKind.POST: Post,
    EntityKind.PAYSCALE: Payscale,
    EntityKind.EMPLOYEE: Employee,
}

POST_SELECTIONS_KEY = "userPostSelections"


class Snapshot(BaseModel):
    """
    The full local copy of every entity table plus the post-selection relation.

    Snapshots are treated as values: the ``with_*`` / ``without_*`` helpers
    return a new snapshot and leave the original untouched, which is how
    callers compute an optimistic state before handing it to the engine.

    Example:
        >>> snap = Snapshot()
        >>> snap = snap.with_record(Post(post_id=3, post_name="Clerk"))
        >>> snap.counts()["posts"]
        1
    """

    model_config = ConfigDict(populate_by_name=True)

    users: list[User] = Field(default_factory=list)
    departments: list[Department] = Field(default_factory=list)
    offices: list[Office] = Field(default_factory=list)
    banks: list[Bank] = Field(default_factory=list)
    branches: list[BankBranch] = Field(default_factory=list)
    posts: list[Post] = Field(default_factory=list)
    payscales: list[Payscale] = Field(default_factory=list)
    employees: list[Employee] = Field(default_factory=list)
    user_post_selections: dict[int, frozenset[int]] = Field(
        default_factory=dict,
        alias=POST_SELECTIONS_KEY,
        description="User_ID -> set of Post_IDs the user may manage",
    )

    def table(self, kind: EntityKind) -> list[Record]:
        records: list[Record] = getattr(self, kind.table)
        return records

    def find(self, kind: EntityKind, entity_id: int | None) -> Record | None:
        """Return the first record of ``kind`` with the given identifier."""
        for record in self.table(kind):
            if record.entity_id == entity_id:
                return record
        return None

    def with_table(self, kind: EntityKind, records: Iterable[Record]) -> Snapshot:
        return self.model_copy(update={kind.table: list(records)})

    def with_record(self, record: Record) -> Snapshot:
        """
        Upsert a record by identifier.

        A record with an assigned id replaces the existing row holding that
        id, or is appended. A placeholder record is always appended.
        """
        records = list(self.table(record.kind))
        record_id = record.entity_id
        if record_id:
            for index, existing in enumerate(records):
                if existing.entity_id == record_id:
                    records[index] = record
                    return self.with_table(record.kind, records)
        records.append(record)
        return self.with_table(record.kind, records)

    def without_record(self, kind: EntityKind, entity_id: int) -> Snapshot:
        """Filter out every row of ``kind`` holding ``entity_id``."""
        kept = [r for r in self.table(kind) if r.entity_id != entity_id]
        return self.with_table(kind, kept)

    def post_selection(self, user_id: int) -> frozenset[int]:
        return self.user_post_selections.get(user_id, frozenset())

    def with_post_selection(self, user_id: int, post_ids: Iterable[int]) -> Snapshot:
        selections = dict(self.user_post_selections)
        selections[user_id] = frozenset(post_ids)
        return self.model_copy(update={"user_post_selections": selections})

    def counts(self) -> dict[str, int]:
        """Number of rows per table."""
        return {kind.table: len(self.table(kind)) for kind in EntityKind}

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the remote document's key names.

        Empty cells are kept as nulls so a cached snapshot sanitizes back to
        an equal one.
        """
        return self.model_dump(mode="json", by_alias=True)


class Identity(BaseModel):
    """The user a session is signed in as."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    user_id: int = Field(alias="User_ID", ge=0)
    user_name: Optional[str] = Field(default=None, alias="User_Name")
    user_type: Union[Role, str, None] = Field(default=None, alias="User_Type")

    @property
    def is_admin(self) -> bool:
        return self.user_type == Role.ADMIN

    @classmethod
    def from_user(cls, user: User) -> Identity:
        if user.user_id is None:
            raise ValueError("Cannot sign in as a user without User_ID")
        return cls(user_id=user.user_id, user_name=user.user_name, user_type=user.user_type)
