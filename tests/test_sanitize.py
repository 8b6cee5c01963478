"""
Tests for the snapshot sanitizer.

Covers identifier coercion, role normalization, every stored encoding of the
post-selection relation, per-field skipping and idempotence.
"""

import math

import pytest

from ems_sync.core.snapshot import (
    EntityKind,
    Role,
    Snapshot,
    parse_post_ids,
    sanitize,
    sanitize_post_selections,
    sanitize_record,
)
from ems_sync.core.snapshot.models import Employee, Post, User
from ems_sync.core.snapshot.sanitize import coerce_id, is_id_field, normalize_role, try_coerce_id

# ==============================================================================
# Field Helpers
# ==============================================================================


class TestCoerceId:
    """Test identifier coercion."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("12", 12),
            (" 12 ", 12),
            ("12.9", 12),
            (7.5, 7),
            (3, 3),
            (0, 0),
            ("0", 0),
        ],
    )
    def test_numeric_values_are_floored(self, raw, expected):
        """Numbers and numeric text become floored integers."""
        assert coerce_id(raw) == expected

    @pytest.mark.parametrize("raw", [True, False, -1, "-3", "abc", math.inf, math.nan, "nan", [1], {}])
    def test_invalid_values_raise(self, raw):
        """Booleans, negatives, non-finite numbers and junk are rejected."""
        with pytest.raises(ValueError):
            coerce_id(raw)

    def test_try_coerce_id_returns_none_for_blank_and_invalid(self):
        """try_coerce_id never raises."""
        assert try_coerce_id(None) is None
        assert try_coerce_id("   ") is None
        assert try_coerce_id("x7") is None
        assert try_coerce_id("7") == 7


class TestFieldNames:
    """Test which columns count as identifiers."""

    @pytest.mark.parametrize("name", ["User_ID", "office_id", "Zone_Id", "AC_No", "ac_no"])
    def test_identifier_columns(self, name):
        assert is_id_field(name)

    @pytest.mark.parametrize("name", ["User_Name", "IDEA", "Mobile", "ACC_No"])
    def test_other_columns(self, name):
        assert not is_id_field(name)


class TestNormalizeRole:
    """Test role normalization."""

    @pytest.mark.parametrize("raw", ["admin", "ADMIN", " Admin "])
    def test_admin_spellings(self, raw):
        assert normalize_role(raw) is Role.ADMIN

    @pytest.mark.parametrize("raw", ["normal", "Normal", "NORMAL "])
    def test_normal_spellings(self, raw):
        assert normalize_role(raw) is Role.NORMAL

    def test_unknown_roles_pass_through(self):
        assert normalize_role("Guest") == "Guest"
        assert normalize_role(None) is None


# ==============================================================================
# Post Selections
# ==============================================================================


class TestPostSelections:
    """Test parsing of the user -> posts relation."""

    @pytest.mark.parametrize(
        "encoded,expected",
        [
            ("[1,2,3]", {1, 2, 3}),
            ([1, 2, 3], {1, 2, 3}),
            ("1,2,3", {1, 2, 3}),
            (2, {2}),
        ],
    )
    def test_encodings_yield_same_set(self, encoded, expected):
        """Array, JSON text, comma text and scalar give the same set."""
        snap = sanitize({"userPostSelections": {"7": encoded}})
        assert snap.user_post_selections[7] == frozenset(expected)

    def test_nested_arrays_are_flattened(self):
        assert parse_post_ids([[1], [2, [3, "4"]]]) == frozenset({1, 2, 3, 4})

    def test_bracketed_text_that_is_not_json_is_split(self):
        """Bracket stripping is the fallback when JSON parsing fails."""
        assert parse_post_ids("[1, x, 3]") == frozenset({1, 3})

    def test_double_encoded_text(self):
        assert parse_post_ids('"[1,2]"') == frozenset({1, 2})

    def test_values_are_floored_and_deduplicated(self):
        assert parse_post_ids(["2.7", 2, "2"]) == frozenset({2})

    def test_invalid_tokens_are_discarded(self):
        assert parse_post_ids("1, ,abc,-4,5") == frozenset({1, 5})
        assert parse_post_ids(None) == frozenset()
        assert parse_post_ids(True) == frozenset()

    def test_invalid_user_keys_are_skipped(self):
        selections = sanitize_post_selections({"7": [1], "abc": [2], "": [3]})
        assert selections == {7: frozenset({1})}

    def test_sheet_rows_are_merged_per_user(self):
        """A list of {User_ID, Post_IDs} rows is accepted and unioned."""
        rows = [
            {"User_ID": "7", "Post_IDs": "1,2"},
            {"User_ID": 7, "Post_ID": 3},
            {"User_ID": "8", "Post_IDs": []},
            "junk",
        ]
        assert sanitize_post_selections(rows) == {7: frozenset({1, 2, 3}), 8: frozenset()}

    def test_non_mapping_relation_is_empty(self):
        assert sanitize_post_selections("7:1,2") == {}


# ==============================================================================
# Records and Tables
# ==============================================================================


class TestSanitizeRecords:
    """Test per-record and per-table sanitation."""

    def test_scenario_admin_user_and_selection(self):
        """String ids, mixed-case roles and JSON text selections are normalized."""
        snap = sanitize(
            {
                "users": [{"User_ID": "7", "User_Type": "Admin"}],
                "employees": [],
                "userPostSelections": {"7": "[1, 2]"},
            }
        )
        assert snap.users[0].user_id == 7
        assert snap.users[0].user_type == Role.ADMIN
        assert snap.users[0].to_wire()["User_Type"] == "ADMIN"
        assert snap.user_post_selections[7] == frozenset({1, 2})

    def test_missing_and_malformed_tables_become_empty(self):
        snap = sanitize({"posts": "not a list", "offices": None})
        assert snap.counts() == {kind.table: 0 for kind in EntityKind}
        assert snap.user_post_selections == {}

    def test_non_mapping_document_gives_empty_snapshot(self):
        assert sanitize(["users"]) == Snapshot()
        assert sanitize(None) == Snapshot()

    def test_non_mapping_rows_are_dropped(self):
        snap = sanitize({"posts": [{"Post_ID": 1}, "junk", 4, None]})
        assert [p.post_id for p in snap.posts] == [1]

    def test_bad_identifier_skips_only_that_field(self):
        """A field that cannot be coerced is skipped; the record survives."""
        record = sanitize_record(EntityKind.POST, {"Post_ID": "abc", "Post_Name": "Clerk"})
        assert isinstance(record, Post)
        assert record.post_id is None
        assert record.post_name == "Clerk"

    def test_blank_identifier_reads_as_unset(self):
        record = sanitize_record(EntityKind.OFFICE, {"Office_ID": "5", "User_ID": "  "})
        assert record.office_id == 5
        assert record.custodian_id is None

    def test_rejected_text_field_is_skipped(self):
        record = sanitize_record(EntityKind.USER, {"User_ID": 3, "User_Name": ["not", "text"]})
        assert isinstance(record, User)
        assert record.user_id == 3
        assert record.user_name is None

    def test_numbers_in_text_columns_become_strings(self):
        record = sanitize_record(EntityKind.EMPLOYEE, {"Employee_ID": 1, "Mobile": 9876543210})
        assert record.mobile == "9876543210"

    def test_unknown_columns_are_kept(self):
        record = sanitize_record(EntityKind.EMPLOYEE, {"Employee_ID": "9", "Photo_URL": "x", "Zone_ID": "3"})
        wire = record.to_wire()
        assert wire["Photo_URL"] == "x"
        assert wire["Zone_ID"] == 3

    def test_lifecycle_fields_are_preserved(self):
        record = sanitize_record(
            EntityKind.EMPLOYEE,
            {"Employee_ID": "9", "Active": "No", "DA_Reason": "DEATH", "DA_Doc": "cert-1"},
        )
        assert isinstance(record, Employee)
        assert not record.is_active
        assert (record.da_reason, record.da_doc) == ("DEATH", "cert-1")

    def test_unknown_role_is_kept(self):
        record = sanitize_record(EntityKind.USER, {"User_ID": "2", "User_Type": "Guest"})
        assert record.user_type == "Guest"
        assert not record.is_admin


class TestIdempotence:
    """sanitize(sanitize(x)) == sanitize(x)."""

    def test_sample_snapshot(self, raw_snapshot):
        once = sanitize(raw_snapshot)
        assert sanitize(once) == once
        assert sanitize(once.to_wire()) == once

    @pytest.mark.parametrize(
        "raw",
        [
            {},
            {"users": [{"User_ID": "7.9", "User_Type": "normal", "Extra": None}]},
            {"employees": [{"Employee_ID": "", "Employee_Name": 12, "Branch_ID": "x"}]},
            {"userPostSelections": [{"User_ID": "3", "Post_IDs": "[4, 4, '5']"}]},
            {"offices": [{"Office_ID": 1, "AC_No": "23.0", "Finalized": "Yes"}], "banks": "?"},
        ],
    )
    def test_varied_inputs(self, raw):
        once = sanitize(raw)
        assert sanitize(once) == once

    def test_every_identifier_is_an_int_after_one_pass(self, raw_snapshot):
        snap = sanitize(raw_snapshot)
        for kind in EntityKind:
            for record in snap.table(kind):
                assert isinstance(record.entity_id, int)
