from __future__ import annotations

from tender_dashboard.pipeline.intake.field_resolver import (
    ABSENT,
    DEFAULT_FIELD_CANDIDATES,
    cell_at,
    resolve,
    resolve_columns,
)


def test_resolve_is_case_and_whitespace_insensitive_substring_match():
    headers = ["Tender No.", " Tender value ", "CLIENT NAME"]
    assert resolve(headers, ["TENDER VALUE"]) == 1
    assert resolve(headers, ["client"]) == 2
    assert resolve(headers, ["TENDER NO"]) == 0


def test_resolve_returns_absent_sentinel_when_nothing_matches():
    assert resolve(["A", "B"], ["TENDER VALUE"]) == ABSENT
    assert resolve([], ["X"]) == ABSENT
    assert resolve(["A"], []) == ABSENT


def test_default_table_covers_at_least_fifteen_fields():
    assert len(DEFAULT_FIELD_CANDIDATES) >= 15


def test_overrides_fall_back_to_defaults_per_field():
    headers = ["Ref", "Customer", "Tender Name"]
    cols = resolve_columns(headers, {"opportunityRefNo": ["REF"], "clientName": "customer"})
    assert cols["opportunityRefNo"] == 0
    assert cols["clientName"] == 1
    # No override -> default candidates still apply.
    assert cols["tenderName"] == 2
    assert cols["opportunityValue"] == ABSENT


def test_explicit_column_index_overrides():
    headers = ["a", "b", "c"]
    cols = resolve_columns(headers, {"tenderName": "2", "clientName": 9})
    assert cols["tenderName"] == 2
    assert cols["clientName"] == ABSENT


def test_cell_at_tolerates_absent_columns_and_short_rows():
    row = ["x", None]
    assert cell_at(row, 0) == "x"
    assert cell_at(row, 1) == ""
    assert cell_at(row, 5) == ""
    assert cell_at(row, ABSENT) == ""
