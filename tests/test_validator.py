"""Tests for CSV row validation and the duration range filter."""

from datetime import datetime, timezone

import pytest

from perfmetrics.processing.errors import RowValidationError
from perfmetrics.processing.validator import RowValidator


@pytest.fixture
def validator():
    return RowValidator(min_duration=0, max_duration=25000)


def make_row(**overrides):
    row = {
        "Date": "2024-01-15T10:23:45.123Z",
        "Host": "web-01",
        "Service": "checkout",
        "@data.duration": "123.5",
        "accountId": "acct-1",
        "@data.type": "page_load",
        "Content": "GET /cart",
    }
    row.update(overrides)
    return row


def test_valid_row(validator):
    row = validator.validate(make_row(), 2)
    assert row.timestamp == datetime(2024, 1, 15, 10, 23, 45, 123000, tzinfo=timezone.utc)
    assert row.account_id == "acct-1"
    assert row.type == "page_load"
    assert row.duration_ms == 123.5


def test_optional_fields_may_be_absent(validator):
    raw = make_row()
    for field in ("Host", "Service", "Content"):
        del raw[field]
    assert validator.validate(raw, 2) is not None


@pytest.mark.parametrize("duration", ["0.001", "1", "24999.99"])
def test_in_range_durations_are_kept(validator, duration):
    assert validator.validate(make_row(**{"@data.duration": duration}), 2) is not None


@pytest.mark.parametrize("duration", ["0", "-5", "25000", "30000.5"])
def test_out_of_range_durations_are_filtered_not_errors(validator, duration):
    assert validator.validate(make_row(**{"@data.duration": duration}), 2) is None


@pytest.mark.parametrize("duration", ["abc", "", "nan", "inf"])
def test_unparsable_duration(validator, duration):
    with pytest.raises(RowValidationError) as exc_info:
        validator.validate(make_row(**{"@data.duration": duration}), 7)
    assert str(exc_info.value) == f"Row 7: Invalid duration value: {duration}"


@pytest.mark.parametrize("duration, expected", [
    ("12ms", 12.0),
    (" 7.5 s", 7.5),
    ("1e3", 1000.0),
    (".5", 0.5),
])
def test_duration_reads_leading_number(validator, duration, expected):
    row = validator.validate(make_row(**{"@data.duration": duration}), 2)
    assert row.duration_ms == expected


def test_missing_account(validator):
    with pytest.raises(RowValidationError) as exc_info:
        validator.validate(make_row(accountId="  "), 3)
    assert exc_info.value.row == 3
    assert exc_info.value.message == "Account ID is required"


def test_missing_type_column(validator):
    raw = make_row()
    del raw["@data.type"]
    with pytest.raises(RowValidationError, match="Measurement type is required"):
        validator.validate(raw, 2)


def test_invalid_date(validator):
    with pytest.raises(RowValidationError, match="Invalid date value: yesterday"):
        validator.validate(make_row(Date="yesterday"), 2)


def test_multiple_problems_reported_together(validator):
    with pytest.raises(RowValidationError) as exc_info:
        validator.validate(make_row(accountId="", **{"@data.duration": "x"}), 2)
    assert "Account ID is required" in exc_info.value.message
    assert "Invalid duration value: x" in exc_info.value.message


def test_surplus_cells_are_ignored(validator):
    """csv.DictReader puts extra cells under a None key."""
    raw = make_row()
    raw[None] = ["extra", "cells"]
    assert validator.validate(raw, 2) is not None


def test_whitespace_trimmed_from_identifiers(validator):
    row = validator.validate(make_row(accountId=" acct-9 ", **{"@data.type": " api "}), 2)
    assert row.account_id == "acct-9"
    assert row.type == "api"


def test_identifiers_at_length_limit_are_accepted(validator):
    row = validator.validate(make_row(accountId="a" * 100, **{"@data.type": "t" * 255}), 2)
    assert len(row.account_id) == 100
    assert len(row.type) == 255


def test_account_id_over_limit(validator):
    with pytest.raises(RowValidationError) as exc_info:
        validator.validate(make_row(accountId="a" * 101), 4)
    assert exc_info.value.message == "Account ID exceeds 100 characters"


def test_type_over_limit(validator):
    with pytest.raises(RowValidationError) as exc_info:
        validator.validate(make_row(**{"@data.type": "t" * 256}), 4)
    assert exc_info.value.message == "Measurement type exceeds 255 characters"


def test_length_limit_applies_after_trimming(validator):
    row = validator.validate(make_row(accountId="  " + "a" * 100 + "  "), 2)
    assert row.account_id == "a" * 100
