"""Tests for bucket aggregation and rounding."""

from datetime import datetime, timezone

import pytest

from perfmetrics.processing.aggregator import MetricAggregator, round2
from perfmetrics.processing.validator import ValidatedRow


def row(ts, duration, account="acct-1", type_="page_load"):
    return ValidatedRow(timestamp=ts, account_id=account, type=type_, duration_ms=duration)


def test_single_group_average():
    """Three rows in the same bucket/account/type give one group averaging 200."""
    aggregator = MetricAggregator()
    aggregator.add_rows([
        row(datetime(2024, 1, 15, 8, 5, tzinfo=timezone.utc), 100),
        row(datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc), 200),
        row(datetime(2024, 1, 15, 11, 59, tzinfo=timezone.utc), 300),
    ])
    [metric] = aggregator.flush()
    assert metric.bucket_timestamp == datetime(2024, 1, 15, 8, tzinfo=timezone.utc)
    assert metric.avg_duration == 200.00
    assert metric.record_count == 3


def test_groups_split_by_bucket_account_and_type():
    ts = datetime(2024, 1, 15, 8, 5, tzinfo=timezone.utc)
    aggregator = MetricAggregator()
    aggregator.add_rows([
        row(ts, 10),
        row(ts, 20, account="acct-2"),
        row(ts, 30, type_="api"),
        row(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc), 40),
        row(ts, 50),
    ])
    results = {m.key: m for m in aggregator.flush()}
    assert len(results) == 4
    main_key = (datetime(2024, 1, 15, 8, tzinfo=timezone.utc), "acct-1", "page_load")
    assert results[main_key].avg_duration == 30.0
    assert results[main_key].record_count == 2


def test_empty_input_yields_no_groups():
    assert MetricAggregator().flush() == []


def test_flush_clears_state():
    aggregator = MetricAggregator()
    aggregator.add_row(row(datetime(2024, 1, 15, tzinfo=timezone.utc), 5))
    assert len(aggregator.flush()) == 1
    assert aggregator.flush() == []
    assert aggregator.results() == []


def test_average_is_rounded_to_cents():
    ts = datetime(2024, 1, 15, tzinfo=timezone.utc)
    aggregator = MetricAggregator()
    aggregator.add_rows([row(ts, 1), row(ts, 1), row(ts, 2)])
    [metric] = aggregator.flush()
    assert metric.avg_duration == 1.33


@pytest.mark.parametrize("value,expected", [
    (1.005, 1.01),
    (2.675, 2.68),
    (10.125, 10.13),
    (1.333333, 1.33),
    (1.666666, 1.67),
    (200.0, 200.0),
    (99.99, 99.99),
])
def test_round2_half_up(value, expected):
    assert round2(value) == expected


def test_round2_is_stable_on_rounded_values():
    for cents in range(0, 100000, 7):
        value = cents / 100
        assert round2(value) == value
