"""Tests for Prometheus metrics and threshold alerts."""

import logging

import pytest
from prometheus_client import CollectorRegistry

from perfmetrics.monitoring.alerts import AlertManager
from perfmetrics.monitoring.metrics import PipelineMetrics


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def alert_manager(registry):
    return AlertManager(registry=registry)


def fired(registry, alert_type, severity):
    return registry.get_sample_value('alerts_fired_total',
                                     {'alert_type': alert_type, 'severity': severity}) or 0


def test_error_rate_below_threshold_is_quiet(alert_manager, registry):
    alert_manager.check_error_rate(1, 100)
    assert fired(registry, 'high_row_error_rate', 'warning') == 0


def test_error_rate_above_threshold_alerts(alert_manager, registry, caplog):
    with caplog.at_level(logging.WARNING, logger="perfmetrics.monitoring.alerts"):
        alert_manager.check_error_rate(10, 100)

    assert fired(registry, 'high_row_error_rate', 'warning') == 1
    [record] = caplog.records
    assert record.error_count == 10
    assert "high_row_error_rate" in record.getMessage()


def test_empty_file_never_alerts(alert_manager, registry):
    alert_manager.check_error_rate(0, 0)
    assert fired(registry, 'high_row_error_rate', 'warning') == 0


def test_batch_aborted_alerts(alert_manager, registry):
    alert_manager.check_batch_aborted(150, 150)
    assert fired(registry, 'batch_aborted', 'warning') == 1


def test_store_failure_is_critical(alert_manager, registry, caplog):
    with caplog.at_level(logging.WARNING, logger="perfmetrics.monitoring.alerts"):
        alert_manager.check_store_failure(ConnectionError("db gone"))

    assert fired(registry, 'store_failure', 'critical') == 1
    assert caplog.records[0].levelno == logging.CRITICAL
    assert caplog.records[0].error_type == "ConnectionError"


def test_processing_latency_threshold(alert_manager, registry):
    alert_manager.check_processing_latency(0.01)
    alert_manager.check_processing_latency(60.0)
    assert fired(registry, 'high_processing_latency', 'warning') == 1


def test_pipeline_metrics_use_given_registry(registry):
    metrics = PipelineMetrics(registry=registry)
    metrics.record_batch('aborted')
    metrics.record_dead_letter('undecodable')
    metrics.record_payload_size(512)

    assert registry.get_sample_value('ingestion_batches_total', {'status': 'aborted'}) == 1.0
    assert registry.get_sample_value('dead_letter_payloads_total', {'reason': 'undecodable'}) == 1.0
    assert registry.get_sample_value('payload_size_bytes_count') == 1.0
