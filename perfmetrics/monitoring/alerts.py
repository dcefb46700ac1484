import logging
from datetime import datetime, timezone
from prometheus_client import REGISTRY, Counter

from perfmetrics.config import Config

logger = logging.getLogger(__name__)


class AlertManager:
    """Threshold-based alerting with Prometheus metrics."""

    def __init__(self, registry=REGISTRY):
        self.alerts_fired = Counter('alerts_fired_total', 'Alerts fired', ['alert_type', 'severity'],
                                    registry=registry)

        self.thresholds = {
            'error_rate': Config.ALERT_ERROR_RATE_THRESHOLD,
            'processing_latency': Config.ALERT_PROCESSING_LATENCY_THRESHOLD,
        }

    def _fire_alert(self, alert_type, severity, message, context=None):
        context = context or {}
        context['timestamp'] = datetime.now(timezone.utc).isoformat()
        context['alert_message'] = message

        self.alerts_fired.labels(alert_type=alert_type, severity=severity).inc()

        log_level = logging.CRITICAL if severity == 'critical' else logging.WARNING
        logger.log(log_level, f"ALERT [{severity}] {alert_type}: {message}", extra=context)

    def check_error_rate(self, error_count, total_count):
        if total_count == 0:
            return

        error_rate = error_count / total_count
        if error_rate > self.thresholds['error_rate']:
            self._fire_alert(
                'high_row_error_rate', 'warning',
                f"Row error rate {error_rate:.2%} exceeds {self.thresholds['error_rate']:.2%}",
                {'error_rate': error_rate, 'error_count': error_count, 'total_count': total_count}
            )

    def check_processing_latency(self, latency):
        if latency > self.thresholds['processing_latency']:
            self._fire_alert(
                'high_processing_latency', 'warning',
                f"Processing latency {latency:.2f}s exceeds {self.thresholds['processing_latency']}s",
                {'latency': latency}
            )

    def check_batch_aborted(self, error_count, total_count):
        self._fire_alert(
            'batch_aborted', 'warning',
            f"File rejected with {error_count} invalid rows out of {total_count}",
            {'error_count': error_count, 'total_count': total_count}
        )

    def check_store_failure(self, error):
        self._fire_alert(
            'store_failure', 'critical',
            f"Metric store failure: {str(error)}",
            {'error_type': type(error).__name__}
        )
