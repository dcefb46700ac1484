import logging
from prometheus_client import REGISTRY, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)


class PipelineMetrics:
    """Prometheus metrics for ingestion observability."""

    def __init__(self, metrics_port=None, registry=REGISTRY):
        self.rows_processed = Counter('csv_rows_processed_total', 'CSV rows processed',
                                      ['outcome'], registry=registry)
        self.batches = Counter('ingestion_batches_total', 'Files or payloads ingested',
                               ['status'], registry=registry)
        self.merges = Counter('metric_merges_total', 'Aggregate writes', ['operation'],
                              registry=registry)

        self.processing_latency = Histogram(
            'batch_processing_duration_seconds', 'Validation and aggregation time per file',
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
            registry=registry
        )
        self.merge_latency = Histogram(
            'merge_duration_seconds', 'Store merge time per batch',
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
            registry=registry
        )

        self.kafka_produce_errors = Counter('kafka_produce_errors_total', 'Kafka produce errors',
                                            registry=registry)
        self.kafka_consume_errors = Counter('kafka_consume_errors_total', 'Kafka consume errors',
                                            registry=registry)
        self.dead_letter_payloads = Counter('dead_letter_payloads_total',
                                            'Payloads that could not be ingested', ['reason'],
                                            registry=registry)
        self.payload_size_bytes = Histogram(
            'payload_size_bytes', 'Pre-aggregated payload size in bytes',
            buckets=[100, 1000, 10000, 100000, 1000000, 10000000],
            registry=registry
        )

        if metrics_port is not None:
            try:
                start_http_server(metrics_port, addr="0.0.0.0", registry=registry)
                logger.info(f"Metrics server on port {metrics_port}")
            except Exception as e:
                logger.warning(f"Metrics server failed: {e}")

    def record_rows(self, valid=0, filtered=0, invalid=0):
        self.rows_processed.labels(outcome='valid').inc(valid)
        self.rows_processed.labels(outcome='filtered').inc(filtered)
        self.rows_processed.labels(outcome='invalid').inc(invalid)

    def record_batch(self, status):
        self.batches.labels(status=status).inc()

    def record_merge(self, operation):
        self.merges.labels(operation=operation).inc()

    def record_processing_time(self, duration):
        self.processing_latency.observe(duration)

    def record_merge_time(self, duration):
        self.merge_latency.observe(duration)

    def record_kafka_produce_error(self):
        self.kafka_produce_errors.inc()

    def record_kafka_consume_error(self):
        self.kafka_consume_errors.inc()

    def record_dead_letter(self, reason: str):
        """Record payload dropped without reaching the store."""
        self.dead_letter_payloads.labels(reason=reason).inc()

    def record_payload_size(self, payload_bytes: int):
        self.payload_size_bytes.observe(payload_bytes)
