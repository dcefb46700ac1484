import json
import logging
from kafka import KafkaProducer
from perfmetrics.config import Config

logger = logging.getLogger(__name__)


def serialize_payload(result, uploaded_by=None):
    """Pre-aggregated payload body for a successful ProcessingResult."""
    payload = result.to_response()
    payload.pop('success', None)
    payload.pop('errors', None)
    if uploaded_by:
        payload['uploadedBy'] = uploaded_by
    return payload


class AggregatedPayloadProducer:
    """Kafka producer for pre-aggregated metric payloads with idempotent delivery."""

    def __init__(self, bootstrap_servers=None, topic=None):
        self.topic = topic or Config.KAFKA_AGGREGATED_TOPIC
        servers = bootstrap_servers or Config.KAFKA_BOOTSTRAP_SERVERS
        servers = servers.split(",") if isinstance(servers, str) else servers
        self.producer = KafkaProducer(
            bootstrap_servers=servers,
            value_serializer=lambda v: json.dumps(v).encode('utf-8'),
            key_serializer=lambda k: k.encode('utf-8') if k else None,
            acks='all',
            retries=3,
            retry_backoff_ms=100,
            compression_type='gzip',
            linger_ms=10,
            enable_idempotence=True,
            max_in_flight_requests_per_connection=1,  # required for idempotence
            max_request_size=Config.MAX_UPLOAD_BYTES,
            request_timeout_ms=30000,
            delivery_timeout_ms=120000,
        )
        logger.info(f"Producer ready for topic {self.topic}")

    def publish(self, payload, key=None):
        """Send payload to Kafka. Uses the uploader as partition key if key not provided."""
        partition_key = key or payload.get('uploadedBy', 'default')
        future = self.producer.send(self.topic, value=payload, key=partition_key)
        future.add_callback(self._on_success)
        future.add_errback(self._on_error)
        return future

    def _on_success(self, record_metadata):
        logger.debug(f"Published to {record_metadata.topic}/{record_metadata.partition}@{record_metadata.offset}")

    def _on_error(self, exception):
        logger.error(f"Publish failed: {exception}")

    def flush(self, timeout=10.0):
        self.producer.flush(timeout=timeout)

    def close(self, timeout=10.0):
        self.flush(timeout)
        self.producer.close(timeout=timeout)
        logger.info("Producer closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
