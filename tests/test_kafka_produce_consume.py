"""Round trip of a pre-aggregated payload through Kafka into a metric store.

Needs a reachable broker; runs only when RUN_KAFKA_TESTS=1.
"""

import json
import os
import threading
import time
import pytest

from perfmetrics.config import Config
from perfmetrics.consumer.kafka_consumer import decode_payload
from perfmetrics.processing.pipeline import CsvProcessor, IngestionPipeline
from perfmetrics.producer.kafka_producer import serialize_payload
from perfmetrics.storage.memory import InMemoryMetricStore

CSV = (
    "Date,Host,Service,@data.duration,accountId,@data.type,Content\n"
    "2024-01-01T12:00:00Z,h,s,100,acct-1,page_load,c\n"
    "2024-01-01T13:30:00Z,h,s,200,acct-1,page_load,c\n"
    "2024-01-01T17:00:00Z,h,s,50,acct-1,api,c\n"
)

kafka = pytest.mark.skipif(os.getenv("RUN_KAFKA_TESTS") != "1",
                           reason="set RUN_KAFKA_TESTS=1 with a running broker")


@pytest.fixture
def test_topic():
    """Use a test topic to avoid interfering with production data."""
    return "test-aggregated-metrics"


@pytest.fixture
def test_group_id():
    """Use a unique test consumer group."""
    return f"test-consumer-{int(time.time() * 1000)}"


@pytest.fixture
def bootstrap_servers():
    """Kafka bootstrap servers from config."""
    return Config.KAFKA_BOOTSTRAP_SERVERS


def test_serialized_payload_is_accepted_by_consumer_side():
    """Producer output decodes into a payload the merge entry point accepts."""
    result = CsvProcessor().process(CSV)
    payload = serialize_payload(result, "producer")
    assert set(payload) == {"aggregatedData", "stats", "uploadedBy"}

    decoded = decode_payload(json.dumps(payload).encode("utf-8"))
    store = InMemoryMetricStore()
    merged = IngestionPipeline(store).ingest_aggregated(decoded)

    assert merged.success
    assert len(store.records) == 2
    assert {r.uploaded_by for r in store.records.values()} == {"producer"}


def test_undecodable_message():
    assert decode_payload(b"\xff not json") is None


@kafka
def test_produce_and_consume_payload(bootstrap_servers, test_topic, test_group_id):
    """Test publishing an aggregated payload and merging it on the consumer side."""
    from perfmetrics.consumer.kafka_consumer import AggregatedPayloadConsumer
    from perfmetrics.producer.kafka_producer import AggregatedPayloadProducer

    store = InMemoryMetricStore()
    pipeline = IngestionPipeline(store)
    received = []

    consumer = AggregatedPayloadConsumer(
        bootstrap_servers=bootstrap_servers,
        topic=test_topic,
        group_id=test_group_id,
        batch_size=10,
    )

    def handler(payload, payload_bytes):
        received.append(pipeline.ingest_aggregated(payload))
        consumer.stop()

    consume_thread = threading.Thread(
        target=lambda: consumer.consume(handler, timeout=20),
        daemon=True
    )
    consume_thread.start()

    # Give consumer time to subscribe and get partition assignment
    time.sleep(3)

    producer = AggregatedPayloadProducer(bootstrap_servers=bootstrap_servers, topic=test_topic)
    try:
        result = CsvProcessor().process(CSV)
        producer.publish(serialize_payload(result, "kafka-test")).get(timeout=10)
        producer.flush()

        consume_thread.join(timeout=20)

        assert received, "No payloads received"
        assert received[0].success
        assert len(store.records) == 2
    finally:
        producer.close()
        if consumer.running:
            consumer.stop()
