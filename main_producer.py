#!/usr/bin/env python3
"""Aggregate CSV exports locally and publish the results for the merge consumer."""

import json
import logging
import signal
import sys
from perfmetrics.config import Config
from perfmetrics.processing.pipeline import CsvProcessor
from perfmetrics.producer.kafka_producer import AggregatedPayloadProducer, serialize_payload
from perfmetrics.monitoring.metrics import PipelineMetrics
from main_upload import check_upload

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

producer = None


def signal_handler(sig, frame):
    logger.info("Shutting down...")
    if producer:
        producer.close()
    sys.exit(0)


def publish_file(processor, path, uploaded_by, metrics):
    error = check_upload(path)
    if error:
        logger.error(f"{path}: {error}")
        return False

    with open(path, "rb") as f:
        result = processor.process(f.read())
    if not result.success:
        logger.error(f"{path}: {len(result.errors)} errors, first: {result.errors[0]}")
        return False

    payload = serialize_payload(result, uploaded_by)
    metrics.record_payload_size(len(json.dumps(payload).encode('utf-8')))
    try:
        producer.publish(payload).get(timeout=30)
    except Exception as e:
        logger.error(f"Publish failed for {path}: {e}")
        metrics.record_kafka_produce_error()
        return False

    logger.info(f"Published {result.stats.aggregated_groups} groups from {path}")
    return True


def main(paths):
    global producer

    if not paths:
        logger.error("Usage: main_producer.py FILE [FILE ...]")
        return 2

    logger.info("Starting producer...")
    metrics = PipelineMetrics(metrics_port=Config.METRICS_PORT_PRODUCER)
    processor = CsvProcessor(metrics=metrics)
    producer = AggregatedPayloadProducer(
        bootstrap_servers=Config.KAFKA_BOOTSTRAP_SERVERS,
        topic=Config.KAFKA_AGGREGATED_TOPIC
    )

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        published = sum(publish_file(processor, path, Config.DEFAULT_UPLOADED_BY, metrics)
                        for path in paths)
    finally:
        producer.close()
        logger.info("Producer stopped")

    return 0 if published == len(paths) else 1


if __name__ == "__main__":
    try:
        sys.exit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
