#!/usr/bin/env python3
"""Merge pre-aggregated metric payloads from Kafka into PostgreSQL."""

import logging
import signal
import sys
from perfmetrics.config import Config
from perfmetrics.consumer.kafka_consumer import AggregatedPayloadConsumer
from perfmetrics.processing.pipeline import IngestionPipeline
from perfmetrics.storage.database import DatabaseManager
from perfmetrics.monitoring.metrics import PipelineMetrics
from perfmetrics.monitoring.alerts import AlertManager

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

consumer = None


def signal_handler(sig, frame):
    logger.info("Shutting down...")
    if consumer:
        consumer.stop()


def make_handler(pipeline, metrics):
    def handle_payload(payload, payload_bytes):
        metrics.record_payload_size(payload_bytes)
        if payload is None:
            metrics.record_kafka_consume_error()
            metrics.record_dead_letter('undecodable')
            return

        result = pipeline.ingest_aggregated(payload)
        if result.success:
            logger.info(f"Merged {result.stats.aggregated_groups} groups "
                        f"({result.stats.valid_rows} rows)")
        else:
            logger.warning(f"Payload rejected: {'; '.join(result.errors)}")
            metrics.record_dead_letter('rejected')

    return handle_payload


def main():
    global consumer

    logger.info("Starting consumer...")

    metrics = PipelineMetrics(metrics_port=Config.METRICS_PORT_CONSUMER)
    alert_manager = AlertManager()

    db_manager = DatabaseManager(
        host=Config.DB_HOST, port=Config.DB_PORT, database=Config.DB_NAME,
        user=Config.DB_USER, password=Config.DB_PASSWORD,
        min_connections=Config.DB_MIN_CONNECTIONS, max_connections=Config.DB_MAX_CONNECTIONS
    )

    if not db_manager.health_check():
        logger.error("Database health check failed")
        alert_manager.check_store_failure(ConnectionError("health check failed"))
        sys.exit(1)
    db_manager.ensure_schema()

    pipeline = IngestionPipeline(db_manager, metrics=metrics, alert_manager=alert_manager)

    consumer = AggregatedPayloadConsumer(
        bootstrap_servers=Config.KAFKA_BOOTSTRAP_SERVERS,
        topic=Config.KAFKA_AGGREGATED_TOPIC,
        group_id=Config.KAFKA_CONSUMER_GROUP,
        batch_size=Config.CONSUMER_BATCH_SIZE
    )

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        consumer.consume(make_handler(pipeline, metrics))
    finally:
        db_manager.close()
        logger.info("Consumer stopped")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
