import json
import logging
import threading
import time
from kafka import KafkaConsumer
from perfmetrics.config import Config

logger = logging.getLogger(__name__)


def decode_payload(raw):
    """JSON-decode a message value; undecodable messages come back as None."""
    try:
        return json.loads(raw.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Undecodable payload ({len(raw)} bytes): {e}")
        return None


class AggregatedPayloadConsumer:
    """Kafka consumer for pre-aggregated metric payloads."""

    def __init__(self, bootstrap_servers=None, topic=None,
                 group_id=None, batch_size=None, auto_commit=False):
        self.topic = topic or Config.KAFKA_AGGREGATED_TOPIC
        self.batch_size = batch_size or Config.CONSUMER_BATCH_SIZE
        self.running = False
        self._timeout_thread = None

        servers = (bootstrap_servers or Config.KAFKA_BOOTSTRAP_SERVERS)
        servers = servers.split(",") if isinstance(servers, str) else servers
        self.consumer = KafkaConsumer(
            bootstrap_servers=servers,
            group_id=group_id or Config.KAFKA_CONSUMER_GROUP,
            value_deserializer=decode_payload,
            key_deserializer=lambda k: k.decode('utf-8') if k else None,
            auto_offset_reset='earliest',
            enable_auto_commit=auto_commit,
            auto_commit_interval_ms=5000,
            fetch_max_wait_ms=500,
            max_poll_records=self.batch_size,
            max_partition_fetch_bytes=Config.MAX_UPLOAD_BYTES,
            session_timeout_ms=30000,
            heartbeat_interval_ms=3000,
        )

        self.consumer.subscribe([self.topic])
        self._wait_for_assignment()
        logger.info(f"Consumer ready for {self.topic} (group: {group_id or Config.KAFKA_CONSUMER_GROUP})")

    def _wait_for_assignment(self):
        self.consumer.poll(timeout_ms=500)
        while not self.consumer.assignment():
            self.consumer.poll(timeout_ms=500)

    def _start_timeout(self, seconds):
        if not seconds:
            return

        def timeout():
            time.sleep(seconds)
            if self.running:
                logger.info(f"Timeout reached ({seconds}s)")
                self.stop()

        self._timeout_thread = threading.Thread(target=timeout, daemon=True)
        self._timeout_thread.start()

    def consume(self, message_handler, timeout=None):
        """Hand each payload and its size in bytes to ``message_handler``.

        Offsets are committed after the handler returns, so a payload whose
        merge was interrupted is delivered again.
        """
        self.running = True
        self._start_timeout(timeout)

        try:
            while self.running:
                packs = self.consumer.poll(timeout_ms=1000, max_records=self.batch_size)
                if not self.running or not packs:
                    continue

                for tp, records in packs.items():
                    for r in records:
                        message_handler(r.value, r.serialized_value_size)

                if not self.consumer.config['enable_auto_commit']:
                    self.consumer.commit()
        finally:
            self.close()

    def stop(self):
        self.running = False
        logger.info("Stopping consumer")

    def close(self):
        try:
            self.consumer.close()
            logger.info("Consumer closed")
        except Exception as e:
            logger.error(f"Error closing consumer: {e}")
