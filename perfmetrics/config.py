import os
from dotenv import load_dotenv

load_dotenv()


def _get_env(key, default=None):
    val = os.getenv(key, default)
    if val is None:
        raise ValueError(f"Missing required env var: {key}")
    return val


def _get_env_int(key, default=None):
    val = os.getenv(key)
    return int(val) if val else default


def _get_env_float(key, default=None):
    val = os.getenv(key)
    return float(val) if val else default


class Config:
    """Application configuration from environment variables."""

    DB_HOST = _get_env("DB_HOST", "localhost")
    DB_PORT = _get_env_int("DB_PORT", 5432)
    DB_NAME = _get_env("DB_NAME", "perf_metrics")
    DB_USER = _get_env("DB_USER", "metrics_user")
    DB_PASSWORD = _get_env("DB_PASSWORD", "metrics_password")
    DB_MIN_CONNECTIONS = _get_env_int("DB_MIN_CONNECTIONS", 2)
    DB_MAX_CONNECTIONS = _get_env_int("DB_MAX_CONNECTIONS", 10)

    KAFKA_BOOTSTRAP_SERVERS = _get_env("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    KAFKA_AGGREGATED_TOPIC = _get_env("KAFKA_AGGREGATED_TOPIC", "aggregated-metrics")
    KAFKA_CONSUMER_GROUP = _get_env("KAFKA_CONSUMER_GROUP", "perf-metrics-merger")
    CONSUMER_BATCH_SIZE = _get_env_int("CONSUMER_BATCH_SIZE", 10)

    METRICS_PORT_PRODUCER = _get_env_int("METRICS_PORT_PRODUCER", 8001)
    METRICS_PORT_CONSUMER = _get_env_int("METRICS_PORT_CONSUMER", 8002)
    METRICS_PORT_UPLOAD = _get_env_int("METRICS_PORT_UPLOAD", 8003)

    MIN_DURATION_MS = _get_env_float("MIN_DURATION_MS", 0.0)
    MAX_DURATION_MS = _get_env_float("MAX_DURATION_MS", 25000.0)
    BUCKET_HOURS = _get_env_int("BUCKET_HOURS", 4)
    MAX_VALIDATION_ERRORS = _get_env_int("MAX_VALIDATION_ERRORS", 100)
    MAX_UPLOAD_BYTES = _get_env_int("MAX_UPLOAD_BYTES", 15 * 1024 * 1024)

    MERGE_WORKERS = _get_env_int("MERGE_WORKERS", 4)
    DEFAULT_UPLOADED_BY = _get_env("DEFAULT_UPLOADED_BY", "system")

    ALERT_ERROR_RATE_THRESHOLD = _get_env_float("ALERT_ERROR_RATE_THRESHOLD", 0.05)
    ALERT_PROCESSING_LATENCY_THRESHOLD = _get_env_float("ALERT_PROCESSING_LATENCY_THRESHOLD", 5.0)
