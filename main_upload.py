#!/usr/bin/env python3
"""Process CSV exports and merge their 4-hour aggregates into PostgreSQL.

Usage:
    python main_upload.py [--uploaded-by USER] [--dry-run] FILE [FILE ...]
"""

import argparse
import json
import logging
import os
import sys
from perfmetrics.config import Config
from perfmetrics.processing.pipeline import IngestionPipeline
from perfmetrics.storage.database import DatabaseManager
from perfmetrics.storage.memory import InMemoryMetricStore
from perfmetrics.monitoring.metrics import PipelineMetrics
from perfmetrics.monitoring.alerts import AlertManager

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def check_upload(path, max_bytes=None):
    """Return an error message when ``path`` may not be ingested, else None."""
    max_bytes = max_bytes or Config.MAX_UPLOAD_BYTES
    if not os.path.isfile(path):
        return "No file provided"
    if not path.lower().endswith(".csv"):
        return "Only CSV files are allowed"
    if os.path.getsize(path) > max_bytes:
        return f"File size exceeds {max_bytes // (1024 * 1024)}MB limit"
    return None


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Ingest performance measurement CSV files")
    parser.add_argument("files", nargs="+", help="CSV files to ingest")
    parser.add_argument("--uploaded-by", default=Config.DEFAULT_UPLOADED_BY,
                        help="Provenance recorded on newly created metrics")
    parser.add_argument("--dry-run", action="store_true",
                        help="Merge into an in-memory store instead of PostgreSQL")
    return parser.parse_args(argv)


def ingest_files(pipeline, paths, uploaded_by):
    failures = 0
    for path in paths:
        error = check_upload(path)
        if error:
            logger.error(f"{path}: {error}")
            print(json.dumps({"file": path, "success": False, "errors": [error]}))
            failures += 1
            continue

        with open(path, "rb") as f:
            result = pipeline.ingest_csv(f.read(), uploaded_by=uploaded_by)

        response = result.to_response()
        response.pop("aggregatedData", None)
        print(json.dumps({"file": path, **response}))
        if not result.success:
            failures += 1
    return failures


def main(argv=None):
    args = parse_args(argv)

    metrics = PipelineMetrics(metrics_port=None if args.dry_run else Config.METRICS_PORT_UPLOAD)
    alert_manager = AlertManager()

    db_manager = None
    if args.dry_run:
        store = InMemoryMetricStore()
    else:
        db_manager = DatabaseManager(
            host=Config.DB_HOST, port=Config.DB_PORT, database=Config.DB_NAME,
            user=Config.DB_USER, password=Config.DB_PASSWORD,
            min_connections=Config.DB_MIN_CONNECTIONS, max_connections=Config.DB_MAX_CONNECTIONS
        )
        if not db_manager.health_check():
            logger.error("Database health check failed")
            return 1
        db_manager.ensure_schema()
        store = db_manager

    pipeline = IngestionPipeline(store, metrics=metrics, alert_manager=alert_manager,
                                 uploaded_by=args.uploaded_by)
    try:
        failures = ingest_files(pipeline, args.files, args.uploaded_by)
    finally:
        if db_manager:
            db_manager.close()

    logger.info(f"Ingested {len(args.files) - failures} of {len(args.files)} files")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
