#!/usr/bin/env python3
"""Quick script to check stored metrics.

Usage:
    python check_db_data.py [--account ID ...] [--type T ...] [--start ISO] [--end ISO] [--limit N]
"""

import argparse
from perfmetrics.config import Config
from perfmetrics.processing.bucketing import format_bucket_timestamp
from perfmetrics.storage.database import DatabaseManager
from perfmetrics.storage.models import MetricsFilter


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Inspect aggregated performance metrics")
    parser.add_argument("--account", dest="account_ids", action="append")
    parser.add_argument("--type", dest="types", action="append")
    parser.add_argument("--start", dest="start_date")
    parser.add_argument("--end", dest="end_date")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--offset", type=int, default=0)
    return parser.parse_args(argv)


def format_metric(metric):
    return (f"  {format_bucket_timestamp(metric.bucket_timestamp)}  {metric.account_id:<20} "
            f"{metric.type:<30} avg={metric.avg_duration:.2f}ms n={metric.record_count}")


def main(argv=None):
    args = parse_args(argv)
    metrics_filter = MetricsFilter(**vars(args))

    db = DatabaseManager(
        host=Config.DB_HOST, port=Config.DB_PORT, database=Config.DB_NAME,
        user=Config.DB_USER, password=Config.DB_PASSWORD
    )
    try:
        print("Database table counts:")
        for table, count in db.get_table_counts().items():
            print(f"  {table}: {count}")

        print(f"Accounts: {', '.join(db.list_accounts())}")
        print(f"Types: {', '.join(db.list_types())}")

        page = db.query_metrics(metrics_filter)
        print(f"Metrics {page.offset + 1}-{page.offset + len(page.data)} of {page.total}:")
        for metric in page.data:
            print(format_metric(metric))
        if page.has_more:
            print(f"  ... use --offset {page.offset + len(page.data)} for more")
    finally:
        db.close()


if __name__ == "__main__":
    main()
