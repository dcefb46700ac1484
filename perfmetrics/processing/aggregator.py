import logging
from decimal import ROUND_HALF_UP, Decimal

from perfmetrics.config import Config
from perfmetrics.processing.bucketing import bucket_start
from perfmetrics.storage.models import AggregatedMetric, BucketKey

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def round2(value):
    """Half-up rounding to two decimals on the value as it prints.

    Applied both when a batch is averaged and when averages are merged, so an
    already rounded value passes through unchanged.
    """
    return float(Decimal(repr(float(value))).quantize(_CENT, rounding=ROUND_HALF_UP))


class BucketAggregation:
    """Running sum and count for one (bucket, account, type) key."""

    def __init__(self, key):
        self.key = key
        self.total_duration = 0.0
        self.count = 0

    def add_row(self, row):
        self.total_duration += row.duration_ms
        self.count += 1

    def to_metric(self):
        return AggregatedMetric(
            bucket_timestamp=self.key.bucket_start,
            account_id=self.key.account_id,
            type=self.key.type,
            avg_duration=round2(self.total_duration / self.count),
            record_count=self.count,
        )


class MetricAggregator:
    """Groups validated rows into fixed-width UTC buckets per account and type."""

    def __init__(self):
        self.bucket_hours = Config.BUCKET_HOURS
        if 24 % self.bucket_hours:
            raise ValueError(f"Bucket width must divide a day evenly, got {self.bucket_hours}h")
        self.aggregations = {}

    def key_for(self, row):
        return BucketKey(bucket_start(row.timestamp, self.bucket_hours), row.account_id, row.type)

    def add_row(self, row):
        key = self.key_for(row)
        if key not in self.aggregations:
            self.aggregations[key] = BucketAggregation(key)
        self.aggregations[key].add_row(row)

    def add_rows(self, rows):
        for row in rows:
            self.add_row(row)

    def results(self):
        return [agg.to_metric() for agg in self.aggregations.values()]

    def flush(self):
        metrics = self.results()
        self.aggregations.clear()
        if metrics:
            logger.info(f"Aggregated {len(metrics)} bucket groups")
        return metrics
