import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple

from perfmetrics.config import Config
from perfmetrics.processing.aggregator import round2

logger = logging.getLogger(__name__)

INSERT = 'insert'
UPDATE = 'update'


class MergeOutcome(NamedTuple):
    key: tuple
    avg_duration: float
    record_count: int
    operation: str


def weighted_merge(new_avg, new_count, existing_avg=None, existing_count=0):
    """Combine a batch average with a stored one, weighting each by its count.

    The stored average stands in for ``existing_count`` raw durations that are
    no longer available. With nothing stored the batch values pass through.
    """
    if existing_avg is None or existing_count <= 0:
        return round2(new_avg), new_count
    total = existing_count + new_count
    merged = (float(existing_avg) * existing_count + float(new_avg) * new_count) / total
    return round2(merged), total


def coalesce(metrics):
    """Fold metrics sharing a key so each key is written once per run."""
    folded = {}
    for metric in metrics:
        current = folded.get(metric.key)
        if current is None:
            folded[metric.key] = (metric.avg_duration, metric.record_count)
        else:
            folded[metric.key] = weighted_merge(metric.avg_duration, metric.record_count, *current)
    return folded


class MetricMerger:
    """Read-merge-write of aggregates against a keyed store.

    ``store.locked(key)`` must serialize writers of the same key and yield an
    object exposing ``lookup(key)`` and ``upsert(key, avg, count, uploaded_by)``.
    Distinct keys are merged concurrently.
    """

    def __init__(self, store, max_workers=None, metrics=None):
        self.store = store
        self.max_workers = max_workers or Config.MERGE_WORKERS
        self.metrics = metrics

    def merge_one(self, key, avg_duration, record_count, uploaded_by):
        with self.store.locked(key) as writer:
            existing = writer.lookup(key)
            if existing is None:
                avg, count = weighted_merge(avg_duration, record_count)
                operation = INSERT
            else:
                avg, count = weighted_merge(avg_duration, record_count,
                                            existing.avg_duration, existing.record_count)
                operation = UPDATE
            writer.upsert(key, avg, count, uploaded_by)

        if self.metrics:
            self.metrics.record_merge(operation)
        return MergeOutcome(key, avg, count, operation)

    def merge_all(self, metrics, uploaded_by):
        folded = coalesce(metrics)
        if not folded:
            return []

        start = time.time()
        workers = max(1, min(self.max_workers, len(folded)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(
                lambda item: self.merge_one(item[0], item[1][0], item[1][1], uploaded_by),
                folded.items()
            ))

        duration = time.time() - start
        if self.metrics:
            self.metrics.record_merge_time(duration)

        inserted = sum(1 for o in outcomes if o.operation == INSERT)
        logger.info(f"Merged {len(outcomes)} groups ({inserted} inserted, "
                    f"{len(outcomes) - inserted} updated) in {duration:.3f}s")
        return outcomes
