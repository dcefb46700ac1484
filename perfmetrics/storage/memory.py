import logging
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone

from perfmetrics.storage.models import MetricsPage, PersistedMetric

logger = logging.getLogger(__name__)


class InMemoryMetricStore:
    """Dict-backed metric store with one lock per bucket key.

    Mirrors the DatabaseManager store interface for tests and dry runs.
    """

    def __init__(self):
        self.records = {}
        self.writes = defaultdict(int)
        self._guard = threading.Lock()
        self._key_locks = {}

    def _lock_for(self, key):
        with self._guard:
            if key not in self._key_locks:
                self._key_locks[key] = threading.Lock()
            return self._key_locks[key]

    @contextmanager
    def locked(self, key):
        with self._lock_for(key):
            yield self

    def lookup(self, key):
        return self.records.get(key)

    def upsert(self, key, avg_duration, record_count, uploaded_by):
        existing = self.records.get(key)
        if existing is None:
            record = PersistedMetric(
                id=str(uuid.uuid4()),
                bucket_timestamp=key.bucket_start,
                account_id=key.account_id,
                type=key.type,
                avg_duration=avg_duration,
                record_count=record_count,
                uploaded_by=uploaded_by,
                created_at=datetime.now(timezone.utc),
            )
        else:
            # provenance and created_at belong to the first write
            record = existing.model_copy(update={
                'avg_duration': avg_duration,
                'record_count': record_count,
            })
        self.records[key] = record
        self.writes[key] += 1
        return record

    def query_metrics(self, metrics_filter):
        rows = [
            r for r in self.records.values()
            if (not metrics_filter.account_ids or r.account_id in metrics_filter.account_ids)
            and (not metrics_filter.types or r.type in metrics_filter.types)
            and (metrics_filter.start_date is None or r.bucket_timestamp >= metrics_filter.start_date)
            and (metrics_filter.end_date is None or r.bucket_timestamp <= metrics_filter.end_date)
        ]
        rows.sort(key=lambda r: r.bucket_timestamp, reverse=True)
        total = len(rows)

        if metrics_filter.no_limit:
            return MetricsPage(data=rows, total=total, has_more=False)

        offset, limit = metrics_filter.offset, metrics_filter.limit
        page = rows[offset:offset + limit]
        return MetricsPage(data=page, total=total, limit=limit, offset=offset,
                           has_more=offset + len(page) < total)

    def list_accounts(self):
        return sorted({r.account_id for r in self.records.values()})

    def list_types(self):
        return sorted({r.type for r in self.records.values()})
