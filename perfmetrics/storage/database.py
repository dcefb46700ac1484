import logging
import uuid
import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor
from contextlib import contextmanager

from perfmetrics.storage.models import MetricsPage, PersistedMetric

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS performance_metrics (
        id VARCHAR(255) PRIMARY KEY,
        bucket_timestamp TIMESTAMPTZ NOT NULL,
        account_id VARCHAR(100) NOT NULL,
        type VARCHAR(255) NOT NULL,
        avg_duration NUMERIC(10, 2) NOT NULL,
        record_count INTEGER NOT NULL,
        uploaded_by VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT performance_metrics_bucket_account_type_key
            UNIQUE (bucket_timestamp, account_id, type)
    );
    CREATE INDEX IF NOT EXISTS account_id_idx ON performance_metrics (account_id);
    CREATE INDEX IF NOT EXISTS type_idx ON performance_metrics (type);
    CREATE INDEX IF NOT EXISTS bucket_timestamp_idx ON performance_metrics (bucket_timestamp);
"""

_COLUMNS = "id, bucket_timestamp, account_id, type, avg_duration, record_count, uploaded_by, created_at"


def _lock_name(key):
    return f"{key.bucket_start.isoformat()}|{key.account_id}|{key.type}"


class KeyedTransaction:
    """Lookup and upsert bound to one connection holding a key lock."""

    def __init__(self, cursor):
        self.cursor = cursor

    def lookup(self, key):
        self.cursor.execute(
            f"SELECT {_COLUMNS} FROM performance_metrics "
            "WHERE bucket_timestamp = %s AND account_id = %s AND type = %s",
            (key.bucket_start, key.account_id, key.type)
        )
        row = self.cursor.fetchone()
        return PersistedMetric(**row) if row else None

    def upsert(self, key, avg_duration, record_count, uploaded_by):
        self.cursor.execute(
            f"""
            INSERT INTO performance_metrics
            (id, bucket_timestamp, account_id, type, avg_duration, record_count, uploaded_by)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (bucket_timestamp, account_id, type)
            DO UPDATE SET
                avg_duration = EXCLUDED.avg_duration,
                record_count = EXCLUDED.record_count
            RETURNING {_COLUMNS}
            """,
            (str(uuid.uuid4()), key.bucket_start, key.account_id, key.type,
             f"{avg_duration:.2f}", record_count, uploaded_by)
        )
        return PersistedMetric(**self.cursor.fetchone())


class DatabaseManager:
    """PostgreSQL connection pool manager for aggregated performance metrics."""

    def __init__(self, host="localhost", port=5432, database="perf_metrics",
                 user="metrics_user", password="metrics_password",
                 min_connections=2, max_connections=10):
        try:
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                min_connections, max_connections,
                host=host, port=port, database=database, user=user, password=password
            )
            logger.info("Database pool created")
        except Exception as e:
            logger.error(f"Failed to create pool: {e}")
            raise

    @contextmanager
    def get_connection(self):
        conn = None
        try:
            conn = self.connection_pool.getconn()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"DB operation failed: {e}")
            raise
        finally:
            if conn:
                self.connection_pool.putconn(conn)

    def ensure_schema(self):
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("performance_metrics schema ready")

    @contextmanager
    def locked(self, key):
        """Transaction holding an advisory lock on ``key`` until commit.

        Concurrent writers of the same bucket key queue on the lock, so each
        sees the value committed by the one before it.
        """
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (_lock_name(key),))
                yield KeyedTransaction(cursor)
            conn.commit()

    def _where(self, metrics_filter):
        conditions, params = [], []
        if metrics_filter.account_ids:
            conditions.append("account_id = ANY(%s)")
            params.append(list(metrics_filter.account_ids))
        if metrics_filter.types:
            conditions.append("type = ANY(%s)")
            params.append(list(metrics_filter.types))
        if metrics_filter.start_date:
            conditions.append("bucket_timestamp >= %s")
            params.append(metrics_filter.start_date)
        if metrics_filter.end_date:
            conditions.append("bucket_timestamp <= %s")
            params.append(metrics_filter.end_date)
        clause = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        return clause, params

    def query_metrics(self, metrics_filter):
        where, params = self._where(metrics_filter)
        query = f"SELECT {_COLUMNS} FROM performance_metrics{where} ORDER BY bucket_timestamp DESC"
        limit = offset = None
        if not metrics_filter.no_limit:
            limit, offset = metrics_filter.limit, metrics_filter.offset
            query += " LIMIT %s OFFSET %s"

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(query, params + ([limit, offset] if limit is not None else []))
                rows = [PersistedMetric(**row) for row in cursor.fetchall()]
                cursor.execute(f"SELECT COUNT(*) AS total FROM performance_metrics{where}", params)
                total = cursor.fetchone()['total']

        return MetricsPage(
            data=rows, total=total, limit=limit, offset=offset,
            has_more=(offset or 0) + len(rows) < total
        )

    def _distinct(self, column):
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(f"SELECT DISTINCT {column} FROM performance_metrics ORDER BY {column}")
                return [row[0] for row in cursor.fetchall()]

    def list_accounts(self):
        return self._distinct("account_id")

    def list_types(self):
        return self._distinct("type")

    def health_check(self):
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    cursor.fetchone()
                    return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    def get_table_counts(self):
        counts = {}
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT COUNT(*) FROM performance_metrics")
                    counts['performance_metrics'] = cursor.fetchone()[0]

                    cursor.execute("SELECT COALESCE(SUM(record_count), 0) FROM performance_metrics")
                    counts['aggregated_records'] = cursor.fetchone()[0]
        except psycopg2.Error as e:
            logger.error(f"Failed to get table counts: {e}")
        return counts

    def close(self):
        if hasattr(self, 'connection_pool'):
            self.connection_pool.closeall()
            logger.info("Database pool closed")
