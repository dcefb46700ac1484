from datetime import datetime, timedelta, timezone

BUCKET_HOURS = 4


def to_utc(timestamp: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def bucket_start(timestamp: datetime, bucket_hours: int = BUCKET_HOURS) -> datetime:
    """Start of the UTC window containing ``timestamp``.

    With the default width a day splits into 00, 04, 08, 12, 16 and 20 o'clock
    windows. The calendar date is preserved, so the last window of a day
    never spills into the next one.
    """
    ts = to_utc(timestamp)
    hour = (ts.hour // bucket_hours) * bucket_hours
    return ts.replace(hour=hour, minute=0, second=0, microsecond=0)


def bucket_end(timestamp: datetime, bucket_hours: int = BUCKET_HOURS) -> datetime:
    return bucket_start(timestamp, bucket_hours) + timedelta(hours=bucket_hours)


def format_bucket_timestamp(timestamp: datetime) -> str:
    ts = to_utc(timestamp)
    return f"{ts.year:04d}-{ts.month:02d}-{ts.day:02d} {ts.hour:02d}:00 UTC"


def format_chart_date(timestamp: datetime) -> str:
    ts = to_utc(timestamp)
    return f"{ts.year:04d}-{ts.month:02d}-{ts.day:02d}"
