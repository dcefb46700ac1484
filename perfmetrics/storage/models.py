from datetime import datetime
from typing import List, NamedTuple, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from perfmetrics.config import Config
from perfmetrics.processing.bucketing import bucket_start, to_utc

ACCOUNT_ID_MAX_LENGTH = 100
TYPE_MAX_LENGTH = 255


class BucketKey(NamedTuple):
    """Natural identity of an aggregate: one stored row per key."""
    bucket_start: datetime
    account_id: str
    type: str


class AggregatedMetric(BaseModel):
    """Per-bucket average, as produced by the aggregator or sent by an upstream one."""

    model_config = ConfigDict(populate_by_name=True)

    bucket_timestamp: datetime = Field(..., alias="bucketTimestamp")
    account_id: str = Field(..., alias="accountId", min_length=1, max_length=ACCOUNT_ID_MAX_LENGTH)
    type: str = Field(..., min_length=1, max_length=TYPE_MAX_LENGTH)
    avg_duration: float = Field(..., alias="avgDuration", ge=0)
    record_count: int = Field(..., alias="recordCount", ge=1)

    @field_validator('bucket_timestamp')
    @classmethod
    def aligned_to_bucket(cls, v):
        v = to_utc(v)
        if bucket_start(v, Config.BUCKET_HOURS) != v:
            raise ValueError(f"bucketTimestamp {v.isoformat()} is not aligned to a bucket boundary")
        return v

    @property
    def key(self):
        return BucketKey(self.bucket_timestamp, self.account_id, self.type)


class ProcessingStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_rows: int = Field(..., alias="totalRows", ge=0)
    valid_rows: int = Field(..., alias="validRows", ge=0)
    filtered_rows: int = Field(..., alias="filteredRows", ge=0)
    aggregated_groups: int = Field(..., alias="aggregatedGroups", ge=0)


class ProcessingResult(BaseModel):
    """Outcome of one processed file or payload."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    aggregated_data: Optional[List[AggregatedMetric]] = Field(default=None, alias="aggregatedData")
    errors: Optional[List[str]] = None
    stats: Optional[ProcessingStats] = None

    @classmethod
    def failure(cls, errors):
        return cls(success=False, errors=list(errors))

    def to_response(self):
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AggregatedPayload(BaseModel):
    """Body of the pre-aggregated entry point."""

    model_config = ConfigDict(populate_by_name=True)

    aggregated_data: List[AggregatedMetric] = Field(..., alias="aggregatedData")
    stats: Optional[ProcessingStats] = None
    uploaded_by: Optional[str] = Field(default=None, alias="uploadedBy")


class PersistedMetric(BaseModel):
    id: str
    bucket_timestamp: datetime
    account_id: str
    type: str
    avg_duration: float
    record_count: int = Field(..., ge=0)
    uploaded_by: str
    created_at: datetime

    @property
    def key(self):
        return BucketKey(to_utc(self.bucket_timestamp), self.account_id, self.type)


class MetricsFilter(BaseModel):
    account_ids: Optional[List[str]] = None
    types: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    no_limit: bool = False

    @field_validator('start_date', 'end_date')
    @classmethod
    def as_utc(cls, v):
        return to_utc(v) if v is not None else v


class MetricsPage(BaseModel):
    data: List[PersistedMetric]
    total: int
    limit: Optional[int] = None
    offset: Optional[int] = None
    has_more: bool
