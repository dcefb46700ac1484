import logging
import math
import re
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from perfmetrics.config import Config
from perfmetrics.processing.bucketing import to_utc
from perfmetrics.processing.errors import RowValidationError
from perfmetrics.storage.models import ACCOUNT_ID_MAX_LENGTH, TYPE_MAX_LENGTH

logger = logging.getLogger(__name__)

# Messages for fields absent from the row altogether.
_REQUIRED_MESSAGES = {
    'Date': "Date is required",
    'accountId': "Account ID is required",
    '@data.duration': "Duration is required",
    '@data.type': "Measurement type is required",
}

# Leading numeric prefix, so "12ms" reads as 12
_DURATION_PREFIX = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _identifier(value, required_message, label, max_length):
    # surrounding whitespace is dropped on purpose, so " a" and "a" share a key
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValueError(required_message)
    if len(text) > max_length:
        raise ValueError(f"{label} exceeds {max_length} characters")
    return text


class CsvRow(BaseModel):
    """One header-keyed CSV record of a performance log export."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime = Field(..., alias="Date")
    account_id: str = Field(..., alias="accountId")
    type: str = Field(..., alias="@data.type")
    duration_ms: float = Field(..., alias="@data.duration")
    host: Optional[str] = Field(default=None, alias="Host")
    service: Optional[str] = Field(default=None, alias="Service")
    content: Optional[str] = Field(default=None, alias="Content")

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError(_REQUIRED_MESSAGES['Date'])
        if isinstance(v, str):
            try:
                return datetime.fromisoformat(v.strip().replace('Z', '+00:00'))
            except ValueError:
                raise ValueError(f"Invalid date value: {v}") from None
        return v

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v):
        return to_utc(v)

    @field_validator('account_id', mode='before')
    @classmethod
    def require_account(cls, v):
        return _identifier(v, _REQUIRED_MESSAGES['accountId'], "Account ID", ACCOUNT_ID_MAX_LENGTH)

    @field_validator('type', mode='before')
    @classmethod
    def require_type(cls, v):
        return _identifier(v, _REQUIRED_MESSAGES['@data.type'], "Measurement type", TYPE_MAX_LENGTH)

    @field_validator('duration_ms', mode='before')
    @classmethod
    def parse_duration(cls, v):
        if v is None:
            raise ValueError(_REQUIRED_MESSAGES['@data.duration'])
        match = _DURATION_PREFIX.match(str(v))
        if match is None:
            raise ValueError(f"Invalid duration value: {v}")
        parsed = float(match.group(0))
        if not math.isfinite(parsed):
            raise ValueError(f"Invalid duration value: {v}")
        return parsed


class ValidatedRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    account_id: str
    type: str
    duration_ms: float


def _describe(error: ValidationError) -> str:
    messages = []
    for detail in error.errors():
        field = detail['loc'][0] if detail['loc'] else None
        if detail['type'] == 'missing' and field in _REQUIRED_MESSAGES:
            messages.append(_REQUIRED_MESSAGES[field])
        elif detail['type'] == 'value_error' and 'error' in detail.get('ctx', {}):
            messages.append(str(detail['ctx']['error']))
        else:
            messages.append(f"{field}: {detail['msg']}" if field else detail['msg'])
    return "; ".join(messages)


class RowValidator:
    """Parses raw CSV records and applies the duration range filter."""

    def __init__(self, min_duration=None, max_duration=None):
        self.min_duration = Config.MIN_DURATION_MS if min_duration is None else min_duration
        self.max_duration = Config.MAX_DURATION_MS if max_duration is None else max_duration

    def in_range(self, duration):
        return self.min_duration < duration < self.max_duration

    def validate(self, raw_row, row_number):
        """Return a ValidatedRow, or None when the duration is out of range.

        Raises RowValidationError for malformed rows.
        """
        # csv.DictReader files surplus cells under a None key
        fields = {k: v for k, v in raw_row.items() if isinstance(k, str)}
        try:
            parsed = CsvRow.model_validate(fields)
        except ValidationError as e:
            error = RowValidationError(row_number, _describe(e))
            logger.debug(f"Rejected {error}")
            raise error from None

        if not self.in_range(parsed.duration_ms):
            return None

        return ValidatedRow(
            timestamp=parsed.timestamp,
            account_id=parsed.account_id,
            type=parsed.type,
            duration_ms=parsed.duration_ms,
        )
