r"""
CSV ingestion pipeline.

A run moves through an explicit set of states::

    READING -> VALIDATING -> AGGREGATING -> MERGING -> DONE
                         \-> ABORTED

Raw CSV enters at READING and is validated row by row. When more than
``MAX_VALIDATION_ERRORS`` rows are malformed the run is ABORTED and nothing
is aggregated or written. Pre-aggregated payloads skip validation and
aggregation and go from READING straight to MERGING, so both entry points
converge on the same merge step.

Row-level problems are returned as data in ProcessingResult; only
unreadable input, the error ceiling or a store failure make a run fail.
"""

import csv
import io
import logging
import time
from enum import Enum
from pydantic import ValidationError

from perfmetrics.config import Config
from perfmetrics.processing.aggregator import MetricAggregator
from perfmetrics.processing.errors import (
    BatchAbortError, InvalidTransitionError, RowValidationError, SourceParseError,
)
from perfmetrics.processing.merge import MetricMerger
from perfmetrics.processing.validator import RowValidator
from perfmetrics.storage.models import AggregatedPayload, ProcessingResult, ProcessingStats

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    READING = "reading"
    VALIDATING = "validating"
    ABORTED = "aborted"
    AGGREGATING = "aggregating"
    MERGING = "merging"
    DONE = "done"


_TRANSITIONS = {
    PipelineState.READING: {PipelineState.VALIDATING, PipelineState.MERGING, PipelineState.ABORTED},
    PipelineState.VALIDATING: {PipelineState.AGGREGATING, PipelineState.ABORTED},
    PipelineState.AGGREGATING: {PipelineState.MERGING, PipelineState.DONE},
    PipelineState.MERGING: {PipelineState.DONE, PipelineState.ABORTED},
    PipelineState.ABORTED: set(),
    PipelineState.DONE: set(),
}


def transition(current, target):
    if target not in _TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)
    return target


class PipelineRun:
    """State of a single file or payload moving through the pipeline."""

    def __init__(self):
        self.state = PipelineState.READING
        self.history = [self.state]

    def advance(self, target):
        self.state = transition(self.state, target)
        self.history.append(self.state)
        logger.debug(f"Pipeline state -> {self.state.value}")
        return self.state

    @property
    def finished(self):
        return not _TRANSITIONS[self.state]


def read_rows(source):
    """Split CSV text (or UTF-8 bytes) into header-keyed dicts."""
    if isinstance(source, (bytes, bytearray)):
        try:
            source = bytes(source).decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise SourceParseError(f"Failed to parse CSV: {e}") from e
    source = source.lstrip("\ufeff")

    try:
        return list(csv.DictReader(io.StringIO(source, newline=''), strict=True))
    except csv.Error as e:
        raise SourceParseError(f"Failed to parse CSV: {e}") from e


class CsvProcessor:
    """Validates and aggregates one CSV document without touching storage."""

    def __init__(self, validator=None, max_errors=None, metrics=None, alert_manager=None):
        self.validator = validator or RowValidator()
        self.max_errors = Config.MAX_VALIDATION_ERRORS if max_errors is None else max_errors
        self.metrics = metrics
        self.alert_manager = alert_manager

    def process(self, source):
        run = PipelineRun()
        result = self.evaluate(source, run)
        if result.success:
            run.advance(PipelineState.DONE)
            self._record_batch('success')
        return result

    def validate_rows(self, rows):
        valid, errors = [], []
        for index, raw in enumerate(rows):
            # index 0 is the line after the header
            try:
                row = self.validator.validate(raw, index + 2)
            except RowValidationError as e:
                errors.append(e)
                continue
            if row is not None:
                valid.append(row)

        if len(errors) > self.max_errors:
            raise BatchAbortError(errors, self.max_errors)
        return valid, errors

    def evaluate(self, source, run):
        """Drive ``run`` from READING to AGGREGATING, or to ABORTED on failure."""
        start = time.time()
        try:
            rows = read_rows(source)
        except SourceParseError as e:
            run.advance(PipelineState.ABORTED)
            logger.error(str(e))
            self._record_batch('parse_error')
            return ProcessingResult.failure([str(e)])

        run.advance(PipelineState.VALIDATING)
        try:
            valid, errors = self.validate_rows(rows)
        except BatchAbortError as e:
            run.advance(PipelineState.ABORTED)
            logger.warning(f"Aborting file with {len(rows)} rows: {e}")
            self._record_batch('aborted')
            if self.metrics:
                self.metrics.record_rows(invalid=len(e.errors))
            if self.alert_manager:
                self.alert_manager.check_batch_aborted(len(e.errors), len(rows))
            return ProcessingResult.failure(str(err) for err in e.errors[:e.limit])

        run.advance(PipelineState.AGGREGATING)
        aggregator = MetricAggregator()
        aggregator.add_rows(valid)
        aggregated = aggregator.flush()

        stats = ProcessingStats(
            total_rows=len(rows),
            valid_rows=len(valid),
            filtered_rows=len(rows) - len(valid) - len(errors),
            aggregated_groups=len(aggregated),
        )
        if errors:
            logger.warning(f"{len(errors)} of {len(rows)} rows failed validation")

        processing_time = time.time() - start
        logger.info(f"Processed {stats.total_rows} rows: {stats.valid_rows} valid, "
                    f"{stats.filtered_rows} filtered, {len(errors)} invalid, "
                    f"{stats.aggregated_groups} groups in {processing_time:.3f}s")

        if self.metrics:
            self.metrics.record_rows(valid=stats.valid_rows, filtered=stats.filtered_rows,
                                     invalid=len(errors))
            self.metrics.record_processing_time(processing_time)
        if self.alert_manager:
            self.alert_manager.check_error_rate(len(errors), len(rows))
            self.alert_manager.check_processing_latency(processing_time)

        return ProcessingResult(
            success=True,
            aggregated_data=aggregated,
            errors=[str(e) for e in errors],
            stats=stats,
        )

    def _record_batch(self, status):
        if self.metrics:
            self.metrics.record_batch(status)


class IngestionPipeline:
    """Raw CSV and pre-aggregated entry points merged into a metric store."""

    def __init__(self, store, processor=None, merger=None, metrics=None,
                 alert_manager=None, uploaded_by=None):
        self.store = store
        self.metrics = metrics
        self.alert_manager = alert_manager
        self.processor = processor or CsvProcessor(metrics=metrics, alert_manager=alert_manager)
        self.merger = merger or MetricMerger(store, metrics=metrics)
        self.uploaded_by = uploaded_by or Config.DEFAULT_UPLOADED_BY

    def ingest_csv(self, source, uploaded_by=None):
        run = PipelineRun()
        result = self.processor.evaluate(source, run)
        if not result.success:
            return result

        run.advance(PipelineState.MERGING)
        return self._merge(run, result, uploaded_by or self.uploaded_by)

    def ingest_aggregated(self, payload, uploaded_by=None):
        run = PipelineRun()
        try:
            if not isinstance(payload, AggregatedPayload):
                payload = AggregatedPayload.model_validate(payload)
        except ValidationError as e:
            run.advance(PipelineState.ABORTED)
            logger.warning(f"Rejected aggregated payload: {e.error_count()} invalid fields")
            if self.metrics:
                self.metrics.record_batch('invalid_payload')
            return ProcessingResult.failure(["Invalid aggregated data format"])

        stats = payload.stats
        if stats is None:
            records = sum(m.record_count for m in payload.aggregated_data)
            stats = ProcessingStats(total_rows=records, valid_rows=records, filtered_rows=0,
                                    aggregated_groups=len(payload.aggregated_data))

        result = ProcessingResult(success=True, aggregated_data=payload.aggregated_data,
                                  errors=[], stats=stats)
        run.advance(PipelineState.MERGING)
        return self._merge(run, result, uploaded_by or payload.uploaded_by or self.uploaded_by)

    def _merge(self, run, result, uploaded_by):
        try:
            self.merger.merge_all(result.aggregated_data, uploaded_by)
        except Exception as e:
            run.advance(PipelineState.ABORTED)
            logger.error(f"Failed to store aggregated metrics: {e}", exc_info=True)
            if self.metrics:
                self.metrics.record_batch('store_error')
            if self.alert_manager:
                self.alert_manager.check_store_failure(e)
            return ProcessingResult.failure([f"Failed to store aggregated metrics: {e}"])

        run.advance(PipelineState.DONE)
        if self.metrics:
            self.metrics.record_batch('success')
        return result
