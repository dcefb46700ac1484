class PipelineError(Exception):
    """Base class for ingestion pipeline failures."""


class RowValidationError(PipelineError):
    """One malformed CSV row. Recorded and skipped, never fatal on its own."""

    def __init__(self, row, message):
        super().__init__(message)
        self.row = row
        self.message = message

    def __str__(self):
        return f"Row {self.row}: {self.message}"


class BatchAbortError(PipelineError):
    """Too many row errors in a single file; nothing from it is aggregated."""

    def __init__(self, errors, limit):
        super().__init__(f"Validation error count {len(errors)} exceeds limit {limit}")
        self.errors = errors
        self.limit = limit


class SourceParseError(PipelineError):
    """Input could not be read as CSV at all."""


class InvalidTransitionError(PipelineError):
    def __init__(self, current, target):
        super().__init__(f"Illegal pipeline transition {current.value} -> {target.value}")
        self.current = current
        self.target = target
