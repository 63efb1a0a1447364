"""
Exception types for the diagnosis pipeline.

Data-quality problems (bad timestamps, non-numeric prices) never raise:
they are excluded where they occur. The exceptions here signal either a
broken pattern definition or a caller asking for something impossible.
"""


class DiagnosisError(Exception):
    """Base class for diagnosis pipeline errors."""


class PatternConfigurationError(DiagnosisError):
    """A pattern definition is internally inconsistent or unreadable."""

    def __init__(self, message: str, pattern_id: str = None):
        self.pattern_id = pattern_id
        if pattern_id:
            message = f"[{pattern_id}] {message}"
        super().__init__(message)


class InterventionBucketNotFoundError(PatternConfigurationError):
    """An intervention mapping resolved to a bucket id the pattern does not define."""

    def __init__(self, pattern_id: str, bucket_ids):
        self.bucket_ids = list(bucket_ids)
        super().__init__(
            f"Intervention bucket not found: {', '.join(self.bucket_ids)}",
            pattern_id=pattern_id,
        )


class EmptySessionError(DiagnosisError):
    """Feature extraction was asked to build a vector from zero events."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No events found for session {session_id}")
