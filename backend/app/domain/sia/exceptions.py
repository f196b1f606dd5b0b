"""Domain-level exceptions for the SIA synchronisation engine."""

from __future__ import annotations


class SiaError(Exception):
    """Base class for SIA sync errors."""

    reason: str = "unknown"

    def __init__(self, message: str | None = None, *, reason: str | None = None) -> None:
        super().__init__(message or reason or self.reason)
        if reason:
            self.reason = reason


class SiaFetchError(SiaError):
    """Fetching the student dataset failed; the cycle must abort before any write."""

    reason = "fetch_failed"


class SiaConfigError(SiaFetchError):
    reason = "not_configured"


class SiaTimeoutError(SiaFetchError):
    reason = "timeout"


class SiaHTTPError(SiaFetchError):
    reason = "http_error"

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"SIA fetch failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class SiaEnvelopeError(SiaFetchError):
    reason = "malformed_envelope"


class CacheWriteError(SiaError):
    """A single student record could not be written to the cache."""

    reason = "cache_write_failed"

    def __init__(self, nim: str, message: str | None = None) -> None:
        super().__init__(message or f"cache write failed for NIM {nim}")
        self.nim = nim


class RelationalWriteError(SiaError):
    reason = "relational_write_failed"


class RelationalBatchError(RelationalWriteError):
    """The batch transaction for academic fields failed as a whole."""

    reason = "relational_batch_failed"


class CompetencyChunkError(RelationalWriteError):
    """One chunk of competency score upserts failed."""

    reason = "competency_chunk_failed"


class SyncInProgressError(SiaError):
    reason = "sync_in_progress"
