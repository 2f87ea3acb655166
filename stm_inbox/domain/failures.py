"""
Domain Layer — Failure Types
----------------------------
Every failure in the pipeline falls into one of two buckets:

  RetryError       networking, contention, any S3/Postgres/ES call failure.
                   The job or submission can be requeued unchanged.
  DoNotRetryError  malformed or corrupt input. Requeuing it would reproduce
                   the same failure, so the caller gives up on it.

Both carry the subject (an owner id or an S3 key) so the caller can mark the
right job row.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for classified pipeline failures."""

    def __init__(self, subject: str, reason: str) -> None:
        self.subject = subject
        self.reason = reason
        super().__init__(f"{subject}: {reason}")


class RetryError(PipelineError):
    """Transient failure. Safe to retry with the same input."""
    pass


class DoNotRetryError(PipelineError):
    """Permanent failure. Retrying with the same input fails the same way."""
    pass
