"""
Batch OCR error taxonomy.

Structural errors (bad input, unknown ids, duplicate drivers) propagate to
the caller of the triggering operation. ItemProcessingError never leaves
the processor: it is recorded on the failed item instead.
"""

from typing import Optional


class BatchError(Exception):
    """Base class for all batch job errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BatchError):
    """Job input, options or an item update rejected; nothing was changed."""


class NotFoundError(BatchError):
    """Operation referenced an unknown job or item."""

    def __init__(self, job_id: str, item_id: Optional[str] = None):
        if item_id is None:
            message = f"Job {job_id} not found"
        else:
            message = f"Item {item_id} not found in job {job_id}"
        super().__init__(message)
        self.job_id = job_id
        self.item_id = item_id


class AlreadyRunningError(BatchError):
    """A driver for this job is already active."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} is already being processed")
        self.job_id = job_id


class ItemProcessingError(BatchError):
    """A skip/extract/persist collaborator failed for one item."""

    def __init__(self, item_id: str, source_ref: str, message: str):
        super().__init__(message)
        self.item_id = item_id
        self.source_ref = source_ref

    @classmethod
    def wrap(cls, item_id: str, source_ref: str, exc: BaseException) -> "ItemProcessingError":
        """Build from a collaborator exception, keeping it as the cause."""
        message = str(exc) or type(exc).__name__
        error = cls(item_id, source_ref, message)
        error.__cause__ = exc
        return error
