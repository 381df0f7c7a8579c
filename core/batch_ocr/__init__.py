"""
Batch OCR job engine.

Job registry, chunked driver, progress notifier, and the default
file-system collaborators.
"""

from .collaborators import Extractor, PersistOutcome, Persister, SkipDetector
from .errors import (
    AlreadyRunningError,
    BatchError,
    ItemProcessingError,
    NotFoundError,
    ValidationError,
)
from .manager import BatchManager
from .models import (
    BatchItem,
    BatchJob,
    ItemStatus,
    JobControls,
    JobOptions,
    JobStats,
    JobStatus,
    OverwriteMode,
    SavedArtifact,
)
from .notifier import JobEvent, ProgressNotifier, for_job
from .processor import BatchProcessor
from .result_saver import ResultSaver
from .skip_detector import FileSkipDetector

__all__ = [
    # Registry & driver
    'BatchManager',
    'BatchProcessor',
    # Events
    'JobEvent',
    'ProgressNotifier',
    'for_job',
    # Models
    'BatchItem',
    'BatchJob',
    'ItemStatus',
    'JobControls',
    'JobOptions',
    'JobStats',
    'JobStatus',
    'OverwriteMode',
    'SavedArtifact',
    # Collaborators
    'SkipDetector',
    'Extractor',
    'Persister',
    'PersistOutcome',
    'FileSkipDetector',
    'ResultSaver',
    # Errors
    'BatchError',
    'ValidationError',
    'NotFoundError',
    'AlreadyRunningError',
    'ItemProcessingError',
]
