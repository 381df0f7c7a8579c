"""
Batch Job Definitions
Batch OCR - job and item records.

Plain records: all mutation goes through BatchManager, which keeps
``BatchJob.stats`` consistent with the per-item statuses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ItemStatus(Enum):
    """Item status states"""
    PENDING = "pending"           # Waiting for a chunk
    PROCESSING = "processing"     # Skip check / OCR / save in flight
    COMPLETED = "completed"       # Results saved
    FAILED = "failed"             # Error recorded
    SKIPPED = "skipped"           # Results already on disk


class JobStatus(Enum):
    """Job status states"""
    QUEUED = "queued"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"


class OverwriteMode(Enum):
    """What to do when an item already has saved results"""
    SKIP = "skip"
    OVERWRITE = "overwrite"
    SUFFIX = "suffix"


ITEM_TERMINAL_STATUSES = frozenset({
    ItemStatus.COMPLETED, ItemStatus.FAILED, ItemStatus.SKIPPED,
})

JOB_TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED, JobStatus.COMPLETED_WITH_ERRORS, JobStatus.CANCELLED,
})


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SavedArtifact:
    """One file written by a persister"""
    type: str
    locator: str
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "path": self.locator, "size": self.size}


@dataclass
class JobOptions:
    """Merged job configuration"""
    chunk_size: int
    retry_count: int
    overwrite: OverwriteMode
    output_format: List[str]
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "chunkSize": self.chunk_size,
            "retryCount": self.retry_count,
            "overwrite": self.overwrite.value,
            "outputFormat": list(self.output_format),
        })
        return data


@dataclass
class JobControls:
    """Flags the driver loop polls"""
    chunk_size: int
    paused: bool = False
    cancel_requested: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paused": self.paused,
            "cancelRequested": self.cancel_requested,
            "chunkSize": self.chunk_size,
        }


@dataclass
class JobStats:
    """Per-status item counters; always a re-tally of the job's items"""
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0

    @classmethod
    def tally(cls, items: Iterable["BatchItem"]) -> "JobStats":
        stats = cls()
        for item in items:
            stats.total += 1
            stats._shift(item.status, 1)
        return stats

    def move(self, old: ItemStatus, new: ItemStatus):
        """Account for one item changing from ``old`` to ``new``."""
        self._shift(old, -1)
        self._shift(new, 1)

    def _shift(self, status: ItemStatus, delta: int):
        name = status.value
        setattr(self, name, getattr(self, name) + delta)

    @property
    def settled(self) -> bool:
        """True once no item is pending or processing."""
        return self.pending == 0 and self.processing == 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


@dataclass
class BatchItem:
    """
    One unit of work (one image) within a job.

    ``completed_at`` is set exactly while the status is terminal;
    ``started_at`` is set the first time the item is processed.
    """
    id: str
    source_ref: str
    display_name: str
    status: ItemStatus = ItemStatus.PENDING
    retry_count: int = 0
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    saved_artifacts: Optional[List[SavedArtifact]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ITEM_TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.source_ref,
            "filename": self.display_name,
            "status": self.status.value,
            "retries": self.retry_count,
            "error": self.error,
            "result": self.result,
            "savedFiles": (
                [artifact.to_dict() for artifact in self.saved_artifacts]
                if self.saved_artifacts is not None else None
            ),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }


@dataclass
class BatchJob:
    """
    A batch of items submitted together.

    Item order is processing priority order; the item list is fixed at
    creation.
    """
    id: str
    options: JobOptions
    items: List[BatchItem]
    status: JobStatus = JobStatus.QUEUED
    controls: Optional[JobControls] = None
    stats: Optional[JobStats] = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    _item_index: Dict[str, BatchItem] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        if self.controls is None:
            self.controls = JobControls(chunk_size=self.options.chunk_size)
        if self.stats is None:
            self.stats = JobStats.tally(self.items)
        self._item_index = {item.id: item for item in self.items}

    @property
    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL_STATUSES

    def get_item(self, item_id: str) -> Optional[BatchItem]:
        return self._item_index.get(item_id)

    def pending_items(self, limit: int) -> List[BatchItem]:
        """First ``limit`` pending items, in insertion order."""
        chunk = []
        for item in self.items:
            if len(chunk) >= limit:
                break
            if item.status == ItemStatus.PENDING:
                chunk.append(item)
        return chunk

    def summary(self) -> Dict[str, Any]:
        """Lightweight listing entry"""
        return {
            "id": self.id,
            "status": self.status.value,
            "stats": self.stats.to_dict(),
            "createdAt": _iso(self.created_at),
        }

    def snapshot(self, include_items: bool = False) -> Dict[str, Any]:
        """Observer-facing point-in-time view"""
        data = {
            "jobId": self.id,
            "status": self.status.value,
            "stats": self.stats.to_dict(),
            "createdAt": _iso(self.created_at),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Full serialization including options and controls"""
        data = self.snapshot(include_items=True)
        data["options"] = self.options.to_dict()
        data["controls"] = self.controls.to_dict()
        return data
