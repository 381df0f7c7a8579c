"""
Batch Manager
Batch OCR - job registry.

Owns every job in memory for the lifetime of the process, keeps each
job's stats in step with its items, applies the item retry policy, and
publishes lifecycle events through a ProgressNotifier.
"""

import copy
import dataclasses
import threading
import time
import uuid
from datetime import datetime
from pathlib import PureWindowsPath
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from config.constants import SUPPORTED_OUTPUT_FORMATS
from config.logging_config import get_logger, job_logger
from config.settings import Settings, settings as default_settings

from .errors import NotFoundError, ValidationError
from .models import (
    BatchItem,
    BatchJob,
    ITEM_TERMINAL_STATUSES,
    ItemStatus,
    JobControls,
    JobOptions,
    JobStatus,
    OverwriteMode,
    SavedArtifact,
)
from .notifier import (
    EventHandler,
    JobEvent,
    PROGRESS_EVENTS,
    ProgressNotifier,
    Unsubscribe,
    for_job,
)

logger = get_logger(__name__)

ItemSpec = Union[str, Mapping[str, Any]]

# Wire names accepted for job options
_OPTION_ALIASES = {
    "chunkSize": "chunk_size",
    "retryCount": "retry_count",
    "outputFormat": "output_format",
    "jobId": "job_id",
}

_ITEM_FIELDS = ("error", "result", "saved_artifacts", "retry_count")


def _normalize_options(options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        _OPTION_ALIASES.get(key, key): value
        for key, value in (options or {}).items()
    }


def _filename(source_ref: str) -> str:
    # PureWindowsPath splits on both "/" and "\"
    return PureWindowsPath(source_ref).name


def _to_artifact(entry: Any) -> SavedArtifact:
    if isinstance(entry, SavedArtifact):
        return entry
    if isinstance(entry, Mapping):
        locator = entry.get("locator", entry.get("path"))
        size = entry.get("size", 0)
        if entry.get("type") and locator and isinstance(size, int):
            return SavedArtifact(type=str(entry["type"]), locator=str(locator), size=size)
    raise ValidationError(f"Invalid saved artifact descriptor: {entry!r}")


class BatchManager:
    """
    In-memory registry of batch jobs.

    All job and item mutation goes through this class. Calls are
    serialized by a re-entrant lock and events are delivered while it is
    held, so a handler always sees the state that produced its event.

    Usage:
        manager = BatchManager()
        job_id = manager.create_job(["/scans/a.jpg", "/scans/b.jpg"], {"retryCount": 0})
        manager.start_job(job_id)
        for item in manager.get_next_chunk(job_id):
            manager.update_item_status(job_id, item.id, ItemStatus.PROCESSING)
            ...
    """

    def __init__(
        self,
        max_queue_size: Optional[int] = None,
        default_options: Optional[Mapping[str, Any]] = None,
        notifier: Optional[ProgressNotifier] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.max_queue_size = max_queue_size or config.batch_max_queue_size
        self.default_options = config.job_defaults()
        self.default_options.update(_normalize_options(default_options))
        self.notifier = notifier or ProgressNotifier()

        self._jobs: Dict[str, BatchJob] = {}
        self._lock = threading.RLock()

    # =========================================
    # Job Management
    # =========================================

    def create_job(
        self,
        items: Sequence[ItemSpec],
        options: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Create a new batch job.

        Args:
            items: Paths, or mappings with ``path``/``source_ref`` and
                optional ``filename``/``display_name`` and ``id``
            options: chunkSize, retryCount, overwrite, outputFormat,
                jobId; other keys are passed through to collaborators

        Returns:
            The new job id

        Raises:
            ValidationError: empty or oversized batch, or bad options
        """
        if isinstance(items, (str, bytes)) or items is None:
            raise ValidationError("Items must be a list of paths or item mappings")
        items = list(items)
        if not items:
            raise ValidationError("Cannot create job with empty items array")
        if len(items) > self.max_queue_size:
            raise ValidationError(
                f"Batch size {len(items)} exceeds maximum {self.max_queue_size}"
            )

        supplied = _normalize_options(options)
        job_id = supplied.pop("job_id", None) or self._new_job_id()
        job_options = self._merge_options(supplied)

        with self._lock:
            if job_id in self._jobs:
                raise ValidationError(f"Job {job_id} already exists")

            job = BatchJob(
                id=job_id,
                options=job_options,
                items=self._build_items(job_id, items),
            )
            self._jobs[job_id] = job

            job_logger(logger, job_id).info(
                f"Created with {job.stats.total} items "
                f"(chunk size {job_options.chunk_size}, retries {job_options.retry_count})"
            )
            self.notifier.emit(JobEvent.JOB_CREATED, {
                "job_id": job_id,
                "total_items": job.stats.total,
                "options": job_options.to_dict(),
            })

        return job_id

    def get_job(self, job_id: str) -> Optional[BatchJob]:
        """Detached copy of the job, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def get_controls(self, job_id: str) -> Optional[JobControls]:
        """Copy of the job's control flags, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.copy(job.controls) if job else None

    def get_options(self, job_id: str) -> Optional[JobOptions]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job.options) if job else None

    def get_job_stats(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            data = job.snapshot()
            data["id"] = data.pop("jobId")
            return data

    def get_snapshot(
        self, job_id: str, include_items: bool = False
    ) -> Optional[Dict[str, Any]]:
        """Observer-facing snapshot, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot(include_items) if job else None

    def get_all_jobs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [job.summary() for job in self._jobs.values()]

    def delete_job(self, job_id: str):
        """Forget a job. Unknown ids are not an error; the event is emitted either way."""
        with self._lock:
            if self._jobs.pop(job_id, None) is not None:
                job_logger(logger, job_id).info("Deleted")
            self.notifier.emit(JobEvent.JOB_DELETED, {"job_id": job_id})

    def get_next_chunk(self, job_id: str) -> List[BatchItem]:
        """
        Up to ``chunk_size`` pending items in insertion order.

        Returns copies; nothing is marked processing. Unknown jobs give [].
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return []
            chunk = job.pending_items(job.controls.chunk_size)
            return [copy.deepcopy(item) for item in chunk]

    def update_item_status(
        self,
        job_id: str,
        item_id: str,
        status: Union[ItemStatus, str],
        **updates: Any,
    ):
        """
        Move an item to ``status`` and apply field updates.

        Accepted updates: error, result, saved_artifacts, retry_count.

        A FAILED item with retries left is immediately re-queued: a second
        transition to PENDING with ``retry_count`` incremented. Both
        transitions are published. Job completion is evaluated once,
        afterwards.

        Raises:
            NotFoundError: unknown job or item
            ValidationError: unknown status or update field, or a
                malformed update value
        """
        status = self._coerce_status(status)
        updates = self._coerce_updates(updates)

        with self._lock:
            job = self._require_job(job_id)
            item = job.get_item(item_id)
            if item is None:
                raise NotFoundError(job_id, item_id)

            self._apply_item_status(job, item, status, updates)

            if (
                status == ItemStatus.FAILED
                and not job.is_terminal
                and item.retry_count < job.options.retry_count
            ):
                job_logger(logger, job_id).info(
                    f"Retrying {item.display_name} "
                    f"({item.retry_count + 1}/{job.options.retry_count})"
                )
                self._apply_item_status(
                    job, item, ItemStatus.PENDING,
                    {"retry_count": item.retry_count + 1},
                )

            self._check_job_completion(job)

    def watch_job(
        self,
        job_id: str,
        handler: Callable[[Optional[Dict[str, Any]]], None],
        include_items: bool = False,
    ) -> Tuple[Dict[str, Any], Unsubscribe]:
        """
        Subscribe to one job's progress and take its snapshot atomically.

        ``handler`` receives a fresh snapshot after every progress event,
        and None once the job is deleted.

        Returns:
            (current snapshot, unsubscribe callable)
        """
        with self._lock:
            job = self._require_job(job_id)

            def on_event(payload: Dict[str, Any]):
                handler(self.get_snapshot(job_id, include_items))

            unsubscribe = self.notifier.subscribe_many(
                PROGRESS_EVENTS + (JobEvent.JOB_DELETED,),
                for_job(job_id, on_event),
            )
            return job.snapshot(include_items), unsubscribe

    def subscribe(self, event: JobEvent, handler: EventHandler) -> Unsubscribe:
        """Shortcut for ``self.notifier.subscribe``."""
        return self.notifier.subscribe(event, handler)

    # =========================================
    # Job Control
    # =========================================

    def start_job(self, job_id: str):
        """Mark the job as started. Repeated calls are no-ops."""
        with self._lock:
            job = self._require_job(job_id)
            if job.is_terminal or job.started_at is not None:
                return

            job.started_at = datetime.now()
            job.status = JobStatus.PAUSED if job.controls.paused else JobStatus.PROCESSING

            job_logger(logger, job_id).info("Started")
            self.notifier.emit(JobEvent.JOB_STARTED, {"job_id": job_id})

    def pause_job(self, job_id: str):
        with self._lock:
            job = self._require_job(job_id)
            if job.is_terminal or job.controls.paused:
                return

            job.controls.paused = True
            job.status = JobStatus.PAUSED

            job_logger(logger, job_id).info("Paused")
            self.notifier.emit(JobEvent.JOB_PAUSED, {"job_id": job_id})

    def resume_job(self, job_id: str):
        with self._lock:
            job = self._require_job(job_id)
            if job.is_terminal or not job.controls.paused:
                return

            job.controls.paused = False
            job.status = JobStatus.PROCESSING if job.started_at else JobStatus.QUEUED

            job_logger(logger, job_id).info("Resumed")
            self.notifier.emit(JobEvent.JOB_RESUMED, {"job_id": job_id})

    def cancel_job(self, job_id: str):
        """
        Cancel immediately, whatever is still pending or processing.

        A running driver notices ``cancel_requested`` and stops on its own.
        """
        with self._lock:
            job = self._require_job(job_id)
            if job.is_terminal:
                return

            job.controls.cancel_requested = True
            job.status = JobStatus.CANCELLED
            job.completed_at = datetime.now()

            job_logger(logger, job_id).info(
                f"Cancelled with {job.stats.pending} pending, "
                f"{job.stats.processing} processing"
            )
            self.notifier.emit(JobEvent.JOB_CANCELLED, {"job_id": job_id})

    # =========================================
    # Internals
    # =========================================

    @staticmethod
    def _new_job_id() -> str:
        return f"batch_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    def _require_job(self, job_id: str) -> BatchJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    @staticmethod
    def _coerce_status(status: Union[ItemStatus, str]) -> ItemStatus:
        if isinstance(status, ItemStatus):
            return status
        try:
            return ItemStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown item status: {status!r}") from None

    @staticmethod
    def _coerce_updates(updates: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate item field updates before anything is applied.

        Artifact descriptors may be SavedArtifact instances or mappings
        with ``type``, ``locator`` (or ``path``) and ``size``.
        """
        unknown = set(updates) - set(_ITEM_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown item field(s): {', '.join(sorted(unknown))}")

        coerced = dict(updates)
        error = coerced.get("error")
        if error is not None and not isinstance(error, str):
            coerced["error"] = str(error)

        result = coerced.get("result")
        if result is not None and not isinstance(result, Mapping):
            raise ValidationError(f"result must be a mapping, got {type(result).__name__}")

        retry_count = coerced.get("retry_count", 0)
        if isinstance(retry_count, bool) or not isinstance(retry_count, int) or retry_count < 0:
            raise ValidationError(f"retry_count must be a non-negative integer, got {retry_count!r}")

        artifacts = coerced.get("saved_artifacts")
        if artifacts is not None:
            coerced["saved_artifacts"] = [_to_artifact(entry) for entry in artifacts]
        return coerced

    def _merge_options(self, supplied: Dict[str, Any]) -> JobOptions:
        merged = dict(self.default_options)
        merged.update(supplied)

        chunk_size = merged.pop("chunk_size")
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
            raise ValidationError(f"chunkSize must be a positive integer, got {chunk_size!r}")

        retry_count = merged.pop("retry_count")
        if isinstance(retry_count, bool) or not isinstance(retry_count, int) or retry_count < 0:
            raise ValidationError(f"retryCount must be a non-negative integer, got {retry_count!r}")

        overwrite = merged.pop("overwrite")
        try:
            overwrite = OverwriteMode(overwrite)
        except ValueError:
            modes = ", ".join(mode.value for mode in OverwriteMode)
            raise ValidationError(f"overwrite must be one of {modes}, got {overwrite!r}") from None

        output_format = merged.pop("output_format")
        if isinstance(output_format, str):
            output_format = [output_format]
        output_format = list(output_format)
        unknown = [fmt for fmt in output_format if fmt not in SUPPORTED_OUTPUT_FORMATS]
        if unknown:
            raise ValidationError(f"Unsupported output format(s): {', '.join(map(str, unknown))}")

        return JobOptions(
            chunk_size=chunk_size,
            retry_count=retry_count,
            overwrite=overwrite,
            output_format=output_format,
            extra=merged,
        )

    @staticmethod
    def _build_items(job_id: str, specs: List[ItemSpec]) -> List[BatchItem]:
        items = []
        seen = set()
        for index, spec in enumerate(specs):
            if isinstance(spec, str):
                spec = {"path": spec}
            elif not isinstance(spec, Mapping):
                raise ValidationError(f"Item {index} must be a path or a mapping")

            source_ref = spec.get("source_ref") or spec.get("path")
            if not source_ref:
                raise ValidationError(f"Item {index} has no path")

            item_id = str(spec.get("id") or f"{job_id}_item_{index}")
            if item_id in seen:
                raise ValidationError(f"Duplicate item id: {item_id}")
            seen.add(item_id)

            items.append(BatchItem(
                id=item_id,
                source_ref=str(source_ref),
                display_name=(
                    spec.get("display_name")
                    or spec.get("filename")
                    or _filename(str(source_ref))
                ),
            ))
        return items

    def _apply_item_status(
        self,
        job: BatchJob,
        item: BatchItem,
        status: ItemStatus,
        updates: Mapping[str, Any],
    ):
        old_status = item.status
        changes = dict(updates, status=status)

        now = datetime.now()
        if item.started_at is None and (
            status == ItemStatus.PROCESSING or status in ITEM_TERMINAL_STATUSES
        ):
            changes["started_at"] = now
        if status in ITEM_TERMINAL_STATUSES:
            changes["completed_at"] = now
            if status != ItemStatus.FAILED and "error" not in updates:
                changes["error"] = None
        else:
            changes["completed_at"] = None

        # Serialized before anything is assigned: the item and stats only
        # change once the event payload exists
        item_data = dataclasses.replace(item, **changes).to_dict()

        for name, value in changes.items():
            setattr(item, name, value)
        job.stats.move(old_status, status)

        logger.debug(
            f"[Job:{job.id}] {item.display_name}: {old_status.value} -> {status.value}"
        )
        self.notifier.emit(JobEvent.ITEM_STATUS_CHANGED, {
            "job_id": job.id,
            "item_id": item.id,
            "old_status": old_status.value,
            "new_status": status.value,
            "item": item_data,
        })

    def _check_job_completion(self, job: BatchJob):
        if job.is_terminal or not job.stats.settled:
            return

        job.completed_at = datetime.now()
        if job.stats.failed > 0:
            job.status = JobStatus.COMPLETED_WITH_ERRORS
        else:
            job.status = JobStatus.COMPLETED

        job_logger(logger, job.id).info(
            f"{job.status.value}: {job.stats.completed} completed, "
            f"{job.stats.skipped} skipped, {job.stats.failed} failed"
        )
        self.notifier.emit(JobEvent.JOB_COMPLETED, {
            "job_id": job.id,
            "stats": job.stats.to_dict(),
            "status": job.status.value,
        })
