"""
Batch Processor - drives batch OCR jobs.

Orchestrates the per-item flow: skip detection -> OCR -> result saving.
One cooperative driver loop per job; items are processed one at a time,
in insertion order, a chunk at a time.
"""

import asyncio
from functools import partial
from typing import Dict, FrozenSet, List, Optional, Set

from config.logging_config import get_logger, job_logger
from config.settings import Settings, settings as default_settings

from .collaborators import Extractor, Persister, SkipDetector
from .errors import AlreadyRunningError, ItemProcessingError, NotFoundError, ValidationError
from .manager import BatchManager
from .models import BatchItem, ItemStatus, JobOptions

logger = get_logger(__name__)

SKIP_REASON = "Already processed"


class BatchProcessor:
    """
    Runs batch jobs registered in a BatchManager.

    At most one driver per job id is active at a time; a second attempt
    fails with AlreadyRunningError instead of queuing.

    Usage:
        processor = BatchProcessor(manager, FileSkipDetector(), provider, ResultSaver())

        # run to completion
        await processor.process_job(job_id)

        # or in the background
        task = processor.start(job_id)
    """

    def __init__(
        self,
        manager: BatchManager,
        skip_detector: SkipDetector,
        extractor: Extractor,
        persister: Persister,
        pause_poll_interval: Optional[float] = None,
        chunk_delay: Optional[float] = None,
        config: Optional[Settings] = None,
    ):
        """
        Args:
            manager: Registry holding the jobs
            skip_detector: "already processed" predicate
            extractor: Vision OCR
            persister: Result writer
            pause_poll_interval: Seconds between checks while paused
            chunk_delay: Seconds yielded between chunks
            config: Settings supplying the interval defaults
        """
        config = config or default_settings
        self.manager = manager
        self.skip_detector = skip_detector
        self.extractor = extractor
        self.persister = persister
        self.pause_poll_interval = (
            config.batch_pause_poll_interval if pause_poll_interval is None
            else pause_poll_interval
        )
        self.chunk_delay = config.batch_chunk_delay if chunk_delay is None else chunk_delay

        self._active: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> FrozenSet[str]:
        return frozenset(self._active)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._active

    # =========================================
    # Drivers
    # =========================================

    async def process_job(self, job_id: str):
        """
        Drive ``job_id`` until it has no pending items, is cancelled or
        is deleted.

        Raises:
            AlreadyRunningError: another driver owns this job
            NotFoundError: the job does not exist
        """
        self._claim(job_id)
        await self._run_claimed(job_id)

    def start(self, job_id: str) -> asyncio.Task:
        """
        Schedule ``process_job`` as a background task.

        The driver slot is claimed before returning, so errors are
        raised here rather than inside the task.
        """
        self._claim(job_id)
        task = asyncio.create_task(self._run_claimed(job_id))
        self._tasks[job_id] = task
        task.add_done_callback(partial(self._on_task_done, job_id))
        return task

    async def stop(self):
        """Cancel every background driver and wait for them to exit."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped {len(tasks)} batch driver(s)")

    def _claim(self, job_id: str):
        if job_id in self._active:
            raise AlreadyRunningError(job_id)
        if self.manager.get_controls(job_id) is None:
            raise NotFoundError(job_id)
        self._active.add(job_id)

    async def _run_claimed(self, job_id: str):
        try:
            await self._drive(job_id)
        finally:
            self._active.discard(job_id)

    def _on_task_done(self, job_id: str, task: asyncio.Task):
        # A newer driver may already own the slot
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            job_logger(logger, job_id).info("Driver task cancelled")
        elif task.exception() is not None:
            job_logger(logger, job_id).error(
                f"Driver crashed: {task.exception()}",
                exc_info=task.exception(),
            )

    async def _drive(self, job_id: str):
        log = job_logger(logger, job_id)
        self.manager.start_job(job_id)
        log.info("Driver started")

        chunks = 0
        while True:
            controls = self.manager.get_controls(job_id)
            if controls is None:
                log.info("Job deleted, driver stopping")
                break
            if controls.cancel_requested:
                log.info("Cancel requested, driver stopping")
                break
            if controls.paused:
                await asyncio.sleep(self.pause_poll_interval)
                continue

            chunk = self.manager.get_next_chunk(job_id)
            if not chunk:
                break

            chunks += 1
            log.debug(f"Chunk {chunks}: {len(chunk)} item(s)")
            await self.process_chunk(job_id, chunk)

            # Let pause/cancel requests and observers in between chunks
            await asyncio.sleep(self.chunk_delay)

        log.info(f"Driver finished after {chunks} chunk(s)")

    # =========================================
    # Chunks & Items
    # =========================================

    async def process_chunk(self, job_id: str, chunk: List[BatchItem]):
        """
        Process ``chunk`` sequentially.

        Stops early when the job is cancelled, paused or deleted; the
        remaining items stay pending. An unexpected error on one item is
        logged and the next item is processed.
        """
        options = self.manager.get_options(job_id)
        if options is None:
            return

        for item in chunk:
            controls = self.manager.get_controls(job_id)
            if controls is None or controls.cancel_requested or controls.paused:
                break

            try:
                await self.process_item(job_id, item, options)
            except Exception:
                logger.exception(f"[Job:{job_id}] Error processing item {item.id}")

    async def process_item(self, job_id: str, item: BatchItem, options: JobOptions):
        """
        Skip, or extract and persist, one item.

        Collaborator failures mark the item FAILED; the registry re-queues
        it while retries remain. So does a result the registry rejects
        (e.g. malformed artifact descriptors). Other registry errors (e.g.
        the job was deleted meanwhile) propagate.
        """
        self.manager.update_item_status(job_id, item.id, ItemStatus.PROCESSING)

        try:
            if await self.skip_detector.should_skip(item.source_ref, options):
                self.manager.update_item_status(
                    job_id, item.id, ItemStatus.SKIPPED,
                    result={"skipped": True, "reason": SKIP_REASON},
                )
                return

            result = await self.extractor.extract(item.source_ref, options)
            outcome = await self.persister.persist(item.source_ref, result, options)
        except Exception as exc:
            self._record_failure(job_id, item, exc)
            return

        try:
            self.manager.update_item_status(
                job_id, item.id, ItemStatus.COMPLETED,
                result=result,
                saved_artifacts=list(outcome.artifacts),
            )
        except ValidationError as exc:
            # Rejected before any change: the item is still processing
            self._record_failure(job_id, item, exc)

    def _record_failure(self, job_id: str, item: BatchItem, exc: Exception):
        error = ItemProcessingError.wrap(item.id, item.source_ref, exc)
        logger.warning(
            f"[Job:{job_id}] {item.display_name} failed "
            f"(attempt {item.retry_count + 1}): {error.message}"
        )
        self.manager.update_item_status(
            job_id, item.id, ItemStatus.FAILED, error=error.message,
        )
