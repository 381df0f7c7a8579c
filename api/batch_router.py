"""
Batch OCR API Router

FastAPI endpoints for starting, observing and controlling batch OCR jobs.
Progress is pushed to clients as Server-Sent Events.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from config.logging_config import get_logger
from core.batch_ocr import (
    AlreadyRunningError,
    BatchManager,
    BatchProcessor,
    NotFoundError,
    ValidationError,
)
from core.batch_ocr.models import JOB_TERMINAL_STATUSES
from core.batch_ocr.skip_detector import check_result_files, read_existing_results

logger = get_logger(__name__)

router = APIRouter(prefix="/api/batch", tags=["Batch OCR"])

_TERMINAL_VALUES = {status.value for status in JOB_TERMINAL_STATUSES}


# ==================== MODELS ====================

class BatchItemRequest(BaseModel):
    """One image in a start request"""
    path: str
    filename: Optional[str] = None
    id: Optional[str] = None


class StartBatchRequest(BaseModel):
    """Start request body"""
    model_config = ConfigDict(extra="ignore")

    items: List[BatchItemRequest]
    options: Dict[str, Any] = Field(default_factory=dict)


class StartBatchResponse(BaseModel):
    """Start response"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job_id: str = Field(alias="jobId")
    total_items: int = Field(alias="totalItems")
    options: Dict[str, Any]


class JobActionResponse(BaseModel):
    """Pause/resume/cancel/delete response"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job_id: str = Field(alias="jobId")


# ==================== DEPENDENCIES ====================

def _manager(request: Request) -> BatchManager:
    return request.app.state.batch_manager


def _processor(request: Request) -> BatchProcessor:
    return request.app.state.batch_processor


def _not_found(error: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=error.message)


# ==================== ENDPOINTS ====================

@router.post(
    "/start",
    response_model=StartBatchResponse,
    response_model_by_alias=True,
    summary="Create and start a batch OCR job",
)
async def start_batch(body: StartBatchRequest, request: Request):
    """
    Register the images as a new job and start processing in the background.

    Subscribe to GET /api/batch/progress/{job_id} for live updates.
    """
    manager = _manager(request)
    if not body.items:
        raise HTTPException(status_code=400, detail="No items provided")

    items = [item.model_dump(exclude_none=True) for item in body.items]
    try:
        job_id = manager.create_job(items, body.options)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    try:
        _processor(request).start(job_id)
    except AlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=e.message)

    job = manager.get_job(job_id)
    logger.info(f"[Job:{job_id}] Started via API with {job.stats.total} items")
    return StartBatchResponse(
        job_id=job_id,
        total_items=job.stats.total,
        options=job.options.to_dict(),
    )


@router.get(
    "/progress/{job_id}",
    summary="Stream job progress (Server-Sent Events)",
)
async def stream_progress(
    job_id: str,
    request: Request,
    include_items: bool = Query(default=False, alias="includeItems"),
):
    """
    ``job-update`` events carry the job snapshot: once on connect, then
    after every progress change. The stream ends once the job finishes,
    is cancelled or is deleted.
    """
    manager = _manager(request)
    if manager.get_snapshot(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    return StreamingResponse(
        progress_events(
            request, manager, job_id, include_items,
            heartbeat=request.app.state.sse_heartbeat_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/results", summary="Look up saved OCR results for an image")
async def get_results(path: str = Query(default="")):
    """
    Report which result files exist next to the image, plus the saved
    JSON result when there is one.
    """
    if not path:
        raise HTTPException(status_code=400, detail="No image path provided")
    files = check_result_files(path)
    return {
        "path": path,
        "files": files,
        "results": read_existing_results(path) if files["json"] else None,
    }


@router.get("/status/{job_id}", summary="Get job snapshot")
async def get_status(
    job_id: str,
    request: Request,
    include_items: bool = Query(default=False, alias="includeItems"),
):
    snapshot = _manager(request).get_snapshot(job_id, include_items)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return snapshot


@router.post(
    "/pause/{job_id}",
    response_model=JobActionResponse,
    response_model_by_alias=True,
    summary="Pause a job",
)
async def pause_batch(job_id: str, request: Request):
    try:
        _manager(request).pause_job(job_id)
    except NotFoundError as e:
        raise _not_found(e)
    return JobActionResponse(job_id=job_id)


@router.post(
    "/resume/{job_id}",
    response_model=JobActionResponse,
    response_model_by_alias=True,
    summary="Resume a paused job",
)
async def resume_batch(job_id: str, request: Request):
    try:
        _manager(request).resume_job(job_id)
    except NotFoundError as e:
        raise _not_found(e)
    return JobActionResponse(job_id=job_id)


@router.post(
    "/cancel/{job_id}",
    response_model=JobActionResponse,
    response_model_by_alias=True,
    summary="Cancel a job",
)
async def cancel_batch(job_id: str, request: Request):
    """
    Cancel a job. Items already completed keep their result files.
    """
    try:
        _manager(request).cancel_job(job_id)
    except NotFoundError as e:
        raise _not_found(e)
    return JobActionResponse(job_id=job_id)


@router.get("/jobs", summary="List all jobs")
async def list_jobs(request: Request):
    return {"jobs": _manager(request).get_all_jobs()}


@router.delete(
    "/job/{job_id}",
    response_model=JobActionResponse,
    response_model_by_alias=True,
    summary="Delete a job",
)
async def delete_batch(job_id: str, request: Request):
    """
    Forget a job. A running driver stops at its next item boundary.
    """
    _manager(request).delete_job(job_id)
    return JobActionResponse(job_id=job_id)


# ==================== SSE ====================

def format_sse(data: Dict[str, Any], event: str = "job-update") -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def is_final(snapshot: Optional[Dict[str, Any]]) -> bool:
    return snapshot is None or snapshot.get("status") in _TERMINAL_VALUES


async def progress_events(
    request: Request,
    manager: BatchManager,
    job_id: str,
    include_items: bool,
    heartbeat: float,
) -> AsyncIterator[str]:
    """
    Subscribe to the job and yield its snapshot and then every update as
    SSE frames.

    The subscription only exists while the generator is being iterated.
    A comment line is sent every ``heartbeat`` seconds of silence so
    proxies keep the connection open. A None update means the job was
    deleted.
    """
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()

    try:
        snapshot, unsubscribe = manager.watch_job(
            job_id,
            lambda snap: loop.call_soon_threadsafe(updates.put_nowait, snap),
            include_items=include_items,
        )
    except NotFoundError:
        logger.debug(f"[Job:{job_id}] Deleted before the progress stream started")
        return

    try:
        yield format_sse(snapshot)
        if is_final(snapshot):
            return

        while True:
            if await request.is_disconnected():
                logger.debug(f"[Job:{job_id}] Progress client disconnected")
                return
            try:
                update = await asyncio.wait_for(updates.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue

            if update is None:
                return
            yield format_sse(update)
            if is_final(update):
                return
    finally:
        unsubscribe()
