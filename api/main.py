#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
FastAPI Web Server - REST API for Batch OCR.

Usage:
    # Start server
    uvicorn api.main:app --host 0.0.0.0 --port 3001

    # Or run directly
    python run_server.py

API Documentation:
    - OpenAPI docs: http://localhost:3001/docs

Key Endpoints:
    POST /api/batch/start - Create and start a batch job
    GET /api/batch/progress/{job_id} - Server-Sent Events progress stream
    GET /api/batch/status/{job_id} - Job snapshot
    POST /api/batch/{pause,resume,cancel}/{job_id} - Job control
    GET /api/batch/jobs - List jobs
    DELETE /api/batch/job/{job_id} - Delete a job

Configuration:
    Environment variables (or .env):
    - OPENROUTER_API_KEY: OpenRouter API key
    - OCR_DEFAULT_MODEL: Vision model (default: openai/gpt-4o-mini)
    - BATCH_CHUNK_SIZE / BATCH_RETRY_COUNT / BATCH_OVERWRITE: Job defaults
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ai_providers import OpenRouterProvider
from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings
from core.batch_ocr import (
    BatchManager,
    BatchProcessor,
    FileSkipDetector,
    ResultSaver,
)

from .batch_router import router as batch_router

logger = get_logger(__name__)

API_VERSION = "2.0.0"


def create_app(
    manager: Optional[BatchManager] = None,
    processor: Optional[BatchProcessor] = None,
    config: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        manager: Job registry; a fresh one is created if omitted
        processor: Driver; defaults to file-system skip/save collaborators
            and the OpenRouter vision provider
        config: Settings; defaults to the global settings
    """
    config = config or default_settings
    manager = manager or BatchManager(config=config)
    if processor is None:
        processor = BatchProcessor(
            manager,
            skip_detector=FileSkipDetector(),
            extractor=OpenRouterProvider.from_settings(config),
            persister=ResultSaver(),
            config=config,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Batch OCR API starting")
        yield
        await processor.stop()
        logger.info("Batch OCR API stopped")

    app = FastAPI(
        title="Batch OCR API",
        description="Chunked batch OCR over vision models with live progress",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.batch_manager = manager
    app.state.batch_processor = processor
    app.state.sse_heartbeat_seconds = config.sse_heartbeat_seconds

    # The static viewer is served from its own dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(batch_router)

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint"""
        return {
            "status": "healthy",
            "version": API_VERSION,
            "activeJobs": len(processor.active_jobs),
            "timestamp": time.time(),
        }

    return app


app = create_app()
