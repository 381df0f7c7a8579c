#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management

Values come from environment variables or a ``.env`` file at the project
root; every default is a named constant from ``config.constants``.
"""

from pathlib import Path
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    BATCH_CHUNK_DELAY,
    BATCH_CHUNK_SIZE,
    BATCH_MAX_QUEUE_SIZE,
    BATCH_OUTPUT_FORMATS,
    BATCH_OVERWRITE_MODE,
    BATCH_PAUSE_POLL_INTERVAL,
    BATCH_RETRY_COUNT,
    OCR_BASE_URL,
    OCR_DEFAULT_MODEL,
    OCR_MAX_RETRIES,
    OCR_MAX_TOKENS,
    OCR_TIMEOUT_SECONDS,
    SERVER_HOST,
    SERVER_PORT,
    SSE_HEARTBEAT_SECONDS,
    SUPPORTED_OUTPUT_FORMATS,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Allow extra fields from .env that aren't defined in model
    )

    # ========== Batch job defaults ==========
    # Merged under the options supplied with every job
    batch_chunk_size: int = BATCH_CHUNK_SIZE
    batch_retry_count: int = BATCH_RETRY_COUNT
    batch_overwrite: str = BATCH_OVERWRITE_MODE  # skip | overwrite | suffix
    batch_output_format: List[str] = list(BATCH_OUTPUT_FORMATS)
    batch_max_queue_size: int = BATCH_MAX_QUEUE_SIZE

    # ========== Driver loop ==========
    batch_pause_poll_interval: float = BATCH_PAUSE_POLL_INTERVAL
    batch_chunk_delay: float = BATCH_CHUNK_DELAY

    # ========== Vision OCR (OpenRouter) ==========
    openrouter_api_key: str = ""
    openrouter_base_url: str = OCR_BASE_URL
    ocr_default_model: str = OCR_DEFAULT_MODEL
    ocr_timeout: float = OCR_TIMEOUT_SECONDS
    ocr_max_retries: int = OCR_MAX_RETRIES
    ocr_max_tokens: int = OCR_MAX_TOKENS

    # ========== Server ==========
    host: str = SERVER_HOST
    port: int = SERVER_PORT
    sse_heartbeat_seconds: float = SSE_HEARTBEAT_SECONDS

    @field_validator("batch_chunk_size", "batch_max_queue_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("batch_retry_count")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("batch_output_format")
    @classmethod
    def _known_formats(cls, value: List[str]) -> List[str]:
        unknown = [fmt for fmt in value if fmt not in SUPPORTED_OUTPUT_FORMATS]
        if unknown:
            raise ValueError(f"unsupported output format(s): {', '.join(unknown)}")
        return value

    def job_defaults(self) -> dict:
        """Default job options, keyed the way job options are supplied."""
        return {
            "chunk_size": self.batch_chunk_size,
            "retry_count": self.batch_retry_count,
            "overwrite": self.batch_overwrite,
            "output_format": list(self.batch_output_format),
        }

    def print_config(self):
        """Print configuration summary"""
        print("\n" + "=" * 70)
        print("CONFIGURATION")
        print("=" * 70)
        print(f"Chunk Size:      {self.batch_chunk_size}")
        print(f"Retry Count:     {self.batch_retry_count}")
        print(f"Overwrite:       {self.batch_overwrite}")
        print(f"Output Formats:  {', '.join(self.batch_output_format)}")
        print(f"Max Queue Size:  {self.batch_max_queue_size}")
        print(f"OCR Model:       {self.ocr_default_model}")
        print(f"API Key Set:     {'yes' if self.openrouter_api_key else 'no'}")
        print("=" * 70 + "\n")


# Global settings instance
settings = Settings()
