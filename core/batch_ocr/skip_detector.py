"""
Skip Detector - check whether an image already has OCR results.

Results live next to the image as ``<stem>_ocr_results.json`` /
``<stem>_ocr_results.txt``.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

from config.constants import RESULT_FILE_SUFFIX, SUPPORTED_OUTPUT_FORMATS
from config.logging_config import get_logger

from .collaborators import SkipDetector
from .models import JobOptions, OverwriteMode

logger = get_logger(__name__)


def get_result_path(image_path: str, fmt: str = "json") -> Path:
    """
    Result file path for an image.

    Raises:
        ValueError: unsupported format
    """
    if fmt not in SUPPORTED_OUTPUT_FORMATS:
        raise ValueError(f"Unsupported format: {fmt}")
    path = Path(image_path)
    return path.with_name(f"{path.stem}{RESULT_FILE_SUFFIX}.{fmt}")


def check_result_files(image_path: str) -> Dict[str, Any]:
    """Which result files exist for an image, and where."""
    json_path = get_result_path(image_path, "json")
    txt_path = get_result_path(image_path, "txt")
    return {
        "json": json_path.is_file(),
        "txt": txt_path.is_file(),
        "jsonPath": str(json_path),
        "txtPath": str(txt_path),
    }


def read_existing_results(image_path: str) -> Optional[Dict[str, Any]]:
    """Saved JSON results, or None if missing or unreadable."""
    json_path = get_result_path(image_path, "json")
    try:
        return json.loads(json_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


class FileSkipDetector(SkipDetector):
    """
    Skips images that already have a JSON result file.

    Only applies in ``skip`` overwrite mode; ``overwrite`` and ``suffix``
    always reprocess.
    """

    async def should_skip(self, source_ref: str, options: JobOptions) -> bool:
        if options.overwrite != OverwriteMode.SKIP:
            return False

        result_path = get_result_path(source_ref, "json")
        try:
            exists = await asyncio.to_thread(result_path.is_file)
        except OSError as e:
            logger.debug(f"Cannot check {result_path}: {e}")
            return False

        if exists:
            logger.debug(f"Skipping {source_ref}: {result_path.name} exists")
        return exists
