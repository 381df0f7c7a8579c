"""
Result Saver - write OCR results as JSON and TXT files next to the image.

Writes retry on transient file-locking errors (EBUSY/EACCES, common on
Windows while an image viewer holds the folder).
"""

import asyncio
import errno
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

from config.constants import (
    RESULT_FILE_FORMAT,
    RESULT_FILE_SUFFIX,
    RESULT_FILE_VERSION,
    RESULT_GENERATED_BY,
    SAVE_RETRY_DELAYS,
    SAVE_RETRYABLE_ERRNOS,
)
from config.logging_config import get_logger

from .collaborators import PersistOutcome, Persister
from .models import JobOptions, OverwriteMode, SavedArtifact
from .skip_detector import get_result_path

logger = get_logger(__name__)

# Keys describing the run rather than the document
_METADATA_KEYS = {
    "text", "rawText", "confidence", "modelUsed", "processedAt",
    "processingTimeMs", "imagePath", "savedAt", "fileFormat",
}


def is_retryable_error(error: OSError) -> bool:
    return errno.errorcode.get(error.errno) in SAVE_RETRYABLE_ERRNOS


def _label(key: str) -> str:
    # firstName -> First Name, date_of_birth -> Date Of Birth
    words = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", key).replace("_", " ")
    return words.title()


def format_txt_content(data: Dict[str, Any]) -> str:
    """Human-readable report of one OCR result."""
    timestamp = data.get("savedAt") or datetime.now().isoformat()
    lines = [
        "OCR Analysis Results",
        "=" * 60,
        f"Processed: {timestamp}",
        f"Source Image: {Path(data.get('imagePath') or 'unknown').name}",
        f"Model Used: {data.get('modelUsed') or 'Unknown'}",
        f"Confidence: {round((data.get('confidence') or 0) * 100)}%",
        f"File Format: {data.get('fileFormat') or 'Unknown'}",
        "",
        "EXTRACTED TEXT",
        "-" * 30,
    ]
    if data.get("text"):
        lines += [str(data["text"]), ""]

    fields = [
        (key, value) for key, value in data.items()
        if key not in _METADATA_KEYS
        and value not in (None, "")
        and not isinstance(value, (dict, list))
    ]
    if fields:
        lines += ["STRUCTURED DATA", "-" * 30]
        lines += [f"{_label(key)}: {value}" for key, value in fields]
        lines.append("")

    if data.get("rawText"):
        lines += ["RAW OCR OUTPUT", "-" * 30, str(data["rawText"]), ""]

    lines += ["=" * 60, "Generated by Image Manipulator v2.0", ""]
    return "\n".join(lines)


class ResultSaver(Persister):
    """
    Persists OCR results per ``options.output_format``.

    In ``suffix`` mode existing results are kept and the new files get the
    first free ``_<n>`` suffix; other modes overwrite.
    """

    def __init__(self, retry_delays: Sequence[float] = SAVE_RETRY_DELAYS):
        self.retry_delays = tuple(retry_delays)

    async def persist(
        self,
        source_ref: str,
        result: Dict[str, Any],
        options: JobOptions,
    ) -> PersistOutcome:
        enhanced = dict(result)
        enhanced.update({
            "imagePath": source_ref,
            "savedAt": datetime.now().isoformat(),
            "fileFormat": RESULT_FILE_FORMAT,
        })

        paths = self.result_paths(source_ref, options.output_format, options.overwrite)
        artifacts = []
        for fmt, path in paths.items():
            if fmt == "json":
                content = json.dumps(
                    dict(enhanced, fileVersion=RESULT_FILE_VERSION, generatedBy=RESULT_GENERATED_BY),
                    indent=2,
                    ensure_ascii=False,
                    default=str,
                )
            else:
                content = format_txt_content(enhanced)

            await self._write_with_retry(path, content)
            artifacts.append(SavedArtifact(
                type=fmt, locator=str(path), size=len(content.encode("utf-8")),
            ))

        logger.debug(f"Saved {len(artifacts)} result file(s) for {source_ref}")
        return PersistOutcome(artifacts=artifacts)

    @staticmethod
    def result_paths(
        source_ref: str,
        formats: List[str],
        overwrite: OverwriteMode,
    ) -> Dict[str, Path]:
        """Target path per format, keeping a suffixed set together."""
        paths = {fmt: get_result_path(source_ref, fmt) for fmt in formats}
        if overwrite != OverwriteMode.SUFFIX:
            return paths

        n = 0
        while any(path.exists() for path in paths.values()):
            n += 1
            paths = {
                fmt: path.with_name(f"{Path(source_ref).stem}{RESULT_FILE_SUFFIX}_{n}.{fmt}")
                for fmt, path in paths.items()
            }
        return paths

    async def _write_with_retry(self, path: Path, content: str):
        attempts = len(self.retry_delays) + 1
        for attempt in range(attempts):
            try:
                await asyncio.to_thread(path.write_text, content, encoding="utf-8")
                return
            except OSError as e:
                if is_retryable_error(e) and attempt < attempts - 1:
                    logger.debug(f"Write to {path} failed ({e}); retrying")
                    await asyncio.sleep(self.retry_delays[attempt])
                    continue
                raise
