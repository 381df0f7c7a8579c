"""
Base Vision Provider - Abstract Interface
Batch OCR - vision-model extraction.

A provider only has to send one image plus a prompt and return the
model's text; reading the image, parsing the JSON reply and stamping
metadata is shared here.
"""

import asyncio
import json
import mimetypes
import re
import time
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from config.constants import (
    OCR_MAX_RETRIES,
    OCR_MAX_TOKENS,
    OCR_RETRY_BASE_DELAY,
    OCR_TEMPERATURE,
    OCR_TIMEOUT_SECONDS,
)
from core.batch_ocr.collaborators import Extractor
from core.batch_ocr.models import JobOptions


class OcrError(Exception):
    """Base exception for vision OCR failures"""
    pass


class OcrConfigError(OcrError):
    """Provider is not usable as configured (e.g. missing API key)"""
    pass


class OcrResponseError(OcrError):
    """The model replied with something that is not a JSON object"""
    pass


@dataclass
class VisionConfig:
    """Provider configuration"""
    api_key: str
    model: str
    base_url: Optional[str] = None
    timeout: float = OCR_TIMEOUT_SECONDS
    max_retries: int = OCR_MAX_RETRIES
    max_tokens: int = OCR_MAX_TOKENS
    temperature: float = OCR_TEMPERATURE
    retry_base_delay: float = OCR_RETRY_BASE_DELAY


@dataclass
class VisionResponse:
    """Unified response format"""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None


DEFAULT_OCR_PROMPT = """You are an expert OCR system specializing in identity document data extraction.

Analyze the provided image and extract ALL text and data fields you can identify.

REQUIREMENTS:
1. Extract every visible text element, even if uncertain
2. If a field is not visible or unclear, set it to null
3. Include the complete raw text of the document in "rawText"
4. Give an overall confidence between 0.0 and 1.0 in "confidence"
5. Identify the side in "side": "front", "back" or "selfie"

FIELDS:
firstName, middleName, lastName, licenseNumber, dateOfBirth (YYYY-MM-DD),
expirationDate (YYYY-MM-DD), issueDate (YYYY-MM-DD), state (2-letter code),
address, city, zipCode, sex (M/F/X)

Respond with a single JSON object and nothing else. Put a one-paragraph
plain-text transcription in "text"."""


_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def parse_json_content(content: str) -> Dict[str, Any]:
    """
    Parse the JSON object in a model reply.

    Accepts bare JSON, fenced ```json blocks and JSON surrounded by prose.

    Raises:
        OcrResponseError: no JSON object found
    """
    if not content or not content.strip():
        raise OcrResponseError("Empty response from vision model")

    fenced = _FENCE.search(content)
    candidate = fenced.group(1) if fenced else content
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end < start:
        raise OcrResponseError("Vision model response contains no JSON object")

    try:
        data = json.loads(candidate[start:end + 1])
    except json.JSONDecodeError as e:
        raise OcrResponseError(f"Could not parse vision model response: {e}") from e
    if not isinstance(data, dict):
        raise OcrResponseError("Vision model response is not a JSON object")
    return data


class BaseVisionProvider(Extractor):
    """
    Abstract base class for vision OCR providers.
    Subclasses implement ``complete_vision``.
    """

    def __init__(self, config: VisionConfig):
        self.config = config

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in logs and results"""
        pass

    @abstractmethod
    async def complete_vision(
        self,
        image: bytes,
        mime_type: str,
        prompt: str,
        model: Optional[str] = None,
    ) -> VisionResponse:
        """
        Send one image and a prompt to the model.

        Raises:
            OcrError: on any provider failure
        """
        pass

    async def extract(self, source_ref: str, options: JobOptions) -> Dict[str, Any]:
        """
        OCR one image file.

        ``options.extra`` may carry ``prompt`` and ``model`` overrides.
        """
        path = Path(source_ref)
        try:
            image = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise OcrError(f"Cannot read image {path.name}: {e.strerror or e}") from e

        mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        prompt = options.extra.get("prompt") or DEFAULT_OCR_PROMPT
        model = options.extra.get("model") or self.config.model

        started = time.monotonic()
        response = await self.complete_vision(image, mime_type, prompt, model=model)
        data = parse_json_content(response.content)

        data.setdefault("text", data.get("rawText") or "")
        data["modelUsed"] = response.model or model
        data["processingTimeMs"] = int((time.monotonic() - started) * 1000)
        data["processedAt"] = datetime.now().isoformat()
        return data
