"""
AI Providers Package
Batch OCR - vision extraction

Usage:
    from ai_providers import OpenRouterProvider

    provider = OpenRouterProvider.from_settings(settings)
    result = await provider.extract("/scans/front.jpg", job_options)
"""

from .base import (
    BaseVisionProvider,
    DEFAULT_OCR_PROMPT,
    OcrConfigError,
    OcrError,
    OcrResponseError,
    VisionConfig,
    VisionResponse,
    parse_json_content,
)
from .openrouter_provider import OpenRouterProvider

__all__ = [
    # Base classes
    "BaseVisionProvider",
    "VisionConfig",
    "VisionResponse",
    "DEFAULT_OCR_PROMPT",
    "parse_json_content",

    # Errors
    "OcrError",
    "OcrConfigError",
    "OcrResponseError",

    # Providers
    "OpenRouterProvider",
]
