"""
OpenRouter Provider - vision OCR over the OpenAI-compatible chat API.
Batch OCR - default extractor.
"""

import asyncio
import base64
from typing import Any, Dict, List, Optional

import httpx

from config.constants import OCR_APP_TITLE, OCR_BASE_URL, OCR_HTTP_REFERER
from config.logging_config import get_logger
from config.settings import Settings

from .base import (
    BaseVisionProvider,
    OcrConfigError,
    OcrError,
    OcrResponseError,
    VisionConfig,
    VisionResponse,
)

logger = get_logger(__name__)

# Status codes worth another attempt
_RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}


class OpenRouterProvider(BaseVisionProvider):
    """
    OpenRouter vision provider

    Usage:
        provider = OpenRouterProvider.from_settings(settings)
        result = await provider.extract("/scans/front.jpg", job_options)
    """

    def __init__(
        self,
        config: VisionConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: API key, model and limits
            transport: Optional httpx transport (tests use MockTransport)
        """
        super().__init__(config)
        self.base_url = (config.base_url or OCR_BASE_URL).rstrip("/")
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "OpenRouterProvider":
        return cls(
            VisionConfig(
                api_key=settings.openrouter_api_key,
                model=settings.ocr_default_model,
                base_url=settings.openrouter_base_url,
                timeout=settings.ocr_timeout,
                max_retries=settings.ocr_max_retries,
                max_tokens=settings.ocr_max_tokens,
            ),
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "openrouter"

    def _headers(self) -> Dict[str, str]:
        api_key = self.config.api_key
        if not api_key or api_key == "your_openrouter_api_key_here":
            raise OcrConfigError(
                "OPENROUTER_API_KEY not configured. Please set it in .env file. "
                "Get your API key from https://openrouter.ai/keys"
            )
        return {
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": OCR_HTTP_REFERER,
            "X-Title": OCR_APP_TITLE,
        }

    def _payload(self, image: bytes, mime_type: str, prompt: str, model: str) -> Dict[str, Any]:
        image_url = f"data:{mime_type};base64,{base64.b64encode(image).decode()}"
        content: List[Dict[str, Any]] = [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": image_url}},
        ]
        return {
            "model": model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": content}],
        }

    async def complete_vision(
        self,
        image: bytes,
        mime_type: str,
        prompt: str,
        model: Optional[str] = None,
    ) -> VisionResponse:
        headers = self._headers()
        payload = self._payload(image, mime_type, prompt, model or self.config.model)
        url = f"{self.base_url}/chat/completions"

        attempts = max(self.config.max_retries, 1)
        last_error: Optional[OcrError] = None

        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(
                    timeout=self.config.timeout, transport=self._transport
                ) as client:
                    response = await client.post(url, json=payload, headers=headers)
            except httpx.TimeoutException as e:
                last_error = OcrError(f"OCR request timed out after {self.config.timeout}s")
                last_error.__cause__ = e
            except httpx.TransportError as e:
                last_error = OcrError(f"OCR request failed: {e}")
                last_error.__cause__ = e
            else:
                if response.status_code == 200:
                    return self._parse_response(response)
                if response.status_code in (401, 403):
                    raise OcrConfigError(
                        f"OpenRouter authentication failed (HTTP {response.status_code}). "
                        "Check OPENROUTER_API_KEY."
                    )
                last_error = OcrError(
                    f"OpenRouter API error: {self._error_message(response)}"
                )
                if response.status_code not in _RETRYABLE_STATUS:
                    raise last_error

            if attempt < attempts - 1:
                wait_time = self.config.retry_base_delay * (2 ** attempt)
                logger.warning(f"{last_error}; retrying in {wait_time:.1f}s...")
                await asyncio.sleep(wait_time)

        raise last_error

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            error = response.json().get("error")
        except ValueError:
            error = None
        if isinstance(error, dict):
            error = error.get("message")
        return error or f"HTTP {response.status_code}"

    @staticmethod
    def _parse_response(response: httpx.Response) -> VisionResponse:
        try:
            data = response.json()
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise OcrResponseError(f"Unexpected OpenRouter response: {e}") from e

        usage = data.get("usage")
        return VisionResponse(
            content=content or "",
            model=data.get("model", ""),
            usage={
                "input_tokens": usage.get("prompt_tokens", 0),
                "output_tokens": usage.get("completion_tokens", 0),
            } if usage else None,
            finish_reason=choice.get("finish_reason"),
        )
