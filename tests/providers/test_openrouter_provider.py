"""
Tests for the OpenRouter vision provider.

HTTP is served by httpx.MockTransport; no network access.
"""

import base64
import json

import httpx
import pytest

from ai_providers import (
    OcrConfigError,
    OcrError,
    OcrResponseError,
    OpenRouterProvider,
    VisionConfig,
    parse_json_content,
)
from core.batch_ocr.models import JobOptions, OverwriteMode

IMAGE_BYTES = b"\x89PNG\r\n\x1a\nfake"


def _options(**extra):
    return JobOptions(
        chunk_size=1, retry_count=0, overwrite=OverwriteMode.SKIP,
        output_format=["json"], extra=extra,
    )


def _completion(content, model="openai/gpt-4o-mini"):
    return httpx.Response(200, json={
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 20},
    })


class RecordingHandler:
    """MockTransport handler replaying a list of responses or exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _provider(handler, api_key="test-key", max_retries=3):
    config = VisionConfig(
        api_key=api_key,
        model="openai/gpt-4o-mini",
        max_retries=max_retries,
        retry_base_delay=0,
    )
    return OpenRouterProvider(config, transport=httpx.MockTransport(handler))


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "front.png"
    path.write_bytes(IMAGE_BYTES)
    return str(path)


class TestParseJsonContent:
    """Tests for reply parsing."""

    def test_bare_json(self):
        """Plain JSON objects parse."""
        assert parse_json_content('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        """Markdown code fences are stripped."""
        assert parse_json_content('```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_in_prose(self):
        """Surrounding prose is ignored."""
        assert parse_json_content('Here you go: {"a": {"b": 2}} Hope it helps') == {"a": {"b": 2}}

    @pytest.mark.parametrize("content", ["", "no json here", "[1, 2]", "{broken"])
    def test_invalid(self, content):
        """Anything but a JSON object is an OcrResponseError."""
        with pytest.raises(OcrResponseError):
            parse_json_content(content)


class TestOpenRouterProvider:
    """Tests for OpenRouterProvider.extract."""

    @pytest.mark.asyncio
    async def test_extract_success(self, image):
        """The image is sent inline and the JSON reply is returned with metadata."""
        handler = RecordingHandler(_completion(
            '```json\n{"firstName": "John", "rawText": "JOHN", "confidence": 0.9}\n```',
            model="openai/gpt-4o-mini-2024",
        ))
        result = await _provider(handler).extract(image, _options())

        assert result["firstName"] == "John"
        assert result["text"] == "JOHN"
        assert result["modelUsed"] == "openai/gpt-4o-mini-2024"
        assert isinstance(result["processingTimeMs"], int)
        assert "processedAt" in result

        request = handler.requests[0]
        assert request.url == "https://openrouter.ai/api/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        assert request.headers["X-Title"] == "Image Manipulator OCR Processing"

        payload = json.loads(request.content)
        assert payload["model"] == "openai/gpt-4o-mini"
        parts = payload["messages"][0]["content"]
        assert parts[0]["type"] == "text"
        assert parts[1]["image_url"]["url"] == (
            "data:image/png;base64," + base64.b64encode(IMAGE_BYTES).decode()
        )

    @pytest.mark.asyncio
    async def test_option_overrides(self, image):
        """Per-job model and prompt overrides reach the request."""
        handler = RecordingHandler(_completion('{"text": "x"}'))
        await _provider(handler).extract(image, _options(model="google/gemini-flash", prompt="Just read it"))

        payload = json.loads(handler.requests[0].content)
        assert payload["model"] == "google/gemini-flash"
        assert payload["messages"][0]["content"][0]["text"] == "Just read it"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, image):
        """5xx and rate limits are retried until a success."""
        handler = RecordingHandler(
            httpx.Response(503, json={"error": {"message": "overloaded"}}),
            httpx.Response(429, json={"error": {"message": "slow down"}}),
            _completion('{"text": "ok"}'),
        )
        result = await _provider(handler).extract(image, _options())

        assert result["text"] == "ok"
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, image):
        """Transport failures are retried."""
        handler = RecordingHandler(
            httpx.ConnectError("connection refused"),
            _completion('{"text": "ok"}'),
        )
        result = await _provider(handler).extract(image, _options())
        assert result["text"] == "ok"
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, image):
        """Persistent server errors surface after max_retries attempts."""
        handler = RecordingHandler(httpx.Response(500, json={"error": {"message": "upstream down"}}))

        with pytest.raises(OcrError, match="upstream down"):
            await _provider(handler, max_retries=2).extract(image, _options())
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self, image):
        """Authentication failures fail at once."""
        handler = RecordingHandler(httpx.Response(401, json={"error": {"message": "bad key"}}))

        with pytest.raises(OcrConfigError):
            await _provider(handler).extract(image, _options())
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, image):
        """Other 4xx responses fail at once with the API message."""
        handler = RecordingHandler(httpx.Response(400, json={"error": {"message": "image too large"}}))

        with pytest.raises(OcrError, match="image too large"):
            await _provider(handler).extract(image, _options())
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_api_key(self, image):
        """No request is made without an API key."""
        handler = RecordingHandler(_completion("{}"))

        with pytest.raises(OcrConfigError, match="OPENROUTER_API_KEY"):
            await _provider(handler, api_key="").extract(image, _options())
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, image):
        """A reply without JSON is an OcrResponseError."""
        handler = RecordingHandler(_completion("I cannot read this image."))

        with pytest.raises(OcrResponseError):
            await _provider(handler).extract(image, _options())

    @pytest.mark.asyncio
    async def test_malformed_response_body(self, image):
        """A 200 without choices is an OcrResponseError."""
        handler = RecordingHandler(httpx.Response(200, json={"id": "x"}))

        with pytest.raises(OcrResponseError):
            await _provider(handler).extract(image, _options())

    @pytest.mark.asyncio
    async def test_missing_image(self, tmp_path):
        """Unreadable images fail before any request."""
        handler = RecordingHandler(_completion("{}"))

        with pytest.raises(OcrError, match="Cannot read image"):
            await _provider(handler).extract(str(tmp_path / "nope.jpg"), _options())
        assert handler.requests == []

    def test_from_settings(self, test_settings):
        """Settings supply key, model and limits."""
        provider = OpenRouterProvider.from_settings(test_settings)

        assert provider.name == "openrouter"
        assert provider.config.api_key == "test_openrouter_key"
        assert provider.config.model == test_settings.ocr_default_model
        assert provider.base_url == "https://openrouter.ai/api/v1"
