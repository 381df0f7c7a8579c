"""
Pytest configuration and shared fixtures for Batch OCR tests.
"""
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Keep test runs from writing the rotating log file
os.environ.setdefault("BATCH_OCR_LOG_FILE", "")

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import Settings
from core.batch_ocr import (
    BatchManager,
    BatchProcessor,
    Extractor,
    JobEvent,
    JobOptions,
    PersistOutcome,
    Persister,
    SavedArtifact,
    SkipDetector,
)


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeSkipDetector(SkipDetector):
    """Skips every source_ref in ``skip``."""

    def __init__(self, skip=()):
        self.skip = set(skip)
        self.calls: List[str] = []

    async def should_skip(self, source_ref: str, options: JobOptions) -> bool:
        self.calls.append(source_ref)
        return source_ref in self.skip


class FakeExtractor(Extractor):
    """
    Returns a canned result per image.

    ``failures`` maps source_ref to the number of calls that fail before
    one succeeds (-1: always fail). ``gate``, when set to an asyncio.Event,
    blocks every call until it is set.
    """

    def __init__(self, failures: Optional[Dict[str, int]] = None):
        self.failures = dict(failures or {})
        self.calls: List[str] = []
        self.gate = None

    async def extract(self, source_ref: str, options: JobOptions) -> Dict[str, Any]:
        self.calls.append(source_ref)
        if self.gate is not None:
            await self.gate.wait()

        remaining = self.failures.get(source_ref, 0)
        if remaining != 0:
            self.failures[source_ref] = remaining - 1 if remaining > 0 else -1
            raise RuntimeError(f"OCR failed for {Path(source_ref).name}")
        return {"text": f"text of {Path(source_ref).name}", "confidence": 0.9}


class FakePersister(Persister):
    """Records persisted results without touching the disk."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saved: List[str] = []

    async def persist(self, source_ref, result, options) -> PersistOutcome:
        if self.fail:
            raise OSError("disk full")
        self.saved.append(source_ref)
        return PersistOutcome(artifacts=[
            SavedArtifact(type=fmt, locator=f"{source_ref}.{fmt}", size=42)
            for fmt in options.output_format
        ])


class EventRecorder:
    """Collects every payload published on a notifier."""

    def __init__(self, manager: BatchManager):
        self.events: List[Dict[str, Any]] = []
        manager.notifier.subscribe_many(list(JobEvent), self.events.append)

    def names(self) -> List[str]:
        return [event["event"] for event in self.events]

    def of(self, event: JobEvent) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["event"] == event.value]

    def item_transitions(self, item_id: str) -> List[tuple]:
        return [
            (e["old_status"], e["new_status"], e["item"]["retries"])
            for e in self.of(JobEvent.ITEM_STATUS_CHANGED)
            if e["item_id"] == item_id
        ]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings independent of the environment and any .env file."""
    return Settings(
        _env_file=None,
        batch_chunk_size=50,
        batch_retry_count=2,
        batch_overwrite="skip",
        batch_output_format=["json", "txt"],
        batch_max_queue_size=1000,
        batch_pause_poll_interval=0.01,
        batch_chunk_delay=0,
        openrouter_api_key="test_openrouter_key",
        sse_heartbeat_seconds=0.05,
    )


@pytest.fixture
def manager(test_settings):
    return BatchManager(config=test_settings)


@pytest.fixture
def recorder(manager):
    return EventRecorder(manager)


@pytest.fixture
def skip_detector():
    return FakeSkipDetector()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def persister():
    return FakePersister()


@pytest.fixture
def processor(manager, skip_detector, extractor, persister, test_settings):
    """Processor with fake collaborators and near-zero loop delays."""
    return BatchProcessor(
        manager,
        skip_detector=skip_detector,
        extractor=extractor,
        persister=persister,
        config=test_settings,
    )


@pytest.fixture
def sample_items():
    return [
        "/scans/front.jpg",
        {"path": "/scans/back.jpg", "filename": "Back side"},
        {"path": "C:\\scans\\selfie.png"},
    ]
