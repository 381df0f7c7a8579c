"""
Collaborator contracts used by BatchProcessor.

The processor never touches the file system or the vision API itself;
it goes through these three interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .models import JobOptions, SavedArtifact


@dataclass
class PersistOutcome:
    """What a persister wrote for one item"""
    artifacts: List[SavedArtifact] = field(default_factory=list)


class SkipDetector(ABC):
    """Decides whether an item already has results."""

    @abstractmethod
    async def should_skip(self, source_ref: str, options: JobOptions) -> bool:
        """
        Return True to skip the item.

        Must not raise for a missing source or result; that means
        "do not skip".
        """
        pass


class Extractor(ABC):
    """Turns one image into structured OCR data."""

    @abstractmethod
    async def extract(self, source_ref: str, options: JobOptions) -> Dict[str, Any]:
        """
        Extract structured data from ``source_ref``.

        Raises an exception with a readable message on any failure.
        """
        pass


class Persister(ABC):
    """Stores an extraction result."""

    @abstractmethod
    async def persist(
        self,
        source_ref: str,
        result: Dict[str, Any],
        options: JobOptions,
    ) -> PersistOutcome:
        """Save ``result`` for ``source_ref``; raises on I/O failure."""
        pass
