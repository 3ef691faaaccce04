"""
Core interfaces for the event harvester.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .models import EventSource, FetchResult, ScrapedEvent


class FetchStrategy(ABC):
    """One way of retrieving a page.

    Strategies form an ordered fallback chain: ``attempt`` returns ``None``
    when the strategy does not apply (e.g. missing credential) and raises
    when it applies but fails. Either way the chain moves on.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier recorded in event metadata."""
        pass

    @abstractmethod
    async def attempt(self, url: str) -> Optional[FetchResult]:
        """Fetch ``url``; ``None`` means 'not applicable'."""
        pass

    async def close(self) -> None:
        """Release network resources held by this strategy."""
        pass


class SiteAdapter(ABC):
    """Extraction logic for one markup shape."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier recorded as ``extraction_method``."""
        pass

    #: Lower runs earlier during dispatch.
    priority: int = 100

    @abstractmethod
    def matches(self, source: EventSource) -> bool:
        """Whether this adapter should handle ``source``."""
        pass

    @abstractmethod
    def extract(
        self,
        html: str,
        source: EventSource,
        *,
        filter_enabled: bool = False,
        fetch_method: Optional[str] = None,
    ) -> List[ScrapedEvent]:
        """Return the accepted events found in ``html``."""
        pass


class Sink(ABC):
    """Destination for accepted events."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def handle(self, organization_id: str, events: Sequence[ScrapedEvent]) -> int:
        """Persist ``events``; returns the number of newly stored rows."""
        pass
