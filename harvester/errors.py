"""
Exception types for the event harvester.
"""

from __future__ import annotations

from typing import List, Tuple


class HarvesterError(Exception):
    """Base class for harvester errors."""


class ConfigError(HarvesterError):
    """Configuration file could not be read or validated."""


class SourceLoadFailure(HarvesterError):
    """Loading the organization's sources failed; the run cannot proceed."""


class StrategyFailed(HarvesterError):
    """A single fetch strategy applied but produced no page."""


class FetchExhausted(HarvesterError):
    """Every fetch strategy failed or returned unusable content for a URL."""

    def __init__(self, url: str, attempts: List[Tuple[str, str]]):
        self.url = url
        self.attempts = attempts
        last = attempts[-1][1] if attempts else "no fetch strategy available"
        super().__init__(last)

    def describe(self) -> str:
        tried = ", ".join(f"{name}: {err}" for name, err in self.attempts) or "none"
        return f"All fetch strategies failed for {self.url} ({tried})"


class PersistenceFailure(HarvesterError):
    """Writing events to storage failed."""
