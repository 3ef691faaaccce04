"""
Core data models for the event harvester.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class GeoFilter(BaseModel):
    """Geographic filter attached to a source."""
    city: str = ""
    state: str = ""
    radius: int = 50


class ScrapingConfig(BaseModel):
    """Structural selectors for a source. Each field may hold a comma-separated list."""
    selector: Optional[str] = None
    title_selector: Optional[str] = None
    date_selector: Optional[str] = None
    location_selector: Optional[str] = None
    link_selector: Optional[str] = None
    description_selector: Optional[str] = None


DEFAULT_SCRAPING_CONFIG = ScrapingConfig(
    selector='.event, .calendar-event, [class*="event"]',
    title_selector="h2, h3, .title, .event-title",
    date_selector='.date, .when, [class*="date"], .event-date',
    location_selector='.location, .where, [class*="location"], .event-location',
    link_selector="a",
)


class PerformanceMetrics(BaseModel):
    """Rolling per-source health record, overwritten after every scrape attempt."""
    last_success: Optional[bool] = None
    events_found: int = 0
    last_error: Optional[str] = None
    last_attempt: Optional[datetime] = None
    success_rate: float = 0.0  # 0-100, smoothed
    avg_response_time: float = 0.0  # seconds, smoothed

    def record(self, success: bool, events_found: int, error: Optional[str],
               elapsed: float, attempted_at: Optional[datetime] = None) -> "PerformanceMetrics":
        """Return the metrics that follow this one after a single attempt."""
        if success:
            rate = (self.success_rate + 100) / 2 if self.success_rate > 0 else 100.0
        else:
            rate = self.success_rate * 0.9 if self.success_rate > 0 else 50.0

        if self.avg_response_time > 0:
            avg = (self.avg_response_time + elapsed) / 2
        else:
            avg = elapsed

        return PerformanceMetrics(
            last_success=success,
            events_found=events_found,
            last_error=None if success else error,
            last_attempt=attempted_at or utcnow(),
            success_rate=round(rate, 2),
            avg_response_time=round(avg, 3),
        )


class EventSource(BaseModel):
    """A configured external site to harvest events from."""
    id: str
    organization_id: str
    name: str
    url: str
    keywords: List[str] = Field(default_factory=list)
    location: GeoFilter = Field(default_factory=GeoFilter)
    scraping_config: Optional[ScrapingConfig] = None
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    is_active: bool = True
    last_scraped_at: Optional[datetime] = None

    @property
    def has_structural_config(self) -> bool:
        return bool(self.scraping_config and self.scraping_config.selector)

    @property
    def effective_config(self) -> ScrapingConfig:
        """Source selectors merged over the default configuration."""
        if not self.scraping_config:
            return DEFAULT_SCRAPING_CONFIG
        own = self.scraping_config.model_dump(exclude_none=True)
        return DEFAULT_SCRAPING_CONFIG.model_copy(update={k: v for k, v in own.items() if v})


class ScrapedEvent(BaseModel):
    """A candidate event extracted from a source page."""
    title: str
    description: str = ""
    date_start: datetime
    date_end: Optional[datetime] = None
    location: Optional[str] = None
    url: Optional[str] = None
    source_name: str
    source_id: str
    keywords_matched: List[str] = Field(default_factory=list)
    relevance_score: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CacheEntry(BaseModel):
    """Cached scrape result for one source on one calendar day."""
    source_id: str
    day: str  # YYYY-MM-DD
    events: List[ScrapedEvent] = Field(default_factory=list)
    method_used: str
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def cache_key(self) -> str:
        return f"{self.source_id}:{self.day}"


class Relevance(BaseModel):
    """Outcome of scoring one candidate."""
    accepted: bool
    matched_keywords: List[str] = Field(default_factory=list)
    score: int = 0


class FetchResult(BaseModel):
    """Raw HTML returned by one fetch strategy."""
    html: str
    method: str
    url: str
    fetched_at: datetime = Field(default_factory=utcnow)


class ScrapeRequest(BaseModel):
    """Trigger payload."""
    organization_id: Optional[str] = None
    source_ids: Optional[List[str]] = None
    test_mode: bool = False
    force_refresh: bool = False


class ScrapeSummary(BaseModel):
    """Trigger response."""
    success: bool
    message: str
    total_events: int = 0
    sources_processed: int = 0
    sources_failed: int = 0
    sources_skipped: int = 0
    events_persisted: int = 0
    events: Optional[List[ScrapedEvent]] = None
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class OrganizationResult(BaseModel):
    """One organization's line in a sweep summary."""
    organization_id: str
    organization_name: str
    events_found: int = 0
    sources_processed: int = 0
    sources_failed: int = 0
    success: bool
    error: Optional[str] = None


class SweepSummary(BaseModel):
    """Outcome of a scheduled pass over every active organization."""
    success: bool
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    organizations_processed: int = 0
    successful_organizations: int = 0
    total_events: int = 0
    results: List[OrganizationResult] = Field(default_factory=list)
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
