"""
Repositories over the SQLite tables shared with the rest of the product:
event sources and organization filter settings (read), per-source metrics
and the daily scrape cache (read/write).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from ..errors import SourceLoadFailure
from ..models import (
    CacheEntry,
    EventSource,
    GeoFilter,
    PerformanceMetrics,
    ScrapedEvent,
    ScrapingConfig,
)
from .db import Database


logger = logging.getLogger(__name__)

_EVENTS = TypeAdapter(List[ScrapedEvent])


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def day_key(when: Optional[datetime] = None) -> str:
    """Calendar day (UTC) used to key cache entries."""
    when = when or datetime.now(tz=timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return when.date().isoformat()


# --------------------------------------------------------------------------- #
class SourceRepository:
    """Event source configuration and organization settings."""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _row_to_source(row) -> EventSource:
        config = _loads(row["scraping_config"], None)
        return EventSource(
            id=row["id"],
            organization_id=row["organization_id"],
            name=row["name"],
            url=row["url"],
            keywords=_loads(row["keywords"], []),
            location=GeoFilter.model_validate(_loads(row["location"], {})),
            scraping_config=ScrapingConfig.model_validate(config) if config else None,
            performance_metrics=PerformanceMetrics.model_validate(_loads(row["performance_metrics"], {})),
            is_active=bool(row["is_active"]),
            last_scraped_at=_parse_ts(row["last_scraped_at"]),
        )

    async def load_active_sources(
        self, organization_id: str, source_ids: Optional[Sequence[str]] = None
    ) -> List[EventSource]:
        """Active sources of an organization, optionally restricted to ``source_ids``."""
        sql = "SELECT * FROM event_sources WHERE organization_id = ? AND is_active = 1"
        params: List[Any] = [organization_id]
        if source_ids:
            sql += f" AND id IN ({', '.join('?' * len(source_ids))})"
            params.extend(source_ids)
        sql += " ORDER BY name"

        try:
            rows = await self.db.fetch_all(sql, params)
            return [self._row_to_source(row) for row in rows]
        except (ValidationError, ValueError) as e:
            raise SourceLoadFailure(f"Malformed event source row: {e}") from e
        except Exception as e:
            raise SourceLoadFailure(f"Could not load event sources: {e}") from e

    async def load_filter_enabled(self, organization_id: str) -> bool:
        """The organization's filter toggle; absent settings mean filtering is off."""
        try:
            row = await self.db.fetch_one(
                "SELECT filter_enabled FROM scraping_filters WHERE organization_id = ?",
                (organization_id,),
            )
        except Exception as e:
            logger.warning(f"Could not read filter settings for {organization_id}: {e}")
            return False
        return bool(row["filter_enabled"]) if row else False

    async def list_active_organizations(self) -> List[Tuple[str, str]]:
        rows = await self.db.fetch_all(
            "SELECT id, name FROM organizations WHERE is_active = 1 ORDER BY name"
        )
        return [(row["id"], row["name"]) for row in rows]

    async def has_active_sources(self, organization_id: str) -> bool:
        row = await self.db.fetch_one(
            "SELECT 1 FROM event_sources WHERE organization_id = ? AND is_active = 1 LIMIT 1",
            (organization_id,),
        )
        return row is not None

    # Writers used by seeding scripts and tests; the product UI owns these rows.
    async def save_organization(self, organization_id: str, name: str, is_active: bool = True) -> None:
        await self.db.upsert(
            "organizations",
            {"id": organization_id, "name": name, "is_active": int(is_active)},
            ["id"],
        )

    async def save_filter(self, organization_id: str, enabled: bool) -> None:
        await self.db.upsert(
            "scraping_filters",
            {"organization_id": organization_id, "filter_enabled": int(enabled)},
            ["organization_id"],
        )

    async def save_source(self, source: EventSource) -> None:
        await self.db.upsert(
            "event_sources",
            {
                "id": source.id,
                "organization_id": source.organization_id,
                "name": source.name,
                "url": source.url,
                "keywords": json.dumps(source.keywords),
                "location": source.location.model_dump_json(),
                "scraping_config": source.scraping_config.model_dump_json() if source.scraping_config else None,
                "performance_metrics": source.performance_metrics.model_dump_json(),
                "is_active": int(source.is_active),
                "last_scraped_at": _iso(source.last_scraped_at),
            },
            ["id"],
        )


# --------------------------------------------------------------------------- #
class ScrapeStateStore:
    """Daily scrape cache plus the per-source performance record.

    Cache entries are append-only: a key is written once and later runs on
    the same day never overwrite it. Metrics are overwritten wholesale.
    """

    def __init__(self, db: Database, ttl_hours: float = 24.0):
        self.db = db
        self.ttl = timedelta(hours=ttl_hours)

    @staticmethod
    def cache_key(source_id: str, day: str) -> str:
        return f"{source_id}:{day}"

    async def get(self, source_id: str, day: str) -> Optional[CacheEntry]:
        row = await self.db.fetch_one(
            "SELECT * FROM scraping_cache WHERE cache_key = ?",
            (self.cache_key(source_id, day),),
        )
        if not row:
            return None
        try:
            events = _EVENTS.validate_json(row["cached_data"])
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry {row['cache_key']}: {e}")
            return None
        return CacheEntry(
            source_id=row["source_id"],
            day=day,
            events=events,
            method_used=row["method_used"],
            created_at=_parse_ts(row["created_at"]),
        )

    async def put(
        self,
        source_id: str,
        day: str,
        events: Sequence[ScrapedEvent],
        method: str,
        created_at: Optional[datetime] = None,
    ) -> CacheEntry:
        entry = CacheEntry(
            source_id=source_id,
            day=day,
            events=list(events),
            method_used=method,
            created_at=created_at or datetime.now(tz=timezone.utc),
        )
        await self.db.upsert(
            "scraping_cache",
            {
                "cache_key": entry.cache_key,
                "source_id": source_id,
                "cached_data": _EVENTS.dump_json(entry.events).decode(),
                "method_used": method,
                "events_count": len(entry.events),
                "created_at": _iso(entry.created_at),
            },
            ["cache_key"],
            ignore_duplicates=True,
        )
        return entry

    def is_valid(self, entry: Optional[CacheEntry], now: Optional[datetime] = None) -> bool:
        """True iff the entry is younger than the TTL (exactly TTL old is stale)."""
        if entry is None:
            return False
        now = now or datetime.now(tz=timezone.utc)
        return now - entry.created_at < self.ttl

    async def update_metrics(
        self,
        source_id: str,
        metrics: PerformanceMetrics,
        scraped_at: Optional[datetime] = None,
    ) -> None:
        """Overwrite a source's metrics and ``last_scraped_at``."""
        scraped_at = scraped_at or metrics.last_attempt or datetime.now(tz=timezone.utc)
        await self.db.execute_commit(
            "UPDATE event_sources SET performance_metrics = ?, last_scraped_at = ? WHERE id = ?",
            (metrics.model_dump_json(), _iso(scraped_at), source_id),
        )

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop cache rows older than the TTL."""
        now = now or datetime.now(tz=timezone.utc)
        cutoff = _iso(now - self.ttl)
        return await self.db.execute_commit(
            "DELETE FROM scraping_cache WHERE created_at <= ?", (cutoff,)
        )
