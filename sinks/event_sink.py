"""
Database sink for persisting harvested events to SQLite.
"""

import json
import logging
from typing import Any, Dict, List, Sequence

from harvester.errors import PersistenceFailure
from harvester.infra.db import Database
from harvester.interfaces import Sink
from harvester.models import ScrapedEvent


logger = logging.getLogger(__name__)


class EventSink(Sink):
    """Sink that inserts events, ignoring rows that already exist."""

    name = "EventSink"

    _TABLE = "events"
    # Uniqueness contract shared with the product's events table.
    _KEY = ["organization_id", "title", "date_start", "source_name"]

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _to_row(organization_id: str, event: ScrapedEvent) -> Dict[str, Any]:
        data = event.model_dump(mode="json")
        return {
            "organization_id": organization_id,
            "title": data["title"],
            "description": data["description"] or "",
            "date_start": data["date_start"],
            "date_end": data["date_end"],
            "location": data["location"] or "",
            "url": data["url"] or "",
            "source_name": data["source_name"],
            "source_id": data["source_id"],
            "keywords_matched": json.dumps(data["keywords_matched"]),
            "relevance_score": data["relevance_score"],
            "metadata": json.dumps(data["metadata"]),
        }

    async def handle(self, organization_id: str, events: Sequence[ScrapedEvent]) -> int:
        """Insert ``events``; returns how many rows were new."""
        rows: List[Dict[str, Any]] = [self._to_row(organization_id, e) for e in events]
        if not rows:
            return 0

        try:
            inserted = await self.db.upsert_many(self._TABLE, rows, self._KEY, ignore_duplicates=True)
        except Exception as e:
            raise PersistenceFailure(f"Failed to upsert {len(rows)} events: {e}") from e

        logger.info(f"Upserted events for {organization_id}: {inserted} new of {len(rows)}")
        return inserted

    async def count(self, organization_id: str) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM events WHERE organization_id = ?", (organization_id,)
        )
        return row["n"] if row else 0
