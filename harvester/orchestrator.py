"""
Orchestrator for one organization's harvest run: source selection, batched
fetch -> extract per source, metrics bookkeeping and gated persistence.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from .adapter_loader import AdapterDispatcher
from .config import OrchestratorSettings
from .errors import FetchExhausted, PersistenceFailure, SourceLoadFailure
from .fetch_chain import FetchChain
from .infra.store import ScrapeStateStore, SourceRepository, day_key
from .interfaces import Sink
from .models import EventSource, ScrapedEvent, ScrapeRequest, ScrapeSummary


logger = logging.getLogger(__name__)

CACHE_METHOD = "cache"
NO_EVENTS_ERROR = "No events extracted"


@dataclass
class SourceOutcome:
    """What one source contributed to a run."""
    source: EventSource
    events: List[ScrapedEvent] = field(default_factory=list)
    method: Optional[str] = None
    error: Optional[str] = None
    from_cache: bool = False

    @property
    def succeeded(self) -> bool:
        return bool(self.events)


@dataclass
class RunContext:
    """Per-run accumulator. Concurrent tasks only append outcomes."""
    organization_id: str
    filter_enabled: bool
    test_mode: bool
    force_refresh: bool
    started_at: datetime
    selected: int = 0
    skipped: int = 0
    outcomes: List[SourceOutcome] = field(default_factory=list)

    def add(self, outcome: SourceOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def events(self) -> List[ScrapedEvent]:
        return [event for outcome in self.outcomes for event in outcome.events]

    @property
    def successful(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)


def _with_fetch_method(events: Sequence[ScrapedEvent], method: str) -> List[ScrapedEvent]:
    return [e.model_copy(update={"metadata": {**e.metadata, "fetch_method": method}}) for e in events]


class Orchestrator:
    """Runs the fetch -> extract -> persist pipeline for one organization at a time."""

    def __init__(
        self,
        repository: SourceRepository,
        state: ScrapeStateStore,
        sink: Sink,
        fetch_chain: FetchChain,
        dispatcher: Optional[AdapterDispatcher] = None,
        settings: Optional[OrchestratorSettings] = None,
    ):
        self.repository = repository
        self.state = state
        self.sink = sink
        self.fetch_chain = fetch_chain
        self.dispatcher = dispatcher or AdapterDispatcher()
        self.settings = settings or OrchestratorSettings()

    # ------------------------------------------------------------------ #
    # Source selection
    def partition(
        self, sources: Sequence[EventSource], force_refresh: bool, now: datetime
    ) -> Tuple[List[EventSource], List[EventSource]]:
        """Split into (stale, recent). A forced run treats everything as stale."""
        if force_refresh:
            return list(sources), []

        window = timedelta(hours=self.settings.recent_window_hours)
        stale, recent = [], []
        for source in sources:
            last = source.last_scraped_at
            if last is not None and last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
            if last is not None and now - last < window:
                recent.append(source)
            else:
                stale.append(source)
        return stale, recent

    def triage(self, sources: Sequence[EventSource], force_refresh: bool) -> List[EventSource]:
        """Keep the most reliable sources when an unforced run has too many."""
        limit = self.settings.triage_limit
        if force_refresh or len(sources) <= limit:
            return list(sources)
        ranked = sorted(sources, key=lambda s: s.performance_metrics.success_rate, reverse=True)
        logger.info(f"Triage: scraping {limit} of {len(sources)} stale sources by success rate")
        return ranked[:limit]

    def batches(self, sources: Sequence[EventSource]) -> List[List[EventSource]]:
        size = max(1, self.settings.batch_size)
        return [list(sources[i:i + size]) for i in range(0, len(sources), size)]

    # ------------------------------------------------------------------ #
    # Per-source work
    async def _cached_outcome(self, source: EventSource, day: str) -> Optional[SourceOutcome]:
        try:
            entry = await self.state.get(source.id, day)
        except Exception as e:
            logger.warning(f"Cache lookup failed for {source.name}: {e}")
            return None
        if not self.state.is_valid(entry):
            return None
        logger.info(f"Cache hit for {source.name}: {len(entry.events)} events ({entry.method_used})")
        return SourceOutcome(
            source=source,
            events=_with_fetch_method(entry.events, CACHE_METHOD),
            method=CACHE_METHOD,
            from_cache=True,
        )

    async def process_source(self, ctx: RunContext, source: EventSource) -> SourceOutcome:
        """Fetch and extract one source. Never raises for fetch or extraction problems."""
        attempted_at = datetime.now(tz=timezone.utc)
        day = day_key(attempted_at)

        if not ctx.force_refresh:
            cached = await self._cached_outcome(source, day)
            if cached is not None:
                return cached

        outcome = SourceOutcome(source=source)
        started = time.monotonic()
        try:
            page = await self.fetch_chain.fetch(source.url)
            outcome.method = page.method
            outcome.events = self.dispatcher.extract(
                page.html, source, filter_enabled=ctx.filter_enabled, fetch_method=page.method
            )
            if not outcome.events:
                outcome.error = NO_EVENTS_ERROR
        except FetchExhausted as e:
            outcome.error = str(e)
            logger.warning(e.describe())
        except Exception as e:
            outcome.error = str(e) or e.__class__.__name__
            logger.exception(f"Unexpected error scraping {source.name}")
        elapsed = time.monotonic() - started

        if outcome.succeeded:
            logger.info(f"Found {len(outcome.events)} events from {source.name} via {outcome.method}")
        else:
            logger.warning(f"No events from {source.name}: {outcome.error}")

        metrics = source.performance_metrics.record(
            success=outcome.succeeded,
            events_found=len(outcome.events),
            error=outcome.error,
            elapsed=elapsed,
            attempted_at=attempted_at,
        )
        try:
            await self.state.update_metrics(source.id, metrics, scraped_at=attempted_at)
        except Exception as e:
            logger.error(f"Failed to update metrics for {source.name}: {e}")

        if outcome.succeeded:
            try:
                await self.state.put(source.id, day, outcome.events, outcome.method or "unknown")
            except Exception as e:
                logger.error(f"Failed to cache results for {source.name}: {e}")

        return outcome

    async def _run_batch(self, ctx: RunContext, batch: Sequence[EventSource]) -> None:
        results = await asyncio.gather(
            *(self.process_source(ctx, source) for source in batch),
            return_exceptions=True,
        )
        for source, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error(f"Source {source.name} aborted: {result!r}")
                ctx.add(SourceOutcome(source=source, error=str(result) or result.__class__.__name__))
            else:
                ctx.add(result)

    # ------------------------------------------------------------------ #
    # Persistence
    def should_persist(self, ctx: RunContext) -> bool:
        if ctx.test_mode:
            return False
        return ctx.successful >= self.settings.min_successful_sources or len(ctx.events) > 0

    async def _persist(self, ctx: RunContext) -> Tuple[int, Optional[str]]:
        if not self.should_persist(ctx):
            return 0, None
        events = ctx.events
        logger.info(f"Saving {len(events)} events for {ctx.organization_id}")
        try:
            return await self.sink.handle(ctx.organization_id, events), None
        except PersistenceFailure as e:
            logger.error(f"Persistence failed for {ctx.organization_id}: {e}")
            return 0, str(e)

    # ------------------------------------------------------------------ #
    # Entry points
    async def run(self, request: ScrapeRequest) -> ScrapeSummary:
        """Harvest one organization and return the trigger response."""
        organization_id = request.organization_id
        if not organization_id:
            return ScrapeSummary(success=False, message="organization_id is required",
                                 error="organization_id is required")

        logger.info(f"Starting event harvest for org: {organization_id}")
        filter_enabled = await self.repository.load_filter_enabled(organization_id)

        try:
            sources = await self.repository.load_active_sources(organization_id, request.source_ids)
        except SourceLoadFailure as e:
            logger.error(f"Aborting run for {organization_id}: {e}")
            return ScrapeSummary(success=False, message="Failed to load event sources", error=str(e))

        if not sources:
            return ScrapeSummary(success=True, message="No active event sources found")

        now = datetime.now(tz=timezone.utc)
        stale, recent = self.partition(sources, request.force_refresh, now)
        selected = self.triage(stale, request.force_refresh)
        if recent:
            logger.info(f"Skipping {len(recent)} recently scraped sources")

        ctx = RunContext(
            organization_id=organization_id,
            filter_enabled=filter_enabled,
            test_mode=request.test_mode,
            force_refresh=request.force_refresh,
            started_at=now,
            selected=len(selected),
            skipped=len(recent),
        )
        logger.info(f"Scraping {len(selected)} of {len(sources)} active sources")

        batches = self.batches(selected)
        for index, batch in enumerate(batches):
            await self._run_batch(ctx, batch)
            if index < len(batches) - 1 and self.settings.batch_delay > 0:
                await asyncio.sleep(self.settings.batch_delay)

        persisted, persist_error = await self._persist(ctx)
        return self._summarize(ctx, persisted, persist_error)

    async def test_source(self, organization_id: str, source_id: str) -> ScrapeSummary:
        """Scrape a single source fresh, without persisting, and return its events."""
        return await self.run(ScrapeRequest(
            organization_id=organization_id,
            source_ids=[source_id],
            test_mode=True,
            force_refresh=True,
        ))

    def _summarize(self, ctx: RunContext, persisted: int, persist_error: Optional[str]) -> ScrapeSummary:
        events = ctx.events
        successful = ctx.successful
        prefix = "Test mode: Found" if ctx.test_mode else "Successfully scraped"
        message = f"{prefix} {len(events)} events from {successful}/{ctx.selected} sources"
        if ctx.skipped:
            message += f" ({ctx.skipped} skipped as recently scraped)"

        summary = ScrapeSummary(
            success=True,
            message=message,
            total_events=len(events),
            sources_processed=successful,
            sources_failed=ctx.selected - successful,
            sources_skipped=ctx.skipped,
            events_persisted=persisted,
            events=events if ctx.test_mode else None,
            error=persist_error,
        )
        logger.info(f"Harvest complete for {ctx.organization_id}: {message}")
        return summary
