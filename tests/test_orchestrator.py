from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from harvester.adapter_loader import AdapterDispatcher
from harvester.config import OrchestratorSettings
from harvester.errors import PersistenceFailure
from harvester.fetch_chain import FetchChain
from harvester.infra.store import day_key
from harvester.interfaces import Sink
from harvester.models import PerformanceMetrics, ScrapedEvent, ScrapeRequest
from harvester.orchestrator import Orchestrator
from sinks.event_sink import EventSink

from conftest import ORG_ID, StaticStrategy, event_page, make_source


class ExplodingDispatcher(AdapterDispatcher):
    """Raises during extraction for one source id."""

    def __init__(self, bad_source_id):
        super().__init__()
        self.bad_source_id = bad_source_id

    def extract(self, html, source, **kwargs):
        if source.id == self.bad_source_id:
            raise RuntimeError("markup drift")
        return super().extract(html, source, **kwargs)


class FailingSink(Sink):
    name = "FailingSink"

    async def handle(self, organization_id, events):
        raise PersistenceFailure("disk full")


def build(db, repository, state, pages, *, sink=None, dispatcher=None, **settings):
    strategy = StaticStrategy(pages)
    orchestrator = Orchestrator(
        repository=repository,
        state=state,
        sink=sink or EventSink(db),
        fetch_chain=FetchChain([strategy], min_html_length=100),
        dispatcher=dispatcher or AdapterDispatcher(),
        settings=OrchestratorSettings(batch_delay=0, **settings),
    )
    return orchestrator, strategy


async def seed(repository, count, **source_kwargs):
    sources = [make_source(f"s{i}", **source_kwargs) for i in range(1, count + 1)]
    for source in sources:
        await repository.save_source(source)
    return sources


async def event_rows(db):
    row = await db.fetch_one("SELECT COUNT(*) AS n FROM events")
    return row["n"]


@pytest_asyncio.fixture
async def three_sources(repository):
    return await seed(repository, 3)


@pytest.mark.asyncio
async def test_end_to_end_partial_failure(db, repository, state, three_sources):
    s1, s2, s3 = three_sources
    pages = {s1.url: event_page(4, "Sensory"), s2.url: event_page(2, "Family")}
    orchestrator, _ = build(db, repository, state, pages)

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    assert summary.success
    assert summary.total_events == 6
    assert summary.sources_processed == 2
    assert summary.sources_failed == 1
    assert summary.events_persisted == 6
    assert summary.events is None
    assert await event_rows(db) == 6

    by_id = {s.id: s for s in await repository.load_active_sources(ORG_ID)}
    assert by_id["s1"].performance_metrics.events_found == 4
    assert by_id["s1"].performance_metrics.success_rate == 100
    assert by_id["s3"].performance_metrics.last_success is False
    assert by_id["s3"].performance_metrics.success_rate == 50
    assert "no route" in by_id["s3"].performance_metrics.last_error
    assert all(s.last_scraped_at is not None for s in by_id.values())


@pytest.mark.asyncio
async def test_rerun_same_day_creates_no_duplicates(db, repository, state, three_sources):
    pages = {s.url: event_page(3, s.id) for s in three_sources}
    orchestrator, _ = build(db, repository, state, pages)
    request = ScrapeRequest(organization_id=ORG_ID, force_refresh=True)

    first = await orchestrator.run(request)
    second = await orchestrator.run(request)

    assert first.events_persisted == 9
    assert second.total_events == 9
    assert second.events_persisted == 0
    assert await event_rows(db) == 9


@pytest.mark.asyncio
async def test_batch_fault_isolation(db, repository, state):
    sources = await seed(repository, 5)
    pages = {s.url: event_page(1, s.id) for s in sources}
    orchestrator, _ = build(db, repository, state, pages, dispatcher=ExplodingDispatcher("s3"))

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    assert summary.success
    assert summary.sources_processed == 4
    assert summary.sources_failed == 1
    assert summary.total_events == 4
    (s3,) = await repository.load_active_sources(ORG_ID, ["s3"])
    assert s3.performance_metrics.last_error == "markup drift"


@pytest.mark.asyncio
async def test_nothing_found_persists_nothing(db, repository, state, three_sources):
    orchestrator, _ = build(db, repository, state, {})

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    assert summary.success
    assert summary.total_events == 0
    assert summary.sources_failed == 3
    assert summary.events_persisted == 0
    assert await event_rows(db) == 0


@pytest.mark.asyncio
async def test_small_successful_run_is_persisted(db, repository, state):
    sources = await seed(repository, 7)
    pages = {s.url: event_page(1, s.id) for s in sources}
    orchestrator, _ = build(db, repository, state, pages)

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    assert summary.sources_processed == 7
    assert summary.events_persisted == 7
    assert await event_rows(db) == 7


@pytest.mark.asyncio
async def test_test_mode_returns_events_without_persisting(db, repository, state, three_sources):
    pages = {s.url: event_page(2, s.id) for s in three_sources}
    orchestrator, _ = build(db, repository, state, pages)

    summary = await orchestrator.run(
        ScrapeRequest(organization_id=ORG_ID, test_mode=True, force_refresh=True)
    )

    assert summary.message.startswith("Test mode: Found 6 events")
    assert len(summary.events) == 6
    assert summary.events_persisted == 0
    assert await event_rows(db) == 0
    assert "events" in summary.to_response()


@pytest.mark.asyncio
async def test_single_source_test_invocation(db, repository, state, three_sources):
    s1 = three_sources[0]
    orchestrator, strategy = build(db, repository, state, {s1.url: event_page(2)})

    summary = await orchestrator.test_source(ORG_ID, "s1")

    assert strategy.calls == [s1.url]
    assert summary.total_events == 2
    assert [e.source_id for e in summary.events] == ["s1", "s1"]
    assert await event_rows(db) == 0


@pytest.mark.asyncio
async def test_recently_scraped_sources_are_skipped_unless_forced(db, repository, state):
    recent = datetime.now(tz=timezone.utc) - timedelta(hours=1)
    old = datetime.now(tz=timezone.utc) - timedelta(hours=13)
    fresh = make_source("fresh", last_scraped_at=recent)
    stale = make_source("stale", last_scraped_at=old)
    for source in (fresh, stale):
        await repository.save_source(source)
    pages = {fresh.url: event_page(1, "a"), stale.url: event_page(1, "b")}
    orchestrator, strategy = build(db, repository, state, pages)

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID))
    assert strategy.calls == [stale.url]
    assert summary.sources_skipped == 1
    assert summary.sources_processed == 1
    assert summary.sources_failed == 0

    strategy.calls.clear()
    forced = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))
    assert sorted(strategy.calls) == sorted([fresh.url, stale.url])
    assert forced.sources_skipped == 0


@pytest.mark.asyncio
async def test_triage_keeps_most_reliable_sources(db, repository, state):
    sources = [
        make_source(f"s{i:02d}", performance_metrics=PerformanceMetrics(success_rate=i * 5))
        for i in range(1, 13)
    ]
    for source in sources:
        await repository.save_source(source)
    orchestrator, strategy = build(db, repository, state, {s.url: event_page(1, s.id) for s in sources})

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID))

    assert len(strategy.calls) == 10
    assert sources[0].url not in strategy.calls
    assert sources[1].url not in strategy.calls
    assert summary.sources_processed == 10

    strategy.calls.clear()
    await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))
    assert len(strategy.calls) == 12


@pytest.mark.asyncio
async def test_valid_cache_entry_short_circuits_fetch(db, repository, state):
    (source,) = await seed(repository, 1)
    cached_event = ScrapedEvent(
        title="Cached Sensory Hour",
        date_start=datetime(2030, 1, 1, tzinfo=timezone.utc),
        source_name=source.name,
        source_id=source.id,
        metadata={"extraction_method": "generic", "fetch_method": "premium"},
    )
    await state.put(source.id, day_key(), [cached_event], "premium")
    orchestrator, strategy = build(db, repository, state, {source.url: event_page(2)})

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID))

    assert strategy.calls == []
    assert summary.total_events == 1
    assert summary.sources_processed == 1
    (reloaded,) = await repository.load_active_sources(ORG_ID)
    assert reloaded.performance_metrics.last_attempt is None
    row = await db.fetch_one("SELECT metadata FROM events")
    assert '"fetch_method": "cache"' in row["metadata"]


@pytest.mark.asyncio
async def test_successful_scrape_writes_cache(db, repository, state):
    (source,) = await seed(repository, 1)
    orchestrator, _ = build(db, repository, state, {source.url: event_page(2)})

    await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    entry = await state.get(source.id, day_key())
    assert entry is not None
    assert entry.method_used == "static"
    assert len(entry.events) == 2


@pytest.mark.asyncio
async def test_persistence_failure_keeps_scrape_counts(db, repository, state, three_sources):
    pages = {s.url: event_page(1, s.id) for s in three_sources}
    orchestrator, _ = build(db, repository, state, pages, sink=FailingSink())

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    assert summary.success
    assert summary.total_events == 3
    assert summary.events_persisted == 0
    assert summary.error == "disk full"


@pytest.mark.asyncio
async def test_missing_organization_id_is_rejected(db, repository, state):
    orchestrator, _ = build(db, repository, state, {})
    summary = await orchestrator.run(ScrapeRequest())
    assert not summary.success
    assert summary.error == "organization_id is required"


@pytest.mark.asyncio
async def test_source_load_failure_fails_the_run(db, repository, state, three_sources):
    await db.execute_commit("UPDATE event_sources SET location = ? WHERE id = ?", ('{"radius": "far"}', "s2"))
    orchestrator, strategy = build(db, repository, state, {})

    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID, force_refresh=True))

    assert not summary.success
    assert summary.error
    assert strategy.calls == []
    assert summary.to_response()["success"] is False


@pytest.mark.asyncio
async def test_no_sources(db, repository, state):
    orchestrator, _ = build(db, repository, state, {})
    summary = await orchestrator.run(ScrapeRequest(organization_id=ORG_ID))
    assert summary.success
    assert summary.message == "No active event sources found"
    assert summary.total_events == 0
