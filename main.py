"""
Main entry point for the event harvester with scheduling support.
"""

import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from harvester.adapter_loader import AdapterDispatcher, list_available
from harvester.config import HarvesterSettings, load_settings
from harvester.errors import ConfigError
from harvester.fetch_chain import FetchChain
from harvester.infra.db import Database
from harvester.infra.scheduler import Scheduler
from harvester.infra.store import ScrapeStateStore, SourceRepository
from harvester.orchestrator import Orchestrator
from harvester.sweep import Sweeper
from sinks.event_sink import EventSink


logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "daily_event_harvest"


def build_sweeper(settings: HarvesterSettings, db: Database, fetch_chain: FetchChain) -> Sweeper:
    """Wire repositories, adapters and sink into a ready sweeper."""
    repository = SourceRepository(db)
    orchestrator = Orchestrator(
        repository=repository,
        state=ScrapeStateStore(db, ttl_hours=settings.orchestrator.cache_ttl_hours),
        sink=EventSink(db),
        fetch_chain=fetch_chain,
        dispatcher=AdapterDispatcher(),
        settings=settings.orchestrator,
    )
    return Sweeper(repository, orchestrator, organization_delay=settings.scheduler.organization_delay)


async def run_once(sweeper: Sweeper) -> None:
    summary = await sweeper.run()
    for result in summary.results:
        status = "ok" if result.success else f"failed ({result.error})"
        logger.info(
            f"  - {result.organization_name}: {result.events_found} events, "
            f"{result.sources_processed} ok / {result.sources_failed} failed sources, {status}"
        )


async def main():
    """Main entry point with scheduler support."""
    load_dotenv()

    try:
        settings = load_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Cannot start: {e}")
        return

    logging.basicConfig(
        level=getattr(logging, settings.logging.level.upper(), logging.INFO),
        format=settings.logging.format,
    )

    adapters = list_available()
    logger.info(f"Discovered {len(adapters)} site adapters: {', '.join(sorted(adapters))}")
    if not settings.fetch.premium_api_key:
        logger.info("PREMIUM_FETCH_API_KEY not set, premium fetch strategy disabled")

    scheduler_mode = os.getenv("SCHEDULER_MODE", "enabled")

    async with Database(settings.storage.db_path) as db, FetchChain.from_settings(settings.fetch) as fetch_chain:
        sweeper = build_sweeper(settings, db, fetch_chain)

        if scheduler_mode == "disabled":
            logger.info("Starting event harvester (one-time run)...")
            await run_once(sweeper)
            return

        logger.info("Starting event harvester with scheduler...")
        scheduler = Scheduler(timezone=settings.scheduler.timezone)

        # Setup graceful shutdown
        stop_event = asyncio.Event()

        def signal_handler():
            logger.info("Received shutdown signal")
            stop_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

        try:
            scheduler.add_cron_job(run_once, settings.scheduler.cron, job_id=SWEEP_JOB_ID, args=[sweeper])
            await scheduler.start()
            for job_id, job in scheduler.list_jobs().items():
                logger.info(f"Registered job {job_id}: {job['trigger']}")
            logger.info(
                f"Next harvest at {scheduler.next_fire_time(settings.scheduler.cron)} "
                f"(cron: {settings.scheduler.cron})"
            )
            await stop_event.wait()
        except ValueError as e:
            logger.error(f"Scheduler setup failed: {e}")
        finally:
            logger.info("Shutting down...")
            await scheduler.stop()
            logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
