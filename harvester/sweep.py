"""
Scheduled pass over every active organization.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from .orchestrator import Orchestrator
from .infra.store import SourceRepository
from .models import OrganizationResult, ScrapeRequest, SweepSummary


logger = logging.getLogger(__name__)


class Sweeper:
    """Runs the orchestrator for each active organization, one after another."""

    def __init__(self, repository: SourceRepository, orchestrator: Orchestrator, organization_delay: float = 1.0):
        self.repository = repository
        self.orchestrator = orchestrator
        self.organization_delay = organization_delay

    async def _purge_cache(self) -> None:
        try:
            purged = await self.orchestrator.state.purge_expired()
        except Exception as e:
            logger.error(f"Could not purge expired cache entries: {e}")
            return
        if purged:
            logger.info(f"Purged {purged} expired cache entries")

    async def run(self) -> SweepSummary:
        logger.info("Starting scheduled event harvest")
        await self._purge_cache()

        try:
            organizations = await self.repository.list_active_organizations()
        except Exception as e:
            logger.error(f"Could not list organizations: {e}")
            return SweepSummary(success=False, message="Failed to load organizations", error=str(e))

        if not organizations:
            logger.info("No active organizations found")
            return SweepSummary(success=True, message="No active organizations found")

        results: List[OrganizationResult] = []
        processed = successful = total_events = 0

        for org_id, org_name in organizations:
            try:
                if not await self.repository.has_active_sources(org_id):
                    logger.info(f"Skipping {org_name} - no active event sources")
                    continue

                summary = await self.orchestrator.run(ScrapeRequest(organization_id=org_id))
                logger.info(f"Harvested {summary.total_events} events for {org_name}")

                results.append(OrganizationResult(
                    organization_id=org_id,
                    organization_name=org_name,
                    events_found=summary.total_events,
                    sources_processed=summary.sources_processed,
                    sources_failed=summary.sources_failed,
                    success=summary.success,
                    error=summary.error,
                ))
                processed += 1
                total_events += summary.total_events
                if summary.success:
                    successful += 1

                if self.organization_delay > 0:
                    await asyncio.sleep(self.organization_delay)

            except Exception as e:
                logger.error(f"Error processing organization {org_name}: {e}")
                results.append(OrganizationResult(
                    organization_id=org_id,
                    organization_name=org_name,
                    success=False,
                    error=str(e),
                ))

        summary = SweepSummary(
            success=True,
            message=(f"Scheduled harvest completed: {total_events} events from "
                     f"{successful}/{processed} organizations"),
            organizations_processed=processed,
            successful_organizations=successful,
            total_events=total_events,
            results=results,
        )
        logger.info(summary.message)
        return summary
