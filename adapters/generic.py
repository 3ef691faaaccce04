"""
Last-resort adapter for pages no other adapter claims.
"""

from harvester.models import DEFAULT_SCRAPING_CONFIG, EventSource
from harvester.text import split_selectors

from .base import FieldRules, HeuristicAdapter, merge_selectors


class GenericAdapter(HeuristicAdapter):
    """Accepts any source and casts the widest container net."""

    name = "generic"
    priority = 1000

    rules = FieldRules(
        containers=merge_selectors(
            split_selectors(DEFAULT_SCRAPING_CONFIG.selector),
            ('[itemtype*="Event"]', "article", '[class*="calendar"]', '[class*="card"]', '[class*="listing"]'),
        ),
        title=tuple(split_selectors(DEFAULT_SCRAPING_CONFIG.title_selector)),
        date=tuple(split_selectors(DEFAULT_SCRAPING_CONFIG.date_selector)),
        location=tuple(split_selectors(DEFAULT_SCRAPING_CONFIG.location_selector)),
    )

    def matches(self, source: EventSource) -> bool:
        return True
