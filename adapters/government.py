"""
Municipal and county calendar pages.
"""

from harvester.models import EventSource

from .base import FieldRules, HeuristicAdapter


class GovernmentCalendarAdapter(HeuristicAdapter):
    name = "government"
    priority = 50
    hosts = ("miamidade.gov", "miami.gov", "miamibeachfl.gov", "coralgables.com")

    rules = FieldRules(
        containers=(
            'div[class*="event"]',
            'article[class*="event"]',
            'li[class*="event"]',
            '[class*="calendar-item"]',
        ),
        title=('[class*="title"]', "h2", "h3", "h4"),
        date=('[class*="date"]', "time"),
        location=('[class*="location"]', '[class*="venue"]'),
        description=('[class*="description"]', '[class*="summary"]'),
        default_location="Miami-Dade County",
    )

    def matches(self, source: EventSource) -> bool:
        return self.claims_host(source.url)
