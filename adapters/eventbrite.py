"""
Eventbrite search and organizer listing pages.
"""

from harvester.models import EventSource

from .base import FieldRules, HeuristicAdapter


class EventbriteAdapter(HeuristicAdapter):
    name = "eventbrite"
    priority = 50
    hosts = ("eventbrite.com", "eventbrite.co.uk", "eventbrite.ca")

    rules = FieldRules(
        containers=(
            "article[data-event-id]",
            "[data-event-id]",
            '[class*="event-card"]',
            '[class*="search-event-card"]',
        ),
        title=('[class*="event-card__title"]', '[class*="event-title"]', "h2", "h3"),
        date=("time", '[class*="event-card__date"]', '[class*="date"]'),
        location=('[class*="event-card__location"]', '[class*="location"]', '[class*="venue"]'),
        description=('[class*="event-card__description"]', '[class*="summary"]'),
        link=('a[class*="event-card-link"]', 'a[href*="/e/"]'),
        metadata_attrs={"data-event-id": "event_id"},
    )

    def matches(self, source: EventSource) -> bool:
        return self.claims_host(source.url)
