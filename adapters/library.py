"""
Public library calendars built on Drupal views (``views-row`` listings).
"""

from harvester.models import EventSource

from .base import FieldRules, HeuristicAdapter


class LibraryAdapter(HeuristicAdapter):
    name = "library"
    priority = 50
    hosts = ("mdpls.org",)

    rules = FieldRules(
        containers=("div.views-row", '[class*="views-row"]'),
        title=("h2.field-content", "h3.field-content", '[class*="field-content"] a', "h2", "h3", "a"),
        date=("span.date-display-single", '[class*="date-display"]', "time"),
        location=('[class*="field-name-field-location"]', '[class*="field--name-field-location"]', '[class*="branch"]'),
        description=('[class*="field-name-body"]', '[class*="field--name-body"]'),
        default_location="Miami-Dade Library",
    )

    def matches(self, source: EventSource) -> bool:
        return self.claims_host(source.url)
