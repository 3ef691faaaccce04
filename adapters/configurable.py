"""
Adapter driven by the selectors stored on the event source itself.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from harvester.models import EventSource, ScrapingConfig
from harvester.text import selector_class_name, split_selectors

from .base import FieldRules, HeuristicAdapter


def class_fallbacks(selectors: Iterable[str]) -> Tuple[str, ...]:
    """``[class*="x"]`` variants of loosely written container selectors."""
    out = []
    for selector in selectors:
        fragment = selector_class_name(selector)
        candidate = f'[class*="{fragment}"]'
        if fragment and candidate not in out:
            out.append(candidate)
    return tuple(out)


def rules_from_config(config: ScrapingConfig) -> FieldRules:
    containers = tuple(split_selectors(config.selector))
    return FieldRules(
        containers=containers,
        fallback_containers=class_fallbacks(containers),
        require_structure=False,
        title=tuple(split_selectors(config.title_selector)),
        date=tuple(split_selectors(config.date_selector)),
        location=tuple(split_selectors(config.location_selector)),
        description=tuple(split_selectors(config.description_selector)),
        link=tuple(split_selectors(config.link_selector)),
    )


class ConfigurableAdapter(HeuristicAdapter):
    """Used whenever a source carries its own container selector."""

    name = "configurable"
    priority = 0

    def matches(self, source: EventSource) -> bool:
        return source.has_structural_config

    def rules_for(self, source: EventSource) -> FieldRules:
        return rules_from_config(source.effective_config)
