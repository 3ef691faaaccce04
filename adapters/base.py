"""
Shared extraction heuristic for site adapters.

Every adapter is a declarative table of selectors (:class:`FieldRules`)
fed through one cascade: adapter-specific selectors first, then broad
tag/class-name fallbacks, then plain-text patterns. There is no schema
contract with the target sites, so each field degrades step by step
instead of failing the whole candidate.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from bs4 import Tag

from harvester.interfaces import SiteAdapter
from harvester.models import EventSource, ScrapedEvent
from harvester.relevance import score_relevance
from harvester.text import (
    clean_text,
    extract_attribute,
    extract_text,
    find_date_text,
    first_sentence,
    host_of,
    make_absolute_url,
    node_text,
    parse_date,
    parse_html,
    select_all,
)


logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 4
MAX_TITLE_LENGTH = 250

HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")

# Broad fallbacks, tried after an adapter's own selectors.
TITLE_FALLBACKS = (", ".join(HEADINGS), "strong, b")
TITLE_CLASS_FALLBACKS = ('[class*="title"]', '[class*="name"]')
DATE_CLASS_FALLBACKS = ('[class*="date"]', '[class*="when"]', '[class*="time"]')
LOCATION_FALLBACKS = ('[class*="location"]', '[class*="venue"]', '[class*="where"]', '[class*="address"]', "address")
DESCRIPTION_FALLBACKS = ('[class*="description"]', '[class*="summary"]', '[class*="excerpt"]', '[class*="teaser"]')

_STRUCTURE = ", ".join(HEADINGS + ("strong", "b", "time", '[class*="title"]', "a[title]"))
_EVENT_LINK_RE = re.compile(r"event|detail|more|learn|register|ticket|info|view", re.I)
_BAD_HREF = ("#", "javascript:", "mailto:", "tel:")


@dataclass(frozen=True)
class FieldRules:
    """Selector table for one markup shape. Every entry is tried in order."""
    containers: Tuple[str, ...] = ()
    title: Tuple[str, ...] = ()
    date: Tuple[str, ...] = ()
    location: Tuple[str, ...] = ()
    description: Tuple[str, ...] = ()
    link: Tuple[str, ...] = ()
    # Tried only when no primary container matches.
    fallback_containers: Tuple[str, ...] = ()
    require_structure: bool = True
    # container attribute -> metadata key
    metadata_attrs: Dict[str, str] = field(default_factory=dict)
    default_location: Optional[str] = None


@dataclass
class Candidate:
    """Raw field values pulled from one container before cleaning and scoring."""
    title: str = ""
    date_text: str = ""
    location: str = ""
    description: str = ""
    link: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)


# --------------------------------------------------------------------------- #
# Container selection
def _is_structured(tag: Tag) -> bool:
    if tag.name in HEADINGS or tag.name == "time":
        return True
    if tag.select_one(_STRUCTURE) is not None:
        return True
    return any(len(node_text(a)) >= 10 for a in tag.find_all("a"))


def _single_records(matches: List[Tag], require_structure: bool) -> List[Tag]:
    structured = [tag for tag in matches if not require_structure or _is_structured(tag)]
    structured_ids = {id(tag) for tag in structured}

    kept = []
    for tag in structured:
        wraps_other = any(id(inner) in structured_ids for inner in tag.find_all(True))
        if not wraps_other:
            kept.append(tag)
    return kept


def find_containers(root: Tag, selectors: Iterable[str], require_structure: bool = True) -> List[Tag]:
    """Elements that look like single event records.

    Selectors are tried in order and the first one with usable matches
    wins. Matches without title-like structure are dropped (unless
    ``require_structure`` is off), and so is any match that wraps another
    kept match (a list wrapper rather than an item).
    """
    for selector in selectors:
        kept = _single_records(select_all(root, selector), require_structure)
        if kept:
            return kept
    return []


# --------------------------------------------------------------------------- #
# Field cascades
def extract_title(node: Tag, rules: FieldRules) -> str:
    title = extract_text(node, rules.title) if rules.title else ""
    if not title:
        title = extract_text(node, TITLE_FALLBACKS)
    if not title:
        title = extract_attribute(node, ("a[title]",), "title")
    if not title:
        title = extract_text(node, ("a",))
    if not title:
        title = extract_text(node, TITLE_CLASS_FALLBACKS)
    if not title:
        title = first_sentence(node_text(node))
    return title


def _first_date_like(values: Iterable[str]) -> str:
    for value in values:
        found = find_date_text(value)
        if found:
            return found
    return ""


def extract_date_text(node: Tag, rules: FieldRules) -> str:
    # Machine-readable attributes carry the time of day; visible text often does not.
    if rules.date:
        found = _first_date_like(
            n.get("datetime", "") for sel in rules.date for n in select_all(node, sel)
        )
        if found:
            return found

    found = _first_date_like(n.get("datetime", "") for n in node.select("[datetime]"))
    if found:
        return found

    if rules.date:
        found = _first_date_like(node_text(n) for sel in rules.date for n in select_all(node, sel))
    if not found:
        found = _first_date_like(node_text(n) for n in node.find_all("time"))
    if not found:
        found = _first_date_like(
            node_text(n) for sel in DATE_CLASS_FALLBACKS for n in select_all(node, sel)
        )
    if not found:
        found = find_date_text(node_text(node))
    return found


def extract_location(node: Tag, rules: FieldRules) -> str:
    location = extract_text(node, rules.location) if rules.location else ""
    return location or extract_text(node, LOCATION_FALLBACKS)


def extract_description(node: Tag, rules: FieldRules, title: str) -> str:
    description = extract_text(node, rules.description) if rules.description else ""
    if not description:
        description = extract_text(node, DESCRIPTION_FALLBACKS)
    if not description:
        for p in node.find_all("p"):
            text = node_text(p)
            if 20 <= len(text) <= 200 and text != title:
                description = text
                break
    return description


def _usable_href(href: Optional[str]) -> bool:
    return bool(href) and not href.strip().lower().startswith(_BAD_HREF)


def extract_link(node: Tag, rules: FieldRules) -> str:
    for selector in rules.link:
        for tag in select_all(node, selector):
            if _usable_href(tag.get("href")):
                return tag["href"].strip()

    anchors = [a for a in node.find_all("a", href=True) if _usable_href(a["href"])]
    if node.name == "a" and _usable_href(node.get("href")):
        anchors.insert(0, node)
    if not anchors:
        return ""

    for a in anchors:
        classes = " ".join(a.get("class") or [])
        if _EVENT_LINK_RE.search(node_text(a)) or _EVENT_LINK_RE.search(classes) \
                or _EVENT_LINK_RE.search(a["href"]):
            return a["href"].strip()
    for a in anchors:
        if a.find_parent(HEADINGS) is not None or a.find(HEADINGS) is not None:
            return a["href"].strip()
    return anchors[0]["href"].strip()


# --------------------------------------------------------------------------- #
class HeuristicAdapter(SiteAdapter):
    """Table-driven adapter. Subclasses set ``rules`` and implement ``matches``."""

    rules: FieldRules = FieldRules()

    #: Hosts (and their subdomains) this adapter claims.
    hosts: Tuple[str, ...] = ()

    def claims_host(self, url: str) -> bool:
        host = host_of(url)
        return any(host == h or host.endswith("." + h) for h in self.hosts)

    def rules_for(self, source: EventSource) -> FieldRules:
        return self.rules

    def candidates(self, html: str, source: EventSource) -> List[Candidate]:
        """Raw field values for every container on the page."""
        rules = self.rules_for(source)
        soup = parse_html(html)
        out: List[Candidate] = []

        nodes = find_containers(soup, rules.containers, rules.require_structure)
        if not nodes and rules.fallback_containers:
            nodes = find_containers(soup, rules.fallback_containers, rules.require_structure)

        for node in nodes:
            title = extract_title(node, rules)
            candidate = Candidate(
                title=title,
                date_text=extract_date_text(node, rules),
                location=extract_location(node, rules),
                description=extract_description(node, rules, clean_text(title)),
                link=extract_link(node, rules),
            )
            for attr, key in rules.metadata_attrs.items():
                value = node.get(attr)
                if value:
                    candidate.metadata[key] = value if isinstance(value, str) else " ".join(value)
            out.append(candidate)
        return out

    def extract(
        self,
        html: str,
        source: EventSource,
        *,
        filter_enabled: bool = False,
        fetch_method: Optional[str] = None,
    ) -> List[ScrapedEvent]:
        rules = self.rules_for(source)
        events: List[ScrapedEvent] = []
        seen: Set[Tuple[str, str]] = set()

        for candidate in self.candidates(html, source):
            title = clean_text(candidate.title)[:MAX_TITLE_LENGTH]
            if len(title) < MIN_TITLE_LENGTH:
                continue

            description = clean_text(candidate.description)
            relevance = score_relevance(title, description, source.keywords, filter_enabled)
            if not relevance.accepted:
                logger.debug(f"{self.name}: rejected {title!r} (score {relevance.score})")
                continue

            date_start = parse_date(candidate.date_text)
            key = (title.lower(), date_start.isoformat())
            if key in seen:
                continue
            seen.add(key)

            metadata = {"extraction_method": self.name, **candidate.metadata}
            if fetch_method:
                metadata["fetch_method"] = fetch_method

            events.append(ScrapedEvent(
                title=title,
                description=description,
                date_start=date_start,
                location=clean_text(candidate.location) or rules.default_location or source.location.city or None,
                url=make_absolute_url(candidate.link, source.url),
                source_name=source.name,
                source_id=source.id,
                keywords_matched=relevance.matched_keywords,
                relevance_score=relevance.score,
                metadata=metadata,
            ))

        logger.debug(f"{self.name}: {len(events)} events from {source.name}")
        return events


def merge_selectors(*groups: Sequence[str]) -> Tuple[str, ...]:
    """Concatenate selector groups, dropping blanks and duplicates."""
    out: List[str] = []
    for group in groups:
        for selector in group:
            if selector and selector not in out:
                out.append(selector)
    return tuple(out)
