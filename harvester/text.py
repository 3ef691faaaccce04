"""
Text helpers shared by the site adapters: HTML fragment lookups, text
cleaning, best-effort date parsing and URL resolution.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser
from soupsieve import SelectorSyntaxError

from .models import utcnow


logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_SELECTOR_NAME_RE = re.compile(r"[.\[\]#]")

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)
_TIME = r"(?:\s*(?:,|at|@|-)?\s*\d{1,2}(?::\d{2})?\s*[ap]\.?m\.?)?"

# Ordered most specific first; the first hit wins.
DATE_PATTERNS = [
    ("iso", re.compile(r"\b\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2})?(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?)?")),
    ("month_day_year", re.compile(rf"\b{_MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}{_TIME}", re.I)),
    ("day_month_year", re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH},?\s+\d{{4}}{_TIME}", re.I)),
    ("numeric", re.compile(rf"\b\d{{1,2}}/\d{{1,2}}/\d{{4}}{_TIME}", re.I)),
    ("month_day", re.compile(rf"\b{_MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?\b{_TIME}", re.I)),
    ("day_month", re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH}(?![a-z])", re.I)),
]
_YEARLESS = {"month_day", "day_month"}

DEFAULT_DATE_OFFSET = timedelta(days=7)


# --------------------------------------------------------------------------- #
# Cleaning
def clean_text(text: Optional[str]) -> str:
    """Strip tags, decode entities and collapse whitespace."""
    if not text:
        return ""
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text).replace("\xa0", " ")
    return _WS_RE.sub(" ", text).strip()


def node_text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return clean_text(node.get_text(" ", strip=True))


def first_sentence(text: str, min_len: int = 10, max_len: int = 100) -> str:
    """First sentence of ``text`` when its length is within bounds, else ``""``."""
    text = clean_text(text)
    if not text:
        return ""
    sentence = re.split(r"(?<=[.!?])\s+|\s[|•]\s", text, maxsplit=1)[0].strip()
    if min_len <= len(sentence) <= max_len:
        return sentence
    return ""


# --------------------------------------------------------------------------- #
# Fragment lookups
def parse_html(raw: str) -> BeautifulSoup:
    return BeautifulSoup(raw, "html.parser")


def split_selectors(selectors: Optional[str]) -> List[str]:
    """Split a comma-separated selector list, ignoring commas inside brackets."""
    if not selectors:
        return []
    parts, depth, buf = [], 0, []
    for ch in selectors:
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth = max(0, depth - 1)
        if ch == "," and depth == 0:
            parts.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    parts.append("".join(buf).strip())
    return [p for p in parts if p]


def selector_class_name(selector: str) -> str:
    """Reduce a selector like ``.event-card`` or ``[class*="event"]`` to a bare class fragment."""
    match = re.search(r"""class\*?=["']?([\w-]+)""", selector)
    if match:
        return match.group(1)
    token = selector.split()[-1] if selector.split() else ""
    if "." in token:
        token = token.rsplit(".", 1)[-1]
    return _SELECTOR_NAME_RE.sub("", token).strip()


def select_all(root: Tag, selector: str) -> List[Tag]:
    """CSS selection that treats an invalid selector as a class-name fragment."""
    try:
        return list(root.select(selector))
    except (SelectorSyntaxError, ValueError, NotImplementedError):
        return find_by_class(root, selector_class_name(selector))


def find_by_class(root: Tag, fragment: str, tags: Optional[Iterable[str]] = None) -> List[Tag]:
    """All elements whose class attribute contains ``fragment`` (case-insensitive)."""
    if not fragment:
        return []
    pattern = re.compile(re.escape(fragment), re.I)
    return list(root.find_all(list(tags) if tags else True, class_=pattern))


def extract_text(root: Tag, selectors: Iterable[str]) -> str:
    """Text of the first selector that yields non-empty text."""
    for selector in selectors:
        for node in select_all(root, selector):
            text = node_text(node)
            if text:
                return text
    return ""


def extract_attribute(root: Tag, selectors: Iterable[str], attr: str) -> str:
    """Attribute ``attr`` of the first matching element that carries it."""
    for selector in selectors:
        for node in select_all(root, selector):
            value = node.get(attr)
            if isinstance(value, list):
                value = " ".join(value)
            if value and value.strip():
                return value.strip()
    return ""


# --------------------------------------------------------------------------- #
# Dates
def find_date_text(text: str) -> str:
    """The first date-shaped substring of ``text``."""
    text = clean_text(text)
    for _, pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    return ""


def _normalise_date_text(text: str) -> str:
    text = re.sub(r"(?<=[A-Za-z])\.", "", text)
    text = re.sub(r"\s+(?:at|@|-)\s+", " ", text, flags=re.I)
    return text.strip(" ,-")


def parse_date(raw: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Best-effort conversion of date text to an aware UTC datetime.

    Never fails: unparseable input resolves to midnight UTC seven days out,
    so re-scraping on the same day yields the same value. A month/day
    without a year that already lies in the past rolls over to next year.
    """
    now = now or utcnow()
    fallback = (now + DEFAULT_DATE_OFFSET).replace(hour=0, minute=0, second=0, microsecond=0)
    if fallback.tzinfo is None:
        fallback = fallback.replace(tzinfo=timezone.utc)
    text = clean_text(raw)
    if not text:
        return fallback

    for kind, pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        candidate = _normalise_date_text(match.group(0))
        try:
            default = datetime(now.year, now.month, now.day)
            parsed = date_parser.parse(candidate, default=default)
        except (ValueError, OverflowError) as e:
            logger.debug(f"Could not parse date {candidate!r}: {e}")
            continue

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        else:
            parsed = parsed.astimezone(timezone.utc)

        if kind in _YEARLESS and parsed.date() < now.date():
            try:
                parsed = parsed.replace(year=parsed.year + 1)
            except ValueError:  # Feb 29
                parsed = parsed + timedelta(days=365)
        return parsed

    return fallback


# --------------------------------------------------------------------------- #
# URLs
def make_absolute_url(url: Optional[str], base_url: str) -> str:
    """Resolve ``url`` against ``base_url``; empty input yields ``base_url``."""
    if not url:
        return base_url
    url = url.strip()
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return f"{urlparse(base_url).scheme or 'https'}:{url}"
    return urljoin(base_url, url)


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()
