"""
Keyword relevance scoring for candidate events.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from .models import Relevance


# Terms that mark an event as on-topic for inclusive, family-oriented newsletters.
DOMAIN_KEYWORDS = (
    "accessible",
    "accessibility",
    "inclusive",
    "inclusion",
    "disability",
    "special needs",
    "sensory",
    "autism",
    "adaptive",
    "wheelchair",
    "neurodiverse",
    "family",
    "kids",
    "children",
    "youth",
)

DOMAIN_KEYWORD_POINTS = 15
SOURCE_KEYWORD_POINTS = 8
LONG_TITLE_BONUS = 5
LONG_TITLE_LENGTH = 15
ACCEPT_SCORE = 15
ACCEPT_TITLE_LENGTH = 10
MAX_SCORE = 100


def score_relevance(
    title: str,
    description: Optional[str],
    keywords: Iterable[str],
    filter_enabled: bool,
) -> Relevance:
    """Classify a title/description pair.

    With filtering disabled every candidate is accepted at full score. With
    filtering enabled the bar is deliberately low: a decent score *or* a
    reasonably long title is enough.
    """
    if not filter_enabled:
        return Relevance(accepted=True, matched_keywords=[], score=MAX_SCORE)

    title = title or ""
    text = f"{title} {description or ''}".lower()
    matched: List[str] = []
    score = 0

    for term in DOMAIN_KEYWORDS:
        if term in text:
            matched.append(term)
            score += DOMAIN_KEYWORD_POINTS

    # Source keywords score on their own even when they repeat a domain term.
    seen = {m.lower() for m in matched}
    for keyword in keywords or []:
        needle = keyword.strip().lower()
        if not needle or needle not in text:
            continue
        score += SOURCE_KEYWORD_POINTS
        if needle not in seen:
            matched.append(keyword)
            seen.add(needle)

    if len(title) > LONG_TITLE_LENGTH:
        score += LONG_TITLE_BONUS

    score = min(MAX_SCORE, score)
    accepted = score >= ACCEPT_SCORE or len(title) > ACCEPT_TITLE_LENGTH
    return Relevance(accepted=accepted, matched_keywords=matched, score=score)
