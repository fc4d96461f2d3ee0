"""Parsing of Hacker News relative age strings ("5 minutes ago").

Hacker News renders each item's age both as relative text and, in the
``title`` attribute, as an ISO timestamp.  The scraper captures both; the
ISO value is preferred when it parses.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hnrank.models.ranking import ArticleRecord

_UNIT_DURATIONS: dict[str, timedelta] = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

_RELATIVE_RE = re.compile(r"(\d+)\s+(minute|hour|day|week|month|year)s?\s+ago", re.IGNORECASE)


def parse_relative_age(text: str) -> timedelta | None:
    """Return the age described by *text*, or ``None`` if it is not recognised."""
    match = _RELATIVE_RE.search(text or "")
    if not match:
        return None
    return int(match.group(1)) * _UNIT_DURATIONS[match.group(2).lower()]


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    # HN emits "2024-05-01T12:00:00 1714564800"; keep the ISO half.
    candidate = value.split(" ")[0]
    try:
        parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_article_timestamp(article: ArticleRecord, reference: datetime) -> datetime | None:
    """Absolute timestamp for *article* relative to *reference*.

    Returns ``None`` when neither the ISO tooltip nor the relative text parses.
    """
    parsed = _parse_iso(article.time_iso)
    if parsed is not None:
        return parsed
    age = parse_relative_age(article.time_text)
    if age is not None:
        return reference - age
    return None


def dated_articles(
    articles: list[ArticleRecord], reference: datetime
) -> list[tuple[ArticleRecord, datetime]]:
    """Pair each article with its timestamp, dropping those whose age does not parse."""
    dated = []
    for article in articles:
        stamp = parse_article_timestamp(article, reference)
        if stamp is not None:
            dated.append((article, stamp))
    return dated


def sorting_errors(articles: list[ArticleRecord], reference: datetime) -> list[int]:
    """Positions whose article is older than the next article with a parseable age.

    An empty list means the sequence is sorted newest to oldest.
    """
    dated = dated_articles(articles, reference)
    return [
        dated[i][0].position
        for i in range(len(dated) - 1)
        if dated[i][1] < dated[i + 1][1]
    ]
