"""Ranking domain models - scraped snapshots, scoring insights, feedback.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Models (bottom of the dependency graph - no imports from upper layers).
#
# All models are frozen Pydantic v2 models.  A RankingSnapshot is created
# once per completed scrape and never changes afterwards; an Insight is
# replaced wholesale when a newer one is saved; a FeedbackEntry is
# append-only.  The store hands these objects out directly, so a caller
# holding an old reference can never corrupt newer state.
#
# ArticleRecord accepts the scraper's camelCase keys (timeText, timeISO,
# id) as aliases so raw scrape output validates without a mapping step.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class FeedbackVote(str, Enum):  # noqa: UP042
    """A reader's verdict on one article's position in a ranking."""

    PROMOTE = "promote"
    DEMOTE = "demote"
    CORRECT = "correct"


class AnalysisType(str, Enum):  # noqa: UP042
    """Which prompt a score provider runs against a snapshot."""

    RANKING_QUALITY = "ranking_quality"
    SECURITY_FOCUS = "security_focus"


class ArticleRecord(BaseModel):
    """One article as collected from a Hacker News listing page.

    ``position`` is 1-based across the whole collected sequence, not per page.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = Field(default="No title")
    time_text: str = Field(default="", alias="timeText", description="Relative age, e.g. '3 hours ago'.")
    time_iso: str | None = Field(default=None, alias="timeISO", description="Absolute timestamp from the age tooltip.")
    page: int = Field(default=1, ge=1)
    position: int = Field(ge=1)
    item_id: str | None = Field(default=None, alias="id", description="Hacker News item id.")
    url: str | None = None


class RankingSnapshot(BaseModel):
    """A single completed scrape-and-validate run.

    Snapshots are created by :meth:`RankingStore.create_snapshot` only; the
    id and timestamp are assigned there.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source_url: str
    total_articles: int = Field(default=0, ge=0)
    pages_navigated: int = Field(default=0, ge=0)
    is_correctly_sorted: bool = False
    articles: tuple[ArticleRecord, ...] = ()
    generated_at: datetime = Field(default_factory=_utcnow)

    @property
    def created_at(self) -> datetime:
        return self.generated_at

    @property
    def article_count(self) -> int:
        return len(self.articles)

    def has_position(self, position: int) -> bool:
        """Return True if *position* addresses an article in this snapshot."""
        return 1 <= position <= len(self.articles)


class Insight(BaseModel):
    """The latest score-provider output attached to a ranking snapshot.

    ``generated_at`` drives freshness decisions.  The store re-stamps it,
    together with ``recorded_at``, when the insight is saved.
    """

    model_config = ConfigDict(frozen=True)

    ranking_id: str
    request_id: str
    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    provider: str = "unknown"
    analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY
    generated_at: datetime = Field(default_factory=_utcnow)
    recorded_at: datetime | None = None

    def age(self, now: datetime) -> timedelta:
        return now - self.generated_at

    def is_fresh(self, threshold: timedelta, now: datetime) -> bool:
        """True while the insight is younger than *threshold*."""
        return self.age(now) < threshold


class FeedbackEntry(BaseModel):
    """A reader's vote on one article of one ranking.  Append-only."""

    model_config = ConfigDict(frozen=True)

    id: str
    ranking_id: str
    article_position: int = Field(ge=1)
    vote: FeedbackVote
    notes: str = ""
    submitted_at: datetime = Field(default_factory=_utcnow)
