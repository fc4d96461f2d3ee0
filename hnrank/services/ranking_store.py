"""Bounded in-memory registry of ranking snapshots, insights and feedback.

# ─── HOW THE STORE WORKS ──────────────────────────────────────────────
#
#   create_snapshot ──→ history (cachetools.FIFOCache, maxsize=`capacity`)
#                        │
#                        ├── newest entry is the "current" ranking
#                        └── overflow evicts oldest → cascades to its
#                            insight and its feedback
#
#   save_insight(id)  ──→ insights[id]   (no-op if id not in history)
#   add_feedback(...) ──→ feedback[id]   (append-only)
#
# Every operation is synchronous and never suspends, so under asyncio no
# other coroutine can observe a half-applied create + evict.  A single
# threading.Lock still guards the three maps so status readers on other
# threads see a consistent view.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import structlog
from cachetools import FIFOCache

from hnrank.models.ranking import (
    ArticleRecord,
    FeedbackEntry,
    FeedbackVote,
    Insight,
    RankingSnapshot,
)
from hnrank.utils.errors import ConfigurationError
from hnrank.utils.logging import get_logger

DEFAULT_CAPACITY = 20
DEFAULT_MAX_AGE = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _coerce_articles(
    articles: Iterable[ArticleRecord | Mapping[str, Any]] | None,
) -> tuple[ArticleRecord, ...]:
    """Validate raw scraper output into ArticleRecords.

    Mappings without a ``position`` get their 1-based index.
    """
    records: list[ArticleRecord] = []
    for index, article in enumerate(articles or (), start=1):
        if isinstance(article, ArticleRecord):
            records.append(article)
            continue
        data = dict(article)
        data.setdefault("position", index)
        records.append(ArticleRecord.model_validate(data))
    return tuple(records)


class _SnapshotHistory(FIFOCache):
    """FIFOCache that remembers which ids it evicted to make room."""

    def __init__(self, maxsize: int) -> None:
        super().__init__(maxsize=maxsize)
        self._evicted: list[str] = []

    def popitem(self) -> tuple[str, RankingSnapshot]:
        key, value = super().popitem()
        self._evicted.append(key)
        return key, value

    def drain_evicted(self) -> list[str]:
        evicted, self._evicted = self._evicted, []
        return evicted

    def newest_first(self) -> list[RankingSnapshot]:
        # Iteration follows insertion order; ids are never re-inserted.
        return list(reversed(list(self.values())))


class RankingStore:
    """Authoritative, bounded registry of ranking snapshots.

    Parameters
    ----------
    capacity:
        Maximum number of snapshots kept in history.
    clock:
        Returns the current aware UTC time.  Injectable for tests.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if capacity < 1:
            raise ConfigurationError(f"Ranking history capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._clock = clock or _utcnow
        self._history = _SnapshotHistory(maxsize=capacity)
        self._insights: dict[str, Insight] = {}
        self._feedback: dict[str, list[FeedbackEntry]] = {}
        self._lock = threading.Lock()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def create_snapshot(
        self,
        source_url: str,
        articles: Iterable[ArticleRecord | Mapping[str, Any]] | None = None,
        total_articles: int | None = None,
        pages_navigated: int = 0,
        is_correctly_sorted: bool = False,
    ) -> RankingSnapshot:
        """Record a completed scrape and make it the current ranking.

        A missing article list is treated as empty.  If history is full the
        oldest snapshots are evicted along with their insight and feedback.
        """
        records = _coerce_articles(articles)
        snapshot = RankingSnapshot(
            id=uuid4().hex,
            source_url=source_url,
            total_articles=len(records) if total_articles is None else total_articles,
            pages_navigated=pages_navigated,
            is_correctly_sorted=is_correctly_sorted,
            articles=records,
            generated_at=self._clock(),
        )

        with self._lock:
            self._history[snapshot.id] = snapshot
            evicted = self._history.drain_evicted()
            for oldest_id in evicted:
                self._drop_related(oldest_id)

        self._logger.info(
            "ranking_created",
            ranking_id=snapshot.id,
            articles=snapshot.article_count,
            sorted=snapshot.is_correctly_sorted,
        )
        if evicted:
            self._logger.info("rankings_evicted", ranking_ids=evicted, capacity=self._capacity)
        return snapshot

    def get_current(self) -> RankingSnapshot | None:
        """Return the newest snapshot still in history, or None when empty."""
        with self._lock:
            history = self._history.newest_first()
        return history[0] if history else None

    def get_by_id(self, ranking_id: str) -> RankingSnapshot | None:
        with self._lock:
            return self._history.get(ranking_id)

    def list_rankings(self) -> list[RankingSnapshot]:
        """All snapshots in history, newest first."""
        with self._lock:
            return self._history.newest_first()

    def __contains__(self, ranking_id: object) -> bool:
        with self._lock:
            return ranking_id in self._history

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def prune_older_than(self, max_age: timedelta = DEFAULT_MAX_AGE) -> list[str]:
        """Evict every snapshot created more than *max_age* ago.

        Returns the evicted ids, oldest first.
        """
        cutoff = self._clock() - max_age
        with self._lock:
            expired = [rid for rid, snap in self._history.items() if snap.created_at < cutoff]
            for ranking_id in expired:
                del self._history[ranking_id]
                self._drop_related(ranking_id)

        if expired:
            self._logger.info("rankings_pruned", ranking_ids=expired, max_age_s=max_age.total_seconds())
        return expired

    def _drop_related(self, ranking_id: str) -> None:
        # Caller holds the lock.
        self._insights.pop(ranking_id, None)
        self._feedback.pop(ranking_id, None)

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def save_insight(self, ranking_id: str, insight: Insight) -> Insight | None:
        """Store *insight* as the live insight for *ranking_id*.

        Returns the stored copy, or None when the ranking is no longer in
        history.  Last write wins.

        Freshness is measured from the save: ``generated_at`` and
        ``recorded_at`` are both stamped with the store clock, and the
        provider's own ``generated_at`` is kept as
        ``payload["providerGeneratedAt"]``.
        """
        now = self._clock()
        update: dict[str, Any] = {
            "generated_at": now,
            "recorded_at": now,
            "payload": {**insight.payload, "providerGeneratedAt": insight.generated_at.isoformat()},
        }
        if insight.ranking_id != ranking_id:
            update["ranking_id"] = ranking_id
        stored = insight.model_copy(update=update)

        with self._lock:
            if ranking_id not in self._history:
                stored = None
            else:
                self._insights[ranking_id] = stored

        if stored is None:
            self._logger.info("insight_discarded", ranking_id=ranking_id, reason="ranking_not_in_history")
        else:
            self._logger.debug("insight_saved", ranking_id=ranking_id, request_id=stored.request_id)
        return stored

    def get_insight(self, ranking_id: str) -> Insight | None:
        with self._lock:
            return self._insights.get(ranking_id)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def add_feedback(
        self,
        ranking_id: str,
        article_position: int,
        vote: FeedbackVote | str,
        notes: str = "",
    ) -> FeedbackEntry:
        """Append a feedback entry.

        Business validation (ranking exists, position in range) belongs to
        the caller; see :meth:`RankingService.submit_feedback`.
        """
        entry = FeedbackEntry(
            id=uuid4().hex,
            ranking_id=ranking_id,
            article_position=article_position,
            vote=FeedbackVote(vote),
            notes=notes or "",
            submitted_at=self._clock(),
        )
        with self._lock:
            self._feedback.setdefault(ranking_id, []).append(entry)
        return entry

    def list_feedback(self, ranking_id: str | None = None) -> list[FeedbackEntry]:
        """Feedback entries newest first, optionally for a single ranking."""
        with self._lock:
            if ranking_id is not None:
                entries = list(self._feedback.get(ranking_id, ()))
            else:
                entries = [e for group in self._feedback.values() for e in group]
        # Stable sort: entries with equal timestamps keep reverse insertion order.
        entries.reverse()
        entries.sort(key=lambda e: e.submitted_at, reverse=True)
        return entries

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        with self._lock:
            history = self._history.newest_first()
            current_id = history[0].id if history else None
            return {
                "capacity": self._capacity,
                "rankings": len(self._history),
                "insights": len(self._insights),
                "feedback": sum(len(group) for group in self._feedback.values()),
                "current_ranking_id": current_id,
            }
