"""Ranking service - the boundary between callers and the rescoring core.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Services (business logic orchestration).
# Depends on: RankingStore, IScoreProvider, RescoreScheduler, MetricsRecorder.
#
# Whatever drives hnrank (the scraper, an HTTP layer, the CLI) talks to
# this class instead of reaching into the store directly:
#
#   record_scrape   - store the snapshot, then kick off initial scoring as
#                     a detached task; its failure shows up only in logs
#                     and metrics, never in the caller's result
#   submit_feedback - validate vote / ranking / position, then append
#   rescore         - score one ranking now and save the insight
#   report          - read-only view for status pages
#
# The store trusts its input; validation of feedback happens here.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from hnrank.interfaces.score_provider import IScoreProvider
from hnrank.models.ranking import (
    AnalysisType,
    ArticleRecord,
    FeedbackEntry,
    FeedbackVote,
    Insight,
    RankingSnapshot,
)
from hnrank.pipeline.rescore_scheduler import RescoreScheduler
from hnrank.services.ranking_store import RankingStore
from hnrank.utils.concurrency import BackgroundTasks
from hnrank.utils.errors import (
    InvalidFeedbackError,
    ProviderUnavailableError,
    RankingNotFoundError,
)
from hnrank.utils.logging import get_logger
from hnrank.utils.metrics import MetricsRecorder


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class RankingService:
    """Entry points used by scrape, feedback, rescore and status callers."""

    def __init__(
        self,
        store: RankingStore,
        provider: IScoreProvider,
        scheduler: RescoreScheduler,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._scheduler = scheduler
        self._metrics = metrics or MetricsRecorder()
        self._clock = clock or _utcnow
        self._background = BackgroundTasks("initial-scoring")
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Scrape completion
    # ------------------------------------------------------------------

    def record_scrape(
        self,
        source_url: str,
        articles: Iterable[ArticleRecord | Mapping[str, Any]] | None,
        pages_navigated: int = 0,
        is_correctly_sorted: bool = False,
        total_articles: int | None = None,
        score_immediately: bool = True,
    ) -> RankingSnapshot:
        """Store a completed scrape and start its initial scoring.

        Initial scoring is skipped when the provider is unavailable or the
        snapshot has no articles.  Without a running event loop it is
        deferred to the scheduler and ``initial_scoring_deferred`` is
        recorded.
        """
        snapshot = self._store.create_snapshot(
            source_url=source_url,
            articles=articles,
            total_articles=total_articles,
            pages_navigated=pages_navigated,
            is_correctly_sorted=is_correctly_sorted,
        )
        self._metrics.record_event(
            "scrape_recorded",
            ranking_id=snapshot.id,
            articles=snapshot.article_count,
            is_correctly_sorted=snapshot.is_correctly_sorted,
        )

        if score_immediately and snapshot.articles and self._provider.is_available():
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # Called from sync code; the next scheduler cycle scores it.
                self._metrics.record_event(
                    "initial_scoring_deferred",
                    ranking_id=snapshot.id,
                    reason="no_running_loop",
                )
                return snapshot
            self._background.spawn(self._initial_scoring(snapshot), label=snapshot.id)
        return snapshot

    async def _initial_scoring(self, snapshot: RankingSnapshot) -> None:
        try:
            insight = await self._provider.request_scoring(snapshot)
        except Exception as exc:
            self._metrics.record_error(
                "initial_scoring_failed",
                ranking_id=snapshot.id,
                provider=self._provider.get_provider_name(),
                error=str(exc),
            )
            return
        if self._store.save_insight(snapshot.id, insight) is not None:
            self._metrics.record_event(
                "initial_scoring_completed",
                ranking_id=snapshot.id,
                request_id=insight.request_id,
                success=insight.success,
            )

    async def wait_for_background(self) -> None:
        """Await every initial-scoring task still in flight."""
        await self._background.wait()

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def submit_feedback(
        self,
        ranking_id: str,
        article_position: int,
        vote: FeedbackVote | str,
        notes: str = "",
    ) -> FeedbackEntry:
        """Validate and record a reader's vote on one article.

        Raises
        ------
        InvalidFeedbackError
            Unknown vote value, or a position outside the ranking's articles.
        RankingNotFoundError
            The ranking is not (or no longer) in history.
        """
        try:
            parsed_vote = FeedbackVote(vote)
        except ValueError as exc:
            allowed = ", ".join(v.value for v in FeedbackVote)
            raise InvalidFeedbackError(f"Vote must be one of: {allowed}; got {vote!r}") from exc

        snapshot = self._store.get_by_id(ranking_id)
        if snapshot is None:
            raise RankingNotFoundError(f"Ranking {ranking_id} not found")

        if isinstance(article_position, bool) or not isinstance(article_position, int):
            raise InvalidFeedbackError(f"Article position must be an integer, got {article_position!r}")
        if not snapshot.has_position(article_position):
            raise InvalidFeedbackError(
                f"Article position {article_position} is outside 1..{snapshot.article_count}"
            )

        entry = self._store.add_feedback(
            ranking_id=ranking_id,
            article_position=article_position,
            vote=parsed_vote,
            notes=(notes or "").strip(),
        )
        self._metrics.record_event(
            "feedback_submitted",
            ranking_id=ranking_id,
            article_position=article_position,
            vote=parsed_vote.value,
        )
        return entry

    # ------------------------------------------------------------------
    # Manual rescore
    # ------------------------------------------------------------------

    async def rescore(
        self,
        ranking_id: str | None = None,
        analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY,
    ) -> Insight:
        """Score one ranking now (the current one when *ranking_id* is None).

        Unlike scheduler jobs, provider errors propagate to the caller.

        Raises
        ------
        RankingNotFoundError
            No such ranking, or history is empty.
        ProviderUnavailableError
            The provider is not configured.
        """
        snapshot = self._store.get_current() if ranking_id is None else self._store.get_by_id(ranking_id)
        if snapshot is None:
            raise RankingNotFoundError(
                "No rankings recorded yet" if ranking_id is None else f"Ranking {ranking_id} not found"
            )
        if not self._provider.is_available():
            raise ProviderUnavailableError(provider_name=self._provider.get_provider_name())

        insight = await self._provider.request_scoring(snapshot, analysis_type=analysis_type)
        saved = self._store.save_insight(snapshot.id, insight)
        if saved is None:
            raise RankingNotFoundError(f"Ranking {snapshot.id} was evicted while it was being scored")

        self._metrics.record_event(
            "manual_rescore_completed",
            ranking_id=snapshot.id,
            request_id=saved.request_id,
            analysis_type=analysis_type.value,
            success=saved.success,
        )
        return saved

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self) -> dict[str, Any]:
        """Read-only summary of scheduler, rankings, insights and metrics."""
        now = self._clock()
        rankings = []
        for snapshot in self._store.list_rankings():
            insight = self._store.get_insight(snapshot.id)
            rankings.append({
                "id": snapshot.id,
                "source_url": snapshot.source_url,
                "generated_at": snapshot.generated_at,
                "total_articles": snapshot.total_articles,
                "is_correctly_sorted": snapshot.is_correctly_sorted,
                "feedback": len(self._store.list_feedback(snapshot.id)),
                "insight": None if insight is None else {
                    "request_id": insight.request_id,
                    "success": insight.success,
                    "provider": insight.provider,
                    "age_seconds": insight.age(now).total_seconds(),
                },
            })

        return {
            "scheduler": self._scheduler.get_status().model_dump(mode="json"),
            "provider": {
                "name": self._provider.get_provider_name(),
                "available": self._provider.is_available(),
            },
            "store": self._store.stats(),
            "rankings": rankings,
            "metrics": self._metrics.get_stats(),
        }
