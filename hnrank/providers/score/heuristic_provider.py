"""Offline score provider based on article age ordering.

Scores how closely a snapshot follows newest-to-oldest order by counting
ordering inversions between every pair of articles whose ages parse.
Articles with an unparseable age are left out of the comparison and
counted separately.

Needs no credentials, so it is always available; used for local runs and
as the default provider in tests.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import structlog

from hnrank.interfaces.score_provider import IScoreProvider
from hnrank.models.ranking import AnalysisType, Insight, RankingSnapshot
from hnrank.utils.time_text import dated_articles, sorting_errors

logger = structlog.get_logger(logger_name=__name__)


def count_inversions(stamps: list[datetime]) -> int:
    """Number of pairs (i < j) where the earlier entry is older than the later one."""
    inversions = 0
    for i in range(len(stamps)):
        for j in range(i + 1, len(stamps)):
            if stamps[i] < stamps[j]:
                inversions += 1
    return inversions


class HeuristicScoreProvider(IScoreProvider):
    """Deterministic ranking-quality scorer.

    Parameters
    ----------
    latency_seconds:
        Artificial delay before returning, to mimic a network call.
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._latency = latency_seconds

    def is_available(self) -> bool:
        return True

    def get_provider_name(self) -> str:
        return "heuristic"

    async def request_scoring(
        self,
        snapshot: RankingSnapshot,
        analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY,
    ) -> Insight:
        request_id = f"heuristic-{uuid4().hex}"
        if self._latency:
            await asyncio.sleep(self._latency)

        if not snapshot.articles:
            return Insight(
                ranking_id=snapshot.id,
                request_id=request_id,
                success=False,
                error="No articles available for analysis",
                provider=self.get_provider_name(),
                analysis_type=analysis_type,
            )

        # Relative ages are measured from when the snapshot was taken.
        reference = snapshot.generated_at.astimezone(timezone.utc)
        articles = list(snapshot.articles)
        stamps = [stamp for _, stamp in dated_articles(articles, reference)]
        pairs = len(stamps) * (len(stamps) - 1) // 2
        inversions = count_inversions(stamps)
        ratio = 1.0 - (inversions / pairs) if pairs else 1.0
        score = max(1, min(10, round(1 + 9 * ratio)))
        errors = sorting_errors(articles, reference)

        issues = [f"Article at position {p} is older than the one after it" for p in errors[:10]]
        if snapshot.is_correctly_sorted and errors:
            issues.append("Scraper reported correct sorting but ordering inversions were found")

        logger.debug("heuristic_scored", ranking_id=snapshot.id, score=score, inversions=inversions)
        return Insight(
            ranking_id=snapshot.id,
            request_id=request_id,
            success=True,
            payload={
                "analysis": {
                    "overallScore": score,
                    "inversions": inversions,
                    "comparablePairs": pairs,
                    "issues": issues,
                    "suggestions": [] if not errors else ["Re-scrape and re-validate ordering"],
                    "confidenceLevel": 8 if pairs else 3,
                    "summary": (
                        f"{len(articles)} articles, {inversions} ordering inversions "
                        f"across {pairs} pairs"
                    ),
                },
                "articlesAnalyzed": len(articles),
                "unparsedArticles": len(articles) - len(stamps),
            },
            provider=self.get_provider_name(),
            analysis_type=analysis_type,
        )
