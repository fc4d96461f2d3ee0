"""Pydantic v2 domain models for hnrank.

- **ranking** -- ArticleRecord, RankingSnapshot, Insight, FeedbackEntry and
  the FeedbackVote / AnalysisType enums.
- **scheduler** -- SchedulerState, JobOutcome, CycleReport, SchedulerStatus.
"""

from hnrank.models.ranking import (
    AnalysisType,
    ArticleRecord,
    FeedbackEntry,
    FeedbackVote,
    Insight,
    RankingSnapshot,
)
from hnrank.models.scheduler import CycleReport, JobOutcome, SchedulerState, SchedulerStatus

__all__ = [
    "AnalysisType",
    "ArticleRecord",
    "CycleReport",
    "FeedbackEntry",
    "FeedbackVote",
    "Insight",
    "JobOutcome",
    "RankingSnapshot",
    "SchedulerState",
    "SchedulerStatus",
]
