"""Utility modules for hnrank.

- **errors** -- exception hierarchy rooted at HNRankError.
- **logging** -- structlog setup (console in development, JSON in production).
- **concurrency** -- settle-all gather and a registry for detached tasks.
- **metrics** -- bounded in-memory metric events, mirrored to the log.
- **time_text** -- Hacker News relative-age parsing and sort validation.
"""

from hnrank.utils.concurrency import BackgroundTasks, gather_settled
from hnrank.utils.errors import (
    ConfigurationError,
    HNRankError,
    InvalidFeedbackError,
    ProviderUnavailableError,
    RankingNotFoundError,
    RateLimitError,
    ScoringError,
)
from hnrank.utils.logging import configure_logging, cycle_context, get_logger
from hnrank.utils.metrics import MetricsRecorder

__all__ = [
    "BackgroundTasks",
    "ConfigurationError",
    "HNRankError",
    "InvalidFeedbackError",
    "MetricsRecorder",
    "ProviderUnavailableError",
    "RankingNotFoundError",
    "RateLimitError",
    "ScoringError",
    "configure_logging",
    "cycle_context",
    "gather_settled",
    "get_logger",
]
