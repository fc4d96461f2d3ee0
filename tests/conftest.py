"""Shared pytest fixtures for the hnrank test suite."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import structlog

from hnrank.interfaces.score_provider import IScoreProvider
from hnrank.models.ranking import AnalysisType, Insight, RankingSnapshot
from hnrank.services.ranking_store import RankingStore
from hnrank.utils.errors import ScoringError
from hnrank.utils.metrics import MetricsRecorder

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _quiet_structlog() -> None:
    """Route structlog output nowhere and never cache loggers.

    Cached loggers would keep a reference to whichever stdout pytest had
    installed at the time, which is closed by the next test.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


def make_articles(count: int, newest_first: bool = True) -> list[dict[str, Any]]:
    """Scraper-shaped article dicts, one minute apart, 30 per page."""
    ages = range(1, count + 1) if newest_first else range(count, 0, -1)
    return [
        {
            "id": str(40000000 + position),
            "title": f"Article {position}",
            "timeText": f"{age} minutes ago",
            "page": (position - 1) // 30 + 1,
            "position": position,
        }
        for position, age in enumerate(ages, start=1)
    ]


@pytest.fixture()
def store(clock: ManualClock) -> RankingStore:
    return RankingStore(capacity=20, clock=clock)


@pytest.fixture()
def metrics(clock: ManualClock) -> MetricsRecorder:
    return MetricsRecorder(clock=clock)


# ---------------------------------------------------------------------------
# Score provider double
# ---------------------------------------------------------------------------


class FakeScoreProvider(IScoreProvider):
    """Scriptable provider that records calls and peak concurrency.

    ``gate`` (when set) holds every call until the test releases it;
    ``fail_for`` lists ranking ids whose calls raise ScoringError.
    """

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.available = True
        self.clock = clock
        self.gate: asyncio.Event | None = None
        self.fail_for: set[str] = set()
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = asyncio.Event()

    def is_available(self) -> bool:
        return self.available

    def get_provider_name(self) -> str:
        return "fake"

    async def request_scoring(
        self,
        snapshot: RankingSnapshot,
        analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY,
    ) -> Insight:
        self.calls.append(snapshot.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if snapshot.id in self.fail_for:
                raise ScoringError("upstream exploded", provider_name="fake")
            extra: dict[str, Any] = {}
            if self.clock is not None:
                extra["generated_at"] = self.clock()
            return Insight(
                ranking_id=snapshot.id,
                request_id=f"fake-{len(self.calls)}",
                success=True,
                payload={"analysis": {"overallScore": 7}},
                provider="fake",
                analysis_type=analysis_type,
                **extra,
            )
        finally:
            self.in_flight -= 1


@pytest.fixture()
def fake_provider(clock: ManualClock) -> FakeScoreProvider:
    return FakeScoreProvider(clock=clock)
