"""Unit tests for RescoreScheduler."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from hnrank.models.ranking import AnalysisType, Insight, RankingSnapshot
from hnrank.models.scheduler import JobOutcome, SchedulerState
from hnrank.pipeline.rescore_scheduler import RescoreScheduler
from hnrank.providers.score.heuristic_provider import HeuristicScoreProvider
from hnrank.services.ranking_store import RankingStore
from hnrank.utils.errors import ConfigurationError
from hnrank.utils.metrics import MetricsRecorder
from tests.conftest import FakeScoreProvider, ManualClock, make_articles


async def _wait_for(predicate: Callable[[], bool], attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was never reached")


class _BackdatingProvider(FakeScoreProvider):
    """Stamps each insight with the time its request started."""

    async def request_scoring(
        self,
        snapshot: RankingSnapshot,
        analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY,
    ) -> Insight:
        started = self.clock()
        insight = await super().request_scoring(snapshot, analysis_type)
        return insight.model_copy(update={"generated_at": started})


@pytest.fixture()
def scheduler(
    store: RankingStore,
    fake_provider: FakeScoreProvider,
    metrics: MetricsRecorder,
    clock: ManualClock,
) -> RescoreScheduler:
    return RescoreScheduler(
        store=store,
        provider=fake_provider,
        interval_seconds=3600,
        max_concurrent_jobs=2,
        freshness_threshold=timedelta(hours=2),
        run_on_start=False,
        metrics=metrics,
        clock=clock,
    )


# ======================================================================
# Candidate selection
# ======================================================================


class TestSelection:
    @pytest.mark.asyncio
    async def test_unscored_ranking_is_scored_once(
        self, scheduler: RescoreScheduler, store: RankingStore, fake_provider: FakeScoreProvider
    ) -> None:
        snapshot = store.create_snapshot("u", make_articles(5))

        report = await scheduler.force_cycle()

        assert fake_provider.calls == [snapshot.id]
        assert report.candidates == [snapshot.id]
        assert report.count(JobOutcome.SCORED) == 1
        assert store.get_insight(snapshot.id).request_id == "fake-1"

    @pytest.mark.asyncio
    async def test_fresh_insight_is_not_rescored(
        self, scheduler: RescoreScheduler, store: RankingStore, fake_provider: FakeScoreProvider
    ) -> None:
        store.create_snapshot("u", make_articles(5))
        await scheduler.force_cycle()

        report = await scheduler.force_cycle()

        assert len(fake_provider.calls) == 1
        assert report.candidates == []
        assert report.outcomes == {}

    @pytest.mark.asyncio
    async def test_stale_insight_is_rescored(
        self,
        scheduler: RescoreScheduler,
        store: RankingStore,
        fake_provider: FakeScoreProvider,
        clock: ManualClock,
    ) -> None:
        snapshot = store.create_snapshot("u", make_articles(5))
        await scheduler.force_cycle()
        clock.advance(hours=2)

        await scheduler.force_cycle()

        assert fake_provider.calls == [snapshot.id, snapshot.id]
        assert store.get_insight(snapshot.id).generated_at == clock.now

    @pytest.mark.asyncio
    async def test_slow_scoring_is_fresh_once_saved(
        self, store: RankingStore, clock: ManualClock
    ) -> None:
        provider = _BackdatingProvider(clock=clock)
        provider.gate = asyncio.Event()
        scheduler = RescoreScheduler(store, provider, freshness_threshold=timedelta(hours=2), clock=clock)
        snapshot = store.create_snapshot("u", make_articles(5))

        cycle = asyncio.create_task(scheduler.force_cycle())
        await _wait_for(lambda: provider.in_flight == 1)
        clock.advance(hours=3)
        provider.gate.set()
        await cycle

        report = await scheduler.force_cycle()

        assert provider.calls == [snapshot.id]
        assert report.candidates == []
        assert store.get_insight(snapshot.id).generated_at == clock.now

    @pytest.mark.asyncio
    async def test_ranking_without_articles_is_never_selected(
        self, scheduler: RescoreScheduler, store: RankingStore, fake_provider: FakeScoreProvider
    ) -> None:
        store.create_snapshot("u", [])

        report = await scheduler.force_cycle()

        assert report.candidates == []
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_candidates_are_newest_first(
        self, scheduler: RescoreScheduler, store: RankingStore
    ) -> None:
        older = store.create_snapshot("a", make_articles(1))
        newer = store.create_snapshot("b", make_articles(1))
        assert [s.id for s in scheduler.select_candidates()] == [newer.id, older.id]


# ======================================================================
# Concurrency
# ======================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_jobs_in_flight_never_exceed_limit(
        self, scheduler: RescoreScheduler, store: RankingStore, fake_provider: FakeScoreProvider
    ) -> None:
        fake_provider.gate = asyncio.Event()
        snapshots = [store.create_snapshot(f"u{i}", make_articles(3)) for i in range(5)]

        cycle = asyncio.create_task(scheduler.force_cycle())
        await _wait_for(lambda: fake_provider.in_flight == 2)
        assert len(scheduler.active_job_ids) == 2
        assert scheduler.get_status().active_jobs == 2

        fake_provider.gate.set()
        report = await cycle

        assert fake_provider.max_in_flight == 2
        assert fake_provider.calls == [snapshots[4].id, snapshots[3].id]
        assert len(report.candidates) == 5
        assert report.count(JobOutcome.SCORED) == 2
        assert scheduler.active_job_ids == []

    @pytest.mark.asyncio
    async def test_forced_cycle_while_saturated_is_a_no_op(
        self,
        scheduler: RescoreScheduler,
        store: RankingStore,
        fake_provider: FakeScoreProvider,
        metrics: MetricsRecorder,
    ) -> None:
        fake_provider.gate = asyncio.Event()
        for i in range(3):
            store.create_snapshot(f"u{i}", make_articles(3))
        first = asyncio.create_task(scheduler.force_cycle())
        await _wait_for(lambda: fake_provider.in_flight == 2)

        report = await scheduler.force_cycle()

        assert report.skipped is True
        assert report.outcomes == {}
        assert len(fake_provider.calls) == 2
        assert metrics.count("rescore_cycle_skipped") == 1

        fake_provider.gate.set()
        await first

    @pytest.mark.asyncio
    async def test_ranking_with_active_job_is_not_selected_again(
        self, store: RankingStore, fake_provider: FakeScoreProvider, clock: ManualClock
    ) -> None:
        scheduler = RescoreScheduler(store, fake_provider, max_concurrent_jobs=3, clock=clock)
        fake_provider.gate = asyncio.Event()
        snapshot = store.create_snapshot("u", make_articles(3))
        first = asyncio.create_task(scheduler.force_cycle())
        await _wait_for(lambda: fake_provider.in_flight == 1)

        second = await scheduler.force_cycle()

        assert second.skipped is False
        assert second.candidates == []
        assert fake_provider.calls == [snapshot.id]

        fake_provider.gate.set()
        await first

    @pytest.mark.asyncio
    async def test_slots_are_released_after_failures(
        self, scheduler: RescoreScheduler, store: RankingStore, fake_provider: FakeScoreProvider
    ) -> None:
        snapshot = store.create_snapshot("u", make_articles(3))
        fake_provider.fail_for.add(snapshot.id)

        await scheduler.force_cycle()

        assert scheduler.active_job_ids == []
        assert scheduler.get_status().active_jobs == 0


# ======================================================================
# Job outcomes
# ======================================================================


class TestJobOutcomes:
    def test_outcome_values(self) -> None:
        assert [o.value for o in JobOutcome] == [
            "scored",
            "failed",
            "skipped_unavailable",
            "skipped_fresh",
            "discarded_evicted",
        ]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_siblings(
        self,
        store: RankingStore,
        fake_provider: FakeScoreProvider,
        metrics: MetricsRecorder,
        clock: ManualClock,
    ) -> None:
        scheduler = RescoreScheduler(store, fake_provider, max_concurrent_jobs=3, metrics=metrics, clock=clock)
        ok_a = store.create_snapshot("a", make_articles(3))
        broken = store.create_snapshot("b", make_articles(3))
        ok_c = store.create_snapshot("c", make_articles(3))
        fake_provider.fail_for.add(broken.id)

        report = await scheduler.force_cycle()

        assert report.count(JobOutcome.SCORED) == 2
        assert report.count(JobOutcome.FAILED) == 1
        assert store.get_insight(ok_a.id) is not None
        assert store.get_insight(ok_c.id) is not None
        assert store.get_insight(broken.id) is None
        assert metrics.count("ranking_rescore_failed") == 1
        assert metrics.count("ranking_rescored") == 2

        # Still stale, so the next cycle retries it.
        assert [s.id for s in scheduler.select_candidates()] == [broken.id]

    @pytest.mark.asyncio
    async def test_unavailable_provider_skips_jobs(
        self, scheduler: RescoreScheduler, store: RankingStore, fake_provider: FakeScoreProvider
    ) -> None:
        fake_provider.available = False
        snapshot = store.create_snapshot("u", make_articles(3))

        report = await scheduler.force_cycle()

        assert list(report.outcomes.values()) == [JobOutcome.SKIPPED_UNAVAILABLE]
        assert fake_provider.calls == []
        assert store.get_insight(snapshot.id) is None

    @pytest.mark.asyncio
    async def test_insight_for_evicted_ranking_is_discarded(
        self, fake_provider: FakeScoreProvider, clock: ManualClock
    ) -> None:
        store = RankingStore(capacity=1, clock=clock)
        scheduler = RescoreScheduler(store, fake_provider, clock=clock)
        fake_provider.gate = asyncio.Event()
        old = store.create_snapshot("old", make_articles(3))
        cycle = asyncio.create_task(scheduler.force_cycle())
        await _wait_for(lambda: fake_provider.in_flight == 1)

        store.create_snapshot("new", make_articles(3))
        fake_provider.gate.set()
        report = await cycle

        assert list(report.outcomes.values()) == [JobOutcome.DISCARDED_EVICTED]
        assert store.get_insight(old.id) is None

    @pytest.mark.asyncio
    async def test_completed_cycle_is_recorded(
        self, scheduler: RescoreScheduler, store: RankingStore, metrics: MetricsRecorder
    ) -> None:
        store.create_snapshot("u", make_articles(3))

        report = await scheduler.force_cycle()

        event = metrics.get_events(name="rescore_cycle_completed")[0]
        assert event["data"]["cycle_id"] == report.cycle_id
        assert event["data"]["scored"] == 1
        assert scheduler.get_status().last_cycle == report

    @pytest.mark.asyncio
    async def test_slow_provider_with_fifty_articles(self) -> None:
        store = RankingStore()
        scheduler = RescoreScheduler(store, HeuristicScoreProvider(latency_seconds=0.3))
        snapshot = store.create_snapshot("https://news.ycombinator.com/newest", make_articles(50))

        report = await scheduler.run_now()

        insight = store.get_insight(snapshot.id)
        assert report.count(JobOutcome.SCORED) == 1
        assert insight is not None
        assert insight.generated_at is not None
        assert insight.payload["articlesAnalyzed"] == 50
        assert insight.payload["analysis"]["overallScore"] == 10


# ======================================================================
# Lifecycle
# ======================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(
        self, scheduler: RescoreScheduler, metrics: MetricsRecorder
    ) -> None:
        scheduler.start()
        timer = scheduler._timer_task
        with capture_logs() as logs:
            scheduler.start()

        assert scheduler._timer_task is timer
        assert scheduler.state is SchedulerState.RUNNING
        assert any(entry["event"] == "scheduler_already_running" for entry in logs)
        assert metrics.count("scheduler_started") == 1

        scheduler.stop()
        scheduler.stop()

        assert scheduler.state is SchedulerState.STOPPED
        assert metrics.count("scheduler_stopped") == 1
        await _wait_for(timer.done)
        assert timer.cancelled()

    @pytest.mark.asyncio
    async def test_next_run_is_reported_while_running(
        self, scheduler: RescoreScheduler, clock: ManualClock
    ) -> None:
        assert scheduler.get_status().next_run_at is None

        scheduler.start()
        status = scheduler.get_status()

        assert status.is_running is True
        assert status.next_run_at == clock.now + timedelta(seconds=3600)

        clock.advance(seconds=5)
        await asyncio.sleep(0)
        assert scheduler.get_status().next_run_at == clock.now + timedelta(seconds=3600)

        scheduler.stop()
        assert scheduler.get_status().next_run_at is None

    @pytest.mark.asyncio
    async def test_interval_override_is_reflected_in_next_run(
        self, scheduler: RescoreScheduler, clock: ManualClock
    ) -> None:
        scheduler.start(interval_seconds=60)

        assert scheduler.get_status().next_run_at == clock.now + timedelta(seconds=60)
        scheduler.stop()

    @pytest.mark.asyncio
    async def test_timer_runs_cycles(
        self, store: RankingStore, fake_provider: FakeScoreProvider, clock: ManualClock
    ) -> None:
        scheduler = RescoreScheduler(store, fake_provider, interval_seconds=0.01, run_on_start=False, clock=clock)
        snapshot = store.create_snapshot("u", make_articles(3))

        scheduler.start()
        await asyncio.sleep(0.1)
        scheduler.stop()
        await scheduler.wait_idle()

        assert fake_provider.calls == [snapshot.id]
        assert store.get_insight(snapshot.id) is not None

    @pytest.mark.asyncio
    async def test_run_on_start_fires_immediately(
        self, store: RankingStore, fake_provider: FakeScoreProvider, clock: ManualClock
    ) -> None:
        scheduler = RescoreScheduler(store, fake_provider, interval_seconds=3600, run_on_start=True, clock=clock)
        snapshot = store.create_snapshot("u", make_articles(3))

        scheduler.start()
        await _wait_for(lambda: store.get_insight(snapshot.id) is not None)
        scheduler.stop()
        await scheduler.wait_idle()

        assert fake_provider.calls == [snapshot.id]

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_jobs_finish(
        self, store: RankingStore, fake_provider: FakeScoreProvider, clock: ManualClock
    ) -> None:
        scheduler = RescoreScheduler(store, fake_provider, interval_seconds=3600, run_on_start=True, clock=clock)
        fake_provider.gate = asyncio.Event()
        snapshot = store.create_snapshot("u", make_articles(3))

        scheduler.start()
        await _wait_for(lambda: fake_provider.in_flight == 1)
        scheduler.stop()
        assert len(scheduler.active_job_ids) == 1

        fake_provider.gate.set()
        await scheduler.wait_idle()

        assert store.get_insight(snapshot.id) is not None
        assert scheduler.active_job_ids == []

    @pytest.mark.asyncio
    async def test_start_requires_positive_interval(self, scheduler: RescoreScheduler) -> None:
        with pytest.raises(ConfigurationError):
            scheduler.start(interval_seconds=0)
        assert scheduler.state is SchedulerState.STOPPED


# ======================================================================
# Configuration
# ======================================================================


class TestConfiguration:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"interval_seconds": 0},
            {"interval_seconds": -5},
            {"max_concurrent_jobs": 0},
            {"max_concurrent_jobs": 1.5},
            {"freshness_threshold": timedelta(0)},
            {"interval_seconds": 60, "max_concurrent_jobs": 0},
        ],
    )
    def test_invalid_update_changes_nothing(self, scheduler: RescoreScheduler, kwargs: dict) -> None:
        before = scheduler.get_status()

        with pytest.raises(ConfigurationError):
            scheduler.update_config(**kwargs)

        assert scheduler.get_status() == before

    def test_valid_update_is_applied(self, scheduler: RescoreScheduler, metrics: MetricsRecorder) -> None:
        status = scheduler.update_config(
            interval_seconds=60,
            max_concurrent_jobs=4,
            freshness_threshold=timedelta(minutes=30),
        )

        assert status.interval_seconds == 60
        assert status.max_concurrent_jobs == 4
        assert status.freshness_threshold_seconds == 1800
        assert metrics.count("scheduler_config_updated") == 1

    def test_constructor_validates(self, store: RankingStore, fake_provider: FakeScoreProvider) -> None:
        with pytest.raises(ConfigurationError):
            RescoreScheduler(store, fake_provider, max_concurrent_jobs=0)
        with pytest.raises(ConfigurationError):
            RescoreScheduler(store, fake_provider, freshness_threshold=timedelta(seconds=-1))

    def test_status_serializes(self, scheduler: RescoreScheduler) -> None:
        dumped = scheduler.get_status().model_dump(mode="json")
        assert dumped["state"] == "STOPPED"
        assert dumped["is_running"] is False
        assert dumped["max_concurrent_jobs"] == 2
        assert dumped["freshness_threshold_seconds"] == 7200
