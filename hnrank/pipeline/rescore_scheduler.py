"""Periodic rescoring of stale or missing ranking insights.

# ─── HOW THE SCHEDULER WORKS ──────────────────────────────────────────
#
#   start() ──→ timer task ──every interval──→ spawn cycle task
#                                                 │
#   force_cycle() ────────────────────────────────┤
#                                                 ▼
#                                            run_cycle()
#     1. gate:   all job slots taken?  → skipped report, no provider calls
#     2. select: rankings with articles, no active job, and an insight
#                that is missing or older than the freshness threshold
#     3. slots:  take (max_concurrent_jobs - active jobs) candidates,
#                in store order (newest first)
#     4. register every job id synchronously, then run the jobs
#        concurrently and wait for all of them to settle
#
#   Per job:  provider available? → still stale? → request_scoring →
#             save_insight.  The job id is released in `finally`.
#
# The timer never awaits a cycle, so a slow provider cannot delay the
# next tick.  Provider and store errors are caught per job, logged and
# recorded as metrics; the ranking stays stale and is picked up again on
# a later cycle.  stop() cancels only the timer; running jobs finish.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import structlog

from hnrank.interfaces.score_provider import IScoreProvider
from hnrank.models.ranking import Insight, RankingSnapshot
from hnrank.models.scheduler import CycleReport, JobOutcome, SchedulerState, SchedulerStatus
from hnrank.services.ranking_store import RankingStore
from hnrank.utils.concurrency import BackgroundTasks, gather_settled
from hnrank.utils.errors import ConfigurationError
from hnrank.utils.logging import cycle_context, get_logger
from hnrank.utils.metrics import MetricsRecorder

DEFAULT_INTERVAL_SECONDS = 30 * 60.0
DEFAULT_MAX_CONCURRENT_JOBS = 2
DEFAULT_FRESHNESS_THRESHOLD = timedelta(hours=2)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _require_positive(name: str, value: float) -> None:
    if isinstance(value, bool) or value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")


def _require_positive_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


class RescoreScheduler:
    """Timer-driven control loop that keeps ranking insights fresh.

    Parameters
    ----------
    store:
        Source of rankings and destination for insights.
    provider:
        Produces insights.  Its availability is checked before every job.
    interval_seconds:
        Time between timer-driven cycles.
    max_concurrent_jobs:
        Upper bound on provider calls in flight at once, across all cycles.
    freshness_threshold:
        Insights older than this are due for rescoring.
    run_on_start:
        Fire a cycle as soon as the scheduler starts.
    metrics:
        Recorder for scheduler events.  A private one is created if omitted.
    clock:
        Returns the current aware UTC time.  Injectable for tests.
    """

    def __init__(
        self,
        store: RankingStore,
        provider: IScoreProvider,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        freshness_threshold: timedelta = DEFAULT_FRESHNESS_THRESHOLD,
        run_on_start: bool = True,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        _require_positive("interval_seconds", interval_seconds)
        _require_positive_int("max_concurrent_jobs", max_concurrent_jobs)
        _require_positive("freshness_threshold", freshness_threshold.total_seconds())

        self._store = store
        self._provider = provider
        self._interval = float(interval_seconds)
        self._max_concurrent_jobs = max_concurrent_jobs
        self._freshness_threshold = freshness_threshold
        self._run_on_start = run_on_start
        self._metrics = metrics or MetricsRecorder()
        self._clock = clock or _utcnow

        self._state = SchedulerState.STOPPED
        self._timer_task: asyncio.Task[None] | None = None
        self._cycles = BackgroundTasks("rescore-cycle")
        # job id → ranking id, for every job holding a concurrency slot.
        self._active_jobs: dict[str, str] = {}
        self._next_run_at: datetime | None = None
        self._last_cycle: CycleReport | None = None
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    def start(self, interval_seconds: float | None = None) -> None:
        """Transition to RUNNING and arm the recurring timer.

        Must be called from inside a running event loop.  Calling it while
        already running only logs.
        """
        if self.is_running:
            self._logger.info("scheduler_already_running", interval_s=self._interval)
            return
        if interval_seconds is not None:
            _require_positive("interval_seconds", interval_seconds)
            self._interval = float(interval_seconds)

        loop = asyncio.get_running_loop()
        self._state = SchedulerState.RUNNING
        self._next_run_at = self._clock() + timedelta(seconds=self._interval)
        self._timer_task = loop.create_task(self._run_timer(), name="rescore-timer")

        self._metrics.record_event(
            "scheduler_started",
            interval_seconds=self._interval,
            max_concurrent_jobs=self._max_concurrent_jobs,
            run_on_start=self._run_on_start,
        )

    def stop(self) -> None:
        """Cancel the timer and transition to STOPPED.

        In-flight cycles are not cancelled; their jobs finish and release
        their slots normally.  Calling it while stopped only logs.
        """
        if not self.is_running:
            self._logger.info("scheduler_not_running")
            return

        self._state = SchedulerState.STOPPED
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        self._next_run_at = None

        self._metrics.record_event("scheduler_stopped", in_flight_jobs=len(self._active_jobs))

    async def _run_timer(self) -> None:
        if self._run_on_start:
            self._launch_cycle()
        while True:
            self._next_run_at = self._clock() + timedelta(seconds=self._interval)
            await asyncio.sleep(self._interval)
            self._launch_cycle()

    def _launch_cycle(self) -> None:
        self._cycles.spawn(self.run_cycle(), label="timer")

    async def wait_idle(self) -> None:
        """Wait until every timer-launched cycle has finished."""
        await self._cycles.wait()

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def force_cycle(self) -> CycleReport:
        """Run one cycle now, outside the timer, under the same gate."""
        self._logger.info("rescore_cycle_forced")
        return await self.run_cycle()

    run_now = force_cycle

    async def run_cycle(self) -> CycleReport:
        """Scan the store, score what is stale, and report the outcome.

        Never raises; a cycle-level failure is logged, recorded as the
        ``rescore_cycle_failed`` metric and reflected in the report.
        """
        cycle_id = f"cycle-{uuid4().hex[:12]}"
        started_at = self._clock()

        if len(self._active_jobs) >= self._max_concurrent_jobs:
            self._metrics.record_event(
                "rescore_cycle_skipped",
                level="info",
                cycle_id=cycle_id,
                active_jobs=len(self._active_jobs),
                max_concurrent_jobs=self._max_concurrent_jobs,
            )
            return self._finish(CycleReport(
                cycle_id=cycle_id,
                started_at=started_at,
                finished_at=self._clock(),
                skipped=True,
            ))

        candidates: list[RankingSnapshot] = []
        jobs: list[tuple[str, RankingSnapshot]] = []
        outcomes: dict[str, JobOutcome] = {}

        with cycle_context(cycle_id):
            try:
                candidates = self.select_candidates()
                if not candidates:
                    self._logger.debug("rescore_nothing_due")

                free_slots = self._max_concurrent_jobs - len(self._active_jobs)
                for snapshot in candidates[:free_slots]:
                    job_id = f"{cycle_id}-{snapshot.id}"
                    self._active_jobs[job_id] = snapshot.id
                    jobs.append((job_id, snapshot))

                if jobs:
                    self._logger.info(
                        "rescore_cycle_started",
                        due=len(candidates),
                        scheduled=len(jobs),
                        deferred=len(candidates) - len(jobs),
                    )

                results = await gather_settled(
                    [self._process(job_id, snapshot) for job_id, snapshot in jobs],
                    logger=self._logger,
                    error_msg="rescore_job_crashed",
                )
                for (job_id, _), result in zip(jobs, results):
                    outcomes[job_id] = result if isinstance(result, JobOutcome) else JobOutcome.FAILED
            except Exception as exc:
                self._metrics.record_error("rescore_cycle_failed", cycle_id=cycle_id, error=str(exc))
            finally:
                for job_id, _ in jobs:
                    self._active_jobs.pop(job_id, None)

            report = CycleReport(
                cycle_id=cycle_id,
                started_at=started_at,
                finished_at=self._clock(),
                candidates=[snapshot.id for snapshot in candidates],
                outcomes=outcomes,
            )
            if jobs:
                self._metrics.record_event(
                    "rescore_cycle_completed",
                    cycle_id=cycle_id,
                    rankings_due=len(candidates),
                    scored=report.count(JobOutcome.SCORED),
                    failed=report.count(JobOutcome.FAILED),
                    skipped=len(jobs) - report.count(JobOutcome.SCORED) - report.count(JobOutcome.FAILED),
                    active_jobs=len(self._active_jobs),
                )
        return self._finish(report)

    def _finish(self, report: CycleReport) -> CycleReport:
        self._last_cycle = report
        return report

    def select_candidates(self) -> list[RankingSnapshot]:
        """Rankings that need an insight now, in store order (newest first).

        Skips rankings without articles, rankings that already have a job
        in flight, and rankings whose insight is still fresh.
        """
        now = self._clock()
        busy = set(self._active_jobs.values())
        due: list[RankingSnapshot] = []
        for snapshot in self._store.list_rankings():
            if not snapshot.articles or snapshot.id in busy:
                continue
            if self._is_fresh(self._store.get_insight(snapshot.id), now):
                continue
            due.append(snapshot)
        return due

    def _is_fresh(self, insight: Insight | None, now: datetime) -> bool:
        return insight is not None and insight.is_fresh(self._freshness_threshold, now)

    async def _process(self, job_id: str, snapshot: RankingSnapshot) -> JobOutcome:
        log = self._logger.bind(job_id=job_id, ranking_id=snapshot.id)
        try:
            if not self._provider.is_available():
                log.info("rescore_job_skipped", reason="provider_unavailable")
                return JobOutcome.SKIPPED_UNAVAILABLE

            # Another path (manual rescore, initial scoring) may have refreshed it.
            if self._is_fresh(self._store.get_insight(snapshot.id), self._clock()):
                log.info("rescore_job_skipped", reason="insight_fresh")
                return JobOutcome.SKIPPED_FRESH

            insight = await self._provider.request_scoring(snapshot)
            saved = self._store.save_insight(snapshot.id, insight)
            if saved is None:
                return JobOutcome.DISCARDED_EVICTED

            self._metrics.record_event(
                "ranking_rescored",
                ranking_id=snapshot.id,
                job_id=job_id,
                success=saved.success,
                request_id=saved.request_id,
            )
            return JobOutcome.SCORED
        except Exception as exc:
            self._metrics.record_error(
                "ranking_rescore_failed",
                ranking_id=snapshot.id,
                job_id=job_id,
                provider=self._provider.get_provider_name(),
                error=str(exc),
            )
            return JobOutcome.FAILED
        finally:
            self._active_jobs.pop(job_id, None)

    # ------------------------------------------------------------------
    # Status / configuration
    # ------------------------------------------------------------------

    @property
    def active_job_ids(self) -> list[str]:
        return list(self._active_jobs)

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            state=self._state,
            interval_seconds=self._interval,
            max_concurrent_jobs=self._max_concurrent_jobs,
            freshness_threshold_seconds=self._freshness_threshold.total_seconds(),
            active_jobs=len(self._active_jobs),
            active_job_ids=list(self._active_jobs),
            next_run_at=self._next_run_at if self.is_running else None,
            last_cycle=self._last_cycle,
        )

    def update_config(
        self,
        interval_seconds: float | None = None,
        max_concurrent_jobs: int | None = None,
        freshness_threshold: timedelta | None = None,
    ) -> SchedulerStatus:
        """Apply new settings after validating all of them.

        Raises ConfigurationError (and changes nothing) if any value is not
        positive.  Jobs already in flight are unaffected; a new interval is
        used from the next time the timer re-arms.
        """
        if interval_seconds is not None:
            _require_positive("interval_seconds", interval_seconds)
        if max_concurrent_jobs is not None:
            _require_positive_int("max_concurrent_jobs", max_concurrent_jobs)
        if freshness_threshold is not None:
            _require_positive("freshness_threshold", freshness_threshold.total_seconds())

        if interval_seconds is not None:
            self._interval = float(interval_seconds)
        if max_concurrent_jobs is not None:
            self._max_concurrent_jobs = max_concurrent_jobs
        if freshness_threshold is not None:
            self._freshness_threshold = freshness_threshold

        self._metrics.record_event(
            "scheduler_config_updated",
            interval_seconds=self._interval,
            max_concurrent_jobs=self._max_concurrent_jobs,
            freshness_threshold_seconds=self._freshness_threshold.total_seconds(),
        )
        return self.get_status()
