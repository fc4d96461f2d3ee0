"""Rescore scheduler state and reporting models.

``SchedulerState`` is the scheduler's whole state machine:
STOPPED → RUNNING → STOPPED.  There is no error state; failures inside a
cycle are reported through :class:`CycleReport` outcomes and metrics.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SchedulerState(str, Enum):  # noqa: UP042
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class JobOutcome(str, Enum):  # noqa: UP042
    """How one rescore job ended."""

    SCORED = "scored"                            # insight saved
    FAILED = "failed"                            # provider raised
    SKIPPED_UNAVAILABLE = "skipped_unavailable"  # provider precondition not met
    SKIPPED_FRESH = "skipped_fresh"              # refreshed elsewhere meanwhile
    DISCARDED_EVICTED = "discarded_evicted"      # ranking evicted before save


class CycleReport(BaseModel):
    """Summary of one scan-and-score cycle.

    ``skipped`` is True when the concurrency gate rejected the whole cycle
    because every job slot was already taken.
    """

    model_config = ConfigDict(frozen=True)

    cycle_id: str
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    candidates: list[str] = Field(default_factory=list, description="Ranking ids that needed scoring.")
    outcomes: dict[str, JobOutcome] = Field(default_factory=dict, description="Job id → outcome.")

    def count(self, outcome: JobOutcome) -> int:
        return sum(1 for o in self.outcomes.values() if o is outcome)


class SchedulerStatus(BaseModel):
    """Point-in-time view of the scheduler for status endpoints and logs."""

    model_config = ConfigDict(frozen=True)

    state: SchedulerState
    interval_seconds: float
    max_concurrent_jobs: int
    freshness_threshold_seconds: float
    active_jobs: int
    active_job_ids: list[str]
    next_run_at: datetime | None = None
    last_cycle: CycleReport | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING
