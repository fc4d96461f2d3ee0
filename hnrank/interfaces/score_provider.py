"""Abstract base class for score providers.

A score provider takes a ranking snapshot and produces an :class:`Insight`:
an assessment of how well the collected articles are ranked.  The
rescore scheduler and the ranking service depend only on this contract;
concrete adapters live in ``hnrank/providers/score/``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from hnrank.models.ranking import AnalysisType, Insight, RankingSnapshot


# Concrete implementations: OpenAIScoreProvider, HeuristicScoreProvider
class IScoreProvider(ABC):
    """Contract for scoring backends consumed by the rescore scheduler."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Must be cheap: the scheduler calls it once per job, every cycle.
        It should check credentials are present, not contact the service.
        """

    @abstractmethod
    async def request_scoring(
        self,
        snapshot: RankingSnapshot,
        analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY,
    ) -> Insight:
        """Score *snapshot* and return the resulting insight.

        Parameters
        ----------
        snapshot:
            The immutable ranking to assess.
        analysis_type:
            Which analysis to run.

        Returns
        -------
        Insight
            Carries a ``request_id`` for traceability.  ``success`` is
            ``False`` when the provider produced a result but could not
            assess the snapshot (e.g. it has no articles).

        Raises
        ------
        hnrank.utils.errors.ScoringError
            If the backend call fails.  Providers apply their own timeouts
            and retries before raising.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"openai"`` or ``"heuristic"``."""

    async def aclose(self) -> None:
        """Release network clients.  No-op by default."""
        return None
