"""Service layer: the ranking store and the ranking service boundary."""

from hnrank.services.ranking_store import RankingStore

__all__ = ["RankingStore"]
