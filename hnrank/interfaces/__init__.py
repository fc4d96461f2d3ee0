"""Abstract interfaces that decouple hnrank services from concrete backends."""

from hnrank.interfaces.score_provider import IScoreProvider

__all__ = ["IScoreProvider"]
