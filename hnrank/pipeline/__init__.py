"""Background rescoring pipeline."""

from hnrank.pipeline.rescore_scheduler import RescoreScheduler

__all__ = ["RescoreScheduler"]
