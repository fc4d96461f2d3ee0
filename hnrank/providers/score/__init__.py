"""Score provider adapters.

Two concrete implementations of IScoreProvider
(hnrank/interfaces/score_provider.py):
    - OpenAIScoreProvider    - chat completions (OpenAI or compatible endpoint)
    - HeuristicScoreProvider - offline, scores age-ordering inversions

main.py picks one from the ``provider.name`` config value.
"""

from hnrank.providers.score.heuristic_provider import HeuristicScoreProvider
from hnrank.providers.score.openai_provider import OpenAIScoreProvider

__all__ = ["HeuristicScoreProvider", "OpenAIScoreProvider"]
