"""Custom exception hierarchy for hnrank.

All application exceptions inherit from :class:`HNRankError`, which carries
an optional ``provider_name`` so error handlers can identify which scoring
backend (e.g. "openai", "heuristic") caused the failure.

The hierarchy is organized by concern:

    HNRankError  (base -- catch-all for any hnrank error)
    +-- ScoringError             (a score provider call failed)
    |   +-- RateLimitError       (provider rate-limit exceeded)
    +-- ProviderUnavailableError (score provider not configured / unreachable)
    +-- ConfigurationError       (invalid or missing configuration)
    +-- RankingNotFoundError     (ranking id unknown or already evicted)
    +-- InvalidFeedbackError     (feedback rejected at the service boundary)

Errors raised inside a rescore cycle never leave the scheduler; they are
logged and recorded as metrics.  The same types reach callers of
:class:`~hnrank.services.ranking_service.RankingService` directly.
"""


class HNRankError(Exception):
    """Base exception for all hnrank errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets,
    e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Score provider errors
# ---------------------------------------------------------------------------

class ScoringError(HNRankError):
    """Raised when a score provider call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "Scoring request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(HNRankError):
    """Raised when a score provider is not configured or cannot be reached.

    The scheduler never raises this: it treats an unavailable provider as a
    precondition gate and skips the job.  Manual rescore callers see it.
    """

    def __init__(
        self,
        message: str = "Score provider is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(ScoringError):
    """Raised when a provider keeps rejecting requests with HTTP 429."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration / boundary errors
# ---------------------------------------------------------------------------

class ConfigurationError(HNRankError):
    """Raised when configuration is invalid, at startup or on reconfiguration."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RankingNotFoundError(HNRankError):
    """Raised when a ranking id is unknown (never created, or evicted)."""

    def __init__(
        self,
        message: str = "Ranking not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidFeedbackError(HNRankError):
    """Raised when submitted feedback fails vote or position validation."""

    def __init__(
        self,
        message: str = "Invalid feedback",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
