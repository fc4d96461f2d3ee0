"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are read from (highest priority first):
#
#   1. Environment variables - e.g. OPENAI_API_KEY=sk-abc123
#   2. .env file in the working directory
#   3. The defaults below
#
# Field `rescore_interval_seconds` maps to env var RESCORE_INTERVAL_SECONDS.
# config/config.yaml can also provide defaults; see loader.py for how the
# two are layered.
# ──────────────────────────────────────────────────────────────────────
"""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """hnrank settings.  Environment variables override defaults."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Score provider ===
    # "openai" scores through the chat completions API and is unavailable
    # while no key is set; "heuristic" scores offline.
    score_provider: str = "openai"
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint override
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = Field(default=30.0, gt=0)
    openai_max_retries: int = Field(default=3, ge=1)
    openai_retry_delay_seconds: float = Field(default=1.0, ge=0)
    heuristic_latency_seconds: float = Field(default=0.0, ge=0)

    # === Ranking history ===
    ranking_history_limit: int = Field(default=20, ge=1)

    # === Rescore scheduler ===
    rescore_interval_seconds: float = Field(default=1800.0, gt=0)
    rescore_max_concurrent_jobs: int = Field(default=2, ge=1)
    insight_freshness_seconds: float = Field(default=7200.0, gt=0)
    rescore_run_on_start: bool = True

    # === App ===
    app_env: str = "development"
    log_level: str = "INFO"

    @property
    def insight_freshness(self) -> timedelta:
        return timedelta(seconds=self.insight_freshness_seconds)

    def is_openai_configured(self) -> bool:
        """Return True when an OpenAI API key is set."""
        return bool(self.openai_api_key)
