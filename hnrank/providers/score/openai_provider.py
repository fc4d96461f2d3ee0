"""OpenAI-compatible score provider adapter.

Wraps the ``openai`` async client to implement :class:`IScoreProvider`.
The snapshot's leading articles are rendered into a prompt, the model is
asked for a JSON assessment, and the reply is parsed into an Insight
payload.  When ``openai_base_url`` is set the client talks to that
endpoint instead (TogetherAI, Groq, a local gateway, ...).

Two analyses are supported:

    ranking_quality - first 20 articles; overall ranking score, issues,
                      suggestions, confidence
    security_focus  - first 30 articles; per-article security relevance
                      scores and a top-5 list

Transient API failures are retried here, with linear backoff, before a
ScoringError reaches the caller.  The SDK's own retries are disabled so
the attempt count in settings is the real one.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any
from uuid import uuid4

import openai
import structlog

from hnrank.config.settings import Settings
from hnrank.interfaces.score_provider import IScoreProvider
from hnrank.models.ranking import AnalysisType, ArticleRecord, Insight, RankingSnapshot
from hnrank.utils.errors import RateLimitError, ScoringError

logger = structlog.get_logger(logger_name=__name__)

_ARTICLE_LIMITS: dict[AnalysisType, int] = {
    AnalysisType.RANKING_QUALITY: 20,
    AnalysisType.SECURITY_FOCUS: 30,
}

_SYSTEM_PROMPT = (
    "You are an expert content analyst specializing in article ranking and "
    "quality assessment. Always respond with a single JSON object."
)

_JSON_BLOCK_RE = re.compile(r"\{.*\}", re.DOTALL)
_SCORE_RE = re.compile(r"(\d+)(?:/10|\s*out\s*of\s*10|\s*scale)", re.IGNORECASE)

_SECURITY_ARTICLE_FIELDS = (
    "technicalDepth",
    "securityRelevance",
    "practicalValue",
    "learningValue",
    "innovationLevel",
    "overallScore",
)


def _article_lines(articles: list[ArticleRecord]) -> str:
    return "\n".join(
        f"{index}. {article.title} ({article.time_text})"
        for index, article in enumerate(articles, start=1)
    )


def build_ranking_prompt(articles: list[ArticleRecord], source_url: str) -> str:
    """Prompt asking for an assessment of how well *articles* are ranked."""
    return (
        f"Analyze the following articles from {source_url} and assess the quality "
        f"of their ranking.\n\nArticles:\n{_article_lines(articles)}\n\n"
        "Provide:\n"
        "1. Overall assessment of ranking quality (1-10 scale)\n"
        "2. Any obvious ranking issues\n"
        "3. Suggestions for improvement\n"
        "4. Confidence level in the analysis (1-10 scale)\n\n"
        "Respond in JSON with keys: overallScore, issues, suggestions, "
        "confidenceLevel, summary."
    )


def build_security_prompt(articles: list[ArticleRecord], source_url: str) -> str:
    """Prompt asking for a security-practitioner view of *articles*."""
    return (
        "You are a security researcher reviewing articles for practical security "
        f"and hacking content. Analyze these articles from {source_url}:\n\n"
        f"Articles:\n{_article_lines(articles)}\n\n"
        "Rate each article from 1 to 10 on: technicalDepth, securityRelevance, "
        "practicalValue, learningValue, innovationLevel, and give an overallScore "
        "with a short reasoning.\n\n"
        "Respond in JSON with keys:\n"
        "- topArticles: the 5 strongest articles as objects "
        "{position, title, technicalDepth, securityRelevance, practicalValue, "
        "learningValue, innovationLevel, overallScore, reasoning}\n"
        "- securityInsights: overall trends and patterns\n"
        "- recommendedFocus: which articles security professionals should read first\n"
        "- riskLevel: how advanced the content is (1-10)"
    )


def extract_score(text: str) -> int:
    """Pull an "N/10"-style score out of free text, clamped to 1..10 (default 5)."""
    match = _SCORE_RE.search(text)
    if not match:
        return 5
    return max(1, min(10, int(match.group(1))))


def parse_ranking_response(content: str) -> dict[str, Any]:
    """Parse a ranking-quality reply into a payload dict.

    Non-JSON replies fall back to a summary with an extracted score;
    malformed JSON falls back to a low-confidence "manual review" payload.
    """
    match = _JSON_BLOCK_RE.search(content)
    if not match:
        return {
            "summary": content,
            "overallScore": extract_score(content),
            "confidenceLevel": 5,
            "issues": [],
            "suggestions": [],
        }
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("openai_response_unparseable", error=str(exc))
        return {
            "summary": content,
            "overallScore": 5,
            "confidenceLevel": 3,
            "issues": ["Failed to parse AI response"],
            "suggestions": ["Manual review recommended"],
        }


def parse_security_response(content: str) -> dict[str, Any]:
    """Parse a security-focus reply, normalising every ``topArticles`` entry."""
    match = _JSON_BLOCK_RE.search(content)
    if not match:
        return {
            "topArticles": [],
            "securityInsights": content,
            "recommendedFocus": "Manual review recommended",
            "riskLevel": 5,
            "summary": content,
        }
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("openai_response_unparseable", error=str(exc))
        return {
            "topArticles": [],
            "securityInsights": "Failed to parse AI response",
            "recommendedFocus": "Manual review recommended",
            "riskLevel": 5,
            "error": str(exc),
        }

    top = parsed.get("topArticles")
    if isinstance(top, list):
        parsed["topArticles"] = [
            {
                "position": item.get("position") or 0,
                "title": item.get("title") or "Unknown",
                **{field: item.get(field) or 0 for field in _SECURITY_ARTICLE_FIELDS},
                "reasoning": item.get("reasoning") or "No reasoning provided",
            }
            for item in top
            if isinstance(item, dict)
        ]
    return parsed


class OpenAIScoreProvider(IScoreProvider):
    """Score provider backed by an OpenAI-compatible chat completions API.

    Parameters
    ----------
    settings:
        Supplies the API key, model, timeout and retry policy.
    client:
        Pre-built async client; tests pass a mock here.
    """

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_model
        self._max_retries = settings.openai_max_retries
        self._retry_delay = settings.openai_retry_delay_seconds
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

        if client is None and self._api_key:
            client_kwargs: dict[str, Any] = {
                "api_key": self._api_key,
                "timeout": openai.Timeout(settings.openai_timeout_seconds, connect=5.0),
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

    # ------------------------------------------------------------------
    # IScoreProvider implementation
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key) and self._client is not None

    def get_provider_name(self) -> str:
        return self._provider_label

    async def request_scoring(
        self,
        snapshot: RankingSnapshot,
        analysis_type: AnalysisType = AnalysisType.RANKING_QUALITY,
    ) -> Insight:
        request_id = f"ai-{uuid4().hex}"
        log = logger.bind(ranking_id=snapshot.id, request_id=request_id, analysis=analysis_type.value)

        if not snapshot.articles:
            log.warning("openai_scoring_no_articles")
            return Insight(
                ranking_id=snapshot.id,
                request_id=request_id,
                success=False,
                error="No articles available for analysis",
                payload={"model": self._model},
                provider=self._provider_label,
                analysis_type=analysis_type,
            )

        if not self.is_available():
            raise ScoringError(
                message="OpenAI API key not configured",
                provider_name=self._provider_label,
            )

        articles = list(snapshot.articles[: _ARTICLE_LIMITS[analysis_type]])
        if analysis_type is AnalysisType.SECURITY_FOCUS:
            prompt = build_security_prompt(articles, snapshot.source_url)
        else:
            prompt = build_ranking_prompt(articles, snapshot.source_url)

        log.info("openai_scoring_started", articles=len(articles))
        content = await self._complete_with_retry(prompt, log)

        if analysis_type is AnalysisType.SECURITY_FOCUS:
            analysis = parse_security_response(content)
        else:
            analysis = parse_ranking_response(content)

        log.info("openai_scoring_completed")
        return Insight(
            ranking_id=snapshot.id,
            request_id=request_id,
            success=True,
            payload={
                "analysis": analysis,
                "articlesAnalyzed": len(articles),
                "model": self._model,
            },
            provider=self._provider_label,
            analysis_type=analysis_type,
        )

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.3,
            max_tokens=1000,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ScoringError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self._provider_label,
            )
        logger.debug(
            "openai_completion",
            model=self._model,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    async def _complete_with_retry(self, prompt: str, log: structlog.BoundLogger) -> str:
        last_exc: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._complete(prompt)
            except (openai.APIError, ScoringError) as exc:
                last_exc = exc
                log.warning("openai_scoring_attempt_failed", attempt=attempt, error=str(exc))
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_delay * attempt)

        if isinstance(last_exc, openai.RateLimitError):
            raise RateLimitError(
                message=f"{self._provider_label} rate limit exceeded after {self._max_retries} attempts",
                provider_name=self._provider_label,
            ) from last_exc
        raise ScoringError(
            message=f"{self._provider_label} scoring failed after {self._max_retries} attempts: {last_exc}",
            provider_name=self._provider_label,
        ) from last_exc
