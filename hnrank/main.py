"""hnrank composition root and command-line entry point.

Builds every component as an explicit instance (store, provider, metrics,
scheduler, service) from Settings and the layered YAML config, and wires
them together.  Nothing here is a module-level singleton: tests and
embedders call :func:`build_components` and own the result.

Commands::

    python -m hnrank run [--interval SECONDS]
        Start the rescore scheduler and keep it running until SIGINT/SIGTERM.

    python -m hnrank score RESULT.json [RESULT.json ...]
        Load scrape-result files, run one rescore cycle, print the report.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import structlog

from hnrank.config.loader import load_config
from hnrank.config.settings import Settings
from hnrank.interfaces.score_provider import IScoreProvider
from hnrank.pipeline.rescore_scheduler import RescoreScheduler
from hnrank.providers.score.heuristic_provider import HeuristicScoreProvider
from hnrank.providers.score.openai_provider import OpenAIScoreProvider
from hnrank.services.ranking_service import RankingService
from hnrank.services.ranking_store import RankingStore
from hnrank.utils.errors import ConfigurationError, HNRankError
from hnrank.utils.logging import configure_logging, get_logger
from hnrank.utils.metrics import MetricsRecorder

_logger: structlog.BoundLogger = get_logger(__name__)


@dataclass
class Components:
    """Everything the process owns, built once at startup."""

    settings: Settings
    store: RankingStore
    provider: IScoreProvider
    metrics: MetricsRecorder
    scheduler: RescoreScheduler
    service: RankingService


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def build_score_provider(app_settings: Settings, provider_config: dict[str, Any]) -> IScoreProvider:
    """Construct the score provider named by ``provider.name``."""
    name = str(provider_config.get("name", "openai")).lower()
    if name == "heuristic":
        heuristic = provider_config.get("heuristic", {})
        return HeuristicScoreProvider(latency_seconds=float(heuristic.get("latency_seconds", 0.0)))
    if name == "openai":
        openai_config = provider_config.get("openai", {})
        effective = app_settings.model_copy(update={
            "openai_model": openai_config.get("model", app_settings.openai_model),
            "openai_base_url": openai_config.get("base_url", app_settings.openai_base_url),
            "openai_timeout_seconds": float(
                openai_config.get("timeout_seconds", app_settings.openai_timeout_seconds)
            ),
            "openai_max_retries": int(openai_config.get("max_retries", app_settings.openai_max_retries)),
            "openai_retry_delay_seconds": float(
                openai_config.get("retry_delay_seconds", app_settings.openai_retry_delay_seconds)
            ),
        })
        provider = OpenAIScoreProvider(settings=effective)
        if not provider.is_available():
            _logger.warning("openai_not_configured", hint="set OPENAI_API_KEY or provider.name=heuristic")
        return provider
    raise ConfigurationError(f"Unknown score provider {name!r} (expected 'openai' or 'heuristic')")


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
) -> Components:
    """Construct and wire every component of the application."""
    app_settings = app_settings or Settings()
    config = config if config is not None else load_config(settings=app_settings)

    store_config = config.get("store", {})
    scheduler_config = config.get("scheduler", {})

    metrics = MetricsRecorder()
    store = RankingStore(capacity=int(store_config.get("capacity", app_settings.ranking_history_limit)))
    provider = build_score_provider(app_settings, config.get("provider", {}))
    scheduler = RescoreScheduler(
        store=store,
        provider=provider,
        interval_seconds=float(scheduler_config.get("interval_seconds", app_settings.rescore_interval_seconds)),
        max_concurrent_jobs=int(
            scheduler_config.get("max_concurrent_jobs", app_settings.rescore_max_concurrent_jobs)
        ),
        freshness_threshold=timedelta(
            seconds=float(scheduler_config.get("freshness_seconds", app_settings.insight_freshness_seconds))
        ),
        run_on_start=bool(scheduler_config.get("run_on_start", app_settings.rescore_run_on_start)),
        metrics=metrics,
    )
    service = RankingService(store=store, provider=provider, scheduler=scheduler, metrics=metrics)

    return Components(
        settings=app_settings,
        store=store,
        provider=provider,
        metrics=metrics,
        scheduler=scheduler,
        service=service,
    )


@asynccontextmanager
async def lifespan(components: Components) -> AsyncIterator[Components]:
    """Start the scheduler on entry; stop it and close the provider on exit.

    In-flight rescore jobs are not awaited on exit.
    """
    components.scheduler.start()
    _logger.info(
        "app_startup",
        provider=components.provider.get_provider_name(),
        provider_available=components.provider.is_available(),
        history_limit=components.store.capacity,
    )
    try:
        yield components
    finally:
        components.scheduler.stop()
        await components.provider.aclose()
        _logger.info("app_shutdown", in_flight_jobs=len(components.scheduler.active_job_ids))


# ---------------------------------------------------------------------------
# Scrape result files
# ---------------------------------------------------------------------------


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def load_scrape_result(path: Path) -> dict[str, Any]:
    """Read a scraper result file into ``record_scrape`` keyword arguments.

    Accepts the scraper's camelCase keys as well as snake_case.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a JSON object")
    return {
        "source_url": _first(data, "source_url", "sourceUrl", "url", default=str(path)),
        "articles": _first(data, "articles", default=[]),
        "pages_navigated": int(_first(data, "pages_navigated", "pagesNavigated", default=0)),
        "is_correctly_sorted": bool(_first(data, "is_correctly_sorted", "isCorrectlySorted", default=False)),
        "total_articles": _first(data, "total_articles", "totalArticles"),
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run(components: Components, interval: float | None) -> None:
    if interval is not None:
        components.scheduler.update_config(interval_seconds=interval)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    async with lifespan(components):
        await stop_event.wait()


async def _score(components: Components, paths: list[Path]) -> dict[str, Any]:
    for path in paths:
        components.service.record_scrape(score_immediately=False, **load_scrape_result(path))
    await components.scheduler.force_cycle()
    await components.provider.aclose()
    return components.service.report()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hnrank", description="Hacker News ranking rescoring")
    parser.add_argument("--config", default="config/config.yaml", help="YAML config path")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="run the rescore scheduler until interrupted")
    run_parser.add_argument("--interval", type=float, default=None, help="seconds between cycles")

    score_parser = sub.add_parser("score", help="load scrape results and run one cycle")
    score_parser.add_argument("files", nargs="+", type=Path, help="scrape result JSON files")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    try:
        components = build_components(app_settings, load_config(args.config, settings=app_settings))
        if args.command == "run":
            asyncio.run(_run(components, args.interval))
        else:
            report = asyncio.run(_score(components, args.files))
            print(json.dumps(report, indent=2, default=str))
    except (HNRankError, OSError, json.JSONDecodeError) as exc:
        _logger.error("command_failed", command=args.command, error=str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
