"""Shared asyncio helpers for rescoring.

Two patterns are exposed:

1. **gather_settled** -- "wait for all, ignore individual rejections".
   Every awaitable runs to completion; failures come back as exception
   objects in the result list and are logged, never raised.  An optional
   semaphore bounds how many run at once.

2. **BackgroundTasks** -- a small registry for fire-and-forget tasks.
   asyncio keeps only weak references to tasks, so a detached task must
   be held somewhere until it finishes.  The registry holds it, logs an
   unhandled failure when the task completes, and can await everything
   still outstanding on shutdown.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Coroutine, TypeVar

import structlog

from hnrank.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def gather_settled(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    logger: structlog.BoundLogger | None = None,
    error_msg: str = "awaitable_failed",
) -> list[_T | BaseException]:
    """Run awaitables concurrently and wait until every one has settled.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore bounding how many awaitables run at once.
    logger:
        Structured logger used for failures.  Defaults to this module's.
    error_msg:
        Event name logged for each failed awaitable.

    Returns
    -------
    list[_T | BaseException]
        Results in input order; failures are returned as exception objects.
    """
    if logger is None:
        logger = _logger

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        if semaphore is None:
            return await coro
        async with semaphore:
            return await coro

    results = await asyncio.gather(
        *(_wrapped(c) for c in coros),
        return_exceptions=True,
    )

    for idx, result in enumerate(results):
        if isinstance(result, asyncio.CancelledError):
            continue
        if isinstance(result, BaseException):
            logger.warning(error_msg, index=idx, error=str(result))

    return results


class BackgroundTasks:
    """Holds detached tasks until they finish.

    Parameters
    ----------
    name:
        Label included in log lines for tasks spawned through this registry.
    """

    def __init__(self, name: str = "background") -> None:
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    def spawn(self, coro: Coroutine[Any, Any, _T], label: str = "") -> asyncio.Task[_T]:
        """Schedule *coro* on the running loop and keep a reference to it."""
        task = asyncio.create_task(coro, name=f"{self._name}:{label}" if label else None)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "background_task_failed",
                registry=self._name,
                task=task.get_name(),
                error=str(exc),
            )

    def __len__(self) -> int:
        return len(self._tasks)

    async def wait(self) -> None:
        """Await every task that is still outstanding (including ones spawned meanwhile)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
