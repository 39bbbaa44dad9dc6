"""Background jobs (started once per engine)."""
from __future__ import annotations

import asyncio
import logging
import time

from . import config
from .engine import AlertEngine

logger = logging.getLogger(__name__)

_TASK_HISTORY_CLEANUP = "history_cleanup"


def ensure_started(
    engine: AlertEngine,
    interval_s: float | None = None,
    retention_days: int | None = None,
) -> asyncio.Task:
    task = engine.tasks.get(_TASK_HISTORY_CLEANUP)
    if isinstance(task, asyncio.Task) and not task.done():
        return task
    task = asyncio.create_task(
        _history_cleanup_loop(
            engine,
            config.CLEANUP_INTERVAL_S if interval_s is None else interval_s,
            retention_days,
        )
    )
    engine.tasks[_TASK_HISTORY_CLEANUP] = task
    return task


async def stop(engine: AlertEngine) -> None:
    task = engine.tasks.pop(_TASK_HISTORY_CLEANUP, None)
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def _history_cleanup_loop(
    engine: AlertEngine, interval_s: float, retention_days: int | None
) -> None:
    logger.info("Starting alert history cleanup loop (interval=%ss)", interval_s)
    while True:
        try:
            start = time.monotonic()
            await engine.cleanup(retention_days)
            elapsed = time.monotonic() - start
            await asyncio.sleep(max(0.0, interval_s - elapsed))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Alert history cleanup loop error")
            await asyncio.sleep(interval_s)
