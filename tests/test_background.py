import asyncio

import pytest

from agro_alerts import background


@pytest.mark.asyncio
async def test_cleanup_loop_purges_and_is_started_once(harness) -> None:
    calls: list[int | None] = []

    async def fake_cleanup(retention_days=None):
        calls.append(retention_days)
        return 0

    harness.engine.cleanup = fake_cleanup

    task = background.ensure_started(harness.engine, interval_s=0.01, retention_days=7)
    assert background.ensure_started(harness.engine) is task

    await asyncio.sleep(0.05)
    await background.stop(harness.engine)

    assert task.done()
    assert calls and all(days == 7 for days in calls)
    assert harness.engine.tasks == {}


@pytest.mark.asyncio
async def test_cleanup_loop_survives_errors(harness) -> None:
    attempts = 0

    async def flaky_cleanup(retention_days=None):
        nonlocal attempts
        attempts += 1
        raise RuntimeError("history offline")

    harness.engine.cleanup = flaky_cleanup
    background.ensure_started(harness.engine, interval_s=0.01)
    await asyncio.sleep(0.05)
    await background.stop(harness.engine)
    assert attempts >= 2
