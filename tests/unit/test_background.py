"""Unit tests for DetachedTaskRunner."""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from scraping_service.core.background import DetachedTaskRunner


def _failures(operation: str) -> float:
    return REGISTRY.get_sample_value(
        "telemetry_failures_total", {"operation": operation}
    ) or 0.0


@pytest.mark.asyncio
class TestDetachedTaskRunner:
    async def test_spawn_returns_before_the_coroutine_finishes(self) -> None:
        runner = DetachedTaskRunner()
        release = asyncio.Event()
        finished: list[str] = []

        async def _slow() -> None:
            await release.wait()
            finished.append("done")

        runner.spawn(_slow(), name="run_complete")
        assert runner.pending_count == 1
        assert finished == []

        release.set()
        await runner.drain(timeout=1)
        assert finished == ["done"]
        assert runner.pending_count == 0

    async def test_failure_is_swallowed_and_counted(self) -> None:
        runner = DetachedTaskRunner()
        before = _failures("cost_report")

        async def _boom() -> None:
            raise RuntimeError("runs service down")

        task = runner.spawn(_boom(), name="cost_report")
        await runner.drain(timeout=1)

        assert task.done()
        assert task.exception() is None
        assert _failures("cost_report") == before + 1

    async def test_drain_with_nothing_pending(self) -> None:
        await DetachedTaskRunner().drain(timeout=0.1)

    async def test_drain_timeout_leaves_task_running(self) -> None:
        runner = DetachedTaskRunner()
        release = asyncio.Event()
        task = runner.spawn(release.wait(), name="run_fail")

        await runner.drain(timeout=0.01)
        assert not task.done()

        release.set()
        await runner.drain(timeout=1)
        assert task.done()
