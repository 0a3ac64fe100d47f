"""Detached (fire-and-forget) task runner for best-effort side calls.

Run-close and cost-report calls to the runs service must never delay or
fail the response to the caller.  Route handlers therefore hand them to
:class:`DetachedTaskRunner`, which schedules them with
``asyncio.create_task()`` and returns immediately.

The runner:

- keeps a strong reference to each pending task (the event loop only holds
  weak references, so an unreferenced task can be garbage collected mid-run);
- logs and swallows any exception a task raises;
- can :meth:`~DetachedTaskRunner.drain` outstanding tasks, which the
  application lifespan calls on shutdown and tests call to observe effects.

Usage::

    tasks = DetachedTaskRunner()
    tasks.spawn(runs.update_run_status(run_id, "completed"), name="run_complete")
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from scraping_service.api.metrics import telemetry_failures_total

logger = structlog.get_logger(__name__)


class DetachedTaskRunner:
    """Spawns coroutines that the caller does not await.

    One instance is created per process in the application lifespan and
    shared by all requests.  Failures are reported through the log and the
    ``telemetry_failures_total`` counter, never to the spawning request.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def pending_count(self) -> int:
        """Number of spawned tasks that have not finished yet."""
        return len(self._pending)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Schedule *coro* on the running loop without awaiting it.

        Args:
            coro: The coroutine to run.
            name: Short operation name used in logs and metrics
                (e.g. ``"run_complete"``).

        Returns:
            The created task (callers normally ignore it).
        """
        task = asyncio.create_task(self._guard(coro, name), name=name)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for all currently pending tasks to finish.

        Args:
            timeout: Seconds to wait before giving up.  Tasks still running
                after the timeout are left alone and logged.
        """
        if not self._pending:
            return
        pending = list(self._pending)
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("detached_tasks_not_drained", remaining=len(not_done))

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except Exception as exc:  # noqa: BLE001
            telemetry_failures_total.labels(operation=name).inc()
            logger.warning(
                "detached_task_failed",
                operation=name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
