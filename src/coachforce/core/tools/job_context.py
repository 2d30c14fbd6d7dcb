"""
Per-job context passed by reference through one loop execution.

Holds read-mostly identifiers (user, job) plus a memo of named tool results
so later tools can consume the large output of earlier ones without the
model re-transmitting it. The context lives exactly as long as the job; it
is never shared across jobs.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()


class DetachedTasks:
    """
    Owner of best-effort side tasks that outlive the job that started them.

    One instance lives as long as the service (API app or CLI run). Jobs
    hand their side tasks to it and return without waiting; ``drain()``
    is for shutdown and tests.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self.logger = logger.bind(component="detached_tasks")

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.logger.warning("detached_task_cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            self.logger.warning(
                "detached_task_failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )
        else:
            self.logger.debug("detached_task_complete", task=task.get_name())

    async def drain(self) -> None:
        """Wait for every outstanding task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class JobContext:
    """
    Shared context and memo for a single job.

    Memo keys are written once in the common case. ``replace_tool_result``
    is the single documented overwrite path (used after pruning) and must
    only be called from one writer at a time.
    """

    def __init__(
        self,
        job_id: str,
        user_id: str | None = None,
        detached: DetachedTasks | None = None,
        **values: Any,
    ):
        self.job_id = job_id
        self.user_id = user_id
        self.values: dict[str, Any] = dict(values)
        self.detached = detached if detached is not None else DetachedTasks()
        self._memo: dict[str, Any] = {}
        self.logger = logger.bind(component="job_context", job_id=job_id)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def get_tool_result(self, key: str) -> Any:
        return self._memo.get(key)

    def set_tool_result(self, key: str, value: Any) -> None:
        if key in self._memo:
            self.logger.warning("memo_key_overwritten", key=key)
        self._memo[key] = value
        self.logger.debug("memo_stored", key=key)

    def replace_tool_result(self, key: str, value: Any) -> None:
        """Overwrite an existing memo entry (pruning updates)."""
        previous = key in self._memo
        self._memo[key] = value
        self.logger.info("memo_replaced", key=key, existed=previous)

    def has_tool_result(self, key: str) -> bool:
        return key in self._memo

    def clear_tool_results(self) -> None:
        self._memo.clear()

    def spawn_detached(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """
        Run a best-effort side task whose failure is only logged.

        The primary operation never awaits or depends on the task.
        """
        return self.detached.spawn(coro, name=f"{self.job_id}:{name}")

    async def drain(self) -> None:
        """Wait for outstanding detached tasks (shutdown and tests)."""
        await self.detached.drain()
