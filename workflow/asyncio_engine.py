"""
asyncio-backed implementation of WorkflowEngine.

This module is an internal implementation detail — application code should
never import from here. Use ``workflow.WorkflowEngine`` instead; the
application context constructs the engine.
"""

import asyncio
import inspect
import itertools
import logging
from typing import Any, Callable, Optional

from workflow.engine import WorkflowEngine, WorkflowHandle, WorkflowStatus

logger = logging.getLogger(__name__)


class AsyncioEngine(WorkflowEngine):
    """WorkflowEngine backed by tasks on the running event loop.

    Must be used from inside a running loop (dispatch/schedule create tasks).
    """

    def __init__(self, *, name: str = "p2p"):
        self.name = name
        self._ids = itertools.count(1)
        self._tasks: dict[str, asyncio.Task] = {}
        self._status: dict[str, WorkflowStatus] = {}
        self._results: dict[str, Any] = {}
        self._closed = False

    # ── Running workflows ────────────────────────────────────────────

    def dispatch(self, name: str, fn: Callable, *args: Any, **kwargs: Any) -> WorkflowHandle:
        return self._start(name, 0.0, fn, args, kwargs)

    def schedule(self, delay: float, name: str, fn: Callable, *args: Any, **kwargs: Any) -> WorkflowHandle:
        return self._start(name, delay, fn, args, kwargs)

    def _start(self, name, delay, fn, args, kwargs) -> WorkflowHandle:
        if self._closed:
            raise RuntimeError(f"Engine '{self.name}' is shut down")
        workflow_id = f"{self.name}-{next(self._ids)}"
        self._status[workflow_id] = WorkflowStatus.PENDING
        task = asyncio.get_running_loop().create_task(
            self._run(workflow_id, name, delay, fn, args, kwargs),
            name=f"{workflow_id}:{name}",
        )
        self._tasks[workflow_id] = task
        task.add_done_callback(lambda t, wid=workflow_id: self._finished(wid, t))
        return WorkflowHandle(workflow_id=workflow_id, name=name, _engine=self)

    def _finished(self, workflow_id, task):
        self._tasks.pop(workflow_id, None)
        if task.cancelled():
            self._status[workflow_id] = WorkflowStatus.CANCELLED

    async def _run(self, workflow_id, name, delay, fn, args, kwargs):
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            self._status[workflow_id] = WorkflowStatus.RUNNING
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            self._status[workflow_id] = WorkflowStatus.CANCELLED
            raise
        except Exception:
            self._status[workflow_id] = WorkflowStatus.ERROR
            logger.exception("Background workflow '%s' (%s) failed", name, workflow_id)
            return None
        self._status[workflow_id] = WorkflowStatus.SUCCESS
        self._results[workflow_id] = result
        return result

    # ── Workflow management ──────────────────────────────────────────

    def get_workflow_status(self, workflow_id: str) -> WorkflowStatus:
        if workflow_id not in self._status:
            raise ValueError(f"No workflow found with id {workflow_id}")
        return self._status[workflow_id]

    async def wait(self, workflow_id: str) -> Any:
        task = self._tasks.get(workflow_id)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._results.get(workflow_id)

    def cancel(self, workflow_id: str) -> None:
        task = self._tasks.get(workflow_id)
        if task is not None and not task.done():
            task.cancel()

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def drain(self, timeout: Optional[float] = None) -> None:
        # Workflows may dispatch further workflows; loop until quiet.
        while True:
            tasks = [t for t in self._tasks.values() if not t.done()]
            if not tasks:
                return
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                raise TimeoutError(f"{len(pending)} workflows still running after {timeout}s")

    async def shutdown(self) -> None:
        self._closed = True
        tasks = [t for t in self._tasks.values() if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
