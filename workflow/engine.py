"""
WorkflowEngine ABC — background work that must never block a primary step.

Two things run in the background of a trade view:
- secondary side-effects (notification email, balance refresh), dispatched
  fire-and-forget; their failure is logged, never re-raised
- delayed actions (redirects), scheduled and cancellable on teardown

Concrete implementations live in separate modules and are never imported
directly by application code.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class WorkflowStatus(str, Enum):
    """Possible states of a background workflow."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


@dataclass
class WorkflowHandle:
    """Opaque handle to a dispatched or scheduled workflow.

    Backends populate this; callers read workflow_id, status, wait(), cancel().
    """
    workflow_id: str
    name: str
    _engine: "WorkflowEngine" = field(repr=False)

    @property
    def status(self) -> WorkflowStatus:
        return self._engine.get_workflow_status(self.workflow_id)

    async def wait(self) -> Any:
        """Wait for the workflow to finish. Returns its result, or None if it
        failed or was cancelled (secondary work never raises into callers)."""
        return await self._engine.wait(self.workflow_id)

    def cancel(self) -> None:
        self._engine.cancel(self.workflow_id)


class WorkflowEngine(ABC):
    """Backend-swappable background execution.

    Implementations must override every abstract method. Application code
    should only depend on this interface.
    """

    @abstractmethod
    def dispatch(self, name: str, fn: Callable, *args: Any, **kwargs: Any) -> WorkflowHandle:
        """Start coroutine function *fn* in the background and return at once.

        Exceptions raised by *fn* are logged and recorded on the handle as
        ERROR; they never propagate to the caller of dispatch().
        """

    @abstractmethod
    def schedule(self, delay: float, name: str, fn: Callable, *args: Any, **kwargs: Any) -> WorkflowHandle:
        """Run *fn* (plain or coroutine function) after *delay* seconds."""

    @abstractmethod
    def get_workflow_status(self, workflow_id: str) -> WorkflowStatus:
        """Return the current status of a workflow."""

    @abstractmethod
    async def wait(self, workflow_id: str) -> Any:
        """Wait for a workflow to finish and return its result (None on failure)."""

    @abstractmethod
    def cancel(self, workflow_id: str) -> None:
        """Cancel a pending or running workflow. No-op if it already finished."""

    @abstractmethod
    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every outstanding workflow (scheduled ones included)."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Cancel everything outstanding and refuse new work."""
