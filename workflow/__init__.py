"""
Background work — fire-and-forget side-effects and cancellable timers.

Users import only WorkflowEngine, WorkflowHandle, and WorkflowStatus.
The concrete backend (asyncio) is an implementation detail.
"""

from workflow.engine import WorkflowEngine, WorkflowHandle, WorkflowStatus

__all__ = ["WorkflowEngine", "WorkflowHandle", "WorkflowStatus"]
