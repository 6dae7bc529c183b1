"""Task composition and execution."""

from devloop.tasks.graph import TaskGraph
from devloop.tasks.models import Deferred, Parallel, RunResult, Sequence, Task, TaskPlan

__all__ = [
    "Deferred",
    "Parallel",
    "RunResult",
    "Sequence",
    "Task",
    "TaskGraph",
    "TaskPlan",
]
