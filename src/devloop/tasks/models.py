"""Task and plan composition models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True, slots=True)
class Task:
    """Named unit of work: succeeds by returning, fails by raising."""

    name: str
    action: Callable[[], object] = field(compare=False)


@dataclass(frozen=True, slots=True)
class Sequence:
    """Steps run in listed order; the first failure stops the sequence."""

    name: str
    steps: tuple[TaskPlan, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))


@dataclass(frozen=True, slots=True)
class Parallel:
    """Steps run concurrently; completes when every step has finished.

    ``max_workers`` caps how many steps run at once; ``None`` runs them all.
    """

    name: str
    steps: tuple[TaskPlan, ...]
    max_workers: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))


@dataclass(frozen=True, slots=True)
class Deferred:
    """Plan node resolved at run time, e.g. a glob expanded into per-file tasks."""

    name: str
    factory: Callable[[], TaskPlan] = field(compare=False)


TaskPlan = Union[Task, Sequence, Parallel, Deferred]


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of running a task or plan."""

    ok: bool
    task_name: str | None = None
    error: BaseException | None = field(default=None, compare=False)
    path: tuple[str, ...] = ()

    @classmethod
    def success(cls) -> RunResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, *, task_name: str, error: BaseException) -> RunResult:
        return cls(ok=False, task_name=task_name, error=error, path=(task_name,))

    def within(self, plan_name: str) -> RunResult:
        """Prefix the failure path with an enclosing plan name."""

        if self.ok:
            return self
        return RunResult(
            ok=False,
            task_name=self.task_name,
            error=self.error,
            path=(plan_name, *self.path),
        )

    @property
    def reason(self) -> str:
        if self.error is None:
            return ""
        message = str(self.error).strip()
        return message or type(self.error).__name__

    @property
    def location(self) -> str:
        """Human-readable path from the root plan to the failing task."""

        return " > ".join(self.path) if self.path else (self.task_name or "")
