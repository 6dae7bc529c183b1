"""Plan executor with fail-fast sequences and fail-complete parallels."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

from devloop.tasks.models import Deferred, Parallel, RunResult, Sequence, Task, TaskPlan

logger = logging.getLogger(__name__)


class TaskGraph:
    """Runs task plans.

    Sequences stop at the first failure; later steps never start. Parallels
    always wait for every started step and then report the first failure in
    completion order. Nothing is rolled back: build artifacts written by
    completed steps stay on disk.
    """

    def run(self, plan: TaskPlan) -> RunResult:
        if isinstance(plan, Task):
            return self._run_task(plan)
        if isinstance(plan, Sequence):
            return self._run_sequence(plan)
        if isinstance(plan, Parallel):
            return self._run_parallel(plan)
        if isinstance(plan, Deferred):
            return self._run_deferred(plan)
        raise TypeError(f"Unsupported plan node: {plan!r}")

    def _run_task(self, task: Task) -> RunResult:
        logger.debug("Task %s started", task.name)
        started = time.monotonic()
        try:
            task.action()
        except Exception as error:  # noqa: BLE001
            logger.warning("Task %s raised %s: %s", task.name, type(error).__name__, error)
            return RunResult.failure(task_name=task.name, error=error)
        logger.debug("Task %s finished in %.3fs", task.name, time.monotonic() - started)
        return RunResult.success()

    def _run_sequence(self, plan: Sequence) -> RunResult:
        for step in plan.steps:
            result = self.run(step)
            if not result.ok:
                return result.within(plan.name)
        return RunResult.success()

    def _run_parallel(self, plan: Parallel) -> RunResult:
        if not plan.steps:
            return RunResult.success()
        if len(plan.steps) == 1:
            return self.run(plan.steps[0]).within(plan.name)

        first_failure: RunResult | None = None
        workers = len(plan.steps)
        if plan.max_workers is not None:
            workers = max(1, min(workers, plan.max_workers))
        # One pool per Parallel so nested parallels never wait on a shared pool.
        with ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix=f"devloop-{plan.name}",
        ) as pool:
            futures = [pool.submit(self.run, step) for step in plan.steps]
            for future in as_completed(futures):
                result = future.result()
                if not result.ok and first_failure is None:
                    first_failure = result
        if first_failure is not None:
            return first_failure.within(plan.name)
        return RunResult.success()

    def _run_deferred(self, plan: Deferred) -> RunResult:
        try:
            resolved = plan.factory()
        except Exception as error:  # noqa: BLE001
            logger.warning("Plan %s could not be resolved: %s", plan.name, error)
            return RunResult.failure(task_name=plan.name, error=error)
        result = self.run(resolved)
        if getattr(resolved, "name", None) == plan.name:
            return result
        return result.within(plan.name)
