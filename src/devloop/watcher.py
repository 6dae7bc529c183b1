"""File-system watcher with per-rule debounced re-runs."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from devloop.errors import WatchError
from devloop.globs import expand_braces, glob_base, is_recursive, matches
from devloop.tasks import RunResult, TaskGraph, TaskPlan

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.2

_TRACKED_EVENT_TYPES = frozenset({"created", "modified", "deleted", "moved"})


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A single file-system change."""

    path: Path
    kind: str


@dataclass(frozen=True, slots=True)
class WatchRule:
    """Glob pattern bound to the plan re-run when a matching file changes."""

    pattern: str
    task: TaskPlan


ResultCallback = Callable[[WatchRule, RunResult], None]


class ObserverLike(Protocol):
    """Subset of the watchdog observer API used by the watcher."""

    def schedule(self, event_handler: FileSystemEventHandler, path: str, *, recursive: bool): ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def join(self, timeout: float | None = None) -> None: ...

    def is_alive(self) -> bool: ...


class RuleTrigger:
    """Debounce and coalescing state owned by one watch rule.

    Every event re-arms the debounce timer. Once the run starts, events
    arriving while it executes collapse into a single follow-up run that
    starts as soon as the current one finishes.
    """

    def __init__(
        self,
        rule: WatchRule,
        *,
        graph: TaskGraph,
        debounce_seconds: float,
        on_result: ResultCallback,
    ) -> None:
        self.rule = rule
        self.graph = graph
        self.debounce_seconds = debounce_seconds
        self._on_result = on_result
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._running = False
        self._rerun_requested = False
        self._closed = False
        self._idle = threading.Event()
        self._idle.set()

    def notify(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._running:
                self._rerun_requested = True
                return
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(
                self.debounce_seconds,
                self._fire,
                args=(self._generation,),
            )
            self._timer.daemon = True
            self._timer.name = f"devloop-watch-{self.rule.pattern}"
            self._idle.clear()
            self._timer.start()

    def close(self) -> None:
        """Drop any pending run; an in-flight run is left to finish."""

        with self._lock:
            self._closed = True
            self._rerun_requested = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._running:
                self._idle.set()

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    def _fire(self, generation: int) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
            self._timer = None
            self._running = True

        while True:
            self._execute()
            with self._lock:
                if self._rerun_requested and not self._closed:
                    self._rerun_requested = False
                    continue
                self._running = False
                self._rerun_requested = False
                if self._timer is None:
                    self._idle.set()
                return

    def _execute(self) -> None:
        result = self.graph.run(self.rule.task)
        try:
            self._on_result(self.rule, result)
        except Exception:
            logger.exception("Watch result callback failed for %s", self.rule.pattern)


class _DispatchHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _TRACKED_EVENT_TYPES:
            return
        raw_path = event.dest_path if event.event_type == "moved" else event.src_path
        self._watcher.handle_event(
            ChangeEvent(path=Path(os.fsdecode(raw_path)), kind=event.event_type),
        )


class Watcher:
    """Watches glob rules and re-runs their plans on change."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        root: Path,
        graph: TaskGraph | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_result: ResultCallback | None = None,
        observer_factory: Callable[[], ObserverLike] = Observer,
        liveness_poll_seconds: float = 0.5,
    ) -> None:
        self.root = root
        self.graph = graph or TaskGraph()
        self.debounce_seconds = debounce_seconds
        self._on_result = on_result
        self._observer_factory = observer_factory
        self._liveness_poll_seconds = liveness_poll_seconds
        self._observer: ObserverLike | None = None
        self._triggers: list[RuleTrigger] = []

    @property
    def triggers(self) -> list[RuleTrigger]:
        return list(self._triggers)

    def watch(self, rules: list[WatchRule], stop_event: threading.Event) -> None:
        """Watch until ``stop_event`` is set; raises ``WatchError`` if observing fails."""

        self.start(rules)
        try:
            while not stop_event.wait(self._liveness_poll_seconds):
                if self._observer is not None and not self._observer.is_alive():
                    raise WatchError("File-system observer stopped unexpectedly.")
        finally:
            self.stop()

    def start(self, rules: list[WatchRule]) -> None:
        if self._observer is not None:
            raise RuntimeError("Watcher is already started.")

        self._triggers = [
            RuleTrigger(
                rule,
                graph=self.graph,
                debounce_seconds=self.debounce_seconds,
                on_result=self._report,
            )
            for rule in rules
        ]
        observer = self._observer_factory()
        handler = _DispatchHandler(self)
        try:
            for directory, recursive in _watch_roots(rules, self.root).items():
                if not directory.is_dir():
                    raise WatchError(f"Cannot watch {directory}: directory does not exist.")
                observer.schedule(handler, str(directory), recursive=recursive)
                logger.debug("Watching %s (recursive=%s)", directory, recursive)
            observer.start()
        except OSError as error:
            raise WatchError(f"Cannot subscribe to file-system events: {error}") from error
        self._observer = observer
        logger.info(
            "Watching %s",
            ", ".join(rule.pattern for rule in rules) or "nothing",
        )

    def handle_event(self, event: ChangeEvent) -> int:
        """Route one change event to every rule it matches."""

        triggered = 0
        for trigger in self._triggers:
            if matches(trigger.rule.pattern, event.path, self.root):
                logger.debug("%s %s -> %s", event.kind, event.path, trigger.rule.pattern)
                trigger.notify()
                triggered += 1
        return triggered

    def stop(self, timeout: float | None = None) -> None:
        """Stop observing and wait for in-flight runs to finish."""

        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout)
        for trigger in self._triggers:
            trigger.close()
        for trigger in self._triggers:
            trigger.wait_idle(timeout)

    def _report(self, rule: WatchRule, result: RunResult) -> None:
        if result.ok:
            logger.info("Rebuilt %s", rule.pattern)
        else:
            logger.error(
                "%s failed: %s; still watching for changes",
                result.location,
                result.reason,
            )
        if self._on_result is not None:
            self._on_result(rule, result)


def _watch_roots(rules: list[WatchRule], root: Path) -> dict[Path, bool]:
    roots: dict[Path, bool] = {}
    for rule in rules:
        for pattern in expand_braces(rule.pattern):
            directory = root / glob_base(pattern)
            roots[directory] = roots.get(directory, False) or is_recursive(pattern)
    return roots
