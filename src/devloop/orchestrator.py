"""Entry points wiring the task graph, static server and watcher together."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from watchdog.observers import Observer

from devloop.compilers import CliCompiler, Compiler, Copier, copy_file, write_artifact
from devloop.config import Settings
from devloop.errors import WatchError
from devloop.globs import destination, iter_matches
from devloop.server import ServerConfig, ServerHandle, serve
from devloop.tasks import Deferred, Parallel, RunResult, Sequence, Task, TaskGraph, TaskPlan
from devloop.watcher import ObserverLike, Watcher, WatchRule

logger = logging.getLogger(__name__)

BUILD_PLAN_NAME = "build"
COMPILE_STEP_NAME = "compile"
COPY_STEP_NAME = "copy"


class EntryPoint(str, Enum):
    """Commands exposed on the CLI."""

    BUILD = "build"
    DEFAULT = "default"
    SERVE = "serve"
    WATCH = "watch"


class Orchestrator:
    """Builds, serves and watches one project.

    Everything is derived from the ``Settings`` passed in; there is no task
    registry. ``build`` runs compile then copy once. ``default_run`` serves
    the output directory, builds once and watches for changes until the stop
    event is set.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        compiler: Compiler | None = None,
        copier: Copier = copy_file,
        graph: TaskGraph | None = None,
        observer_factory: Callable[[], ObserverLike] = Observer,
    ) -> None:
        self.settings = settings
        self.root = settings.project_root.resolve()
        self.output_dir = settings.output_path.resolve()
        self.compiler = compiler or CliCompiler.from_settings(settings.compiler, cwd=self.root)
        self.copier = copier
        self.graph = graph or TaskGraph()
        self.watcher = Watcher(
            root=self.root,
            graph=self.graph,
            debounce_seconds=settings.watch.debounce_ms / 1000,
            on_result=self._on_watch_result,
            observer_factory=observer_factory,
        )
        self._unresolved: dict[str, RunResult] = {}
        self._lock = threading.Lock()

    # -- plans -----------------------------------------------------------------

    def compile_step(self) -> Deferred:
        return Deferred(COMPILE_STEP_NAME, self._compile_plan)

    def copy_step(self) -> Deferred:
        return Deferred(COPY_STEP_NAME, self._copy_plan)

    def build_plan(self) -> Sequence:
        return Sequence(BUILD_PLAN_NAME, [self.compile_step(), self.copy_step()])

    def watch_rules(self) -> list[WatchRule]:
        return [
            WatchRule(pattern=self.settings.source_glob, task=self.compile_step()),
            WatchRule(pattern=self.settings.static_glob, task=self.copy_step()),
        ]

    def _compile_plan(self) -> TaskPlan:
        pattern = self.settings.source_glob
        sources = iter_matches(pattern, self.root)
        if not sources:
            logger.warning("No sources match %s", pattern)
        return Parallel(
            COMPILE_STEP_NAME,
            [self._compile_task(source, pattern) for source in sources],
            max_workers=self.settings.compiler.jobs,
        )

    def _compile_task(self, source: Path, pattern: str) -> Task:
        dest = destination(
            source,
            pattern=pattern,
            root=self.root,
            output_dir=self.output_dir,
            suffix=self.settings.compiler.output_suffix,
        )

        def _run() -> None:
            write_artifact(dest, self.compiler.compile(source))

        return Task(self._display_name(source), _run)

    def _copy_plan(self) -> TaskPlan:
        pattern = self.settings.static_glob
        return Parallel(
            COPY_STEP_NAME,
            [self._copy_task(source, pattern) for source in iter_matches(pattern, self.root)],
        )

    def _copy_task(self, source: Path, pattern: str) -> Task:
        dest = destination(source, pattern=pattern, root=self.root, output_dir=self.output_dir)
        return Task(self._display_name(source), lambda: self.copier(source, dest))

    def _display_name(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    # -- entry points ----------------------------------------------------------

    def build(self) -> RunResult:
        """Run compile then copy once; failures are returned for the caller to report."""

        result = self.graph.run(self.build_plan())
        self._record(BUILD_PLAN_NAME if result.ok else _failed_build_step(result), result)
        return result

    def default_run(self, stop_event: threading.Event) -> int:
        """Serve, build once and watch until ``stop_event`` is set.

        The server is bound before anything else starts, so a port conflict
        raises ``BindError`` with nothing left running. A ``WatchError`` stops
        the server and is re-raised.
        """

        handle = self._start_server()
        plan = Parallel(
            EntryPoint.DEFAULT.value,
            [
                Task("serve", lambda: self._hold_server(handle, stop_event)),
                Task(BUILD_PLAN_NAME, self._build_activity),
                Task("watch", lambda: self._watch_activity(stop_event)),
            ],
        )
        try:
            result = self.graph.run(plan)
        finally:
            stop_event.set()
            handle.stop()
        if not result.ok and isinstance(result.error, WatchError):
            raise result.error
        if not result.ok:
            logger.error("%s failed: %s", result.location, result.reason)
            return 1
        return self.exit_code()

    def serve_forever(self, stop_event: threading.Event) -> int:
        """Serve the output directory until ``stop_event`` is set."""

        handle = self._start_server()
        try:
            stop_event.wait()
        finally:
            handle.stop()
        return 0

    def watch_forever(self, stop_event: threading.Event) -> int:
        """Watch and rebuild changed steps until ``stop_event`` is set."""

        self.watcher.watch(self.watch_rules(), stop_event)
        return self.exit_code()

    def exit_code(self) -> int:
        """``0`` when no step failure is left unresolved, ``1`` otherwise."""

        with self._lock:
            return 1 if self._unresolved else 0

    # -- internals -------------------------------------------------------------

    def _start_server(self) -> ServerHandle:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        handle = serve(
            ServerConfig(
                root_directory=self.output_dir,
                port=self.settings.server.port,
                host=self.settings.server.host,
            ),
        )
        if not handle.check_liveness():
            logger.warning("Server at %s did not answer the liveness check", handle.url)
        return handle

    @staticmethod
    def _hold_server(handle: ServerHandle, stop_event: threading.Event) -> None:
        stop_event.wait()
        handle.stop()

    def _build_activity(self) -> None:
        # Build failures are tracked and do not stop serving.
        result = self.build()
        if result.ok:
            logger.info("Build finished: %s", self.output_dir)
        else:
            logger.error(
                "%s failed: %s; still watching for changes",
                result.location,
                result.reason,
            )

    def _watch_activity(self, stop_event: threading.Event) -> None:
        try:
            self.watcher.watch(self.watch_rules(), stop_event)
        except WatchError as error:
            logger.error("watcher failed: %s; exiting", error)
            stop_event.set()
            raise

    def _on_watch_result(self, rule: WatchRule, result: RunResult) -> None:
        self._record(rule.task.name, result)

    def _record(self, step: str, result: RunResult) -> None:
        with self._lock:
            if not result.ok:
                self._unresolved[step] = result
            elif step == BUILD_PLAN_NAME:
                self._unresolved.clear()
            else:
                self._unresolved.pop(step, None)


def _failed_build_step(result: RunResult) -> str:
    """``compile`` or ``copy`` for a failure path like ``build > compile > src/a.elm``."""

    path = result.path
    if len(path) > 1 and path[0] == BUILD_PLAN_NAME:
        return path[1]
    return BUILD_PLAN_NAME
