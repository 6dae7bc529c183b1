"""Controllers for devloop CLI commands."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from devloop.config import Settings
from devloop.errors import BindError, WatchError
from devloop.orchestrator import EntryPoint, Orchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoopCommand:
    """CLI input shared by every entry point; ``None`` keeps the env/default value."""

    project_root: Path | None = None
    output_dir: Path | None = None
    port: int | None = None
    source_glob: str | None = None
    static_glob: str | None = None
    debounce_ms: int | None = None
    optimize: bool | None = None
    jobs: int | None = None


@dataclass(slots=True)
class CommandOutcome:
    """Exit code plus lines for stdout and stderr."""

    exit_code: int = 0
    lines: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class DevloopCliController:
    """Resolves settings, runs one entry point and maps failures to exit codes."""

    def __init__(
        self,
        *,
        orchestrator_factory: Callable[[Settings], Orchestrator] | None = None,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory or (
            lambda settings: Orchestrator(settings=settings)
        )

    def run(
        self,
        entry_point: EntryPoint,
        command: LoopCommand,
        *,
        stop_event: threading.Event | None = None,
    ) -> CommandOutcome:
        try:
            settings = resolve_settings(command)
        except ValueError as error:
            return CommandOutcome(exit_code=1, errors=[f"config: {error}"])

        orchestrator = self._orchestrator_factory(settings)
        stop = stop_event or threading.Event()
        try:
            if entry_point is EntryPoint.BUILD:
                return self._build(orchestrator)
            with _signal_handlers(stop):
                if entry_point is EntryPoint.DEFAULT:
                    exit_code = orchestrator.default_run(stop)
                elif entry_point is EntryPoint.SERVE:
                    exit_code = orchestrator.serve_forever(stop)
                else:
                    exit_code = orchestrator.watch_forever(stop)
        except BindError as error:
            return CommandOutcome(exit_code=1, errors=[f"server: {error} Exiting."])
        except WatchError as error:
            return CommandOutcome(exit_code=1, errors=[f"watcher: {error} Exiting."])
        return CommandOutcome(
            exit_code=exit_code,
            errors=[] if exit_code == 0 else ["Stopped with unresolved build failures."],
        )

    def _build(self, orchestrator: Orchestrator) -> CommandOutcome:
        result = orchestrator.build()
        if result.ok:
            return CommandOutcome(lines=[f"Build finished: {orchestrator.output_dir}"])
        return CommandOutcome(
            exit_code=1,
            errors=[f"{result.location} failed: {result.reason}", "Build failed. Exiting."],
        )


def resolve_settings(command: LoopCommand) -> Settings:
    """Environment settings overridden by explicit CLI values, validated."""

    settings = Settings.from_env(project_root=command.project_root)
    if command.output_dir is not None:
        settings.output_dir = command.output_dir
    if command.source_glob is not None:
        settings.source_glob = command.source_glob
    if command.static_glob is not None:
        settings.static_glob = command.static_glob
    if command.port is not None:
        settings.server = replace(settings.server, port=command.port)
    if command.debounce_ms is not None:
        settings.watch = replace(settings.watch, debounce_ms=command.debounce_ms)
    if command.optimize is not None:
        settings.compiler = replace(settings.compiler, optimize=command.optimize)
    if command.jobs is not None:
        settings.compiler = replace(settings.compiler, jobs=command.jobs)
    settings.validate()
    return settings


@contextmanager
def _signal_handlers(stop_event: threading.Event) -> Iterator[None]:
    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("%s received, shutting down...", name)
        stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
