from __future__ import annotations

import logging
import socket
import threading
import time
from pathlib import Path

import allure
import httpx
import pytest

from devloop.compilers import copy_file
from devloop.config import CompilerSettings, ServerSettings, Settings, WatchSettings
from devloop.errors import BindError, CompileError, WatchError
from devloop.orchestrator import Orchestrator
from devloop.watcher import ChangeEvent

from .fakes import FailingObserver, FakeObserver

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Entry Points"),
]


class StubCompiler:
    """Compiles by upper-casing the source; fails for names in ``broken``."""

    def __init__(self, *, broken: set[str] | None = None) -> None:
        self.broken = broken or set()
        self.compiled: list[str] = []
        self._lock = threading.Lock()

    def compile(self, source_path: Path) -> bytes:
        if source_path.name in self.broken:
            raise CompileError("unexpected token", location=f"src/{source_path.name}:1")
        with self._lock:
            self.compiled.append(source_path.name)
        return source_path.read_bytes().upper()


class RecordingCopier:
    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir
        self.copied: list[str] = []
        self.compiled_before_copy: list[str] = []

    def __call__(self, source: Path, dest: Path) -> None:
        self.compiled_before_copy = sorted(path.name for path in self.output_dir.glob("*.js"))
        self.copied.append(source.name)
        copy_file(source, dest)


def _settings(
    root: Path,
    *,
    port: int = 3000,
    compile_command: str | None = None,
    jobs: int = 4,
) -> Settings:
    compiler = CompilerSettings(optimize=False, jobs=jobs)
    if compile_command is not None:
        compiler.command_template = compile_command
    return Settings(
        project_root=root,
        compiler=compiler,
        server=ServerSettings(port=port),
        watch=WatchSettings(debounce_ms=0),
    )


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def test_build_compiles_every_source_before_copying(elm_project: Path) -> None:
    copier = RecordingCopier(elm_project / "dist")
    orchestrator = Orchestrator(
        settings=_settings(elm_project),
        compiler=StubCompiler(),
        copier=copier,
        observer_factory=FakeObserver,
    )

    result = orchestrator.build()

    assert result.ok
    assert copier.copied == ["style.css"]
    assert copier.compiled_before_copy == ["a.js", "b.js"]
    assert (elm_project / "dist" / "a.js").read_text("utf-8") == "MODULE A EXPOSING (..)\n"
    assert (elm_project / "dist" / "style.css").read_text("utf-8") == "body { color: red; }\n"
    assert orchestrator.exit_code() == 0


def test_compile_failure_stops_build_before_copy(elm_project: Path) -> None:
    copier = RecordingCopier(elm_project / "dist")
    orchestrator = Orchestrator(
        settings=_settings(elm_project),
        compiler=StubCompiler(broken={"b.elm"}),
        copier=copier,
        observer_factory=FakeObserver,
    )

    result = orchestrator.build()

    assert not result.ok
    assert result.path == ("build", "compile", "src/b.elm")
    assert isinstance(result.error, CompileError)
    assert copier.copied == []
    assert not (elm_project / "dist" / "style.css").exists()
    assert orchestrator.exit_code() == 1


class SerialCheckingCompiler(StubCompiler):
    def __init__(self) -> None:
        super().__init__()
        self.running = 0
        self.peak = 0

    def compile(self, source_path: Path) -> bytes:
        with self._lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
        time.sleep(0.05)
        with self._lock:
            self.running -= 1
        return super().compile(source_path)


def test_compile_step_respects_job_limit(elm_project: Path) -> None:
    for name in ("c", "d", "e"):
        (elm_project / "src" / f"{name}.elm").write_text(f"module {name.upper()}\n", "utf-8")
    compiler = SerialCheckingCompiler()
    orchestrator = Orchestrator(
        settings=_settings(elm_project, jobs=1),
        compiler=compiler,
        observer_factory=FakeObserver,
    )

    assert orchestrator.build().ok
    assert compiler.peak == 1
    assert sorted(compiler.compiled) == ["a.elm", "b.elm", "c.elm", "d.elm", "e.elm"]


def test_one_shot_build_leaves_failure_reporting_to_caller(
    elm_project: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    orchestrator = Orchestrator(
        settings=_settings(elm_project),
        compiler=StubCompiler(broken={"b.elm"}),
        observer_factory=FakeObserver,
    )

    with caplog.at_level(logging.DEBUG, logger="devloop"):
        result = orchestrator.build()

    assert not result.ok
    assert [record for record in caplog.records if record.levelno >= logging.ERROR] == []


def test_build_with_external_compiler(elm_project: Path, echo_compiler: str) -> None:
    orchestrator = Orchestrator(
        settings=_settings(elm_project, compile_command=echo_compiler),
        observer_factory=FakeObserver,
    )

    result = orchestrator.build()

    assert result.ok, result.reason
    compiled = (elm_project / "dist" / "b.js").read_text("utf-8")
    assert compiled == "// compiled from b.elm\n// module B exposing (..)\n"
    assert (elm_project / "dist" / "style.css").is_file()


def test_build_with_no_sources_succeeds(tmp_path: Path) -> None:
    orchestrator = Orchestrator(
        settings=_settings(tmp_path),
        compiler=StubCompiler(),
        observer_factory=FakeObserver,
    )

    assert orchestrator.build().ok


def test_watch_triggered_rebuild_resolves_failure(elm_project: Path) -> None:
    compiler = StubCompiler(broken={"b.elm"})
    orchestrator = Orchestrator(
        settings=_settings(elm_project),
        compiler=compiler,
        observer_factory=FakeObserver,
    )
    assert not orchestrator.build().ok
    assert orchestrator.exit_code() == 1

    compiler.broken.clear()
    orchestrator.watcher.start(orchestrator.watch_rules())
    try:
        triggered = orchestrator.watcher.handle_event(
            ChangeEvent(path=orchestrator.root / "src" / "b.elm", kind="modified"),
        )
        assert triggered == 1
        for trigger in orchestrator.watcher.triggers:
            assert trigger.wait_idle(timeout=5)
    finally:
        orchestrator.watcher.stop(timeout=5)

    assert orchestrator.exit_code() == 0
    assert (elm_project / "dist" / "b.js").is_file()


def test_static_change_reruns_copy_step_only(elm_project: Path) -> None:
    compiler = StubCompiler()
    copier = RecordingCopier(elm_project / "dist")
    orchestrator = Orchestrator(
        settings=_settings(elm_project),
        compiler=compiler,
        copier=copier,
        observer_factory=FakeObserver,
    )

    orchestrator.watcher.start(orchestrator.watch_rules())
    try:
        orchestrator.watcher.handle_event(
            ChangeEvent(path=orchestrator.root / "src" / "style.css", kind="modified"),
        )
        for trigger in orchestrator.watcher.triggers:
            assert trigger.wait_idle(timeout=5)
    finally:
        orchestrator.watcher.stop(timeout=5)

    assert copier.copied == ["style.css"]
    assert compiler.compiled == []


def test_default_run_bind_failure_starts_nothing(elm_project: Path, occupied_port: int) -> None:
    created: list[FakeObserver] = []

    def _observer() -> FakeObserver:
        observer = FakeObserver()
        created.append(observer)
        return observer

    compiler = StubCompiler()
    orchestrator = Orchestrator(
        settings=_settings(elm_project, port=occupied_port),
        compiler=compiler,
        observer_factory=_observer,
    )

    with pytest.raises(BindError):
        orchestrator.default_run(threading.Event())

    assert created == []
    assert compiler.compiled == []


def test_default_run_serves_build_output_until_stopped(elm_project: Path, free_port: int) -> None:
    orchestrator = Orchestrator(
        settings=_settings(elm_project, port=free_port),
        compiler=StubCompiler(),
        observer_factory=FakeObserver,
    )
    stop = threading.Event()
    codes: list[int] = []
    runner = threading.Thread(target=lambda: codes.append(orchestrator.default_run(stop)))
    runner.start()

    try:
        assert _wait_for(lambda: (elm_project / "dist" / "style.css").is_file())
        response = httpx.get(f"http://127.0.0.1:{free_port}/a.js")
        assert response.status_code == 200
        assert response.text == "MODULE A EXPOSING (..)\n"
    finally:
        stop.set()
        runner.join(timeout=10)

    assert not runner.is_alive()
    assert codes == [0]


def test_default_run_watch_failure_releases_port(elm_project: Path, free_port: int) -> None:
    orchestrator = Orchestrator(
        settings=_settings(elm_project, port=free_port),
        compiler=StubCompiler(),
        observer_factory=FailingObserver,
    )
    stop = threading.Event()

    with pytest.raises(WatchError, match="inotify watch limit reached"):
        orchestrator.default_run(stop)

    assert stop.is_set()
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        probe.bind(("127.0.0.1", free_port))
