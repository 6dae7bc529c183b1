"""Runtime configuration for the build, watch and serve loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_COMPILE_COMMAND = "elm make {source} --output {output}"


@dataclass(slots=True)
class CompilerSettings:
    """External compiler invocation settings."""

    command_template: str = DEFAULT_COMPILE_COMMAND
    optimize: bool = True
    output_suffix: str = ".js"
    timeout_seconds: float = 120.0
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)


@dataclass(slots=True)
class ServerSettings:
    """Local static server settings."""

    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(slots=True)
class WatchSettings:
    """File watcher settings."""

    debounce_ms: int = 200


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_root: Path = Path(".")
    source_glob: str = "src/*.elm"
    static_glob: str = "src/*.{html,css}"
    output_dir: Path = Path("dist")
    compiler: CompilerSettings = field(default_factory=CompilerSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)

    @classmethod
    def from_env(cls, project_root: Path | None = None) -> Settings:
        """Load settings from environment with defaults for a standard Elm layout."""

        return cls(
            project_root=project_root or Path(os.getenv("DEVLOOP_PROJECT_ROOT", ".")),
            source_glob=os.getenv("DEVLOOP_SOURCE_GLOB", "src/*.elm"),
            static_glob=os.getenv("DEVLOOP_STATIC_GLOB", "src/*.{html,css}"),
            output_dir=Path(os.getenv("DEVLOOP_OUTPUT_DIR", "dist")),
            compiler=CompilerSettings(
                command_template=os.getenv("DEVLOOP_COMPILE_COMMAND", DEFAULT_COMPILE_COMMAND),
                optimize=_env_bool("DEVLOOP_COMPILE_OPTIMIZE", default=True),
                output_suffix=os.getenv("DEVLOOP_COMPILE_OUTPUT_SUFFIX", ".js"),
                timeout_seconds=_env_float("DEVLOOP_COMPILE_TIMEOUT_SECONDS", "120"),
                jobs=_env_int("DEVLOOP_COMPILE_JOBS", str(os.cpu_count() or 1)),
            ),
            server=ServerSettings(
                host=os.getenv("DEVLOOP_SERVER_HOST", "127.0.0.1"),
                port=_env_int("DEVLOOP_SERVER_PORT", "3000"),
            ),
            watch=WatchSettings(
                debounce_ms=_env_int("DEVLOOP_WATCH_DEBOUNCE_MS", "200"),
            ),
        )

    @property
    def output_path(self) -> Path:
        """Output directory resolved against the project root."""

        if self.output_dir.is_absolute():
            return self.output_dir
        return self.project_root / self.output_dir

    def validate(self) -> None:
        """Raise configuration error for values the loop cannot run with."""

        if not self.source_glob.strip():
            raise ValueError("DEVLOOP_SOURCE_GLOB must not be empty.")
        if not self.static_glob.strip():
            raise ValueError("DEVLOOP_STATIC_GLOB must not be empty.")
        if not 1 <= self.server.port <= 65_535:
            raise ValueError(
                f"DEVLOOP_SERVER_PORT must be between 1 and 65535, got {self.server.port}.",
            )
        if self.watch.debounce_ms < 0:
            raise ValueError("DEVLOOP_WATCH_DEBOUNCE_MS must be >= 0.")
        if self.compiler.timeout_seconds <= 0:
            raise ValueError("DEVLOOP_COMPILE_TIMEOUT_SECONDS must be > 0.")
        if self.compiler.jobs < 1:
            raise ValueError("DEVLOOP_COMPILE_JOBS must be >= 1.")
        template = self.compiler.command_template
        for placeholder in ("{source}", "{output}"):
            if placeholder not in template:
                raise ValueError(
                    f"DEVLOOP_COMPILE_COMMAND must include {placeholder}: {template!r}",
                )
        if not self.compiler.output_suffix.startswith("."):
            raise ValueError(
                "DEVLOOP_COMPILE_OUTPUT_SUFFIX must start with a dot, "
                f"got {self.compiler.output_suffix!r}.",
            )


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
