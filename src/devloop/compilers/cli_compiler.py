"""Subprocess-based compiler driven by a command template."""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import tempfile
from pathlib import Path

from devloop.config import CompilerSettings
from devloop.errors import CompileError

logger = logging.getLogger(__name__)

OPTIMIZE_FLAG = "--optimize"

_ELM_HEADER_RE = re.compile(r"^-- [A-Z][A-Z ]*[A-Z] -+ (?P<path>\S+)\s*$", re.MULTILINE)
_ELM_LINE_RE = re.compile(r"^(?P<line>\d+)\|", re.MULTILINE)


class CliCompiler:
    """Compile one source file per invocation of an external CLI compiler.

    The template is rendered with ``{source}`` and ``{output}``; the output is
    a temporary file that is read back and returned as bytes. ``{optimize}``
    may be placed explicitly, otherwise ``--optimize`` is appended when
    optimization is enabled.
    """

    def __init__(
        self,
        *,
        command_template: str,
        optimize: bool = True,
        output_suffix: str = ".js",
        timeout_seconds: float = 120.0,
        cwd: Path | None = None,
    ) -> None:
        self.command_template = command_template
        self.optimize = optimize
        self.output_suffix = output_suffix
        self.timeout_seconds = timeout_seconds
        self.cwd = cwd

    @classmethod
    def from_settings(cls, settings: CompilerSettings, *, cwd: Path | None = None) -> CliCompiler:
        return cls(
            command_template=settings.command_template,
            optimize=settings.optimize,
            output_suffix=settings.output_suffix,
            timeout_seconds=settings.timeout_seconds,
            cwd=cwd,
        )

    def compile(self, source_path: Path) -> bytes:
        with tempfile.TemporaryDirectory(prefix="devloop-") as workdir:
            output_path = Path(workdir) / f"{source_path.stem}{self.output_suffix}"
            argv = self._build_run_args(source_path=source_path, output_path=output_path)
            logger.debug("Running compiler: %s", shlex.join(argv))
            try:
                completed = subprocess.run(  # noqa: S603
                    argv,
                    cwd=self.cwd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except FileNotFoundError as error:
                raise CompileError(f"Compiler command not found: {argv[0]}") from error
            except subprocess.TimeoutExpired as error:
                raise CompileError(
                    f"Compiler timed out after {self.timeout_seconds:g}s",
                    location=str(source_path),
                ) from error
            except OSError as error:
                raise CompileError(f"Compiler failed to start: {error}") from error

            if completed.returncode != 0:
                diagnostics = completed.stderr.strip() or completed.stdout.strip()
                raise CompileError(
                    diagnostics or f"Compiler exited with code {completed.returncode}",
                    location=parse_location(diagnostics) or str(source_path),
                )
            if not output_path.is_file():
                raise CompileError(
                    "Compiler exited successfully but produced no output file",
                    location=str(source_path),
                )
            return output_path.read_bytes()

    def _build_run_args(self, *, source_path: Path, output_path: Path) -> list[str]:
        template = self.command_template.strip()
        if not template:
            raise CompileError("Compiler command template is empty.")

        optimize_flag = OPTIMIZE_FLAG if self.optimize else ""
        try:
            rendered = template.format(
                source=shlex.quote(str(source_path)),
                output=shlex.quote(str(output_path)),
                optimize=optimize_flag,
            )
        except (KeyError, IndexError) as error:
            raise CompileError(f"Unsupported command template placeholder: {error}") from error

        argv = shlex.split(rendered)
        if not argv:
            raise CompileError("Compiler command template rendered empty command.")
        if self.optimize and "{optimize}" not in template:
            argv.append(OPTIMIZE_FLAG)
        return argv


def parse_location(diagnostics: str) -> str | None:
    """Extract ``path[:line]`` from Elm-style compiler diagnostics."""

    header = _ELM_HEADER_RE.search(diagnostics)
    if header is None:
        return None
    line = _ELM_LINE_RE.search(diagnostics, header.end())
    if line is None:
        return header.group("path")
    return f"{header.group('path')}:{line.group('line')}"
