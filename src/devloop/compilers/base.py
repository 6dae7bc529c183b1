"""Compiler interface for source assets."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class Compiler(Protocol):
    """Protocol implemented by asset compilers."""

    def compile(self, source_path: Path) -> bytes:
        """Compile one source file, raising ``CompileError`` on bad input."""
