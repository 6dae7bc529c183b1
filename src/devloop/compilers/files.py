"""File copy and artifact write helpers for build steps."""

from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path

from devloop.errors import BuildIOError

Copier = Callable[[Path, Path], None]


def copy_file(source: Path, dest: Path) -> None:
    """Copy ``source`` to ``dest`` verbatim, creating parent directories."""

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
    except OSError as error:
        raise BuildIOError(f"Cannot copy {source} to {dest}: {error}", path=source) from error


def write_artifact(dest: Path, payload: bytes) -> None:
    """Write compiled output to ``dest``, creating parent directories."""

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(payload)
    except OSError as error:
        raise BuildIOError(f"Cannot write {dest}: {error}", path=dest) from error
