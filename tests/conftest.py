"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import socket
import sys
from pathlib import Path

import pytest

_SRC_DIR = Path(__file__).resolve().parents[1] / "src"

ECHO_COMPILER_TEMPLATE = (
    f"{shlex.quote(sys.executable)} -m devloop.compilers.echo_compiler "
    "{source} --output {output}"
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("DEVLOOP_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_compiler(monkeypatch) -> str:
    """Command template running the local echo compiler in a subprocess."""

    existing = os.environ.get("PYTHONPATH")
    pythonpath = str(_SRC_DIR) if not existing else os.pathsep.join([str(_SRC_DIR), existing])
    monkeypatch.setenv("PYTHONPATH", pythonpath)
    return ECHO_COMPILER_TEMPLATE


@pytest.fixture()
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return int(probe.getsockname()[1])


@pytest.fixture()
def occupied_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        yield int(blocker.getsockname()[1])


@pytest.fixture()
def elm_project(tmp_path: Path) -> Path:
    """Project with two Elm modules and one stylesheet under src/."""

    src = tmp_path / "src"
    src.mkdir()
    (src / "a.elm").write_text("module A exposing (..)\n", "utf-8")
    (src / "b.elm").write_text("module B exposing (..)\n", "utf-8")
    (src / "style.css").write_text("body { color: red; }\n", "utf-8")
    return tmp_path
