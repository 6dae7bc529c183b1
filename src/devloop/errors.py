"""Error taxonomy shared by build steps, the watcher and the static server."""

from __future__ import annotations

from pathlib import Path


class DevloopError(RuntimeError):
    """Base class for all devloop failures."""


class CompileError(DevloopError):
    """Source asset could not be compiled."""

    def __init__(self, message: str, *, location: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message


class BuildIOError(DevloopError):
    """Copy/read/write failure for a build artifact."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class BindError(DevloopError):
    """Static server could not bind its listening socket."""

    def __init__(self, *, host: str, port: int, reason: str) -> None:
        super().__init__(f"Cannot bind {host}:{port} ({reason}). Is port {port} already in use?")
        self.host = host
        self.port = port


class WatchError(DevloopError):
    """File-system watch subscription failed."""
