"""Console logging for the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_QUIET_LIBRARIES = ("watchdog", "httpx", "httpcore", "uvicorn")


def setup_logging(*, verbose: bool = False) -> None:
    """Route all logs to stderr through rich. Call once, before the first log line."""

    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format="[%X]",
    )
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
