"""Read-only static file server for the build output directory."""

from __future__ import annotations

import errno
import logging
import socket
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles

from devloop.errors import BindError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
ALLOWED_METHOD = "GET"


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Where to serve from and where to listen. Changing it requires a restart."""

    root_directory: Path
    port: int
    host: str = DEFAULT_HOST

    def __post_init__(self) -> None:
        if not 1 <= self.port <= 65_535:
            raise ValueError(f"Server port must be between 1 and 65535, got {self.port}.")


def create_app(root_directory: Path) -> FastAPI:
    """GET-only app serving ``root_directory``; files are read from disk per request."""

    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def get_only(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.method != ALLOWED_METHOD:
            response = Response(status_code=405, headers={"Allow": ALLOWED_METHOD})
        else:
            response = await call_next(request)
        response.headers["Cache-Control"] = "no-cache"
        logger.debug("%s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    # html=True serves index.html for directories; a directory without one is a 404.
    app.mount("/", StaticFiles(directory=str(root_directory), html=True), name="static")
    return app


class ServerHandle:
    """Running server; ``stop()`` waits for in-flight responses."""

    def __init__(
        self,
        *,
        config: ServerConfig,
        server: uvicorn.Server,
        sock: socket.socket,
    ) -> None:
        self.config = config
        self._server = server
        self._sock = sock
        self._port = int(sock.getsockname()[1])
        self._thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [sock]},
            daemon=True,
            name="devloop-server",
        )
        self._stopped = False

    @property
    def port(self) -> int:
        return self._port

    @property
    def url(self) -> str:
        return f"http://{self.config.host}:{self.port}/"

    def start(self, startup_timeout: float = 10.0) -> None:
        self._thread.start()
        deadline = time.monotonic() + startup_timeout
        while not self._server.started and self._thread.is_alive():
            if time.monotonic() > deadline:
                logger.warning("Server on port %s is slow to start", self.port)
                break
            time.sleep(0.01)

    def check_liveness(self, timeout_seconds: float = 2.0) -> bool:
        """Whether the server answers HTTP requests at all."""

        try:
            response = httpx.get(self.url, timeout=timeout_seconds)
        except httpx.HTTPError as exc:
            logger.warning("Server liveness check failed for %s: %s", self.url, exc)
            return False
        logger.debug("Server liveness check: %s -> %s", self.url, response.status_code)
        return True

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        # uvicorn finishes in-flight responses before run() returns.
        self._server.should_exit = True
        self._thread.join(timeout=10)
        self._sock.close()
        logger.info("Server on port %s stopped", self.port)

    def __enter__(self) -> ServerHandle:
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()


def serve(config: ServerConfig) -> ServerHandle:
    """Bind and start serving ``config.root_directory``; raises ``BindError``."""

    app = create_app(config.root_directory)
    sock = _bind(config)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            # h11 accepts any token method, so unknown methods reach the 405 check.
            http="h11",
            log_config=None,
            access_log=False,
            lifespan="off",
        ),
    )
    handle = ServerHandle(config=config, server=server, sock=sock)
    handle.start()
    logger.info("Serving %s at %s", config.root_directory, handle.url)
    return handle


def _bind(config: ServerConfig) -> socket.socket:
    family = socket.AF_INET6 if ":" in config.host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((config.host, config.port))
        sock.listen(128)
    except OSError as error:
        sock.close()
        reason = "address already in use" if error.errno == errno.EADDRINUSE else str(error)
        raise BindError(host=config.host, port=config.port, reason=reason) from error
    return sock
