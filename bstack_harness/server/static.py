"""Local static server — serves the sample page the remote browser visits."""
from __future__ import annotations

import logging
from http import HTTPStatus
from pathlib import Path

from aiohttp import web

from bstack_harness.core.errors import ServerBindError
from bstack_harness.core.logger import get_logger

logger = logging.getLogger(__name__)

PUBLIC_DIR = Path(__file__).parent / "public"

# Request pathname -> file under the public directory.
SERVABLE_RESOURCES: dict[str, str] = {
    "/index.html": "index.html",
}

_CHUNK_SIZE = 64 * 1024


def candidate_paths(pathname: str) -> list[str]:
    """Pathnames to try for a request, most specific first.

    One trailing slash is stripped, so ``/foo`` and ``/foo/`` are equivalent.
    """
    base = pathname[:-1] if pathname.endswith("/") else pathname
    return [base, f"{base}/index.html"]


def resolve_resource(
    pathname: str, resources: dict[str, str] = SERVABLE_RESOURCES,
) -> str | None:
    """Return the first servable candidate for *pathname*, or None."""
    for candidate in candidate_paths(pathname):
        if candidate in resources:
            return candidate
    return None


async def _send_file(request: web.Request, path: Path) -> web.StreamResponse:
    # Always a full 200; conditional and range headers are ignored.
    response = web.StreamResponse(
        status=200,
        reason=HTTPStatus.OK.phrase,
        headers={"Content-Type": "text/html"},
    )
    await response.prepare(request)
    with path.open("rb") as f:
        while True:
            chunk = f.read(_CHUNK_SIZE)
            if not chunk:
                break
            await response.write(chunk)
    await response.write_eof()
    return response


def _build_app(public_dir: Path, resources: dict[str, str]) -> web.Application:
    log = get_logger("Local Server")
    app = web.Application()

    async def _handle(request: web.Request) -> web.StreamResponse:
        agent = request.headers.get("User-Agent", "N/A")
        log.info("%s %s (Agent: %s)", request.method, request.path_qs, agent)

        found = resolve_resource(request.path, resources)
        if found is None:
            phrase = HTTPStatus.NOT_FOUND.phrase
            return web.Response(
                status=404,
                reason=phrase,
                body=phrase.encode(),
                headers={"Content-Type": "text/plain"},
            )
        return await _send_file(request, public_dir / resources[found])

    app.router.add_route("*", "/{tail:.*}", _handle)
    return app


class LocalServerHandle:
    """A bound, listening server; ``stop()`` closes the socket."""

    def __init__(self, runner: web.AppRunner, host: str, port: int) -> None:
        self._runner: web.AppRunner | None = runner
        self.host = host
        self.port = port

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    @property
    def is_serving(self) -> bool:
        return self._runner is not None

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        await runner.cleanup()
        logger.info("Local server on port %d stopped", self.port)


class LocalStaticServer:
    """aiohttp server bound to a fixed host/port with a tiny static file set."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8080,
        public_dir: Path = PUBLIC_DIR,
        resources: dict[str, str] | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._public_dir = public_dir
        self._resources = dict(SERVABLE_RESOURCES if resources is None else resources)
        self._log = get_logger("Local Server")

    async def start(self) -> LocalServerHandle:
        runner = web.AppRunner(_build_app(self._public_dir, self._resources))
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError as e:
            self._log.error("Failed to listen on %s:%d: %s", self._host, self._port, e)
            await runner.cleanup()
            raise ServerBindError(
                f"Could not bind {self._host}:{self._port}: {e}",
            ) from e

        # Port 0 means "any free port": report the one actually bound.
        port = self._port
        if runner.addresses:
            port = runner.addresses[0][1]
        handle = LocalServerHandle(runner, self._host, port)
        self._log.info("Server up and running and listening on: %s", handle.url)
        return handle
