"""Session orchestrator — one guarded remote-browser run.

Acquisition order is server (local runs only) -> tunnel -> remote session,
and teardown is always the exact reverse, whatever happened in between.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

from bstack_harness.adapters.webdriver.checks import check_sample_page
from bstack_harness.adapters.webdriver.session import RemoteBrowserSession
from bstack_harness.capabilities.tunnel.base import TunnelProtocol
from bstack_harness.capabilities.tunnel.browserstack import BrowserStackTunnel
from bstack_harness.server.static import LocalStaticServer

if TYPE_CHECKING:
    from bstack_harness.config import HarnessConfig

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    INIT = "init"
    ACQUIRING_TUNNEL = "acquiring_tunnel"
    ACQUIRING_SESSION = "acquiring_session"
    NAVIGATING = "navigating"
    ASSERTING = "asserting"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


class RemoteSession(Protocol):
    async def navigate(self, url: str) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[], Awaitable[RemoteSession]]
PageCheck = Callable[[Any], Awaitable[None]]


async def _release(name: str, closer: Callable[[], Awaitable[None]] | None) -> None:
    """Best-effort release of one resource slot; never raises."""
    if closer is None:
        return
    try:
        await closer()
    except Exception:
        logger.warning("Failed to release %s", name, exc_info=True)


class SessionOrchestrator:
    """Runs one page check through a tunnel.  Single use.

    The tunnel is handed in as an owned value rather than looked up
    globally; the orchestrator starts it and is responsible for closing it.
    """

    def __init__(
        self,
        tunnel: TunnelProtocol,
        open_session: SessionFactory,
        check_page: PageCheck,
        server: LocalStaticServer | None = None,
    ) -> None:
        self._tunnel = tunnel
        self._open_session = open_session
        self._check_page = check_page
        self._server = server
        self._state = RunState.INIT

    @classmethod
    def from_config(cls, config: HarnessConfig) -> SessionOrchestrator:
        tunnel = BrowserStackTunnel(
            config.tunnel_options(),
            binary_path=config.tunnel_binary,
            start_timeout=config.tunnel_start_timeout,
        )

        async def open_session() -> RemoteBrowserSession:
            return await RemoteBrowserSession.open(
                config.remote_options(), hub_url=config.hub_url,
            )

        async def check_page(session: RemoteBrowserSession) -> None:
            await check_sample_page(session, config.browser)

        server = LocalStaticServer(
            config.local_host, config.local_port, config.public_dir,
        )
        return cls(tunnel, open_session, check_page, server=server)

    @property
    def state(self) -> RunState:
        return self._state

    def _begin(self) -> None:
        if self._state is not RunState.INIT:
            raise RuntimeError(
                f"Orchestrator already used (state: {self._state.value})",
            )

    async def run(self, url: str) -> None:
        """Open tunnel + session, check *url*, then tear both down."""
        self._begin()
        try:
            await self._guarded_run(url)
        finally:
            self._state = RunState.DONE
        logger.info("Done.")

    async def run_local(self) -> None:
        """Like ``run()``, against the local static server's own URL."""
        if self._server is None:
            raise RuntimeError("No local server configured")
        self._begin()
        handle = None
        try:
            handle = await self._server.start()
            await self._guarded_run(handle.url)
        finally:
            await _release("local server", handle.stop if handle else None)
            self._state = RunState.DONE
        logger.info("Done.")

    async def _guarded_run(self, url: str) -> None:
        session = None
        try:
            self._state = RunState.ACQUIRING_TUNNEL
            await self._tunnel.start()

            self._state = RunState.ACQUIRING_SESSION
            session = await self._open_session()

            self._state = RunState.NAVIGATING
            await session.navigate(url)

            self._state = RunState.ASSERTING
            await self._check_page(session)
        finally:
            self._state = RunState.TEARING_DOWN
            await _release("remote session", session.close if session else None)
            await _release("tunnel", self._tunnel.close)
