"""BrowserStack Local tunnel supervisor.

Runs the ``BrowserStackLocal`` binary so that remote BrowserStack browsers
can reach servers on this machine, and tails the binary's log file through
the labeled logger so connection diagnostics stay visible.
"""
from __future__ import annotations

import asyncio
import logging
import re
import shutil
import signal
from pathlib import Path

from bstack_harness.capabilities.tunnel.base import TunnelOptions, TunnelState
from bstack_harness.capabilities.tunnel.log_tail import LogTailProcess
from bstack_harness.core.errors import TunnelStartError
from bstack_harness.core.logger import get_logger
from bstack_harness.core.subprocess_tracker import TUNNEL, track, untrack

logger = logging.getLogger(__name__)

BINARY_NAME = "BrowserStackLocal"

_ESTABLISHED_RE = re.compile(r"You can now access your local server", re.IGNORECASE)
_ERROR_RE = re.compile(r"\*\*\*\s*Error|\[ERROR\]", re.IGNORECASE)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class BrowserStackTunnel:
    """Owns one tunnel subprocess plus the log-tail subprocess over its log.

    ``start()`` resolves once the binary reports the tunnel as established.
    ``close()`` is idempotent; the log tail is only released after the
    tunnel process has confirmed termination.
    """

    def __init__(
        self,
        options: TunnelOptions,
        binary_path: str | None = None,
        start_timeout: float = 60.0,
        stop_timeout: float = 5.0,
        install_signal_handlers: bool = True,
    ) -> None:
        self._options = options
        self._binary_path = binary_path
        self._start_timeout = start_timeout
        self._stop_timeout = stop_timeout
        self._install_signal_handlers = install_signal_handlers

        self._state = TunnelState.IDLE
        self._tunnel: asyncio.subprocess.Process | None = None
        self._log_tail: LogTailProcess | None = None
        self._drain: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()
        self._closed.set()
        self._signal_close: asyncio.Task[None] | None = None
        self._exit_close: asyncio.Task[None] | None = None
        self._signals_installed: list[signal.Signals] = []
        self._log = get_logger("BrowserStack Tunnel")

    @property
    def name(self) -> str:
        return self._options.local_identifier

    @property
    def state(self) -> TunnelState:
        return self._state

    @property
    def log_file(self) -> str:
        return self._options.log_file

    def is_running(self) -> bool:
        tunnel = self._tunnel
        return (
            self._state is TunnelState.RUNNING
            and tunnel is not None
            and tunnel.returncode is None
        )

    async def start(self) -> None:
        if self._state is not TunnelState.IDLE:
            raise TunnelStartError(
                f"Tunnel '{self.name}' is already {self._state.value}",
            )
        self._state = TunnelState.STARTING
        self._closed.clear()
        self._signal_close = None
        self._exit_close = None

        try:
            binary = self._resolve_binary()

            # Create or truncate the log file, then follow it.
            try:
                Path(self.log_file).write_text("")
            except OSError as e:
                raise TunnelStartError(
                    f"Cannot create tunnel log file {self.log_file}: {e}",
                ) from e
            self._log_tail = LogTailProcess(self.log_file, self._log)
            try:
                await self._log_tail.start()
            except OSError as e:
                self._log_tail = None
                raise TunnelStartError(f"Failed to follow {self.log_file}: {e}") from e

            try:
                self._tunnel = await asyncio.create_subprocess_exec(
                    binary, *self._options.to_args(),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as e:
                raise TunnelStartError(f"Failed to spawn {binary}: {e}") from e
            track(self._tunnel.pid, TUNNEL)

            await self._wait_until_established()
        except BaseException:
            await self.close()
            raise

        self._state = TunnelState.RUNNING
        self._drain = asyncio.create_task(self._drain_output())
        self._log.info("Tunnel established.")
        self._register_signal_handlers()

    def _resolve_binary(self) -> str:
        if self._binary_path:
            if not Path(self._binary_path).exists():
                raise TunnelStartError(
                    f"Tunnel binary not found: {self._binary_path}",
                )
            return self._binary_path
        found = shutil.which(BINARY_NAME)
        if not found:
            raise TunnelStartError(
                f"{BINARY_NAME} not found in PATH. Download it from "
                "https://www.browserstack.com/docs/local-testing/binary-params "
                "or set BROWSERSTACK_LOCAL_BINARY",
            )
        return found

    async def _wait_until_established(self) -> None:
        """Read tunnel output until it reports success, an error, or exits."""
        proc = self._tunnel
        if proc is None or proc.stdout is None:
            raise TunnelStartError("Tunnel process has no stdout")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._start_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TunnelStartError(
                    f"Timed out after {self._start_timeout:g}s waiting for tunnel",
                )
            try:
                line = await asyncio.wait_for(proc.stdout.readline(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

            if not line:
                code = await proc.wait()
                raise TunnelStartError(
                    f"Tunnel process exited with code {code} before connecting",
                )

            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.debug("BrowserStackLocal: %s", text)
            if _ERROR_RE.search(text):
                raise TunnelStartError(f"Tunnel rejected: {text}")
            if _ESTABLISHED_RE.search(text):
                return

    async def _drain_output(self) -> None:
        """Keep the stdout pipe empty once the tunnel is up.

        End of output while still running means the binary went away on its
        own; the tunnel is then closed so that ``wait_closed()`` returns.
        """
        proc = self._tunnel
        if proc is None or proc.stdout is None:
            return
        while True:
            line = await proc.stdout.readline()
            if not line:
                if self._state is TunnelState.RUNNING:
                    self._log.error("Tunnel process exited unexpectedly.")
                    self._exit_close = asyncio.ensure_future(self.close())
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.debug("BrowserStackLocal: %s", text)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._state is TunnelState.IDLE:
            return
        if self._state is TunnelState.STOPPING:
            await self._closed.wait()
            return

        self._state = TunnelState.STOPPING
        self._remove_signal_handlers()
        self._log.info("Tunnel closing...")

        await self._stop_tunnel_process()
        self._log.info("Tunnel closed.")

        log_tail, self._log_tail = self._log_tail, None
        tail_stopped = await log_tail.stop() if log_tail else False
        self._log.info("Log file %sclosed.", "" if tail_stopped else "not ")

        self._tunnel = None
        self._drain = None
        self._state = TunnelState.IDLE
        self._closed.set()

    async def wait_closed(self) -> None:
        """Wait until the tunnel has been closed (e.g. by Ctrl+C)."""
        await self._closed.wait()

    async def _stop_tunnel_process(self) -> None:
        """Terminate the tunnel and wait for the exit to be confirmed."""
        proc = self._tunnel
        if proc is None:
            return
        if proc.returncode is None:
            try:
                proc.terminate()
                await asyncio.wait_for(proc.wait(), timeout=self._stop_timeout)
            except ProcessLookupError:
                await proc.wait()
            except asyncio.TimeoutError:
                logger.warning(
                    "Tunnel (pid %d) did not exit after SIGTERM, killing", proc.pid,
                )
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
        if self._drain and not self._drain.done():
            self._drain.cancel()
        untrack(proc.pid)

    # ------------------------------------------------------------------
    # Termination signals
    # ------------------------------------------------------------------

    def _register_signal_handlers(self) -> None:
        if not self._install_signal_handlers:
            return
        loop = asyncio.get_running_loop()
        for sig in _SIGNALS:
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Not on the main thread, or not supported on this platform.
                logger.debug("Cannot install %s handler: %s", sig.name, e)
                continue
            self._signals_installed.append(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed = []

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._signal_close is not None:
            return
        logger.info("Received %s, closing tunnel", sig.name)
        self._signal_close = asyncio.ensure_future(self.close())
