"""Log-tail subprocess: follows an append-only file and forwards its lines."""
from __future__ import annotations

import asyncio
import logging

from bstack_harness.core.subprocess_tracker import LOG_TAIL, track, untrack

logger = logging.getLogger(__name__)

_STD_FDS = (0, 1, 2)


class LogTailProcess:
    """Runs ``tail -f <path>`` and feeds each output line to *sink*.

    The tunnel binary only reports diagnostics through its log file, so the
    tail is how an operator sees connection progress live.
    """

    TAIL_COMMAND: tuple[str, ...] = ("tail", "-f")

    def __init__(self, path: str, sink: logging.LoggerAdapter | logging.Logger) -> None:
        self._path = path
        self._sink = sink
        self._proc: asyncio.subprocess.Process | None = None
        self._pump: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def is_alive(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            *self.TAIL_COMMAND, self._path,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        track(self._proc.pid, LOG_TAIL)
        self._pump = asyncio.create_task(self._forward(self._proc.stdout))

    async def _forward(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._sink.info(text)

    def release_streams(self) -> None:
        """Stop forwarding output and close stdin, stdout and stderr.

        The pipes are closed on our side whether or not the subprocess ever
        exits.
        """
        if self._pump and not self._pump.done():
            self._pump.cancel()
        proc = self._proc
        if proc is None:
            return
        # asyncio.subprocess.Process exposes only stdin for closing.
        for fd in _STD_FDS:
            pipe = proc._transport.get_pipe_transport(fd)
            if pipe is not None and not pipe.is_closing():
                pipe.close()

    async def stop(self, timeout: float = 2.0) -> bool:
        """Release streams, request termination.  Returns True if it exited."""
        self.release_streams()
        proc = self._proc
        if proc is None:
            return False
        if proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.debug("tail (pid %d) ignored SIGTERM", proc.pid)
        stopped = proc.returncode is not None
        if stopped:
            untrack(proc.pid)
        self._proc = None
        self._pump = None
        return stopped
