"""Shared types for the tunnel capability."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class TunnelState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class TunnelOptions:
    """Connection settings for one BrowserStackLocal tunnel."""

    key: str
    local_identifier: str  # must match bstack:options.localIdentifier
    log_file: str = "browserstack.log"
    force: bool = True  # kill other tunnels running with the same key
    force_local: bool = True  # route all traffic through the local machine
    only_automate: bool = True
    verbose: bool = True

    def to_args(self) -> list[str]:
        """Command-line arguments for the BrowserStackLocal binary."""
        args = ["--key", self.key, "--local-identifier", self.local_identifier]
        if self.force:
            args.append("--force")
        if self.force_local:
            args.append("--force-local")
        if self.only_automate:
            args.append("--only-automate")
        if self.verbose:
            args += ["--verbose", "3"]
        args += ["--log-file", self.log_file]
        return args


@runtime_checkable
class TunnelProtocol(Protocol):
    """What the orchestrator needs from a tunnel."""

    def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def close(self) -> None: ...
