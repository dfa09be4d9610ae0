"""Exception types raised by the harness."""
from __future__ import annotations


class HarnessError(Exception):
    """Base class for harness failures."""


class ConfigError(HarnessError):
    """No (valid) run mode was selected."""


class TunnelStartError(HarnessError):
    """The tunnel subprocess could not be started or was rejected."""


class ServerBindError(HarnessError):
    """The local static server failed to bind its listening socket."""
