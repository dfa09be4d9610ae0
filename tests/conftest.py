from __future__ import annotations

import stat
from pathlib import Path
from typing import Callable

import pytest

from bstack_harness.capabilities.tunnel.base import TunnelOptions
from bstack_harness.core import subprocess_tracker


@pytest.fixture(autouse=True)
def _no_pid_file():
    """Keep the tracker from persisting PIDs into the working directory."""
    subprocess_tracker.set_pid_file(None)
    yield
    subprocess_tracker.set_pid_file(None)


@pytest.fixture
def tunnel_options(tmp_path: Path) -> TunnelOptions:
    return TunnelOptions(
        key="secret-key",
        local_identifier="test-run",
        log_file=str(tmp_path / "browserstack.log"),
    )


@pytest.fixture
def fake_binary(tmp_path: Path) -> Callable[[str], str]:
    """Write an executable shell script standing in for BrowserStackLocal."""

    def _make(body: str, name: str = "BrowserStackLocal") -> str:
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make
