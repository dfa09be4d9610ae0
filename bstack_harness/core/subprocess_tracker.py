"""Last-resort cleanup of the tunnel's child processes.

A running tunnel owns two children: the ``BrowserStackLocal`` binary and the
``tail -f`` that follows its log file.  Each is registered here under its
role while it runs.  When the interpreter exits with children still
registered (the event loop is gone, so ``close()`` can no longer run) they
are sent SIGTERM in the same order ``close()`` stops them: tunnel binary
first, log tail second.

Registrations can be mirrored to a PID file as ``<role> <pid>`` lines, so a
tunnel orphaned by a crashed harness is killed on the next start.
"""
from __future__ import annotations

import atexit
import logging
import os
import signal
from pathlib import Path

logger = logging.getLogger(__name__)

TUNNEL = "tunnel"
LOG_TAIL = "log-tail"

# Stop order; matches BrowserStackTunnel.close().
ROLES = (TUNNEL, LOG_TAIL)

_children: dict[int, str] = {}
_pid_file: Path | None = None


def set_pid_file(path: str | Path | None) -> None:
    """Mirror registrations to *path* (``None`` disables the mirror)."""
    global _pid_file
    _pid_file = Path(path) if path is not None else None


def tracked() -> dict[int, str]:
    """Registered children as ``{pid: role}``."""
    return dict(_children)


def track(pid: int, role: str) -> None:
    if role not in ROLES:
        raise ValueError(f"Unknown subprocess role: {role!r}")
    _children[pid] = role
    _save()


def untrack(pid: int) -> None:
    if _children.pop(pid, None) is not None:
        _save()


def _stop_order(children: dict[int, str]) -> list[tuple[int, str]]:
    return sorted(children.items(), key=lambda item: (ROLES.index(item[1]), item[0]))


def _terminate(pid: int, role: str) -> bool:
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    except OSError as e:
        logger.debug("Could not signal %s (pid %d): %s", role, pid, e)
        return False
    logger.debug("Sent SIGTERM to %s (pid %d)", role, pid)
    return True


def kill_all() -> None:
    """SIGTERM every registered child, tunnel before log tail (atexit hook)."""
    for pid, role in _stop_order(_children):
        _terminate(pid, role)
    _children.clear()
    _save()


def _read_pid_file(path: Path) -> dict[int, str]:
    children: dict[int, str] = {}
    for line in path.read_text().splitlines():
        parts = line.split()
        if len(parts) != 2 or parts[0] not in ROLES or not parts[1].isdigit():
            continue
        children[int(parts[1])] = parts[0]
    return children


def cleanup_stale_pids() -> int:
    """Kill children left behind by a previous run.

    Reads the PID file, signals its entries in stop order and removes the
    file.  Malformed lines are skipped.  Returns how many were signalled.
    """
    if not _pid_file or not _pid_file.exists():
        return 0
    try:
        stale = _read_pid_file(_pid_file)
    except OSError as e:
        logger.debug("Could not read PID file %s: %s", _pid_file, e)
        stale = {}
    killed = 0
    for pid, role in _stop_order(stale):
        if _terminate(pid, role):
            killed += 1
            logger.info("Killed stale %s (pid %d)", role, pid)
    try:
        _pid_file.unlink(missing_ok=True)
    except OSError:
        pass
    return killed


def _save() -> None:
    if not _pid_file:
        return
    lines = [f"{role} {pid}\n" for pid, role in _stop_order(_children)]
    try:
        _pid_file.parent.mkdir(parents=True, exist_ok=True)
        _pid_file.write_text("".join(lines))
    except OSError as e:
        logger.debug("Could not write PID file %s: %s", _pid_file, e)


# SIGKILL cannot be caught; cleanup_stale_pids() on the next start covers it.
atexit.register(kill_all)
