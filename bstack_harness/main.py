from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Sequence

from bstack_harness.adapters.webdriver.capabilities import BROWSERS
from bstack_harness.capabilities.tunnel.browserstack import BrowserStackTunnel
from bstack_harness.config import HarnessConfig
from bstack_harness.core import subprocess_tracker
from bstack_harness.core.errors import ConfigError
from bstack_harness.core.logger import configure_logging
from bstack_harness.core.orchestrator import SessionOrchestrator
from bstack_harness.server.static import LocalStaticServer

LOG_FILE = "bstack-harness.log"
PID_FILE = ".bstack-harness.pids"

# Mode flag -> short form, in dispatch order.
MODES: dict[str, str] = {
    "demo-local": "l",
    "demo-remote": "r",
    "bstack-tunnel": "t",
    "server": "s",
}

logger = logging.getLogger("bstack_harness")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bstack-harness",
        description="Run a remote browser check through a BrowserStack Local tunnel.",
    )
    for name, short in MODES.items():
        parser.add_argument(f"-{short}", f"--{name}", action="store_true")
    parser.add_argument(
        "--browser", choices=BROWSERS, default=None,
        help="capability descriptor to use (default: chromeLatest)",
    )
    return parser


def select_mode(args: argparse.Namespace) -> str:
    """Return the first mode flag set, or raise ConfigError."""
    for name in MODES:
        if getattr(args, name.replace("-", "_")):
            return name
    raise ConfigError(
        "Missing CLI option. You must give one of: "
        + ", ".join(f"--{name} (-{short})" for name, short in MODES.items())
    )


async def _wait_for_shutdown_signal() -> None:
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)
    try:
        await stop_event.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def serve(config: HarnessConfig) -> None:
    """Start the local server and keep it up until Ctrl+C."""
    server = LocalStaticServer(config.local_host, config.local_port, config.public_dir)
    handle = await server.start()
    try:
        await _wait_for_shutdown_signal()
    finally:
        await handle.stop()


async def tunnel_only(config: HarnessConfig) -> None:
    """Start the tunnel and keep it up until it is closed (Ctrl+C)."""
    tunnel = BrowserStackTunnel(
        config.tunnel_options(),
        binary_path=config.tunnel_binary,
        start_timeout=config.tunnel_start_timeout,
    )
    await tunnel.start()
    try:
        await tunnel.wait_closed()
    finally:
        await tunnel.close()


async def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    mode = select_mode(args)

    config = HarnessConfig.from_env()
    if args.browser:
        config.browser = args.browser

    logger.debug("Mode: %s, browser: %s", mode, config.browser)

    if mode == "demo-local":
        await SessionOrchestrator.from_config(config).run_local()
    elif mode == "demo-remote":
        await SessionOrchestrator.from_config(config).run(config.remote_demo_url)
    elif mode == "bstack-tunnel":
        await tunnel_only(config)
    elif mode == "server":
        await serve(config)


def run() -> None:
    configure_logging(LOG_FILE)
    subprocess_tracker.set_pid_file(PID_FILE)
    subprocess_tracker.cleanup_stale_pids()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
