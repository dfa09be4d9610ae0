from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from selenium.webdriver.common.options import ArgOptions

from bstack_harness.adapters.webdriver.capabilities import (
    BROWSERS,
    HUB_URL,
    build_options,
)
from bstack_harness.capabilities.tunnel.base import TunnelOptions
from bstack_harness.server.static import PUBLIC_DIR

TUNNEL_NAME = "test-run"
REMOTE_DEMO_URL = "https://example.com/"


@dataclass
class HarnessConfig:
    user: str = ""
    key: str = ""
    browser: str = "chromeLatest"
    tunnel_name: str = TUNNEL_NAME
    tunnel_binary: str | None = None
    tunnel_log_file: str = "browserstack.log"
    tunnel_start_timeout: float = 60.0
    local_host: str = "localhost"
    local_port: int = 8080
    public_dir: Path = field(default_factory=lambda: PUBLIC_DIR)
    hub_url: str = HUB_URL
    remote_demo_url: str = REMOTE_DEMO_URL

    def __post_init__(self) -> None:
        if self.browser not in BROWSERS:
            raise ValueError(
                f"Unknown browser '{self.browser}' (known: {', '.join(BROWSERS)})",
            )

    def tunnel_options(self) -> TunnelOptions:
        return TunnelOptions(
            key=self.key,
            local_identifier=self.tunnel_name,
            log_file=self.tunnel_log_file,
        )

    def remote_options(self) -> ArgOptions:
        return build_options(self.browser, self.user, self.key, self.tunnel_name)

    @classmethod
    def from_env(cls) -> HarnessConfig:
        # Missing credentials are not an error here; BrowserStack rejects them.
        load_dotenv()
        return cls(
            user=os.environ.get("BROWSERSTACK_USERNAME", ""),
            key=os.environ.get("BROWSERSTACK_ACCESS_KEY", ""),
            browser=os.environ.get("BSTACK_HARNESS_BROWSER", "chromeLatest"),
            tunnel_binary=os.environ.get("BROWSERSTACK_LOCAL_BINARY") or None,
            local_port=int(os.environ.get("BSTACK_HARNESS_PORT", "8080")),
        )
