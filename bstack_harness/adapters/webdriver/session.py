"""Remote automation session — Selenium WebDriver on BrowserStack.

Selenium is synchronous, so every driver call is pushed to a worker thread
with ``asyncio.to_thread`` and awaited by the orchestrator.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from selenium import webdriver
from selenium.webdriver.common.by import By
from selenium.webdriver.common.options import ArgOptions

from bstack_harness.adapters.webdriver.capabilities import HUB_URL

logger = logging.getLogger(__name__)


class RemoteBrowserSession:
    """One remote browser session, closed exactly once."""

    def __init__(self, driver: webdriver.Remote) -> None:
        self._driver: webdriver.Remote | None = driver

    @classmethod
    async def open(
        cls, options: ArgOptions, hub_url: str = HUB_URL,
    ) -> RemoteBrowserSession:
        driver = await asyncio.to_thread(
            webdriver.Remote, command_executor=hub_url, options=options,
        )
        logger.info("Remote session %s started", driver.session_id)
        return cls(driver)

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    def _require_driver(self) -> webdriver.Remote:
        if self._driver is None:
            raise RuntimeError("Remote session is closed")
        return self._driver

    async def navigate(self, url: str) -> None:
        driver = self._require_driver()
        await asyncio.to_thread(driver.get, url)

    async def execute(self, script: str, *args: Any) -> Any:
        driver = self._require_driver()
        return await asyncio.to_thread(driver.execute_script, script, *args)

    async def element_text(self, css_selector: str) -> str:
        driver = self._require_driver()

        def _text() -> str:
            return driver.find_element(By.CSS_SELECTOR, css_selector).text

        return await asyncio.to_thread(_text)

    async def close(self) -> None:
        """Delete the remote session.  Safe to call multiple times."""
        driver, self._driver = self._driver, None
        if driver is None:
            return
        await asyncio.to_thread(driver.quit)
        logger.info("Remote session closed")
