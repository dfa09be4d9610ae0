"""Remote browser capability descriptors for BrowserStack Automate."""
from __future__ import annotations

import re
from typing import Any

from selenium.webdriver.chrome.options import Options as ChromeOptions
from selenium.webdriver.common.options import ArgOptions
from selenium.webdriver.ie.options import Options as IeOptions

HUB_URL = "https://hub-cloud.browserstack.com/wd/hub"

_BUILD = {
    "buildName": "Test run",
    "buildIdentifier": "test-run-0",
    "consoleLogs": "verbose",
    "debug": True,
    "local": True,
}

CAPABILITIES: dict[str, dict[str, Any]] = {
    "chromeLatest": {
        "browserName": "Chrome",
        "bstack:options": {
            "browserVersion": "latest",
            "os": "OS X",
            "osVersion": "Sequoia",
            **_BUILD,
        },
    },
    "ie9": {
        "browserName": "IE",
        "bstack:options": {
            "browserVersion": "9.0",
            "os": "Windows",
            "osVersion": "7",
            **_BUILD,
        },
    },
}

USER_AGENT_PATTERNS: dict[str, re.Pattern[str]] = {
    "chromeLatest": re.compile(r" Chrome/\d+\.\d+\.\d+\.\d+ "),
    "ie9": re.compile(r" MSIE 9\.0; "),
}

BROWSERS = tuple(CAPABILITIES)


def build_capabilities(
    browser: str, user: str, key: str, local_identifier: str,
) -> dict[str, Any]:
    """Capabilities for *browser* bound to a tunnel and a set of credentials."""
    if browser not in CAPABILITIES:
        raise KeyError(f"Unknown browser '{browser}' (known: {', '.join(BROWSERS)})")
    base = CAPABILITIES[browser]
    return {
        "browserName": base["browserName"],
        "bstack:options": {
            **base["bstack:options"],
            "userName": user,
            "accessKey": key,
            "localIdentifier": local_identifier,
        },
    }


def build_options(
    browser: str, user: str, key: str, local_identifier: str,
) -> ArgOptions:
    """Selenium options object carrying the BrowserStack capabilities."""
    caps = build_capabilities(browser, user, key, local_identifier)
    options: ArgOptions = IeOptions() if caps["browserName"] == "IE" else ChromeOptions()
    bstack = caps["bstack:options"]
    options.browser_version = bstack["browserVersion"]
    options.set_capability("bstack:options", bstack)
    return options
