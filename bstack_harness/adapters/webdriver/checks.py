"""Sample page checks run against the remote browser."""
from __future__ import annotations

from typing import TYPE_CHECKING

from bstack_harness.adapters.webdriver.capabilities import USER_AGENT_PATTERNS

if TYPE_CHECKING:
    from bstack_harness.adapters.webdriver.session import RemoteBrowserSession

EXPECTED_HEADING = "Example Domain"


async def check_sample_page(session: RemoteBrowserSession, browser: str) -> None:
    """Verify the browser identity and the page heading.

    Raises ``AssertionError`` on mismatch.
    """
    user_agent = await session.execute("return navigator.userAgent")
    pattern = USER_AGENT_PATTERNS[browser]
    if not pattern.search(f"{user_agent}"):
        raise AssertionError(
            f"User agent {user_agent!r} does not match {pattern.pattern!r}",
        )

    heading = await session.element_text("h1")
    if heading != EXPECTED_HEADING:
        raise AssertionError(
            f"Expected heading {EXPECTED_HEADING!r}, got {heading!r}",
        )
