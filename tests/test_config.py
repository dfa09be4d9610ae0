from __future__ import annotations

from unittest.mock import patch

import pytest

from bstack_harness.config import HarnessConfig


@pytest.fixture(autouse=True)
def _no_dotenv():
    with patch("bstack_harness.config.load_dotenv"):
        yield


class TestFromEnv:
    def test_defaults_when_unset(self, monkeypatch):
        for var in (
            "BROWSERSTACK_USERNAME",
            "BROWSERSTACK_ACCESS_KEY",
            "BROWSERSTACK_LOCAL_BINARY",
            "BSTACK_HARNESS_PORT",
            "BSTACK_HARNESS_BROWSER",
        ):
            monkeypatch.delenv(var, raising=False)
        cfg = HarnessConfig.from_env()
        assert cfg.user == ""
        assert cfg.key == ""
        assert cfg.tunnel_binary is None
        assert cfg.local_port == 8080
        assert cfg.browser == "chromeLatest"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("BROWSERSTACK_USERNAME", "alice")
        monkeypatch.setenv("BROWSERSTACK_ACCESS_KEY", "s3cret")
        monkeypatch.setenv("BROWSERSTACK_LOCAL_BINARY", "/opt/bs/BrowserStackLocal")
        monkeypatch.setenv("BSTACK_HARNESS_PORT", "9000")
        monkeypatch.setenv("BSTACK_HARNESS_BROWSER", "ie9")
        cfg = HarnessConfig.from_env()
        assert cfg.user == "alice"
        assert cfg.key == "s3cret"
        assert cfg.tunnel_binary == "/opt/bs/BrowserStackLocal"
        assert cfg.local_port == 9000
        assert cfg.browser == "ie9"

    def test_unknown_browser(self, monkeypatch):
        monkeypatch.setenv("BSTACK_HARNESS_BROWSER", "netscape")
        with pytest.raises(ValueError, match="Unknown browser"):
            HarnessConfig.from_env()


class TestDerived:
    def test_tunnel_options(self):
        cfg = HarnessConfig(user="alice", key="s3cret")
        opts = cfg.tunnel_options()
        assert opts.key == "s3cret"
        assert opts.local_identifier == "test-run"
        assert opts.log_file == "browserstack.log"

    def test_remote_options_share_tunnel_name(self):
        cfg = HarnessConfig(user="alice", key="s3cret")
        caps = cfg.remote_options().to_capabilities()
        bstack = caps["bstack:options"]
        assert bstack["localIdentifier"] == cfg.tunnel_options().local_identifier
        assert bstack["userName"] == "alice"
        assert bstack["accessKey"] == "s3cret"
        assert bstack["local"] is True
