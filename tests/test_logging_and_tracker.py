from __future__ import annotations

import asyncio
import logging
import signal
from unittest.mock import patch

import pytest

from bstack_harness.capabilities.tunnel.log_tail import LogTailProcess
from bstack_harness.core import subprocess_tracker
from bstack_harness.core.logger import configure_logging, get_logger, label_lines


class TestLabeledLogger:
    def test_label_single_line(self):
        assert label_lines("Local Server", "hello\n") == "[Local Server] hello"

    def test_label_every_line(self):
        assert label_lines("T", "a\nb\nc") == "[T] a\n[T] b\n[T] c"

    def test_adapter_labels_message(self, caplog):
        caplog.set_level(logging.INFO)
        get_logger("BrowserStack Tunnel").info("line one\nline two")
        assert caplog.messages[-1] == (
            "[BrowserStack Tunnel] line one\n[BrowserStack Tunnel] line two"
        )

    def test_adapter_formats_args(self, caplog):
        caplog.set_level(logging.INFO)
        get_logger("X").info("%s requests", 3)
        assert caplog.messages[-1] == "[X] 3 requests"


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


class TestConfigureLogging:
    def test_info_to_stdout_errors_to_stderr(self, restore_root_logger, tmp_path, capsys):
        log_file = tmp_path / "harness.log"
        configure_logging(str(log_file))
        log = get_logger("Local Server")
        log.info("up")
        log.error("down")

        out, err = capsys.readouterr()
        assert "[Local Server] up" in out
        assert "[Local Server] down" not in out
        assert "[Local Server] down" in err
        assert "[Local Server] up" in log_file.read_text()


class TestSubprocessTracker:
    def test_track_persists_role_and_pid(self, tmp_path):
        pid_file = tmp_path / "pids"
        subprocess_tracker.set_pid_file(pid_file)
        subprocess_tracker.track(999_991, subprocess_tracker.LOG_TAIL)
        subprocess_tracker.track(999_990, subprocess_tracker.TUNNEL)
        try:
            assert pid_file.read_text().splitlines() == [
                "tunnel 999990",
                "log-tail 999991",
            ]
            assert subprocess_tracker.tracked() == {
                999_990: "tunnel",
                999_991: "log-tail",
            }
        finally:
            subprocess_tracker.untrack(999_990)
            subprocess_tracker.untrack(999_991)
        assert pid_file.read_text() == ""

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError, match="Unknown subprocess role"):
            subprocess_tracker.track(999_993, "browser")
        assert 999_993 not in subprocess_tracker.tracked()

    def test_kill_all_stops_tunnel_before_log_tail(self):
        subprocess_tracker.track(999_994, subprocess_tracker.LOG_TAIL)
        subprocess_tracker.track(999_995, subprocess_tracker.TUNNEL)
        with patch("bstack_harness.core.subprocess_tracker.os.kill") as kill:
            subprocess_tracker.kill_all()
        signalled = [c.args[0] for c in kill.call_args_list]
        assert signalled.index(999_995) < signalled.index(999_994)
        kill.assert_any_call(999_995, signal.SIGTERM)
        assert subprocess_tracker.tracked() == {}

    def test_cleanup_stale_pids(self, tmp_path):
        pid_file = tmp_path / "pids"
        pid_file.write_text("log-tail 222\nnot-a-pid\nbrowser 333\ntunnel x\ntunnel 111\n")
        subprocess_tracker.set_pid_file(pid_file)
        with patch("bstack_harness.core.subprocess_tracker.os.kill") as kill:
            killed = subprocess_tracker.cleanup_stale_pids()
        assert killed == 2
        assert [c.args for c in kill.call_args_list] == [
            (111, signal.SIGTERM),
            (222, signal.SIGTERM),
        ]
        assert not pid_file.exists()

    def test_cleanup_skips_dead_processes(self, tmp_path):
        pid_file = tmp_path / "pids"
        pid_file.write_text("tunnel 111\n")
        subprocess_tracker.set_pid_file(pid_file)
        with patch(
            "bstack_harness.core.subprocess_tracker.os.kill",
            side_effect=ProcessLookupError,
        ):
            assert subprocess_tracker.cleanup_stale_pids() == 0
        assert not pid_file.exists()

    def test_cleanup_without_pid_file(self):
        assert subprocess_tracker.cleanup_stale_pids() == 0


# Stand-in for tail that ignores SIGTERM; the ignore disposition survives exec.
STUBBORN_TAIL = ("sh", "-c", "trap '' TERM; exec tail -f \"$0\"")


def _pipes_closing(proc: asyncio.subprocess.Process) -> dict[int, bool]:
    return {
        fd: proc._transport.get_pipe_transport(fd).is_closing()
        for fd in (0, 1, 2)
    }


class TestLogTailProcess:
    async def test_forwards_appended_lines(self, tmp_path):
        path = tmp_path / "app.log"
        path.write_text("")
        sink = logging.getLogger("test.tail")
        seen: list[str] = []
        with patch.object(sink, "info", side_effect=seen.append):
            tail = LogTailProcess(str(path), sink)
            await tail.start()
            try:
                assert tail.is_alive
                assert tail.pid in subprocess_tracker.tracked()
                with path.open("a") as f:
                    f.write("first\nsecond\n")
                for _ in range(50):
                    if seen == ["first", "second"]:
                        break
                    await asyncio.sleep(0.1)
            finally:
                pid = tail.pid
                stopped = await tail.stop()

        assert seen == ["first", "second"]
        assert stopped is True
        assert pid not in subprocess_tracker.tracked()
        assert tail.is_alive is False

    async def test_stop_without_start(self, tmp_path):
        tail = LogTailProcess(str(tmp_path / "x.log"), logging.getLogger("test.tail"))
        assert await tail.stop() is False

    async def test_stop_closes_all_pipes(self, tmp_path):
        path = tmp_path / "app.log"
        path.write_text("")
        tail = LogTailProcess(str(path), logging.getLogger("test.tail"))
        await tail.start()
        proc = tail._proc
        assert await tail.stop() is True
        assert _pipes_closing(proc) == {0: True, 1: True, 2: True}

    async def test_stop_releases_pipes_when_sigterm_ignored(self, tmp_path):
        path = tmp_path / "app.log"
        path.write_text("")
        tail = LogTailProcess(str(path), logging.getLogger("test.tail"))
        with patch.object(LogTailProcess, "TAIL_COMMAND", STUBBORN_TAIL):
            await tail.start()
        proc = tail._proc
        try:
            # Give sh time to install the trap before it execs tail.
            await asyncio.sleep(0.3)
            stopped = await asyncio.wait_for(tail.stop(timeout=0.3), timeout=5)
            assert stopped is False
            assert proc.returncode is None
            assert _pipes_closing(proc) == {0: True, 1: True, 2: True}
            assert proc.pid in subprocess_tracker.tracked()
        finally:
            proc.kill()
            await proc.wait()
            subprocess_tracker.untrack(proc.pid)
