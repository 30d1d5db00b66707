"""
Tests for the game server supervisor: start, output classification, stop.
"""

import os
import stat
import sys
import threading
import time
from pathlib import Path
from unittest.mock import patch

import psutil
import pytest

from gameserver_launcher.errors import ElevationRequiredError
from gameserver_launcher.games import RaceRoomGameProfile
from gameserver_launcher.models import GameServerConfig, HealthCheckConfig
from gameserver_launcher.server import GameServer, ServerState, build_command

posix_only = pytest.mark.skipif(os.name == "nt", reason="spawns shebang scripts")


def _script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def _wait_until(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def _gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


@pytest.fixture
def health_config():
    return HealthCheckConfig()


@pytest.fixture
def server():
    srv = GameServer()
    yield srv
    srv.close()


def _game_config(install_dir: Path, exe="server.py", args="") -> GameServerConfig:
    return GameServerConfig(app_id=354060, install_directory=install_dir,
                            executable_path=exe, launch_arguments=args)


class TestStartFailures:
    def test_missing_executable_returns_false(self, server, tmp_path, health_config):
        assert server.start(_game_config(tmp_path, "nope.exe"), health_config) is False
        assert server.pid is None
        assert server.is_running is False

    def test_elevation_required_propagates(self, server, tmp_path, health_config):
        (tmp_path / "server.py").write_text("", encoding="utf-8")
        err = OSError(13, "The requested operation requires elevation")
        err.winerror = 740
        with patch("gameserver_launcher.server.subprocess.Popen", side_effect=err):
            with pytest.raises(ElevationRequiredError):
                server.start(_game_config(tmp_path), health_config)
        assert server.pid is None

    def test_permission_error_is_elevation(self, server, tmp_path, health_config):
        (tmp_path / "server.py").write_text("", encoding="utf-8")
        with patch("gameserver_launcher.server.subprocess.Popen", side_effect=PermissionError(13, "denied")):
            with pytest.raises(ElevationRequiredError):
                server.start(_game_config(tmp_path), health_config)

    def test_other_spawn_error_returns_false(self, server, tmp_path, health_config):
        (tmp_path / "server.py").write_text("", encoding="utf-8")
        with patch("gameserver_launcher.server.subprocess.Popen", side_effect=OSError(8, "Exec format error")):
            assert server.start(_game_config(tmp_path), health_config) is False
        assert server.state is ServerState.IDLE


def test_never_started_server_is_not_running(server):
    assert server.is_running is False
    assert server.recent_errors == ()
    server.stop()  # no-op


@pytest.mark.skipif(os.name == "nt", reason="posix argument splitting")
def test_build_command_splits_arguments(tmp_path):
    assert build_command(tmp_path / "srv", '-port 1 -name "My Server"') == [
        str(tmp_path / "srv"), "-port", "1", "-name", "My Server",
    ]


@posix_only
class TestRunningServer:
    def test_output_classification(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", (
            "import sys, time\n"
            "print('server ready', flush=True)\n"
            "print('An ERROR occurred loading track', flush=True)\n"
            "print('', flush=True)\n"
            "print('fatal crash detected', file=sys.stderr, flush=True)\n"
            "print('harmless stderr chatter', file=sys.stderr, flush=True)\n"
            "time.sleep(60)\n"
        ))
        assert server.start(_game_config(tmp_path), health_config) is True
        assert server.is_running
        assert server.state is ServerState.RUNNING

        assert _wait_until(lambda: len(server.recent_errors) == 3)
        errors = server.recent_errors
        assert "An ERROR occurred loading track" in errors
        assert "fatal crash detected" in errors
        assert "harmless stderr chatter" in errors
        assert "server ready" not in errors

        server.clear_errors()
        assert server.recent_errors == ()

    def test_working_directory_and_arguments(self, server, tmp_path, health_config):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        _script(bin_dir / "server.py", (
            "import os, sys, time\n"
            "print('cwd error ' + os.getcwd(), file=sys.stderr, flush=True)\n"
            "print('argv error ' + ' '.join(sys.argv[1:]), file=sys.stderr, flush=True)\n"
            "time.sleep(60)\n"
        ))
        cfg = _game_config(tmp_path, "bin/server.py", '-port 27015 -name "My Server"')
        assert server.start(cfg, health_config) is True
        assert _wait_until(lambda: len(server.recent_errors) == 2)

        errors = server.recent_errors
        assert f"cwd error {os.path.realpath(bin_dir)}" in errors
        assert "argv error -port 27015 -name My Server" in errors

    def test_start_clears_previous_errors(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", "import time\ntime.sleep(60)\n")
        server.errors.append("stale error")
        assert server.start(_game_config(tmp_path), health_config) is True
        assert server.recent_errors == ()

    def test_second_start_keeps_single_process(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", "import time\ntime.sleep(60)\n")
        assert server.start(_game_config(tmp_path), health_config) is True
        pid = server.pid
        assert server.start(_game_config(tmp_path), health_config) is True
        assert server.pid == pid

    def test_exited_process_is_not_running(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", "raise SystemExit(3)\n")
        assert server.start(_game_config(tmp_path), health_config) is True
        assert _wait_until(lambda: not server.is_running)
        server.stop()
        assert server.pid is None

    def test_graceful_stop(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", "import time\ntime.sleep(60)\n")
        assert server.start(_game_config(tmp_path), health_config) is True
        pid = server.pid

        started = time.monotonic()
        server.stop(threading.Event())

        assert time.monotonic() - started < 5
        assert server.is_running is False
        assert server.pid is None
        assert _wait_until(lambda: _gone(pid))

    def test_cancel_during_grace_period_kills_promptly(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ignoring sigterm error', file=sys.stderr, flush=True)\n"
            "time.sleep(60)\n"
        ))
        assert server.start(_game_config(tmp_path), health_config) is True
        assert _wait_until(lambda: len(server.recent_errors) == 1)
        pid = server.pid

        cancel = threading.Event()
        threading.Timer(1.0, cancel.set).start()
        started = time.monotonic()
        server.stop(cancel)
        elapsed = time.monotonic() - started

        assert 0.5 < elapsed < 8
        assert _wait_until(lambda: _gone(pid))

    def test_grace_timeout_kills_process_tree(self, tmp_path, health_config):
        _script(tmp_path / "server.py", (
            "import signal, subprocess, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
            "print(f'child error {child.pid}', file=sys.stderr, flush=True)\n"
            "time.sleep(60)\n"
        ))
        srv = GameServer(stop_grace_seconds=0.5)
        try:
            assert srv.start(_game_config(tmp_path), health_config) is True
            assert _wait_until(lambda: len(srv.recent_errors) == 1)
            child_pid = int(srv.recent_errors[0].split()[-1])
            pid = srv.pid

            srv.stop()

            assert _wait_until(lambda: _gone(pid))
            assert _wait_until(lambda: _gone(child_pid))
        finally:
            srv.close()

    def test_close_is_idempotent_and_kills(self, tmp_path, health_config):
        _script(tmp_path / "server.py", "import time\ntime.sleep(60)\n")
        srv = GameServer(profile=RaceRoomGameProfile())
        assert srv.start(_game_config(tmp_path), health_config) is True
        pid = srv.pid

        srv.close()
        srv.close()

        assert srv.is_running is False
        assert _wait_until(lambda: _gone(pid))

    def test_helper_output_does_not_leak_into_next_run(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", (
            "import subprocess, sys, time\n"
            "helper = subprocess.Popen([sys.executable, '-c',\n"
            "    'import sys, time\\n'\n"
            "    'while True:\\n'\n"
            "    '    print(\"helper noise\", file=sys.stderr, flush=True)\\n'\n"
            "    '    time.sleep(0.2)\\n'])\n"
            "time.sleep(60)\n"
        ))
        assert server.start(_game_config(tmp_path), health_config) is True
        assert _wait_until(lambda: "helper noise" in server.recent_errors)
        helper_pid = None
        for proc in psutil.Process(server.pid).children(recursive=True):
            helper_pid = proc.pid

        server.stop(threading.Event())
        assert helper_pid is not None
        assert _wait_until(lambda: _gone(helper_pid))

        _script(tmp_path / "quiet.py", "import time\ntime.sleep(60)\n")
        assert server.start(_game_config(tmp_path, "quiet.py"), health_config) is True
        time.sleep(1.0)
        assert server.recent_errors == ()

    def test_lines_from_released_process_are_dropped(self, server, tmp_path, health_config):
        _script(tmp_path / "server.py", "import time\ntime.sleep(60)\n")
        assert server.start(_game_config(tmp_path), health_config) is True
        stale = server._line_handler(server._proc, server._handle_error_line)

        server.stop(threading.Event())
        stale("late error from old process")

        assert server.recent_errors == ()


class _ReleasedBetweenReads(GameServer):
    """Handle that disappears after the first read, as when another thread releases it."""

    def __init__(self):
        super().__init__()
        self._reads = 0

    @property
    def _proc(self):
        self._reads += 1
        return type("Proc", (), {"pid": 4242})() if self._reads == 1 else None

    @_proc.setter
    def _proc(self, value):
        pass


def test_pid_reads_handle_once():
    assert _ReleasedBetweenReads().pid == 4242
