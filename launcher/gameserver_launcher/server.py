"""
server.py - Supervises the dedicated game server process
--------------------------------------------------------
Starts the server binary with captured console streams, classifies its output
into a bounded error history, and stops it gracefully with a forced process
tree kill as fallback.
"""

from __future__ import annotations
import enum
import os
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union
from .error_history import ErrorHistory, MAX_STORED_ERRORS
from .errors import ElevationRequiredError
from .games import GameProfile, GenericGameProfile
from .logging_setup import GAME_LOGGER, get_logger
from .models import GameServerConfig, HealthCheckConfig
from . import process_runner

log = get_logger("gameserver.launcher.server")
console = get_logger(GAME_LOGGER)

STOP_GRACE_SECONDS = 15.0


class ServerState(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def build_command(exe_path: Path, arguments: str) -> Union[str, List[str]]:
    """Binary plus the launch argument string, passed through verbatim."""
    if os.name == "nt":
        cmd = subprocess.list2cmdline([str(exe_path)])
        return f"{cmd} {arguments}" if arguments else cmd
    return [str(exe_path)] + shlex.split(arguments)


class GameServer:
    def __init__(self, profile: Optional[GameProfile] = None, error_capacity: int = MAX_STORED_ERRORS,
                 stop_grace_seconds: float = STOP_GRACE_SECONDS):
        self.profile = profile or GenericGameProfile()
        self.errors = ErrorHistory(error_capacity)
        self.stop_grace_seconds = stop_grace_seconds
        self._proc: Optional[subprocess.Popen] = None
        self._readers: List[threading.Thread] = []
        self._health_cfg = HealthCheckConfig()
        self._state = ServerState.IDLE
        self._closed = False

    # ---------------------------------------------------------------------- #
    @property
    def is_running(self) -> bool:
        proc = self._proc
        if proc is None:
            return False
        try:
            return proc.poll() is None
        except OSError:
            return False

    @property
    def pid(self) -> Optional[int]:
        proc = self._proc
        return proc.pid if proc is not None else None

    @property
    def state(self) -> ServerState:
        if self._state == ServerState.RUNNING and not self.is_running:
            return ServerState.IDLE
        return self._state

    @property
    def recent_errors(self) -> Tuple[str, ...]:
        return self.errors.snapshot()

    def clear_errors(self) -> None:
        self.errors.clear()

    # ---------------------------------------------------------------------- #
    def start(self, game_config: GameServerConfig, health_config: HealthCheckConfig,
              cancel: Optional[threading.Event] = None) -> bool:
        """
        Launch the game server. Returns False when the binary is missing or
        the spawn fails; raises ElevationRequiredError when it can only be
        launched with higher privileges.
        """
        cancel = cancel or threading.Event()
        if self.is_running:
            log.warning("Game server already running (PID %s), not starting a second instance.", self.pid)
            return True
        self._release()

        exe_path = game_config.resolve_executable().absolute()
        if not exe_path.is_file():
            log.error("Game server executable not found at %s.", exe_path)
            return False

        arguments = self.profile.build_launch_arguments(game_config)
        cwd = exe_path.parent if exe_path.parent.is_dir() else game_config.install_directory
        log.info("Starting game server: %s %s", exe_path, arguments)

        self.clear_errors()
        self._health_cfg = health_config
        self._state = ServerState.STARTING
        try:
            proc = self._proc = subprocess.Popen(
                build_command(exe_path, arguments),
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **process_runner.popen_platform_kwargs(),
            )
            self._readers = process_runner.start_readers(
                proc, "gameserver",
                on_stdout=self._line_handler(proc, self._handle_output_line),
                on_stderr=self._line_handler(proc, self._handle_error_line),
            )
            log.info("Game server started with PID %s.", proc.pid)
            self._state = ServerState.RUNNING

            self.profile.on_started(cancel)
            return True
        except OSError as e:
            self._abort_start()
            if process_runner.is_elevation_error(e):
                raise ElevationRequiredError(f"{exe_path} requires elevated privileges to start") from e
            log.exception("Failed to start game server.")
            return False
        except Exception:
            log.exception("Failed to start game server.")
            self._abort_start()
            return False

    def stop(self, cancel: Optional[threading.Event] = None) -> None:
        """
        Stop the game server gracefully, killing the process tree if it does
        not exit within the grace period or ``cancel`` is set. Never raises.
        """
        cancel = cancel or threading.Event()
        proc = self._proc
        if proc is None or proc.poll() is not None:
            log.info("Game server is not running.")
            if proc is not None:
                process_runner.kill_leftovers(proc, [])
            self._release()
            return

        log.info("Stopping game server (PID %s)...", proc.pid)
        self._state = ServerState.STOPPING
        try:
            self.profile.on_stopping(cancel)
            # helpers are reparented once the server exits, so capture them first
            snapshot = process_runner.descendants(proc)
            process_runner.request_graceful_close(proc)

            if not process_runner.wait_for_exit(proc, self.stop_grace_seconds, cancel):
                if cancel.is_set():
                    log.warning("Stop cancelled while waiting for game server. Killing process...")
                else:
                    log.warning("Game server did not exit gracefully within %.0fs. Killing process...",
                                self.stop_grace_seconds)
                process_runner.kill_process_tree(proc)
            process_runner.kill_leftovers(proc, snapshot)

            log.info("Game server stopped.")
        except Exception:
            log.exception("Error stopping game server.")
            self._kill_quietly(proc)
        finally:
            self._release()

    def close(self) -> None:
        """Kill a still running server and release the handle. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        proc = self._proc
        if proc is not None and self.is_running:
            self._kill_quietly(proc)
        self._release()

    # ---------------------------------------------------------------------- #
    def _line_handler(self, proc: subprocess.Popen, handler: Callable[[str], None]) -> Callable[[str], None]:
        """Wrap ``handler`` so lines arriving after ``proc`` was released are dropped."""
        def handle(line: str) -> None:
            if proc is self._proc:
                handler(line)
            else:
                log.debug("Dropping output of released PID %s: %s", proc.pid, line)
        return handle

    def _handle_output_line(self, line: str) -> None:
        console.info("%s", line)
        if self.profile.is_error_line(line, self._health_cfg):
            self.errors.append(line)

    def _handle_error_line(self, line: str) -> None:
        console.warning("[stderr] %s", line)
        self.errors.append(line)

    def _kill_quietly(self, proc: subprocess.Popen) -> None:
        try:
            process_runner.kill_process_tree(proc)
        except Exception as e:
            log.debug("Ignoring failure to kill game server (pid=%s): %s", proc.pid, e)

    def _abort_start(self) -> None:
        proc = self._proc
        if proc is not None and proc.poll() is None:
            self._kill_quietly(proc)
        self._release()

    def _release(self) -> None:
        readers, self._readers = self._readers, []
        process_runner.join_readers(readers)
        self._proc = None
        self._state = ServerState.IDLE
