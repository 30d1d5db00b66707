"""
process_runner.py - low level helpers for child processes
---------------------------------------------------------
Reader threads that pump a child's stdout/stderr line by line, platform
specific Popen flags, graceful close requests and process tree termination.
Shared by the SteamCMD client and the game server supervisor.
"""

from __future__ import annotations
import os
import signal
import subprocess
import threading
import time
from typing import Any, Callable, Dict, List, Optional
import psutil
from .logging_setup import get_logger

log = get_logger("gameserver.launcher.proc")

POLL_INTERVAL = 0.25
ERROR_ELEVATION_REQUIRED = 740  # Win32 ERROR_ELEVATION_REQUIRED

LineHandler = Callable[[str], None]


def popen_platform_kwargs() -> Dict[str, Any]:
    """Popen flags for a windowless child in its own process group/session."""
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def is_elevation_error(exc: BaseException) -> bool:
    """True if a spawn failure means the binary needs higher privileges."""
    if getattr(exc, "winerror", None) == ERROR_ELEVATION_REQUIRED:
        return True
    return isinstance(exc, PermissionError)


def stream_reader(pipe, handler: LineHandler, name: str = "") -> None:
    """
    Reads a subprocess text pipe until EOF and hands every non-blank line
    (without its line ending) to ``handler``. Runs in its own thread.
    """
    try:
        for line in iter(pipe.readline, ""):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            try:
                handler(line)
            except Exception:
                log.exception("Line handler for %s failed", name or "process")
    except (OSError, ValueError) as e:
        # pipe closed underneath us during forced termination
        log.debug("Reader for %s stopped: %s", name or "process", e)
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def start_readers(proc: subprocess.Popen, name: str,
                  on_stdout: LineHandler, on_stderr: LineHandler) -> List[threading.Thread]:
    threads = []
    for label, pipe, handler in (("stdout", proc.stdout, on_stdout), ("stderr", proc.stderr, on_stderr)):
        if pipe is None:
            continue
        t = threading.Thread(
            target=stream_reader,
            args=(pipe, handler, f"{name} {label}"),
            name=f"{name}-{label}",
            daemon=True,
        )
        threads.append(t)
    # both handlers are bound before either stream is pumped
    for t in threads:
        t.start()
    return threads


def join_readers(threads: List[threading.Thread], timeout: float = 2.0) -> None:
    for t in threads:
        t.join(timeout=timeout)
        if t.is_alive():
            log.debug("Reader thread %s still draining after %.1fs", t.name, timeout)


def request_graceful_close(proc: subprocess.Popen) -> None:
    """Ask the child to shut down (CTRL_BREAK on Windows, SIGTERM elsewhere)."""
    if os.name == "nt":
        proc.send_signal(signal.CTRL_BREAK_EVENT)
    else:
        proc.terminate()


def wait_for_exit(proc: subprocess.Popen, timeout: Optional[float],
                  cancel: Optional[threading.Event] = None) -> bool:
    """
    Wait until ``proc`` exits. Returns True when it exited, False when the
    timeout elapsed or ``cancel`` was set first. ``timeout=None`` waits forever.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while proc.poll() is None:
        remaining = POLL_INTERVAL if deadline is None else min(POLL_INTERVAL, deadline - time.monotonic())
        if remaining <= 0:
            return False
        if cancel is not None:
            if cancel.wait(remaining):
                return proc.poll() is not None
        else:
            time.sleep(remaining)
    return True


def descendants(proc: subprocess.Popen) -> List[psutil.Process]:
    """Snapshot of every process below ``proc``; empty once it is gone."""
    try:
        return psutil.Process(proc.pid).children(recursive=True)
    except psutil.Error:
        return []


def kill_processes(procs: List[psutil.Process], timeout: float = 5.0) -> None:
    for p in procs:
        try:
            p.kill()
        except psutil.Error:
            pass
    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for p in alive:
        log.warning("Descendant process %s survived kill", p.pid)


def kill_leftovers(proc: subprocess.Popen, snapshot: List[psutil.Process], timeout: float = 5.0) -> None:
    """
    Kill what remains of an exited child: the descendants captured in
    ``snapshot`` plus, on POSIX, anything still in its session's process group.
    """
    if os.name != "nt":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    survivors = [p for p in snapshot if p.is_running()]
    if survivors:
        log.info("Killing %d leftover process(es) of PID %s", len(survivors), proc.pid)
        kill_processes(survivors, timeout)


def kill_process_tree(proc: subprocess.Popen, timeout: float = 5.0) -> None:
    """
    Kill ``proc`` and all of its descendants. Best effort: processes that are
    already gone are ignored.
    """
    children = descendants(proc)
    for child in children:
        try:
            child.kill()
        except psutil.Error:
            pass

    if proc.poll() is None:
        try:
            proc.kill()
        except OSError:
            pass
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        log.warning("Process %s did not exit %.0fs after kill", proc.pid, timeout)

    kill_processes(children, timeout)
