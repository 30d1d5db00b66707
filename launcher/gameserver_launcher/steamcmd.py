"""
steamcmd.py - SteamCMD install/update client
--------------------------------------------
Validates that SteamCMD is present and runs anonymous ``app_update``
invocations, streaming the tool's output into the launcher log as it arrives.
"""

from __future__ import annotations
import subprocess
import threading
from pathlib import Path
from typing import List, Optional
from .errors import OperationCancelled
from .logging_setup import get_logger
from .models import SteamCmdConfig
from . import process_runner

log = get_logger("gameserver.launcher.steamcmd")


class SteamCMD:
    def __init__(self, config: SteamCmdConfig):
        self.cfg = config
        self.bin = Path(config.exe_path)

    def validate(self) -> bool:
        """Check that the steamcmd executable exists at the configured path."""
        if not self.bin.is_file():
            log.error("SteamCMD not found at %s. Please install SteamCMD and set the correct path.", self.bin)
            return False
        log.info("SteamCMD found at %s.", self.bin)
        return True

    def build_command(self, app_id: int, install_dir: Path) -> List[str]:
        return [
            str(self.bin),
            "+login", "anonymous",
            "+force_install_dir", str(install_dir),
            "+app_update", str(app_id), "validate",
            "+quit",
        ]

    def update_or_install(self, app_id: int, install_dir: Path,
                          cancel: Optional[threading.Event] = None) -> bool:
        """
        Install or update ``app_id`` into ``install_dir``.

        Returns True on exit code 0, False on any other outcome. Raises
        OperationCancelled when ``cancel`` is set while SteamCMD is running.
        """
        cancel = cancel or threading.Event()
        log.info("Starting SteamCMD update for App ID %s in %s...", app_id, install_dir)

        try:
            install_dir.mkdir(parents=True, exist_ok=True)
            cmd = self.build_command(app_id, install_dir)
            log.debug("SteamCMD: %s", " ".join(cmd))
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **process_runner.popen_platform_kwargs(),
            )
        except Exception as e:
            log.error("Failed to run SteamCMD for App ID %s: %s", app_id, e)
            return False

        readers = process_runner.start_readers(
            proc, "steamcmd",
            on_stdout=lambda line: log.info("[SteamCMD] %s", line),
            on_stderr=lambda line: log.warning("[SteamCMD Error] %s", line),
        )
        try:
            if not process_runner.wait_for_exit(proc, None, cancel):
                log.warning("SteamCMD update cancelled for App ID %s.", app_id)
                self._terminate(proc)
                raise OperationCancelled(f"SteamCMD update for App ID {app_id} cancelled")

            rc = proc.returncode
            if rc == 0:
                log.info("SteamCMD update for App ID %s completed successfully.", app_id)
                return True
            log.error("SteamCMD exited with code %s for App ID %s.", rc, app_id)
            return False
        except OperationCancelled:
            raise
        except Exception as e:
            log.exception("Error while waiting for SteamCMD (App ID %s): %s", app_id, e)
            self._terminate(proc)
            return False
        finally:
            process_runner.join_readers(readers)

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> None:
        try:
            process_runner.kill_process_tree(proc)
        except Exception as e:
            log.debug("Ignoring failure to kill SteamCMD (pid=%s): %s", proc.pid, e)
