from __future__ import annotations
import threading
import time
from typing import Callable, Optional
from .errors import EXIT_FATAL, EXIT_OK, ElevationRequiredError, OperationCancelled
from .games import get_profile
from .health import HealthResult, HealthStatus, evaluate_health
from .logging_setup import get_logger
from .models import RootConfig
from .server import GameServer
from .steamcmd import SteamCMD

log = get_logger("gameserver.launcher.orch")


class Orchestrator:
    """
    Drives the game server lifecycle:
    SteamCMD validation -> install/update -> start -> monitor -> restart on failure,
    plus the optional periodic update cycle.

    All counters and timestamps below are only touched from the thread that
    calls ``run``.
    """

    def __init__(self, config: RootConfig, *, steamcmd: Optional[SteamCMD] = None,
                 server: Optional[GameServer] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.game_cfg = config.game_server
        self.health_cfg = config.health_check
        self.steamcmd = steamcmd or SteamCMD(config.steamcmd)
        self.server = server or GameServer(get_profile(self.game_cfg.profile))
        self._clock = clock
        self.consecutive_failures = 0
        self.last_update = clock()
        self.last_health: Optional[HealthResult] = None

    @property
    def update_interval_seconds(self) -> Optional[float]:
        minutes = self.game_cfg.update_interval_minutes
        return minutes * 60.0 if minutes > 0 else None

    # ---------------------------------------------------------------------- #
    def run(self, stop_event: threading.Event, force_event: Optional[threading.Event] = None) -> int:
        """
        Run until ``stop_event`` is set. Returns the process exit code.

        On shutdown the server gets the full graceful stop window; setting
        ``force_event`` cuts that wait short and kills it.
        """
        log.info("Game server launcher starting for App ID %s...", self.game_cfg.app_id)

        if not self.steamcmd.validate():
            log.critical("SteamCMD validation failed. Service cannot start.")
            return EXIT_FATAL

        try:
            self.update_and_start(stop_event)
            self.monitor_loop(stop_event)
        except ElevationRequiredError:
            log.critical("The game server requires administrator privileges. Stopping the service.", exc_info=True)
            self.server.close()
            return EXIT_FATAL
        except OperationCancelled as e:
            log.info("Stop requested: %s", e)

        log.info("Launcher stopping. Shutting down game server...")
        self.server.stop(force_event or threading.Event())
        return EXIT_OK

    def update_and_start(self, cancel: threading.Event) -> bool:
        updated = self.steamcmd.update_or_install(self.game_cfg.app_id, self.game_cfg.install_directory, cancel)
        if not updated:
            log.warning("SteamCMD update failed. Attempting to start server with existing files...")

        started = self.server.start(self.game_cfg, self.health_cfg, cancel)
        if not started:
            log.error("Failed to start game server.")
        else:
            self.consecutive_failures = 0
        return started

    def monitor_loop(self, cancel: threading.Event) -> None:
        self.last_update = self._clock()
        while not cancel.is_set():
            if cancel.wait(self.health_cfg.check_interval_seconds):
                break
            self.tick(cancel)

    def tick(self, cancel: threading.Event) -> HealthResult:
        """One monitoring pass: health check, threshold restart, scheduled update."""
        result = evaluate_health(self.server)
        self.last_health = result
        max_failures = self.health_cfg.max_consecutive_failures

        if result.status is HealthStatus.HEALTHY:
            self.consecutive_failures = 0
            log.debug("Health check passed.")
        elif result.status is HealthStatus.DEGRADED:
            self.consecutive_failures += 1
            log.warning("Health check degraded (%d/%d): %s",
                        self.consecutive_failures, max_failures, result.description)
        else:
            self.consecutive_failures += 1
            log.error("Health check unhealthy (%d/%d): %s",
                      self.consecutive_failures, max_failures, result.description)

        if self.consecutive_failures >= max_failures:
            log.warning("Consecutive failure threshold reached (%d). Restarting game server with update...",
                        self.consecutive_failures)
            self.restart_cycle(cancel)

        # may run right after a threshold restart in the same tick
        interval = self.update_interval_seconds
        if interval is not None and self._clock() - self.last_update >= interval:
            log.info("Periodic update check triggered.")
            self.server.stop(cancel)
            self.update_and_start(cancel)
            self.last_update = self._clock()

        return result

    def restart_cycle(self, cancel: threading.Event) -> None:
        self.server.stop(cancel)
        self.server.clear_errors()
        self.consecutive_failures = 0
        self.update_and_start(cancel)
        self.last_update = self._clock()

    def status(self) -> dict:
        return {
            "app_id": self.game_cfg.app_id,
            "profile": self.server.profile.name,
            "state": self.server.state.value,
            "running": self.server.is_running,
            "pid": self.server.pid,
            "consecutive_failures": self.consecutive_failures,
            "max_consecutive_failures": self.health_cfg.max_consecutive_failures,
            "seconds_since_update": round(self._clock() - self.last_update, 1),
            "update_interval_minutes": self.game_cfg.update_interval_minutes,
            "recent_errors": list(self.server.recent_errors),
        }
