"""
games.py - per-game behaviour of the supervised server
------------------------------------------------------
A game profile decides the launch arguments, which console lines count as
errors, and what happens right after start and right before stop. Profiles
reuse the module level ``default_*`` functions instead of subclassing.
"""

from __future__ import annotations
import threading
from typing import Dict, Iterable, Protocol
from .logging_setup import get_logger
from .models import GameServerConfig, HealthCheckConfig

log = get_logger("gameserver.launcher.games")


class GameProfile(Protocol):
    name: str

    def build_launch_arguments(self, config: GameServerConfig) -> str: ...

    def is_error_line(self, line: str, health_config: HealthCheckConfig) -> bool: ...

    def on_started(self, cancel: threading.Event) -> None: ...

    def on_stopping(self, cancel: threading.Event) -> None: ...


def default_launch_arguments(config: GameServerConfig) -> str:
    return config.launch_arguments or ""


def matches_any(line: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match of ``line`` against ``patterns``."""
    lowered = line.casefold()
    return any(p and p.casefold() in lowered for p in patterns)


def default_is_error_line(line: str, health_config: HealthCheckConfig) -> bool:
    return matches_any(line, health_config.error_patterns)


class GenericGameProfile:
    """Uses the configuration values as-is. Fits any game without quirks."""

    name = "generic"

    def build_launch_arguments(self, config: GameServerConfig) -> str:
        return default_launch_arguments(config)

    def is_error_line(self, line: str, health_config: HealthCheckConfig) -> bool:
        return default_is_error_line(line, health_config)

    def on_started(self, cancel: threading.Event) -> None:
        pass

    def on_stopping(self, cancel: threading.Event) -> None:
        pass


class RaceRoomGameProfile:
    """
    RaceRoom Racing Experience dedicated server (App ID 354060).

    The server takes its setup from its own config file, so launch arguments
    are only whatever the user configured.
    """

    name = "raceroom"
    app_id = 354060
    extra_error_patterns = ("error",)

    def build_launch_arguments(self, config: GameServerConfig) -> str:
        if config.launch_arguments.strip():
            return config.launch_arguments
        return ""

    def is_error_line(self, line: str, health_config: HealthCheckConfig) -> bool:
        if matches_any(line, self.extra_error_patterns):
            return True
        return default_is_error_line(line, health_config)

    def on_started(self, cancel: threading.Event) -> None:
        log.info("RaceRoom Dedicated Server has started. Waiting for server initialization...")

    def on_stopping(self, cancel: threading.Event) -> None:
        log.info("Initiating graceful shutdown of RaceRoom Dedicated Server...")


PROFILES: Dict[str, type] = {
    GenericGameProfile.name: GenericGameProfile,
    RaceRoomGameProfile.name: RaceRoomGameProfile,
}


def get_profile(name: str) -> GameProfile:
    key = (name or GenericGameProfile.name).strip().lower()
    try:
        return PROFILES[key]()
    except KeyError:
        raise ValueError(f"Unknown game profile {name!r}, expected one of {sorted(PROFILES)}") from None
