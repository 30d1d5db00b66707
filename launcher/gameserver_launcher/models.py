from __future__ import annotations
from pathlib import Path
from typing import List
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_ERROR_PATTERNS = ["error", "exception", "crash", "fatal"]


class SteamCmdConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    exe_path: Path = Field(..., description="Full path to the steamcmd executable")


class GameServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: int = Field(..., description="Steam App ID of the dedicated server (e.g. 354060 for RaceRoom)")
    install_directory: Path
    executable_path: Path = Field(..., description="Absolute, or relative to install_directory")
    launch_arguments: str = ""
    update_interval_minutes: int = Field(default=0, ge=0, description="0 = only update on startup/restart")
    profile: str = Field(default="generic", description="Game specialisation, see games.PROFILES")

    def resolve_executable(self) -> Path:
        if self.executable_path.is_absolute():
            return self.executable_path
        return self.install_directory / self.executable_path


class HealthCheckConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_consecutive_failures: int = Field(default=3, ge=1)
    check_interval_seconds: float = Field(default=30, gt=0)
    error_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_ERROR_PATTERNS))


class RootConfig(BaseModel):
    """
    Whole launcher configuration as read from appsettings.json.

    Sections mirror the three concerns of the launcher: where SteamCMD lives,
    which game server to install and run, and how its health is judged.
    """
    model_config = ConfigDict(frozen=True)

    steamcmd: SteamCmdConfig
    game_server: GameServerConfig
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
