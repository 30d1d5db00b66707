from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from .models import RootConfig
from .logging_setup import get_logger

log = get_logger("gameserver.launcher.config")

# command-line flag -> (section, key)
OVERRIDE_KEYS = {
    "steamcmd": ("steamcmd", "exe_path"),
    "appid": ("game_server", "app_id"),
    "serverpath": ("game_server", "install_directory"),
    "exepath": ("game_server", "executable_path"),
    "launchargs": ("game_server", "launch_arguments"),
    "updateinterval": ("game_server", "update_interval_minutes"),
    "profile": ("game_server", "profile"),
}

def load_json(path: Path) -> Dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Config root must be an object")
    return data

def apply_overrides(raw: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``raw`` with the command-line overrides merged in.

    ``None`` values mean "flag not given" and are skipped.
    """
    merged = {section: dict(values) if isinstance(values, dict) else values
              for section, values in raw.items()}
    for flag, value in overrides.items():
        if value is None:
            continue
        if flag not in OVERRIDE_KEYS:
            raise KeyError(f"Unknown override {flag!r}")
        section, key = OVERRIDE_KEYS[flag]
        block = merged.setdefault(section, {})
        if not isinstance(block, dict):
            raise ValueError(f"Config section {section!r} must be an object")
        block[key] = value
        log.debug("Override %s.%s = %r", section, key, value)
    return merged

def load_config(config_path: Optional[Path], overrides: Optional[Mapping[str, Any]] = None) -> RootConfig:
    raw: Dict[str, Any] = {}
    if config_path is not None and config_path.is_file():
        log.info("Loading config: %s", config_path)
        raw = load_json(config_path)
    else:
        log.info("No config file at %s, using command-line values and defaults", config_path)
    cfg = RootConfig.model_validate(apply_overrides(raw, overrides or {}))
    log.info("Active config: app_id=%s install_dir=%s profile=%s",
             cfg.game_server.app_id, cfg.game_server.install_directory, cfg.game_server.profile)
    return cfg
