from __future__ import annotations
import argparse
import json
import signal
import threading
from pathlib import Path
from pydantic import ValidationError
from .settings import Settings
from .logging_setup import setup_logging, get_logger
from .config_loader import OVERRIDE_KEYS, load_config
from .errors import EXIT_FATAL, EXIT_OK
from .games import get_profile
from .orchestrator import Orchestrator
from .steamcmd import SteamCMD
from .api import serve_in_background

log = get_logger("gameserver.launcher.cli")

def _override_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument("--config", type=Path, help="Path to appsettings.json (default: $GSL_CONFIG)")
    g = p.add_argument_group("overrides", "Take precedence over the config file")
    g.add_argument("--steamcmd", help="Path to the steamcmd executable")
    g.add_argument("--appid", type=int, help="Steam App ID of the dedicated server")
    g.add_argument("--serverpath", help="Install directory of the game server")
    g.add_argument("--exepath", help="Server executable, absolute or relative to --serverpath")
    g.add_argument("--launchargs", help="Arguments passed verbatim to the server executable")
    g.add_argument("--updateinterval", type=int, help="Minutes between scheduled updates (0 = disabled)")
    g.add_argument("--profile", help="Game profile (generic, raceroom)")
    return p

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gameserver-launcher")
    sub = parser.add_subparsers(dest="cmd", required=True)
    common = _override_parser()
    sub.add_parser("run", parents=[common], help="Install/update, start and supervise the game server")
    sub.add_parser("check", parents=[common], help="Print the resolved config and SteamCMD status as JSON")
    return parser

def overrides_from_args(args: argparse.Namespace) -> dict:
    return {key: getattr(args, key, None) for key in OVERRIDE_KEYS}

def install_signal_handlers(stop_event: threading.Event, force_event: threading.Event) -> None:
    """First signal requests a graceful shutdown, a second one forces the kill."""
    def _handler(signum, frame):
        if stop_event.is_set():
            log.warning("Second stop signal (%s), killing game server.", signum)
            force_event.set()
        else:
            log.info("Stop signal (%s) received, shutting down...", signum)
            stop_event.set()

    for name in ("SIGINT", "SIGTERM", "SIGBREAK"):
        sig = getattr(signal, name, None)
        if sig is not None:
            signal.signal(sig, _handler)

def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings()
    setup_logging(settings)

    config_path = args.config or settings.config_path
    try:
        cfg = load_config(config_path, overrides_from_args(args))
        get_profile(cfg.game_server.profile)
    except (OSError, ValueError, ValidationError) as e:
        log.critical("Invalid configuration (%s): %s", config_path, e)
        return EXIT_FATAL

    if args.cmd == "check":
        steamcmd_ok = SteamCMD(cfg.steamcmd).validate()
        exe = cfg.game_server.resolve_executable()
        report = {
            "ok": steamcmd_ok,
            "config": cfg.model_dump(mode="json"),
            "executable": str(exe),
            "executable_exists": exe.is_file(),
        }
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return EXIT_OK if steamcmd_ok else EXIT_FATAL

    if args.cmd == "run":
        orch = Orchestrator(cfg)
        stop_event, force_event = threading.Event(), threading.Event()
        install_signal_handlers(stop_event, force_event)
        if settings.api_enabled:
            serve_in_background(orch, settings)
        rc = orch.run(stop_event, force_event)
        log.info("Launcher exited with rc=%s", rc)
        return rc

    return 2
