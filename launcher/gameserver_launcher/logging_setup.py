from __future__ import annotations
import json
import logging
from logging.handlers import RotatingFileHandler
from .settings import Settings

LAUNCHER_LOGGER = "gameserver.launcher"
GAME_LOGGER = "gameserver.game"

class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

def _rotating(path, fmt, level) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    fh.setFormatter(fmt)
    fh.setLevel(level)
    return fh

def setup_logging(settings: Settings) -> None:
    logs_dir = settings.log_dir
    logs_dir.mkdir(parents=True, exist_ok=True)
    level = settings.log_level.upper()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    fmt = _JsonFormatter() if settings.log_json else logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)

    # launcher events and the game console go to separate files, both still reach the console
    for name, filename in ((LAUNCHER_LOGGER, "launcher.log"), (GAME_LOGGER, "server.log")):
        logger = logging.getLogger(name)
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        logger.addHandler(_rotating(logs_dir / filename, fmt, level))
        logger.propagate = True

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
