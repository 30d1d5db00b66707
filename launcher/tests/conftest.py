import threading
from typing import List, Optional

import pytest

from gameserver_launcher.error_history import ErrorHistory
from gameserver_launcher.games import GenericGameProfile
from gameserver_launcher.models import RootConfig
from gameserver_launcher.server import ServerState


class FakeSteamCMD:
    def __init__(self, events: List[str], valid: bool = True, update_ok: bool = True):
        self.events = events
        self.valid = valid
        self.update_ok = update_ok
        self.exc: Optional[BaseException] = None

    def validate(self) -> bool:
        return self.valid

    def update_or_install(self, app_id, install_dir, cancel=None) -> bool:
        self.events.append("update")
        if self.exc is not None:
            raise self.exc
        return self.update_ok


class FakeServer:
    """Records lifecycle calls instead of spawning anything."""

    def __init__(self, events: List[str]):
        self.events = events
        self.profile = GenericGameProfile()
        self.errors = ErrorHistory()
        self.running = False
        self.start_result = True
        self.start_exc: Optional[BaseException] = None
        self.stop_cancels: List[threading.Event] = []
        self.closed = False

    @property
    def is_running(self) -> bool:
        return self.running

    @property
    def pid(self):
        return 1234 if self.running else None

    @property
    def state(self) -> ServerState:
        return ServerState.RUNNING if self.running else ServerState.IDLE

    @property
    def recent_errors(self):
        return self.errors.snapshot()

    def clear_errors(self) -> None:
        self.events.append("clear")
        self.errors.clear()

    def start(self, game_config, health_config, cancel=None) -> bool:
        self.events.append("start")
        if self.start_exc is not None:
            raise self.start_exc
        self.running = self.start_result
        return self.start_result

    def stop(self, cancel=None) -> None:
        self.events.append("stop")
        self.stop_cancels.append(cancel)
        self.running = False

    def close(self) -> None:
        self.closed = True
        self.running = False


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _config(tmp_path, **game_overrides) -> RootConfig:
    game = {"app_id": 354060, "install_directory": str(tmp_path), "executable_path": "server"}
    game.update(game_overrides)
    return RootConfig.model_validate({
        "steamcmd": {"exe_path": str(tmp_path / "steamcmd.sh")},
        "game_server": game,
        "health_check": {"max_consecutive_failures": 3, "check_interval_seconds": 0.01},
    })


@pytest.fixture
def make_config(tmp_path):
    def _make(**game_overrides) -> RootConfig:
        return _config(tmp_path, **game_overrides)
    return _make


@pytest.fixture
def events():
    return []


@pytest.fixture
def fake_steamcmd(events):
    return FakeSteamCMD(events)


@pytest.fixture
def fake_server(events):
    return FakeServer(events)


@pytest.fixture
def clock():
    return FakeClock()
