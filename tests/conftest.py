"""Shared fakes and fixtures for the supervisor tests."""

from __future__ import annotations

import itertools
import logging
import threading
from pathlib import Path

import pytest

from src.local.config import SupervisorConfig
from src.local.supervisor import ChildSupervisor


class FakeDetector:
    """Detector whose answer is set by the test. Records every query."""

    def __init__(self, present: bool = False):
        self.present = present
        self.calls: list[str] = []

    def exists(self, process_name: str) -> bool:
        self.calls.append(process_name)
        return self.present


class FakeHandle:
    """Stands in for ManagedProcess."""

    _pids = itertools.count(1000)

    def __init__(self, name: str):
        self.name = name
        self.pid = next(self._pids)
        self.alive = True

    def is_alive(self) -> bool:
        return self.alive


class FakeSpawner:
    """Records spawn calls; raises `error` instead of spawning when set."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[dict] = []
        self.handles: list[FakeHandle] = []

    def __call__(self, launch_path, env, name):
        self.calls.append({"launch_path": launch_path, "env": dict(env), "name": name})
        if self.error is not None:
            raise self.error
        handle = FakeHandle(name)
        self.handles.append(handle)
        return handle


class BlockingSpawner(FakeSpawner):
    """Spawner that parks inside the spawn call until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, launch_path, env, name):
        self.entered.set()
        assert self.release.wait(5), "spawner was never released"
        return super().__call__(launch_path, env, name)


class FakeWatcher:
    """Captures exit callbacks so tests can simulate the child exiting."""

    def __init__(self):
        self.watched: list[tuple[FakeHandle, object]] = []

    def __call__(self, handle, on_exit):
        self.watched.append((handle, on_exit))

    def exit(self, index: int = -1, code: int = 0) -> None:
        handle, on_exit = self.watched[index]
        handle.alive = False
        on_exit(handle, code)


class FakeTimer:
    """threading.Timer replacement that only fires when the test says so."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


class TimerFactory:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args=args, kwargs=kwargs)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging() replaces the root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config(tmp_path: Path) -> SupervisorConfig:
    return SupervisorConfig(
        process_name="tmpapp",
        launch_path=tmp_path / "start.sh",
        poll_interval_ms=30_000,
        port=4000,
        env={"PORT": "4000"},
        relaunch_delay_ms=1_000,
    )


@pytest.fixture
def detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def watcher() -> FakeWatcher:
    return FakeWatcher()


@pytest.fixture
def timers() -> TimerFactory:
    return TimerFactory()


@pytest.fixture
def supervisor(config, detector, spawner, watcher, timers) -> ChildSupervisor:
    return ChildSupervisor(config, detector, spawner=spawner, watcher=watcher, timer_factory=timers)
