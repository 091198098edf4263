#!/usr/bin/env python3
"""Pytest fixtures for trackpad_relay tests.

Provides a recording input backend in place of xdotool, a controllable
clock, and ready-made device/registry/store instances.
"""

from pathlib import Path

import pytest

from trackpad_relay.config import Config
from trackpad_relay.files import FileStore
from trackpad_relay.input_handler import DeviceWriter
from trackpad_relay.sessions import SessionRegistry


class RecordingBackend:
    """Input backend that records calls instead of touching X."""

    def __init__(self):
        self.calls = []

    def move_relative(self, dx, dy):
        self.calls.append(("move", dx, dy))

    def click(self, button, repeat=1):
        self.calls.append(("click", button, repeat))

    def mouse_down(self, button):
        self.calls.append(("down", button))

    def mouse_up(self, button):
        self.calls.append(("up", button))

    def key_press(self, key):
        self.calls.append(("key", key))


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def device(backend: RecordingBackend) -> DeviceWriter:
    return DeviceWriter(backend)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> FileStore:
    return FileStore(tmp_path / "uploads", ttl=3600, grace=600, clock=clock)


@pytest.fixture
def registry(device: DeviceWriter, store: FileStore) -> SessionRegistry:
    return SessionRegistry(device, files=store, queue_size=8)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with uploads in a temp dir and no config files read."""
    return Config.from_dict({
        "server": {"host": "127.0.0.1", "port": 0},
        "files": {"upload_dir": str(tmp_path / "uploads")},
    })
