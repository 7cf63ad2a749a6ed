"""Shared fixtures: isolated environment, fake watcher, recording sleep."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from chatstream.fswatch import Subscription, Watcher


class FakeWatcher(Watcher):
    """Subscriptions fired by hand. Missing paths raise like inotify does."""

    def __init__(self) -> None:
        self.subs: list[Subscription] = []

    def subscribe(self, path, handler, kind="file"):
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(2, "No such file or directory", str(path))
        sub = Subscription(self, path, kind, handler)
        self.subs.append(sub)
        return sub

    def _cancel(self, sub):
        self.subs.remove(sub)

    def active_for(self, path) -> list[Subscription]:
        return [s for s in self.subs if s.path == Path(path)]

    def end(self, path) -> None:
        """End the subscriptions on path, as a backend does when the path is deleted."""
        for sub in self.active_for(path):
            sub.active = False
            self.subs.remove(sub)

    def fire(self, path, name=None) -> None:
        for sub in self.active_for(path):
            sub.dispatch(name)

    def close(self) -> None:
        for sub in list(self.subs):
            sub.cancel()


class RecordingSleep:
    """Stand-in for asyncio.sleep: records delays, optionally runs a hook per call."""

    def __init__(self, hook=None) -> None:
        self.delays: list[float] = []
        self.hook = hook

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.hook is not None:
            self.hook(len(self.delays))
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a temp dir and clear chatstream env vars."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for var in ("CHATSTREAM_CONFIG", "CHATSTREAM_DEBUG", "CHATSTREAM_PROJECTS_DIR"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def fake_watcher() -> FakeWatcher:
    return FakeWatcher()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_sleep():
    """Factory: make_sleep(hook) -> RecordingSleep calling hook(n) on the n-th sleep."""
    return RecordingSleep


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return _wait
