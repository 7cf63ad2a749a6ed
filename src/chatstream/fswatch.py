"""Filesystem change subscriptions on the asyncio loop.

    watcher = make_watcher(cfg.watch)
    sub = watcher.subscribe(project_dir, on_created, kind="dir")   # handler(name)
    sub = watcher.subscribe(file_path, on_modified, kind="file")   # handler(None)
    sub.cancel()

Handlers are plain callables run on the event loop thread, one at a time,
so they may touch shared state without locking.

Backends:
    InotifyWatcher   Linux; inotify fd registered with loop.add_reader
    PollWatcher      anywhere; stats subscribed paths every `interval` seconds
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

    from chatstream.config import WatchConfig

    Handler = Callable[[str | None], None]

logger = logging.getLogger("chatstream.fswatch")

Kind = Literal["dir", "file"]


class Subscription:
    """Cancellation handle returned by Watcher.subscribe."""

    def __init__(self, watcher: Watcher, path: Path, kind: Kind, handler: Handler, key: int = -1) -> None:
        self.watcher = watcher
        self.path = path
        self.kind = kind
        self.handler = handler
        self.key = key
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.watcher._cancel(self)

    def dispatch(self, name: str | None) -> None:
        if not self.active:
            return
        try:
            self.handler(name)
        except Exception:
            logger.exception("change handler failed for %s", self.path)

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"<Subscription {self.kind} {self.path} {state}>"


class Watcher:
    """Base class: subscribe to directory entries appearing or files changing."""

    def subscribe(self, path: Path | str, handler: Handler, kind: Kind = "file") -> Subscription:
        raise NotImplementedError

    def _cancel(self, sub: Subscription) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# inotify
# ---------------------------------------------------------------------------

class InotifyWatcher(Watcher):
    """inotify_simple on the running loop. Must be created inside a coroutine."""

    def __init__(self) -> None:
        import inotify_simple  # type: ignore[import]  # Linux only

        self._flags = inotify_simple.flags  # type: ignore[attr-defined]
        self._dir_mask = self._flags.CREATE | self._flags.MOVED_TO
        self._file_mask = self._flags.MODIFY | self._flags.CLOSE_WRITE
        self._inotify = inotify_simple.INotify()
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self._inotify.fileno(), self._drain)
        # wd -> subscriptions (inotify hands back the same wd for the same path)
        self._subs: dict[int, list[Subscription]] = {}
        self._closed = False

    def subscribe(self, path: Path | str, handler: Handler, kind: Kind = "file") -> Subscription:
        mask = self._dir_mask if kind == "dir" else self._file_mask
        wd = self._inotify.add_watch(str(path), mask)
        sub = Subscription(self, Path(path), kind, handler, key=wd)
        self._subs.setdefault(wd, []).append(sub)
        return sub

    def _cancel(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.key)
        if subs is None:
            return
        if sub in subs:
            subs.remove(sub)
        if not subs:
            del self._subs[sub.key]
            try:
                self._inotify.rm_watch(sub.key)
            except OSError:
                # Watched path already gone; the kernel dropped the watch itself.
                logger.debug("rm_watch failed for %s", sub.path)

    def _drain(self) -> None:
        for event in self._inotify.read(timeout=0):
            if event.mask & self._flags.IGNORED:
                # Watched path is gone; its subscriptions end with it.
                for sub in self._subs.pop(event.wd, ()):
                    sub.active = False
                continue
            for sub in list(self._subs.get(event.wd, ())):
                if sub.kind == "dir":
                    if event.name:
                        sub.dispatch(event.name)
                else:
                    sub.dispatch(None)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subs in list(self._subs.values()):
            for sub in subs:
                sub.active = False
        self._subs.clear()
        self._loop.remove_reader(self._inotify.fileno())
        self._inotify.close()


# ---------------------------------------------------------------------------
# Polling fallback
# ---------------------------------------------------------------------------

class PollWatcher(Watcher):
    """Polling fallback for macOS/Docker: compares listings and mtimes every interval."""

    def __init__(self, interval: float = 0.5) -> None:
        self.interval = interval
        self._seen: dict[Subscription, object] = {}
        self._task: asyncio.Task[None] | None = None

    @staticmethod
    def _snapshot(sub: Subscription) -> object:
        try:
            if sub.kind == "dir":
                return frozenset(os.listdir(sub.path))
            st = sub.path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)

    def subscribe(self, path: Path | str, handler: Handler, kind: Kind = "file") -> Subscription:
        path = Path(path)
        if not path.exists():
            # Same contract as inotify_add_watch.
            raise FileNotFoundError(2, "No such file or directory", str(path))
        sub = Subscription(self, path, kind, handler)
        self._seen[sub] = self._snapshot(sub)
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return sub

    def _cancel(self, sub: Subscription) -> None:
        self._seen.pop(sub, None)

    def check(self) -> None:
        """Run one polling round, dispatching any changes seen since the last."""
        for sub in list(self._seen):
            if sub not in self._seen:
                continue  # cancelled by an earlier handler this round
            before = self._seen[sub]
            after = self._snapshot(sub)
            self._seen[sub] = after
            if after is None and sub.kind == "file":
                # Deleted file: end the subscription, as inotify does.
                sub.active = False
                del self._seen[sub]
                continue
            if after is None or after == before:
                continue
            if sub.kind == "dir":
                previous = before if isinstance(before, frozenset) else frozenset()
                for name in sorted(after - previous):  # type: ignore[operator]
                    sub.dispatch(name)
            else:
                sub.dispatch(None)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.check()

    def close(self) -> None:
        for sub in self._seen:
            sub.active = False
        self._seen.clear()
        if self._task is not None:
            self._task.cancel()
            self._task = None


def make_watcher(cfg: WatchConfig) -> Watcher:
    """Pick a backend: inotify on Linux, polling elsewhere, unless configured."""
    backend = cfg.backend
    if backend == "auto":
        backend = "inotify" if sys.platform.startswith("linux") else "poll"
    if backend == "inotify":
        return InotifyWatcher()
    logger.info("polling for changes every %.1fs", cfg.poll_interval)
    return PollWatcher(interval=cfg.poll_interval)
