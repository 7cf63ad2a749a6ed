"""Tail one JSONL file: emit every new complete line once, in file order.

A pass re-reads the whole file, splits it into complete lines and hands every
line past the file's cursor to the reconciler. Confirmed lines go to the sink
(stdout) and then, if a store is attached, to the persistence gateway. The
cursor moves past each line whether or not it was confirmed, so a line that
never parses is not retried forever.

Whole-file re-reads instead of byte offsets: writers buffer and rewrite in
ways that make byte offsets unreliable, and transcript files are small.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from chatstream.notify import notify_parse_failure

if TYPE_CHECKING:
    from collections.abc import Callable

    from chatstream.fswatch import Subscription, Watcher
    from chatstream.offsets import OffsetTracker
    from chatstream.persist import EntryStore
    from chatstream.reconcile import Confirmation, LineReconciler

logger = logging.getLogger("chatstream.tailer")


class FileTailer:
    """Read-and-emit passes for every tailed file, one change subscription each.

    Passes for the same file never overlap: a change that arrives while a
    pass is suspended marks the file dirty and the pass runs again after.
    """

    def __init__(
        self,
        watcher: Watcher,
        offsets: OffsetTracker,
        reconciler: LineReconciler,
        sink: Callable[[str], object],
        *,
        cwd: str,
        slug: str = "",
        store: EntryStore | None = None,
        notify: bool = False,
    ) -> None:
        self.watcher = watcher
        self.offsets = offsets
        self.reconciler = reconciler
        self.sink = sink
        self.cwd = cwd
        self.slug = slug
        self.store = store
        self.notify = notify
        self._subs: dict[str, Subscription] = {}
        self._running: set[str] = set()
        self._dirty: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def paths(self) -> list[str]:
        return [key for key, sub in self._subs.items() if sub.active]

    def tail(self, path: Path | str) -> bool:
        """Start tailing path. A second call for the same path does nothing.

        Once the file's subscription has ended (the file was deleted), tailing
        it again starts a new file from line one.
        """
        key = str(path)
        old = self._subs.get(key)
        if old is not None:
            if old.active:
                return False
            del self._subs[key]
            self.offsets.forget(key)
        try:
            self._subs[key] = self.watcher.subscribe(path, lambda _name: self.schedule(key), kind="file")
        except OSError as exc:
            logger.debug("cannot watch %s: %s", path, exc)
            return False
        self.schedule(key)
        return True

    def schedule(self, path: Path | str) -> None:
        """Queue a pass for path, or mark it dirty if one is running."""
        key = str(path)
        if key in self._running:
            self._dirty.add(key)
            return
        self._running.add(key)
        task = asyncio.get_running_loop().create_task(self._run(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, key: str) -> None:
        try:
            while True:
                self._dirty.discard(key)
                await self.process(Path(key))
                if key not in self._dirty:
                    break
        except Exception:
            logger.exception("tail pass failed: %s", key)
        finally:
            self._running.discard(key)

    async def process(self, path: Path) -> int:
        """One read-and-emit pass over path. Returns the number of lines emitted."""
        try:
            lines = self.reconciler.read(path)
        except OSError as exc:
            # Deleted or unreadable for now; the next change event retries.
            logger.debug("read failed for %s: %s", path, exc)
            return 0

        emitted = 0
        for index in range(self.offsets.get(path), len(lines)):
            try:
                result = await self.reconciler.confirm(path, index, lines[index])
            except Exception:
                logger.exception("skipped %s line %d: confirmation failed", path.name, index + 1)
                self.offsets.advance(path, index + 1)
                continue
            if result.text is not None:
                self.sink(result.text)
                emitted += 1
                if self.store is not None:
                    await self.store.persist(result.text, self.cwd, path)
            else:
                self._skipped(path, result)
            self.offsets.advance(path, index + 1)
        self.offsets.advance(path, len(lines))
        return emitted

    def _skipped(self, path: Path, result: Confirmation) -> None:
        waited_ms = result.waited * 1000
        logger.warning(
            "skipped %s line %d: not valid JSON after %.0fms",
            path.name, result.line_number, waited_ms,
        )
        if self.notify:
            notify_parse_failure(self.slug, self.cwd, path.name, result.line_number, waited_ms)

    async def drain(self) -> None:
        """Wait until no pass is running or queued."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        for sub in self._subs.values():
            sub.cancel()
        self._subs.clear()
        for task in list(self._tasks):
            task.cancel()
