"""Find the JSONL files of the current project and hand them to the tailer.

Project directory: <projects_dir>/<slug of cwd>. If it exists, files in it
modified since startup are tailed right away and the directory is watched for
new ones. If it does not exist yet, its parent is watched until an entry with
exactly that slug appears; the switch to the active state happens once.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from chatstream.fswatch import Subscription, Watcher
    from chatstream.tailer import FileTailer

logger = logging.getLogger("chatstream.discovery")

_SUFFIX = ".jsonl"


class ProjectWatcher:
    """Discovery for one project directory."""

    def __init__(self, project_dir: Path, watcher: Watcher, tailer: FileTailer, started_at: float) -> None:
        self.project_dir = project_dir
        self.slug = project_dir.name
        self.watcher = watcher
        self.tailer = tailer
        self.started_at = started_at   # wall-clock seconds, compared with st_mtime
        self.active = False
        self._dir_sub: Subscription | None = None
        self._parent_sub: Subscription | None = None

    def start(self) -> None:
        """Activate now, or wait for the project directory to be created.

        Raises OSError if neither the project directory nor its parent exists.
        """
        if self.project_dir.is_dir():
            self._activate()
            return
        logger.info("Waiting for project directory: %s", self.project_dir)
        self._parent_sub = self.watcher.subscribe(self.project_dir.parent, self._on_parent_entry, kind="dir")
        # Created between the check above and the subscription.
        if self.project_dir.is_dir():
            self._on_parent_entry(self.slug)

    def _on_parent_entry(self, name: str | None) -> None:
        if name != self.slug or self.active or not self.project_dir.is_dir():
            return
        logger.info("Project directory created: %s", self.project_dir)
        if self._parent_sub is not None:
            self._parent_sub.cancel()
            self._parent_sub = None
        self._activate()

    def _activate(self) -> None:
        self.active = True
        logger.info("Found project: %s", self.project_dir)
        try:
            self._dir_sub = self.watcher.subscribe(self.project_dir, self._on_entry, kind="dir")
        except OSError as exc:
            logger.debug("cannot watch %s: %s", self.project_dir, exc)
        else:
            logger.info("Watching for new files...")
        for path in self.scan():
            logger.info("Processing existing file: %s", path.name)
            self.tailer.tail(path)

    def _on_entry(self, name: str | None) -> None:
        if not name or not name.endswith(_SUFFIX):
            return
        path = self.project_dir / name
        if str(path) in self.tailer.paths:
            return
        logger.info("New file detected: %s", name)
        self.tailer.tail(path)

    def scan(self) -> list[Path]:
        """Matching files modified at or after startup. Listing errors yield []."""
        try:
            names = sorted(os.listdir(self.project_dir))
        except OSError as exc:
            logger.debug("cannot list %s: %s", self.project_dir, exc)
            return []
        found: list[Path] = []
        for name in names:
            if not name.endswith(_SUFFIX):
                continue
            path = self.project_dir / name
            try:
                st = path.stat()
            except OSError:
                continue
            if st.st_mtime >= self.started_at:
                found.append(path)
        return found

    def close(self) -> None:
        for sub in (self._parent_sub, self._dir_sub):
            if sub is not None:
                sub.cancel()
        self._parent_sub = None
        self._dir_sub = None
