"""Per-file cursors: how many lines of each file were already handed downstream."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class OffsetTracker:
    """Line cursors keyed by file path.

    Owned by the ProjectWatcher for the lifetime of a run and shared by
    reference with every FileTailer. Cursors never move backwards.
    """

    def __init__(self) -> None:
        self._cursors: dict[str, int] = {}

    def get(self, path: Path | str) -> int:
        return self._cursors.get(str(path), 0)

    def advance(self, path: Path | str, count: int) -> int:
        """Move the cursor for path to count if that is further; return the cursor."""
        key = str(path)
        current = self._cursors.get(key, 0)
        if count > current:
            self._cursors[key] = count
            return count
        return current

    def forget(self, path: Path | str) -> None:
        self._cursors.pop(str(path), None)

    def __contains__(self, path: object) -> bool:
        return str(path) in self._cursors

    def __len__(self) -> int:
        return len(self._cursors)
