"""Confirm that a line read from a live JSONL file is complete.

The writer may flush a record in several chunks, so a read can catch a line
that is not yet valid JSON. LineReconciler re-reads the file a few times
within a short window and takes the newest text at the same line index.
Confirmed text is passed on verbatim; the parsed value is only a check.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chatstream.retry import RetryExhausted, RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

logger = logging.getLogger("chatstream.reconcile")


def _reject_constant(name: str) -> object:
    # NaN / Infinity are not JSON; SQLite's json functions reject them too.
    msg = f"non-standard JSON constant {name}"
    raise ValueError(msg)


def split_complete_lines(data: bytes) -> list[str]:
    """Return the newline-terminated, non-blank lines of data.

    An unterminated trailing fragment is left out until its newline arrives.
    """
    end = data.rfind(b"\n")
    if end < 0:
        return []
    text = data[:end].decode("utf-8", errors="replace")
    return [line for line in text.split("\n") if line.strip()]


def read_lines(path: Path) -> list[str]:
    """Read path and split it into complete lines. OSError propagates."""
    return split_complete_lines(path.read_bytes())


@dataclass
class Confirmation:
    """Outcome of confirming one line."""

    index: int
    text: str | None        # latest valid text, None if the line was given up on
    waited: float = 0.0     # seconds spent polling
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.text is not None

    @property
    def line_number(self) -> int:
        return self.index + 1


class LineReconciler:
    """Parse-check lines, polling the file while a line stays invalid."""

    def __init__(
        self,
        timeout: float = 0.15,
        interval: float = 0.05,
        reader: Callable[[Path], list[str]] = read_lines,
        sleep: Callable[[float], Awaitable[object]] | None = None,
    ) -> None:
        self.policy = RetryPolicy.polling(interval=interval, max_elapsed=timeout)
        self._reader = reader
        self._sleep = sleep

    def read(self, path: Path) -> list[str]:
        return self._reader(path)

    async def confirm(self, path: Path, index: int, line: str) -> Confirmation:
        """Confirm the line at index, first as given, then from fresh reads."""
        latest = line
        first = True
        attempts = 0

        async def attempt() -> str:
            nonlocal latest, first, attempts
            attempts += 1
            if first:
                first = False
            else:
                try:
                    lines = self._reader(path)
                except OSError as exc:
                    logger.debug("re-read of %s failed: %s", path, exc)
                else:
                    if index < len(lines):
                        latest = lines[index]
            try:
                json.loads(latest, parse_constant=_reject_constant)
            except RecursionError as exc:
                msg = f"line {index + 1} is nested too deeply to parse"
                raise ValueError(msg) from exc
            return latest

        try:
            text = await retry_async(
                attempt,
                self.policy,
                should_retry=lambda exc: isinstance(exc, ValueError),
                sleep=self._sleep,
            )
        except RetryExhausted as exc:
            return Confirmation(index=index, text=None, waited=exc.elapsed, attempts=exc.attempts)
        return Confirmation(index=index, text=text, attempts=attempts)
