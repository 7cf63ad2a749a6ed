"""Stored line records and their ids."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass

_last_ns: list[int] = [0]


def new_entry_id() -> str:
    """Sortable unique ID: nanosecond timestamp + random suffix.

    The timestamp part is strictly increasing within a process, so a new id
    always sorts after every id issued before it here. The random suffix
    keeps ids from concurrent processes apart.
    """
    ns = max(time.time_ns(), _last_ns[0] + 1)
    _last_ns[0] = ns
    return f"{ns:020d}_{secrets.token_hex(6)}"


@dataclass(frozen=True)
class LineRecord:
    """One accepted line as written to the entries table."""

    id: str
    data: str           # raw line, byte-identical to the source file
    cwd: str
    filepath: str

    @classmethod
    def new(cls, data: str, cwd: str, filepath: str) -> LineRecord:
        return cls(id=new_entry_id(), data=data, cwd=cwd, filepath=filepath)

    def as_row(self) -> tuple[str, str, str, str]:
        return (self.id, self.data, self.cwd, self.filepath)
