"""Tail Claude Code JSONL transcripts and forward each completed line.

Pipeline (one asyncio loop, no threads):

    ProjectWatcher    finds <projects_dir>/<slug of cwd>/*.jsonl
      -> FileTailer   re-reads a file on every change, past its line cursor
      -> LineReconciler  waits briefly for half-written lines to become JSON
      -> stdout, then EntryStore (optional SQLite, BEGIN IMMEDIATE + backoff)

Lines are forwarded byte-for-byte, once each, in file order.
"""

from chatstream.config import StreamConfig, load_config, slugify_path
from chatstream.offsets import OffsetTracker
from chatstream.persist import EntryStore
from chatstream.reconcile import LineReconciler
from chatstream.tailer import FileTailer

__all__ = [
    "EntryStore",
    "FileTailer",
    "LineReconciler",
    "OffsetTracker",
    "StreamConfig",
    "load_config",
    "slugify_path",
]
