"""Desktop notifications for lines that never became valid JSON.

Off unless [debug] notify = true or CHATSTREAM_DEBUG=1. Uses notify-send on
Linux and osascript on macOS; a missing binary is logged and ignored.
"""

from __future__ import annotations

import json
import logging
import subprocess
import sys

logger = logging.getLogger("chatstream.notify")


def _command(title: str, body: str) -> list[str] | None:
    if sys.platform == "darwin":
        script = f"display notification {json.dumps(body)} with title {json.dumps(title)}"
        return ["osascript", "-e", script]
    if sys.platform.startswith("linux"):
        return ["notify-send", "--app-name=chatstream", title, body]
    return None


def send_desktop_notification(title: str, body: str) -> bool:
    """Fire a notification without waiting for it. Returns False if none was sent."""
    cmd = _command(title, body)
    if cmd is None:
        logger.debug("no desktop notifier on %s", sys.platform)
        return False
    try:
        subprocess.Popen(  # noqa: S603
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        logger.warning("desktop notification failed (%s): %s", cmd[0], exc)
        return False
    return True


def notify_parse_failure(slug: str, cwd: str, filename: str, line_number: int, waited_ms: float) -> bool:
    """Report a line skipped after the reconciliation window ran out."""
    title = f"chatstream: skipped {filename}:{line_number}"
    body = (
        f"project: {slug}\n"
        f"cwd: {cwd}\n"
        f"file: {filename}\n"
        f"line: {line_number}\n"
        f"waited: {waited_ms:.0f}ms for valid JSON"
    )
    return send_desktop_notification(title, body)
