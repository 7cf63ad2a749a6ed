"""chatstream CLI: stream the current project's transcript lines to stdout.

    chatstream                     print every new JSONL line to stdout
    chatstream --db lines.db       ...and store each line in SQLite
    chatstream --config cfg.toml   read settings from a TOML file

Runs until interrupted (Ctrl-C / SIGTERM), then closes watches and the store.
Status goes to stderr through logging; stdout carries only the lines.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

import click

from chatstream.config import ConfigError, StreamConfig, load_config
from chatstream.db import StoreError, open_store
from chatstream.discovery import ProjectWatcher
from chatstream.fswatch import make_watcher
from chatstream.offsets import OffsetTracker
from chatstream.persist import EntryStore
from chatstream.reconcile import LineReconciler
from chatstream.tailer import FileTailer

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("chatstream.cli")

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


async def run(
    cfg: StreamConfig,
    sink: Callable[[str], object] = click.echo,
    stop: asyncio.Event | None = None,
    *,
    handle_signals: bool = True,
) -> None:
    """Watch cfg.project_dir until stop is set (or a stop signal arrives)."""
    started_at = time.time()
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    watcher = make_watcher(cfg.watch)
    store: EntryStore | None = None
    tailer: FileTailer | None = None
    project: ProjectWatcher | None = None
    installed: list[signal.Signals] = []
    try:
        if cfg.db_path is not None:
            store = EntryStore.from_config(open_store(cfg.db_path, cfg.store.busy_timeout_ms), cfg.store)
            logger.info("Database: %s", cfg.db_path)
        tailer = FileTailer(
            watcher,
            OffsetTracker(),
            LineReconciler(timeout=cfg.reconcile.timeout_ms / 1000, interval=cfg.reconcile.poll_ms / 1000),
            sink,
            cwd=cfg.cwd,
            slug=cfg.slug,
            store=store,
            notify=cfg.debug.notify,
        )
        project = ProjectWatcher(cfg.project_dir, watcher, tailer, started_at)

        if handle_signals:
            for sig in _STOP_SIGNALS:
                with contextlib.suppress(NotImplementedError, RuntimeError):  # Windows / non-main thread
                    loop.add_signal_handler(sig, stop.set)
                    installed.append(sig)
        project.start()
        await stop.wait()
        logger.info("Stopping watchers...")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        if project is not None:
            project.close()
        if tailer is not None:
            tailer.close()
        watcher.close()
        if store is not None:
            store.close()


class StreamCommand(click.Command):
    """click.Command whose usage errors exit 1, the same as other startup failures."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


@click.command(cls=StreamCommand)
@click.option(
    "--db", "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite database to store every line in (stdout only if omitted)",
)
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="TOML config file (default: $CHATSTREAM_CONFIG or ~/.config/chatstream/config.toml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.version_option(package_name="chatstream")
def cli(db_path: Path | None, config_path: Path | None, verbose: bool) -> None:
    """Stream Claude Code transcript lines for the current directory."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    try:
        cfg = load_config(config_path, db_path=db_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        asyncio.run(run(cfg))
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc
    except OSError as exc:
        msg = f"cannot watch {cfg.project_dir}: {exc}"
        raise click.ClickException(msg) from exc
    except KeyboardInterrupt:
        logger.info("Stopping watchers...")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
