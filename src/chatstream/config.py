"""StreamConfig: runtime settings for the chatstream daemon.

Sources, lowest to highest priority:

    built-in defaults
    config.toml           # --config PATH, $CHATSTREAM_CONFIG, or ~/.config/chatstream/config.toml
    environment           # CHATSTREAM_DEBUG, CHATSTREAM_PROJECTS_DIR
    command line          # --db PATH

config.toml example:

    [watch]
    projects_dir = "~/.claude/projects"
    backend = "auto"        # auto | inotify | poll
    poll_interval = 0.5     # seconds, poll backend only

    [reconcile]
    timeout_ms = 150        # how long a half-written line may stay invalid
    poll_ms = 50

    [store]
    busy_timeout_ms = 0     # sqlite busy handler; 0 = let the retry loop back off
    max_attempts = 5
    backoff_base_ms = 100
    backoff_cap_ms = 1000

    [debug]
    notify = false          # desktop notification when a line is skipped
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_ENV = "CHATSTREAM_CONFIG"
_DEBUG_ENV = "CHATSTREAM_DEBUG"
_PROJECTS_ENV = "CHATSTREAM_PROJECTS_DIR"
_DEFAULT_CONFIG_PATH = Path("~/.config/chatstream/config.toml")
_DEFAULT_PROJECTS_DIR = Path("~/.claude/projects")
_BACKENDS = ("auto", "inotify", "poll")
_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """Raised for invalid configuration values."""


def slugify_path(path: str) -> str:
    """Map a working directory to its project directory name.

    "/home/u/proj" -> "-home-u-proj"; dots become dashes too.
    """
    if path.startswith("/"):
        return "-" + path[1:].replace("/", "-").replace(".", "-")
    return path.replace("/", "-").replace(".", "-")


@dataclass
class WatchConfig:
    projects_dir: Path = field(default_factory=lambda: _DEFAULT_PROJECTS_DIR.expanduser())
    backend: str = "auto"
    poll_interval: float = 0.5


@dataclass
class ReconcileConfig:
    timeout_ms: int = 150
    poll_ms: int = 50


@dataclass
class StoreConfig:
    busy_timeout_ms: int = 0
    max_attempts: int = 5
    backoff_base_ms: int = 100
    backoff_cap_ms: int = 1000


@dataclass
class DebugConfig:
    notify: bool = False


@dataclass
class StreamConfig:
    """Resolved configuration for one daemon run."""

    cwd: str
    db_path: Path | None = None         # None = stdout-only mode
    watch: WatchConfig = field(default_factory=WatchConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)

    @property
    def slug(self) -> str:
        return slugify_path(self.cwd)

    @property
    def project_dir(self) -> Path:
        return self.watch.projects_dir / self.slug

    @property
    def persist_enabled(self) -> bool:
        return self.db_path is not None


def _env_flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


def _read_toml(config_path: Path | None) -> dict[str, Any]:
    if config_path is None:
        env_path = os.environ.get(_CONFIG_ENV)
        if env_path:
            config_path = Path(env_path)
        else:
            default = _DEFAULT_CONFIG_PATH.expanduser()
            if not default.exists():
                return {}
            config_path = default
    try:
        with config_path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as exc:
        msg = f"config file not found: {config_path}"
        raise ConfigError(msg) from exc
    except tomllib.TOMLDecodeError as exc:
        msg = f"invalid config file {config_path}: {exc}"
        raise ConfigError(msg) from exc


def _validate(cfg: StreamConfig) -> None:
    if cfg.watch.backend not in _BACKENDS:
        msg = f"watch.backend must be one of {', '.join(_BACKENDS)}, got {cfg.watch.backend!r}"
        raise ConfigError(msg)
    if cfg.watch.poll_interval <= 0:
        raise ConfigError("watch.poll_interval must be positive")
    if cfg.store.max_attempts < 1:
        raise ConfigError("store.max_attempts must be at least 1")
    if cfg.reconcile.timeout_ms < 0 or cfg.reconcile.poll_ms <= 0:
        raise ConfigError("reconcile.timeout_ms must be >= 0 and reconcile.poll_ms positive")
    if cfg.store.backoff_base_ms < 0 or cfg.store.backoff_cap_ms < 0 or cfg.store.busy_timeout_ms < 0:
        raise ConfigError("store timings must not be negative")


def load_config(
    config_path: Path | str | None = None,
    cwd: str | None = None,
    db_path: Path | str | None = None,
) -> StreamConfig:
    """Build a StreamConfig from defaults, TOML, environment and CLI values."""
    raw = _read_toml(Path(config_path) if config_path else None)

    watch_section = raw.get("watch", {})
    rec_section = raw.get("reconcile", {})
    store_section = raw.get("store", {})
    debug_section = raw.get("debug", {})

    projects_dir = os.environ.get(_PROJECTS_ENV) or watch_section.get("projects_dir")
    try:
        cfg = StreamConfig(
            cwd=cwd or os.getcwd(),
            db_path=Path(db_path).expanduser().resolve() if db_path else None,
            watch=WatchConfig(
                projects_dir=(
                    Path(projects_dir).expanduser() if projects_dir else _DEFAULT_PROJECTS_DIR.expanduser()
                ),
                backend=str(watch_section.get("backend", "auto")),
                poll_interval=float(watch_section.get("poll_interval", 0.5)),
            ),
            reconcile=ReconcileConfig(
                timeout_ms=int(rec_section.get("timeout_ms", 150)),
                poll_ms=int(rec_section.get("poll_ms", 50)),
            ),
            store=StoreConfig(
                busy_timeout_ms=int(store_section.get("busy_timeout_ms", 0)),
                max_attempts=int(store_section.get("max_attempts", 5)),
                backoff_base_ms=int(store_section.get("backoff_base_ms", 100)),
                backoff_cap_ms=int(store_section.get("backoff_cap_ms", 1000)),
            ),
            debug=DebugConfig(
                notify=bool(debug_section.get("notify", False)) or _env_flag(os.environ.get(_DEBUG_ENV)),
            ),
        )
    except (TypeError, ValueError) as exc:
        msg = f"invalid config value: {exc}"
        raise ConfigError(msg) from exc
    _validate(cfg)
    return cfg
