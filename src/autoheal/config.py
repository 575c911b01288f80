"""Configuration loading and watching for autoheal."""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Callable, Iterable

import yaml
from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from autoheal.models import AutohealConfig

CONFIG_SUFFIXES = (".yml", ".yaml")

# Sections that are replaced as a whole by later files.
_SECTIONS = ("awx", "throttling", "kubernetes", "server")


class ConfigError(Exception):
    """Configuration error."""

    pass


def expand_env_vars(value: str) -> str:
    """Expand environment variables in a string.

    Supports:
    - ${env:VAR_NAME} - environment variable
    - $VAR_NAME or ${VAR_NAME} - standard env var expansion
    """
    def replace_env(match: re.Match[str]) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    value = re.sub(r"\$\{env:([^}]+)\}", replace_env, value)
    return os.path.expandvars(value)


def expand_path(path: str | None) -> str | None:
    """Expand a path with ~ and environment variables."""
    if path is None:
        return None
    return expand_env_vars(os.path.expanduser(path))


def load_yaml_file(path: Path) -> dict:
    """Load a YAML file that must contain a mapping."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Can't read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} isn't valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def config_files(paths: Iterable[Path | str]) -> list[Path]:
    """Resolve the configuration paths to the list of files to load.

    Directories contribute their ``.yml`` and ``.yaml`` files in alphabetical
    order.
    """
    files = []
    for item in paths:
        path = Path(item).expanduser()
        if path.is_dir():
            files.extend(
                sorted(p for p in path.iterdir() if p.is_file() and p.suffix in CONFIG_SUFFIXES)
            )
        elif path.exists():
            files.append(path)
        else:
            raise ConfigError(f"Config path {path} doesn't exist")
    return files


def merge_config_data(documents: Iterable[dict]) -> dict:
    """Merge configuration documents.

    Sections of later documents replace the ones of earlier documents, rules
    accumulate.
    """
    merged: dict[str, Any] = {"rules": []}
    for data in documents:
        for section in _SECTIONS:
            if section in data:
                merged[section] = data[section]
        rules = data.get("rules") or []
        if not isinstance(rules, list):
            raise ConfigError("The 'rules' section must be a list")
        merged["rules"].extend(rules)
    return merged


def _apply_credentials(data: dict) -> None:
    awx = data.get("awx")
    if not isinstance(awx, dict):
        return

    credentials_file = awx.get("credentialsFile") or awx.get("credentials_file")
    if credentials_file:
        path = Path(expand_path(credentials_file) or "")
        file_data = load_yaml_file(path)
        credentials = dict(awx.get("credentials") or {})
        for key in ("username", "password", "token"):
            if file_data.get(key) is not None:
                credentials[key] = str(file_data[key])
        awx["credentials"] = credentials
        logger.debug(f"Loaded AWX credentials from {path}")

    credentials = awx.get("credentials")
    if isinstance(credentials, dict):
        awx["credentials"] = {
            k: expand_env_vars(str(v)) if v is not None else None
            for k, v in credentials.items()
        }


def load_config(paths: Iterable[Path | str] = ()) -> AutohealConfig:
    """Load the autoheal configuration from files and directories.

    Raises:
        ConfigError: If a file can't be read or the configuration is invalid.
    """
    files = config_files(paths)
    if not files:
        logger.info("No config files given, using defaults")

    documents = []
    for path in files:
        documents.append(load_yaml_file(path))
        logger.debug(f"Loaded config from {path}")

    data = merge_config_data(documents)
    _apply_credentials(data)

    try:
        config = AutohealConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.info(f"Loaded configuration with {len(config.rules)} healing rules")
    return config


class ConfigChangeHandler(FileSystemEventHandler):
    """Reacts to changes of the watched configuration files."""

    def __init__(self, on_event: Callable[[Path], None], files: set[Path], dirs: set[Path]):
        super().__init__()
        self._on_event = on_event
        self._files = files
        self._dirs = dirs

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return

        paths = [Path(event.src_path)]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(Path(dest))

        for path in paths:
            if self._is_relevant(path):
                self._on_event(path)
                return

    def _is_relevant(self, path: Path) -> bool:
        path = path.absolute()
        if path in self._files:
            return True
        return path.parent in self._dirs and path.suffix in CONFIG_SUFFIXES


class ConfigWatcher:
    """Reloads the configuration when its files change."""

    def __init__(
        self,
        paths: Iterable[Path | str],
        on_change: Callable[[AutohealConfig], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        """Initialize the watcher.

        Args:
            paths: Configuration files and directories, as given to ``load_config``.
            on_change: Called with the new configuration after a successful reload.
            loop: When given, ``on_change`` is called inside this event loop
                instead of the watcher thread.
        """
        self.paths = [Path(p).expanduser().absolute() for p in paths]
        self._on_change = on_change
        self._loop = loop
        self._observer = Observer()
        self._running = False

        files = {p for p in self.paths if not p.is_dir()}
        dirs = {p for p in self.paths if p.is_dir()}
        self._handler = ConfigChangeHandler(self._handle_event, files, dirs)

        watched = dirs | {p.parent for p in files}
        for directory in sorted(watched):
            self._observer.schedule(self._handler, str(directory), recursive=False)

    def reload(self) -> AutohealConfig | None:
        """Load the configuration again and notify the listener.

        Returns:
            The new configuration, or None if it couldn't be loaded.
        """
        try:
            config = load_config(self.paths)
        except ConfigError as e:
            logger.error(f"Can't reload configuration, keeping the current one: {e}")
            return None

        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._on_change, config)
        else:
            self._on_change(config)
        return config

    def _handle_event(self, path: Path) -> None:
        logger.info(f"Configuration file {path} changed, reloading")
        self.reload()

    def start(self) -> None:
        """Start watching the configuration."""
        if not self._running:
            self._observer.start()
            self._running = True
            logger.info(f"Watching configuration in {', '.join(str(p) for p in self.paths)}")

    def stop(self) -> None:
        """Stop watching the configuration."""
        if self._running:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._running = False
            logger.info("Configuration watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running
