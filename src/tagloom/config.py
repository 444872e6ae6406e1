"""Configuration and composition root: ``.tagloom/config.yml`` plus environment overrides.

This is the one place that decides which storage adapter a process uses.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from tagloom.catalog.data_model import default_data_model, load_data_model
from tagloom.catalog.events import EventCatalog
from tagloom.repository import TagRepository
from tagloom.storage.remote import DEFAULT_TABLE, RemoteAdapter
from tagloom.storage.sqlite import SQLiteAdapter
from tagloom.sync.scheduler import DEFAULT_AUTOSAVE_DELAY

if TYPE_CHECKING:
    from collections.abc import Mapping

    from tagloom.catalog.data_model import DataModel
    from tagloom.storage.adapter import StorageAdapter

logger = logging.getLogger(__name__)

CONFIG_DIR = ".tagloom"
CONFIG_FILE = "config.yml"
ADAPTER_ENV = "TAGLOOM_STORAGE_ADAPTER"
VALID_ADAPTERS: frozenset[str] = frozenset({"sqlite", "remote"})
DEFAULT_DB_PATH = f"{CONFIG_DIR}/tagloom.db"


class ConfigError(ValueError):
    """The configuration file or environment is missing or invalid."""


@dataclass(frozen=True)
class StorageConfig:
    """Where tags are stored. Secrets are referenced by environment variable name only."""

    adapter: str = "sqlite"  # "sqlite" | "remote"
    path: str = DEFAULT_DB_PATH
    url: str | None = None
    table: str = DEFAULT_TABLE
    api_key_env: str = "TAGLOOM_API_KEY"
    access_token_env: str = "TAGLOOM_ACCESS_TOKEN"


@dataclass(frozen=True)
class TagloomConfig:
    project: str
    root: Path
    storage: StorageConfig = field(default_factory=StorageConfig)
    autosave_delay: float = DEFAULT_AUTOSAVE_DELAY
    data_model: Path | None = None

    @property
    def db_path(self) -> Path:
        path = Path(self.storage.path)
        return path if path.is_absolute() else self.root / path


def config_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIR / CONFIG_FILE


def _section(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        msg = f"config.yml: '{key}' must be a mapping"
        raise ConfigError(msg)
    return value


def parse_config(
    raw: Any, project_root: Path, *, env: Mapping[str, str] | None = None
) -> TagloomConfig:
    """Validate a parsed ``config.yml`` mapping.

    ``TAGLOOM_STORAGE_ADAPTER`` in *env* (default: ``os.environ``)
    overrides ``storage.adapter``.

    Raises
    ------
    ConfigError
        If required fields are missing or values are invalid.
    """
    environ = os.environ if env is None else env
    if not isinstance(raw, dict):
        msg = "config.yml must be a YAML mapping"
        raise ConfigError(msg)

    project = raw.get("project")
    if not isinstance(project, str) or not project.strip():
        msg = "config.yml: missing required 'project' field"
        raise ConfigError(msg)

    storage_raw = _section(raw, "storage")
    adapter = str(environ.get(ADAPTER_ENV) or storage_raw.get("adapter", "sqlite"))
    if adapter not in VALID_ADAPTERS:
        msg = f"Unsupported storage adapter: {adapter!r}. Use one of {sorted(VALID_ADAPTERS)}."
        raise ConfigError(msg)
    storage = StorageConfig(
        adapter=adapter,
        path=str(storage_raw.get("path", DEFAULT_DB_PATH)),
        url=storage_raw.get("url"),
        table=str(storage_raw.get("table", DEFAULT_TABLE)),
        api_key_env=str(storage_raw.get("api_key_env", "TAGLOOM_API_KEY")),
        access_token_env=str(storage_raw.get("access_token_env", "TAGLOOM_ACCESS_TOKEN")),
    )
    if adapter == "remote" and not storage.url:
        msg = "config.yml: the remote adapter requires 'storage.url'"
        raise ConfigError(msg)

    autosave_raw = _section(raw, "autosave")
    try:
        delay = float(autosave_raw.get("delay_seconds", DEFAULT_AUTOSAVE_DELAY))
    except (TypeError, ValueError) as exc:
        msg = "config.yml: 'autosave.delay_seconds' must be a number"
        raise ConfigError(msg) from exc
    if delay < 0:
        msg = "config.yml: 'autosave.delay_seconds' must not be negative"
        raise ConfigError(msg)

    data_model_raw = raw.get("data_model")
    data_model = None
    if data_model_raw is not None:
        data_model = Path(str(data_model_raw))
        if not data_model.is_absolute():
            data_model = project_root / data_model

    return TagloomConfig(
        project=project.strip(),
        root=project_root,
        storage=storage,
        autosave_delay=delay,
        data_model=data_model,
    )


def load_config(project_root: Path, *, env: Mapping[str, str] | None = None) -> TagloomConfig:
    """Read ``<project_root>/.tagloom/config.yml``."""
    path = config_path(project_root)
    if not path.is_file():
        msg = f"{path} not found. Run `tagloom init` first."
        raise ConfigError(msg)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        msg = f"{path}: invalid YAML: {exc}"
        raise ConfigError(msg) from exc
    return parse_config(raw, project_root, env=env)


def write_default_config(project_root: Path, project_id: str, *, adapter: str = "sqlite") -> Path:
    """Create ``.tagloom/config.yml`` for *project_id*. Existing files are left alone."""
    path = config_path(project_root)
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "project": project_id,
        "storage": {"adapter": adapter, "path": DEFAULT_DB_PATH},
        "autosave": {"delay_seconds": DEFAULT_AUTOSAVE_DELAY},
    }
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    logger.info("Wrote %s", path)
    return path


# ---------------------------------------------------------------------------
# Composition root
# ---------------------------------------------------------------------------


def load_project_data_model(config: TagloomConfig) -> DataModel:
    """The configured data model, or the packaged banking model when none is set."""
    if config.data_model is None:
        return default_data_model()
    try:
        return load_data_model(config.data_model)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        msg = f"cannot load data model {config.data_model}: {exc}"
        raise ConfigError(msg) from exc


def build_adapter(
    config: TagloomConfig, *, env: Mapping[str, str] | None = None
) -> StorageAdapter:
    """Instantiate the adapter selected by *config*."""
    environ = os.environ if env is None else env
    storage = config.storage
    if storage.adapter == "sqlite":
        return SQLiteAdapter(config.db_path, config.project)

    api_key = environ.get(storage.api_key_env, "")
    if not api_key:
        msg = f"API key not found. Set environment variable: {storage.api_key_env}"
        raise ConfigError(msg)
    return RemoteAdapter(
        str(storage.url),
        config.project,
        api_key=api_key,
        access_token=environ.get(storage.access_token_env) or None,
        table=storage.table,
    )


def build_repository(
    config: TagloomConfig, *, env: Mapping[str, str] | None = None
) -> TagRepository:
    """Wire adapter, data model and event catalog into a repository."""
    return TagRepository(
        build_adapter(config, env=env),
        data_model=load_project_data_model(config),
        event_catalog=EventCatalog(),
    )
