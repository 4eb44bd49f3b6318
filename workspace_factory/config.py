"""
Load settings from workspace.yaml with optional env overrides.
Single source of truth for the connection string, data/app paths, expected schema version and model.
"""
from __future__ import annotations

import importlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from sqlalchemy import MetaData

from .core.errors import ConfigurationError

MIGRATION_MARKER_NAME = "migrate.txt"

# Defaults if no YAML or env
_DEFAULTS = {
    "workspace": {
        "connection_string": "",
        "document_path": "data",
        "data_path": "data",
        "app_path": ".",
        "migrations_dir": None,
        "db_version": 1,
        "override_language": False,
        "current_language": "en",
        "flat_file_stem": "SambaData",
        "allow_destructive_recreate": False,
        "odbc_driver": "ODBC Driver 18 for SQL Server",
        "model": None,
    },
}

_ENV_KEYS = {
    "WORKSPACE_CONNECTION_STRING": "connection_string",
    "WORKSPACE_DOCUMENT_PATH": "document_path",
    "WORKSPACE_DATA_PATH": "data_path",
    "WORKSPACE_APP_PATH": "app_path",
    "WORKSPACE_MIGRATIONS_DIR": "migrations_dir",
    "WORKSPACE_DB_VERSION": "db_version",
    "WORKSPACE_LANGUAGE": "current_language",
    "WORKSPACE_OVERRIDE_LANGUAGE": "override_language",
    "WORKSPACE_ALLOW_DESTRUCTIVE_RECREATE": "allow_destructive_recreate",
    "WORKSPACE_ODBC_DRIVER": "odbc_driver",
    "WORKSPACE_MODEL": "model",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class LocalSettings:
    """
    Process settings handed by reference to the factory.
    current_db_version is an output slot, written by schema initialization.
    """

    connection_string: str = ""
    document_path: Path = Path("data")
    data_path: Path = Path("data")
    app_path: Path = Path(".")
    migrations_dir: Optional[Path] = None
    db_version: int = 1
    override_language: bool = False
    current_language: str = "en"
    flat_file_stem: str = "SambaData"
    allow_destructive_recreate: bool = False
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    model: Optional[str] = None
    current_db_version: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        if self.db_version < 0:
            raise ConfigurationError(f"db_version must be >= 0, got {self.db_version}")

    @property
    def marker_path(self) -> Path:
        return Path(self.data_path) / MIGRATION_MARKER_NAME

    @property
    def migrations_path(self) -> Path:
        if self.migrations_dir is not None:
            return Path(self.migrations_dir)
        return Path(self.app_path) / "migrations"

    def flat_file_name(self) -> Path:
        """Default text data file: <document_path>/<stem>[_<language>].txt."""
        suffix = f"_{self.current_language}" if self.override_language else ""
        return Path(self.document_path) / f"{self.flat_file_stem}{suffix}.txt"


def _config_yaml_path() -> Path:
    """WORKSPACE_CONFIG, else workspace.yaml at repo root (parent of package dir)."""
    env_path = os.environ.get("WORKSPACE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path(__file__).resolve().parent.parent / "workspace.yaml"


def _load_yaml() -> dict:
    config_path = _config_yaml_path()
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e
    if not isinstance(data, dict):
        return {}
    section = data.get("workspace")
    # "workspace:" with every child commented out loads as None
    if section is None:
        return {k: v for k, v in data.items() if k != "workspace"}
    if not isinstance(section, dict):
        raise ConfigurationError(f"{config_path}: 'workspace' must be a mapping, got {type(section).__name__}")
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_overrides() -> dict:
    overrides: dict = {}
    for env_name, key in _ENV_KEYS.items():
        value = os.environ.get(env_name)
        if value is not None:
            overrides.setdefault("workspace", {})[key] = value
    return overrides


def get_config() -> dict:
    """Return merged config: defaults <- workspace.yaml <- env."""
    merged = _deep_merge(_DEFAULTS, _load_yaml())
    merged = _deep_merge(merged, _env_overrides())
    return merged


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def load_settings(**overrides: Any) -> LocalSettings:
    """
    Build LocalSettings from get_config(); keyword overrides win over every layer.
    A null value in any layer means "not set" and keeps the default.
    Raises ConfigurationError on values that cannot be coerced.
    """
    ws: Dict[str, Any] = dict(_DEFAULTS["workspace"])
    ws.update({k: v for k, v in get_config()["workspace"].items() if v is not None})
    ws.update({k: v for k, v in overrides.items() if v is not None})
    migrations_dir = ws.get("migrations_dir")
    return LocalSettings(
        connection_string=str(ws.get("connection_string") or ""),
        document_path=Path(ws["document_path"]),
        data_path=Path(ws["data_path"]),
        app_path=Path(ws["app_path"]),
        migrations_dir=Path(migrations_dir) if migrations_dir else None,
        db_version=_as_int("db_version", ws["db_version"]),
        override_language=_as_bool("override_language", ws["override_language"]),
        current_language=str(ws["current_language"]),
        flat_file_stem=str(ws["flat_file_stem"]),
        allow_destructive_recreate=_as_bool("allow_destructive_recreate", ws["allow_destructive_recreate"]),
        odbc_driver=str(ws["odbc_driver"]),
        model=str(ws["model"]) if ws.get("model") else None,
    )


def load_model(ref: Optional[str]) -> MetaData:
    """
    Import the expected schema from a "package.module:attribute" reference.
    The attribute may be a MetaData or anything carrying one as .metadata (a declarative base).
    No reference means an empty model, which every existing database matches.
    """
    if not ref:
        return MetaData()
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"model must look like 'package.module:attribute', got {ref!r}")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import model module {module_name!r}: {e}") from e
    for part in attr.split("."):
        if not hasattr(obj, part):
            raise ConfigurationError(f"Model module {module_name!r} has no attribute {attr!r}")
        obj = getattr(obj, part)
    if not isinstance(obj, MetaData):
        obj = getattr(obj, "metadata", None)
    if not isinstance(obj, MetaData):
        raise ConfigurationError(f"{ref!r} is not a SQLAlchemy MetaData or declarative base")
    return obj
